from __future__ import annotations
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload

from .config import get_settings
from .db import get_db
from .errors import DuplicateResourceError, NotFoundError, ValidationError
from .models import Department, Role, User
from .permissions import Action, Resource
from .deps import require_permission
from .schemas import UserCreate, UserOut, UserPage, UserUpdate, page_meta
from .security import hash_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _check_department(db: Session, department_id: Optional[int]) -> None:
    if department_id is not None and db.get(Department, department_id) is None:
        raise NotFoundError("Department")


def _check_unique(db: Session, username: Optional[str], email: Optional[str], exclude_id: Optional[int] = None) -> None:
    conds = []
    if username:
        conds.append(func.lower(User.username) == username.lower())
    if email:
        conds.append(func.lower(User.email) == email.lower())
    if not conds:
        return
    stmt = select(User).where(or_(*conds))
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    clash = db.execute(stmt).scalars().first()
    if clash is None:
        return
    field = "username" if username and clash.username.lower() == username.lower() else "email"
    raise DuplicateResourceError(f"A user with this {field} already exists", {"field": field})


def create_user_record(db: Session, payload: UserCreate) -> User:
    """Insert a user after uniqueness and department checks; shared with /auth/register."""
    if payload.role is Role.DEPARTMENT_ADMIN and payload.department_id is None:
        raise ValidationError("Department admins must belong to a department", {"field": "departmentId"})
    _check_unique(db, payload.username, payload.email)
    _check_department(db, payload.department_id)
    u = User(
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=payload.role.value,
        department_id=payload.department_id,
        is_active=True,
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    logger.info("Created user %s (id=%s, role=%s)", u.username, u.id, u.role)
    return u


@router.get("", response_model=UserPage)
def list_users(
    q: Optional[str] = Query(default=None),
    role: Optional[Role] = Query(default=None),
    department_id: Optional[int] = Query(default=None, alias="departmentId"),
    is_active: Optional[bool] = Query(default=None, alias="isActive"),
    page: int = Query(default=1, ge=1),
    per_page: Optional[int] = Query(default=None, ge=1, alias="perPage"),
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.USERS, Action.READ)),
):
    settings = get_settings()
    per_page = min(per_page or settings.PAGE_SIZE_DEFAULT, settings.PAGE_SIZE_MAX)

    conds = []
    if q:
        like = f"%{q.strip()}%"
        conds.append(or_(User.username.ilike(like), User.email.ilike(like)))
    if role is not None:
        conds.append(User.role == role.value)
    if department_id is not None:
        conds.append(User.department_id == department_id)
    if is_active is not None:
        conds.append(User.is_active == is_active)

    total = int(db.execute(select(func.count(User.id)).where(*conds)).scalar_one() or 0)
    stmt = (
        select(User)
        .options(joinedload(User.department))
        .where(*conds)
        .order_by(User.username)
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    rows = db.execute(stmt).scalars().unique().all()
    return UserPage(meta=page_meta(page, per_page, total), items=[UserOut.model_validate(u) for u in rows])


@router.get("/{user_id}", response_model=UserOut)
def get_user(user_id: int, db: Session = Depends(get_db), _=Depends(require_permission(Resource.USERS, Action.READ))):
    u = db.get(User, user_id)
    if not u:
        raise NotFoundError("User")
    return UserOut.model_validate(u)


@router.post("", response_model=UserOut, status_code=201)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.USERS, Action.CREATE)),
):
    return UserOut.model_validate(create_user_record(db, payload))


@router.put("/{user_id}", response_model=UserOut)
@router.patch("/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_permission(Resource.USERS, Action.UPDATE)),
):
    u = db.get(User, user_id)
    if not u:
        raise NotFoundError("User")
    fields = payload.model_dump(exclude_unset=True)

    if "email" in fields and fields["email"]:
        _check_unique(db, None, fields["email"], exclude_id=u.id)
        u.email = fields["email"]
    if "department_id" in fields:
        _check_department(db, fields["department_id"])
        u.department_id = fields["department_id"]
    if fields.get("role") is not None:
        u.role = fields["role"].value
    if fields.get("is_active") is not None:
        if u.id == admin.id and not fields["is_active"]:
            raise ValidationError("You cannot deactivate your own account")
        u.is_active = fields["is_active"]
    if fields.get("password"):
        u.password_hash = hash_password(fields["password"])

    if Role(u.role) is Role.DEPARTMENT_ADMIN and u.department_id is None:
        raise ValidationError("Department admins must belong to a department", {"field": "departmentId"})

    db.add(u)
    db.commit()
    db.refresh(u)
    return UserOut.model_validate(u)


@router.delete("/{user_id}")
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_permission(Resource.USERS, Action.DELETE)),
):
    """Deactivate rather than delete: publications keep pointing at their submitter."""
    u = db.get(User, user_id)
    if not u:
        raise NotFoundError("User")
    if u.id == admin.id:
        raise ValidationError("You cannot deactivate your own account")
    u.is_active = False
    db.add(u)
    db.commit()
    logger.info("User %s (id=%s) deactivated by %s", u.username, u.id, admin.username)
    return {"ok": True}
