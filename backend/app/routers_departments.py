from __future__ import annotations
from typing import List
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .db import get_db
from .deps import require_permission
from .errors import DuplicateResourceError, NotFoundError, ResourceInUseError
from .models import Department, Publication, User
from .permissions import Action, Resource
from .schemas import DepartmentCreate, DepartmentOut, DepartmentUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/departments", tags=["departments"])


def _check_unique(db: Session, name: str | None, code: str | None, exclude_id: int | None = None) -> None:
    conds = []
    if name:
        conds.append(func.lower(Department.name) == name.strip().lower())
    if code:
        conds.append(func.lower(Department.code) == code.strip().lower())
    if not conds:
        return
    stmt = select(Department).where(or_(*conds))
    if exclude_id is not None:
        stmt = stmt.where(Department.id != exclude_id)
    if db.execute(stmt).scalars().first() is not None:
        raise DuplicateResourceError("A department with this name or code already exists")


@router.get("", response_model=List[DepartmentOut])
def list_departments(db: Session = Depends(get_db), _=Depends(require_permission(Resource.DEPARTMENTS, Action.READ))):
    rows = db.execute(select(Department).order_by(Department.name)).scalars().all()
    return [DepartmentOut.model_validate(d) for d in rows]


@router.get("/{dept_id}", response_model=DepartmentOut)
def get_department(dept_id: int, db: Session = Depends(get_db), _=Depends(require_permission(Resource.DEPARTMENTS, Action.READ))):
    d = db.get(Department, dept_id)
    if not d:
        raise NotFoundError("Department")
    return DepartmentOut.model_validate(d)


@router.post("", response_model=DepartmentOut, status_code=201)
def create_department(
    payload: DepartmentCreate,
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.DEPARTMENTS, Action.CREATE)),
):
    _check_unique(db, payload.name, payload.code)
    d = Department(name=payload.name.strip(), code=payload.code.strip().upper(), description=payload.description)
    db.add(d)
    db.commit()
    db.refresh(d)
    logger.info("Created department %s (%s)", d.name, d.code)
    return DepartmentOut.model_validate(d)


@router.put("/{dept_id}", response_model=DepartmentOut)
@router.patch("/{dept_id}", response_model=DepartmentOut)
def update_department(
    dept_id: int,
    payload: DepartmentUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.DEPARTMENTS, Action.UPDATE)),
):
    d = db.get(Department, dept_id)
    if not d:
        raise NotFoundError("Department")
    _check_unique(db, payload.name, payload.code, exclude_id=d.id)
    if payload.name is not None:
        d.name = payload.name.strip()
    if payload.code is not None:
        d.code = payload.code.strip().upper()
    if payload.description is not None:
        d.description = payload.description
    db.add(d)
    db.commit()
    db.refresh(d)
    return DepartmentOut.model_validate(d)


@router.delete("/{dept_id}")
def delete_department(
    dept_id: int,
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.DEPARTMENTS, Action.DELETE)),
):
    d = db.get(Department, dept_id)
    if not d:
        raise NotFoundError("Department")
    pubs = int(db.execute(select(func.count(Publication.id)).where(Publication.department_id == dept_id)).scalar_one() or 0)
    if pubs:
        raise ResourceInUseError("Department still has publications", {"publications": pubs})
    members = int(db.execute(select(func.count(User.id)).where(User.department_id == dept_id)).scalar_one() or 0)
    db.delete(d)
    db.commit()
    logger.info("Deleted department %s, %d member(s) detached", d.code, members)
    return {"ok": True}
