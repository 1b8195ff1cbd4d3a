from __future__ import annotations

from typing import Optional
import logging

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy import desc, func, or_, select
from sqlalchemy.orm import Session, joinedload

from .config import get_settings
from .db import get_db
from .deps import require_permission
from .errors import DuplicateResourceError, NotFoundError, ValidationError
from .importer import PublicationImportJob, find_duplicate_publication
from .models import Department, Journal, Publication, Quartile, Role, User
from .permissions import Action, DEPARTMENT_SCOPED_ROLES, Resource, ensure_department_scope
from .schemas import (
    ImportResultOut,
    PublicationCreate,
    PublicationOut,
    PublicationPage,
    PublicationUpdate,
    page_meta,
)
from .spreadsheets import (
    CSV_MEDIA_TYPE,
    PUBLICATION_EXPORT_HEADERS,
    XLSX_MEDIA_TYPE,
    publication_rows,
    publication_template,
    to_csv,
    to_xlsx,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/publications", tags=["publications"])


def _scoped_department(user: User, department_id: Optional[int]) -> Optional[int]:
    """Department admins always see their own department, whatever they asked for."""
    if Role(user.role) in DEPARTMENT_SCOPED_ROLES:
        if department_id is not None:
            ensure_department_scope(user, department_id)
        return user.department_id
    return department_id


def _filters(
    q: Optional[str],
    department_id: Optional[int],
    journal_id: Optional[int],
    start_year: Optional[int],
    end_year: Optional[int],
    quartile: Optional[Quartile],
) -> list:
    conds = []
    if q:
        like = f"%{q.strip()}%"
        conds.append(or_(Publication.title.ilike(like), Publication.authors.ilike(like), Publication.doi.ilike(like)))
    if department_id is not None:
        conds.append(Publication.department_id == department_id)
    if journal_id is not None:
        conds.append(Publication.journal_id == journal_id)
    if start_year is not None:
        conds.append(Publication.publish_year >= start_year)
    if end_year is not None:
        conds.append(Publication.publish_year <= end_year)
    if quartile is not None:
        conds.append(Journal.quartile == quartile.value)
    return conds


def _load(db: Session, pub_id: int) -> Publication:
    pub = db.get(Publication, pub_id)
    if not pub:
        raise NotFoundError("Publication")
    return pub


def _check_references(db: Session, journal_id: Optional[int], department_id: Optional[int]) -> None:
    if journal_id is not None and db.get(Journal, journal_id) is None:
        raise NotFoundError("Journal")
    if department_id is not None and db.get(Department, department_id) is None:
        raise NotFoundError("Department")


def _check_duplicate(db: Session, title: str, journal_id: int, publish_year: int, doi: Optional[str], pmid: Optional[str], wos_number: Optional[str], exclude_id: Optional[int] = None) -> None:
    existing = find_duplicate_publication(db, title, journal_id, publish_year, doi, pmid, wos_number, exclude_id)
    if existing is not None:
        raise DuplicateResourceError("Publication already exists", {"existingId": existing})


@router.get("", response_model=PublicationPage)
def list_publications(
    q: Optional[str] = Query(default=None, description="title, authors or DOI"),
    department_id: Optional[int] = Query(default=None, alias="departmentId"),
    journal_id: Optional[int] = Query(default=None, alias="journalId"),
    start_year: Optional[int] = Query(default=None, alias="startYear"),
    end_year: Optional[int] = Query(default=None, alias="endYear"),
    quartile: Optional[Quartile] = Query(default=None),
    order: str = Query(default="year_desc", description="year_desc|year_asc|created_desc"),
    page: int = Query(default=1, ge=1),
    per_page: Optional[int] = Query(default=None, ge=1, alias="perPage"),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Resource.PUBLICATIONS, Action.READ)),
):
    settings = get_settings()
    per_page = min(per_page or settings.PAGE_SIZE_DEFAULT, settings.PAGE_SIZE_MAX)
    department_id = _scoped_department(user, department_id)
    conds = _filters(q, department_id, journal_id, start_year, end_year, quartile)

    total_stmt = select(func.count(Publication.id)).select_from(Publication).join(Publication.journal).where(*conds)
    total = int(db.execute(total_stmt).scalar_one() or 0)

    stmt = (
        select(Publication)
        .join(Publication.journal)
        .options(joinedload(Publication.journal), joinedload(Publication.department))
        .where(*conds)
    )
    if order == "year_asc":
        stmt = stmt.order_by(Publication.publish_year.asc(), Publication.id)
    elif order == "created_desc":
        stmt = stmt.order_by(desc(Publication.created_at), desc(Publication.id))
    else:
        stmt = stmt.order_by(desc(Publication.publish_year), desc(Publication.id))
    stmt = stmt.offset((page - 1) * per_page).limit(per_page)
    rows = db.execute(stmt).scalars().unique().all()
    return PublicationPage(meta=page_meta(page, per_page, total), items=[PublicationOut.model_validate(p) for p in rows])


@router.get("/template")
def download_template(_=Depends(require_permission(Resource.PUBLICATIONS, Action.IMPORT))):
    return Response(
        content=publication_template(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=publication_import_template.xlsx"},
    )


@router.get("/export")
def export_publications(
    fmt: str = Query(default="xlsx", pattern="^(xlsx|csv)$", description="xlsx|csv"),
    q: Optional[str] = Query(default=None),
    department_id: Optional[int] = Query(default=None, alias="departmentId"),
    journal_id: Optional[int] = Query(default=None, alias="journalId"),
    start_year: Optional[int] = Query(default=None, alias="startYear"),
    end_year: Optional[int] = Query(default=None, alias="endYear"),
    quartile: Optional[Quartile] = Query(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Resource.PUBLICATIONS, Action.READ)),
):
    department_id = _scoped_department(user, department_id)
    conds = _filters(q, department_id, journal_id, start_year, end_year, quartile)
    stmt = (
        select(Publication)
        .join(Publication.journal)
        .options(joinedload(Publication.journal), joinedload(Publication.department))
        .where(*conds)
        .order_by(desc(Publication.publish_year), Publication.id)
    )
    rows = publication_rows(db.execute(stmt).scalars().unique().all())
    logger.info("User %s exported %d publications as %s", user.username, len(rows), fmt)
    if fmt == "csv":
        return Response(
            content=to_csv(PUBLICATION_EXPORT_HEADERS, rows),
            media_type=CSV_MEDIA_TYPE,
            headers={"Content-Disposition": "attachment; filename=publications.csv"},
        )
    return Response(
        content=to_xlsx(PUBLICATION_EXPORT_HEADERS, rows, "Publications"),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=publications.xlsx"},
    )


@router.post("/import", response_model=ImportResultOut)
def import_publications(
    file: UploadFile = File(..., description="xlsx/xls/csv with one publication per row"),
    department_id: Optional[int] = Form(default=None, alias="departmentId"),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Resource.PUBLICATIONS, Action.IMPORT)),
):
    """Bulk import. ``departmentId``, when given, applies to every row and
    makes the spreadsheet's department column optional."""
    if department_id is not None and db.get(Department, department_id) is None:
        raise NotFoundError("Department")
    content = file.file.read()
    return PublicationImportJob(db, user, department_id).run(file.filename, content)


@router.get("/{pub_id}", response_model=PublicationOut)
def get_publication(
    pub_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Resource.PUBLICATIONS, Action.READ)),
):
    pub = _load(db, pub_id)
    if Role(user.role) in DEPARTMENT_SCOPED_ROLES:
        ensure_department_scope(user, pub.department_id)
    return PublicationOut.model_validate(pub)


@router.post("", response_model=PublicationOut, status_code=201)
def create_publication(
    payload: PublicationCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Resource.PUBLICATIONS, Action.CREATE)),
):
    ensure_department_scope(user, payload.department_id)
    _check_references(db, payload.journal_id, payload.department_id)
    _check_duplicate(db, payload.title, payload.journal_id, payload.publish_year, payload.doi, payload.pmid, payload.wos_number)
    pub = Publication(user_id=user.id, **payload.model_dump())
    pub.title = pub.title.strip()
    db.add(pub)
    db.commit()
    db.refresh(pub)
    logger.info("User %s created publication %s", user.username, pub.id)
    return PublicationOut.model_validate(pub)


@router.put("/{pub_id}", response_model=PublicationOut)
@router.patch("/{pub_id}", response_model=PublicationOut)
def update_publication(
    pub_id: int,
    payload: PublicationUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Resource.PUBLICATIONS, Action.UPDATE)),
):
    pub = _load(db, pub_id)
    ensure_department_scope(user, pub.department_id)
    fields = payload.model_dump(exclude_unset=True)
    for required in ("title", "authors", "journal_id", "department_id", "publish_year"):
        if required in fields and fields[required] is None:
            raise ValidationError(f"{required} cannot be cleared", {"field": required})
    if "department_id" in fields:
        ensure_department_scope(user, fields["department_id"])
    _check_references(db, fields.get("journal_id"), fields.get("department_id"))
    _check_duplicate(
        db,
        fields.get("title", pub.title),
        fields.get("journal_id", pub.journal_id),
        fields.get("publish_year", pub.publish_year),
        fields.get("doi", pub.doi),
        fields.get("pmid", pub.pmid),
        fields.get("wos_number", pub.wos_number),
        exclude_id=pub.id,
    )
    for key, val in fields.items():
        setattr(pub, key, val)
    db.add(pub)
    db.commit()
    db.refresh(pub)
    return PublicationOut.model_validate(pub)


@router.delete("/{pub_id}")
def delete_publication(
    pub_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Resource.PUBLICATIONS, Action.DELETE)),
):
    pub = _load(db, pub_id)
    ensure_department_scope(user, pub.department_id)
    db.delete(pub)
    db.commit()
    logger.info("User %s deleted publication %s", user.username, pub_id)
    return {"ok": True}
