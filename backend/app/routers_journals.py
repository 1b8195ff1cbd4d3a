from __future__ import annotations
from typing import Optional
from decimal import Decimal
import logging

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .config import get_settings
from .db import get_db
from .deps import require_permission
from .errors import DuplicateResourceError, NotFoundError, ResourceInUseError
from .importer import JournalImportJob
from .models import Journal, Publication, Quartile, User
from . import statistics
from .permissions import Action, Resource
from .schemas import (
    ImportResultOut,
    JournalCategories,
    JournalCreate,
    JournalOut,
    JournalPage,
    JournalStatsOut,
    JournalUpdate,
    page_meta,
)
from .spreadsheets import (
    CSV_MEDIA_TYPE,
    JOURNAL_EXPORT_HEADERS,
    XLSX_MEDIA_TYPE,
    journal_rows,
    journal_template,
    to_csv,
    to_xlsx,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/journals", tags=["journals"])


def _check_unique(db: Session, name: str, year: int, issn: Optional[str], exclude_id: Optional[int] = None) -> None:
    same = [func.lower(Journal.name) == name.strip().lower()]
    if issn:
        same.append(Journal.issn == issn.upper())
    stmt = select(Journal).where(Journal.year == year, or_(*same))
    if exclude_id is not None:
        stmt = stmt.where(Journal.id != exclude_id)
    if db.execute(stmt).scalars().first() is not None:
        raise DuplicateResourceError("Journal already exists for this year", {"name": name, "year": year})


def _filters(
    q: Optional[str],
    quartile: Optional[Quartile],
    year: Optional[int],
    category: Optional[str] = None,
    impact_factor_min: Optional[float] = None,
    impact_factor_max: Optional[float] = None,
) -> list:
    conds = []
    if q:
        like = f"%{q.strip()}%"
        conds.append(or_(Journal.name.ilike(like), Journal.issn.ilike(like), Journal.category.ilike(like)))
    if quartile is not None:
        conds.append(Journal.quartile == quartile.value)
    if year is not None:
        conds.append(Journal.year == year)
    if category:
        conds.append(Journal.category.ilike(f"%{category.strip()}%"))
    if impact_factor_min is not None:
        conds.append(Journal.impact_factor >= impact_factor_min)
    if impact_factor_max is not None:
        conds.append(Journal.impact_factor <= impact_factor_max)
    return conds


@router.get("", response_model=JournalPage)
def list_journals(
    q: Optional[str] = Query(default=None, description="name, ISSN or category"),
    quartile: Optional[Quartile] = Query(default=None),
    year: Optional[int] = Query(default=None),
    category: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    per_page: Optional[int] = Query(default=None, ge=1, alias="perPage"),
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.JOURNALS, Action.READ)),
):
    settings = get_settings()
    per_page = min(per_page or settings.PAGE_SIZE_DEFAULT, settings.PAGE_SIZE_MAX)
    conds = _filters(q, quartile, year, category)
    total = int(db.execute(select(func.count(Journal.id)).where(*conds)).scalar_one() or 0)
    stmt = (
        select(Journal)
        .where(*conds)
        .order_by(Journal.impact_factor.desc(), Journal.name)
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    rows = db.execute(stmt).scalars().all()
    return JournalPage(meta=page_meta(page, per_page, total), items=[JournalOut.model_validate(j) for j in rows])


@router.get("/categories", response_model=JournalCategories)
def list_categories(db: Session = Depends(get_db), _=Depends(require_permission(Resource.JOURNALS, Action.READ))):
    stmt = select(Journal.category).distinct().order_by(Journal.category.asc())
    return JournalCategories(categories=[c for c in db.execute(stmt).scalars().all() if c])


@router.get("/statistics", response_model=JournalStatsOut)
def journal_statistics(
    top: Optional[int] = Query(default=None, ge=1, le=100),
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.JOURNALS, Action.READ)),
):
    return statistics.journal_stats(db, top)


@router.get("/export")
def export_journals(
    fmt: str = Query(default="xlsx", pattern="^(xlsx|csv)$", description="xlsx|csv"),
    q: Optional[str] = Query(default=None),
    quartile: Optional[Quartile] = Query(default=None),
    year: Optional[int] = Query(default=None),
    category: Optional[str] = Query(default=None),
    impact_factor_min: Optional[float] = Query(default=None, ge=0, alias="impactFactorMin"),
    impact_factor_max: Optional[float] = Query(default=None, ge=0, alias="impactFactorMax"),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Resource.JOURNALS, Action.READ)),
):
    conds = _filters(q, quartile, year, category, impact_factor_min, impact_factor_max)
    stmt = select(Journal).where(*conds).order_by(Journal.impact_factor.desc(), Journal.name)
    rows = journal_rows(db.execute(stmt).scalars().all())
    logger.info("User %s exported %d journals as %s", user.username, len(rows), fmt)
    if fmt == "csv":
        return Response(
            content=to_csv(JOURNAL_EXPORT_HEADERS, rows),
            media_type=CSV_MEDIA_TYPE,
            headers={"Content-Disposition": "attachment; filename=journals.csv"},
        )
    return Response(
        content=to_xlsx(JOURNAL_EXPORT_HEADERS, rows, "Journals"),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=journals.xlsx"},
    )


@router.get("/template")
def download_template(_=Depends(require_permission(Resource.JOURNALS, Action.IMPORT))):
    return Response(
        content=journal_template(),
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=journal_import_template.xlsx"},
    )


@router.post("/import", response_model=ImportResultOut)
def import_journals(
    file: UploadFile = File(..., description="xlsx/xls/csv with one journal per row"),
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.JOURNALS, Action.IMPORT)),
):
    content = file.file.read()
    return JournalImportJob(db).run(file.filename, content)


@router.get("/{journal_id}", response_model=JournalOut)
def get_journal(journal_id: int, db: Session = Depends(get_db), _=Depends(require_permission(Resource.JOURNALS, Action.READ))):
    j = db.get(Journal, journal_id)
    if not j:
        raise NotFoundError("Journal")
    return JournalOut.model_validate(j)


@router.post("", response_model=JournalOut, status_code=201)
def create_journal(
    payload: JournalCreate,
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.JOURNALS, Action.CREATE)),
):
    _check_unique(db, payload.name, payload.year, payload.issn)
    j = Journal(
        name=payload.name.strip(),
        issn=payload.issn.upper() if payload.issn else None,
        impact_factor=Decimal(str(payload.impact_factor)),
        quartile=payload.quartile.value,
        category=payload.category.strip(),
        publisher=payload.publisher,
        year=payload.year,
    )
    db.add(j)
    db.commit()
    db.refresh(j)
    logger.info("Created journal %s (%s)", j.name, j.year)
    return JournalOut.model_validate(j)


@router.put("/{journal_id}", response_model=JournalOut)
@router.patch("/{journal_id}", response_model=JournalOut)
def update_journal(
    journal_id: int,
    payload: JournalUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.JOURNALS, Action.UPDATE)),
):
    j = db.get(Journal, journal_id)
    if not j:
        raise NotFoundError("Journal")
    fields = payload.model_dump(exclude_unset=True)
    if any(k in fields for k in ("name", "year", "issn")):
        _check_unique(
            db,
            fields.get("name") or j.name,
            fields.get("year") or j.year,
            fields.get("issn", j.issn),
            exclude_id=j.id,
        )
    for key, val in fields.items():
        if val is None and key != "issn" and key != "publisher":
            continue
        if key == "impact_factor":
            val = Decimal(str(val))
        elif key == "quartile":
            val = val.value
        elif key == "issn" and val:
            val = val.upper()
        setattr(j, key, val)
    db.add(j)
    db.commit()
    db.refresh(j)
    return JournalOut.model_validate(j)


@router.delete("/{journal_id}")
def delete_journal(
    journal_id: int,
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.JOURNALS, Action.DELETE)),
):
    j = db.get(Journal, journal_id)
    if not j:
        raise NotFoundError("Journal")
    pubs = int(db.execute(select(func.count(Publication.id)).where(Publication.journal_id == journal_id)).scalar_one() or 0)
    if pubs:
        raise ResourceInUseError("Journal is referenced by publications", {"publications": pubs})
    db.delete(j)
    db.commit()
    return {"ok": True}
