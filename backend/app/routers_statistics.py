from __future__ import annotations
from typing import List, Optional
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from . import statistics
from .db import get_db
from .deps import require_permission
from .errors import ValidationError
from .models import Role, User
from .permissions import Action, DEPARTMENT_SCOPED_ROLES, Resource, ensure_department_scope
from .schemas import ComparisonOut, DepartmentStatsOut, MIN_YEAR, OverviewOut

router = APIRouter(prefix="/statistics", tags=["statistics"])


def _year_range(start_year: Optional[int], end_year: Optional[int]) -> None:
    latest = date.today().year + 1
    for name, value in (("startYear", start_year), ("endYear", end_year)):
        if value is not None and not MIN_YEAR <= value <= latest:
            raise ValidationError(f"{name} must be between {MIN_YEAR} and {latest}", {name: value})
    if start_year is not None and end_year is not None and start_year > end_year:
        raise ValidationError("startYear must not be after endYear", {"startYear": start_year, "endYear": end_year})


def _parse_ids(raw: str) -> List[int]:
    ids: List[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            value = int(part)
        except ValueError:
            value = 0
        if value < 1:
            raise ValidationError("departmentIds must be a comma-separated list of ids", {"value": raw})
        ids.append(value)
    if not ids:
        raise ValidationError("departmentIds must name at least one department")
    return list(dict.fromkeys(ids))


@router.get("/department", response_model=DepartmentStatsOut)
def department(
    department_id: Optional[int] = Query(default=None, alias="departmentId"),
    start_year: Optional[int] = Query(default=None, alias="startYear"),
    end_year: Optional[int] = Query(default=None, alias="endYear"),
    fill_gaps: bool = Query(default=False, alias="fillGaps"),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Resource.STATISTICS, Action.READ)),
):
    _year_range(start_year, end_year)
    if Role(user.role) in DEPARTMENT_SCOPED_ROLES:
        if department_id is None:
            department_id = user.department_id
        ensure_department_scope(user, department_id)
    elif department_id is None:
        raise ValidationError("departmentId is required", {"field": "departmentId"})
    return statistics.department_stats(db, department_id, start_year, end_year, fill_gaps)


@router.get("/overview", response_model=OverviewOut)
def overview(
    start_year: Optional[int] = Query(default=None, alias="startYear"),
    end_year: Optional[int] = Query(default=None, alias="endYear"),
    fill_gaps: bool = Query(default=False, alias="fillGaps"),
    top: Optional[int] = Query(default=None, ge=1, le=100),
    db: Session = Depends(get_db),
    _=Depends(require_permission(Resource.STATISTICS, Action.READ)),
):
    _year_range(start_year, end_year)
    return statistics.overview(db, start_year, end_year, fill_gaps, top)


@router.get("/comparison", response_model=ComparisonOut)
def comparison(
    department_ids: str = Query(..., alias="departmentIds", description="comma-separated, e.g. 1,2,3"),
    start_year: Optional[int] = Query(default=None, alias="startYear"),
    end_year: Optional[int] = Query(default=None, alias="endYear"),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission(Resource.STATISTICS, Action.READ)),
):
    _year_range(start_year, end_year)
    ids = _parse_ids(department_ids)
    for dept_id in ids:
        ensure_department_scope(user, dept_id)
    return statistics.comparison(db, ids, start_year, end_year)
