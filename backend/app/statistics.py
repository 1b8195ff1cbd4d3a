from __future__ import annotations
from typing import List, Optional, Sequence
from datetime import date

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from .config import get_settings
from .errors import NotFoundError
from .models import Department, Journal, Publication, Quartile
from .schemas import (
    CategoryCount,
    ComparisonOut,
    DepartmentBrief,
    DepartmentStatsOut,
    JournalStatsOut,
    MIN_YEAR,
    OverviewOut,
    QuartileStat,
    QuartileDistribution,
    TopDepartment,
    YearCount,
)


def _round(value) -> float:
    if value is None:
        return 0.0
    return round(float(value), get_settings().STATS_DECIMALS)


def _filters(department_ids: Optional[Sequence[int]] = None, start_year: Optional[int] = None, end_year: Optional[int] = None) -> list:
    conds = []
    if department_ids is not None:
        conds.append(Publication.department_id.in_(list(department_ids)))
    if start_year is not None:
        conds.append(Publication.publish_year >= start_year)
    if end_year is not None:
        conds.append(Publication.publish_year <= end_year)
    return conds


def _count(db: Session, conds: list) -> int:
    stmt = select(func.count(Publication.id)).where(*conds)
    return int(db.execute(stmt).scalar_one() or 0)


def _average_impact_factor(db: Session, conds: list) -> float:
    stmt = select(func.avg(Journal.impact_factor)).select_from(Publication).join(Publication.journal).where(*conds)
    return _round(db.execute(stmt).scalar())


def _high_impact(db: Session, conds: list) -> int:
    threshold = get_settings().HIGH_IMPACT_THRESHOLD
    stmt = (
        select(func.count(Publication.id))
        .select_from(Publication)
        .join(Publication.journal)
        .where(Journal.impact_factor > threshold, *conds)
    )
    return int(db.execute(stmt).scalar_one() or 0)


def quartile_distribution(db: Session, conds: list) -> QuartileDistribution:
    stmt = (
        select(Journal.quartile, func.count(Publication.id))
        .select_from(Publication)
        .join(Publication.journal)
        .where(*conds)
        .group_by(Journal.quartile)
    )
    counts = {q.value: 0 for q in Quartile}
    for quartile, cnt in db.execute(stmt).all():
        if quartile in counts:
            counts[quartile] = int(cnt)
    return QuartileDistribution(**counts)


def yearly_trend(
    db: Session,
    conds: list,
    fill_gaps: bool = False,
    start_year: Optional[int] = None,
    end_year: Optional[int] = None,
) -> List[YearCount]:
    """Publications per year, ascending.

    Only years with at least one publication are listed unless ``fill_gaps``
    is set, in which case missing years between the first and last year (or
    the requested range) come back with zero counts.
    """
    stmt = (
        select(Publication.publish_year, func.count(Publication.id), func.avg(Journal.impact_factor))
        .select_from(Publication)
        .join(Publication.journal)
        .where(*conds)
        .group_by(Publication.publish_year)
        .order_by(Publication.publish_year.asc())
    )
    rows = [
        YearCount(year=int(year), count=int(cnt), average_impact_factor=_round(avg_if))
        for year, cnt, avg_if in db.execute(stmt).all()
    ]
    if not fill_gaps:
        return rows

    by_year = {r.year: r for r in rows}
    first = start_year if start_year is not None else (rows[0].year if rows else None)
    last = end_year if end_year is not None else (rows[-1].year if rows else None)
    if first is None or last is None:
        return rows
    # publish years live in [MIN_YEAR, next year]; never fill outside that
    first = max(first, MIN_YEAR)
    last = min(last, date.today().year + 1)
    return [
        by_year.get(y) or YearCount(year=y, count=0, average_impact_factor=0.0)
        for y in range(first, last + 1)
    ]


def department_stats(
    db: Session,
    department_id: int,
    start_year: Optional[int] = None,
    end_year: Optional[int] = None,
    fill_gaps: bool = False,
) -> DepartmentStatsOut:
    dept = db.get(Department, department_id)
    if dept is None:
        raise NotFoundError("Department")
    conds = _filters([department_id], start_year, end_year)
    return DepartmentStatsOut(
        department=DepartmentBrief.model_validate(dept),
        total_publications=_count(db, conds),
        average_impact_factor=_average_impact_factor(db, conds),
        high_impact_publications=_high_impact(db, conds),
        quartile_distribution=quartile_distribution(db, conds),
        yearly_trend=yearly_trend(db, conds, fill_gaps, start_year, end_year),
    )


def _ranked_departments(db: Session, conds: list, limit: Optional[int] = None) -> List[TopDepartment]:
    cnt = func.count(Publication.id).label("cnt")
    stmt = (
        select(Department.id, Department.name, Department.code, cnt, func.avg(Journal.impact_factor))
        .select_from(Publication)
        .join(Publication.department)
        .join(Publication.journal)
        .where(*conds)
        .group_by(Department.id, Department.name, Department.code)
        .order_by(desc(cnt), Department.name.asc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return [
        TopDepartment(
            department=DepartmentBrief(id=dept_id, name=name, code=code),
            publication_count=int(count),
            average_impact_factor=_round(avg_if),
        )
        for dept_id, name, code, count, avg_if in db.execute(stmt).all()
    ]


def overview(
    db: Session,
    start_year: Optional[int] = None,
    end_year: Optional[int] = None,
    fill_gaps: bool = False,
    top: Optional[int] = None,
) -> OverviewOut:
    conds = _filters(None, start_year, end_year)
    return OverviewOut(
        total_publications=_count(db, conds),
        total_departments=int(db.execute(select(func.count(Department.id))).scalar_one() or 0),
        total_journals=int(db.execute(select(func.count(Journal.id))).scalar_one() or 0),
        average_impact_factor=_average_impact_factor(db, conds),
        high_impact_publications=_high_impact(db, conds),
        quartile_distribution=quartile_distribution(db, conds),
        top_departments=_ranked_departments(db, conds, top or get_settings().TOP_DEPARTMENTS_LIMIT),
        yearly_trend=yearly_trend(db, conds, fill_gaps, start_year, end_year),
    )


def comparison(
    db: Session,
    department_ids: Sequence[int],
    start_year: Optional[int] = None,
    end_year: Optional[int] = None,
) -> ComparisonOut:
    """Side-by-side totals; requested departments with no publications show zeros."""
    depts = db.execute(select(Department).where(Department.id.in_(list(department_ids)))).scalars().all()
    if len(depts) != len(set(department_ids)):
        found = {d.id for d in depts}
        raise NotFoundError("Department", {"missing": sorted(set(department_ids) - found)})
    ranked = {t.department.id: t for t in _ranked_departments(db, _filters(department_ids, start_year, end_year))}
    items = [
        ranked.get(d.id) or TopDepartment(
            department=DepartmentBrief.model_validate(d), publication_count=0, average_impact_factor=0.0
        )
        for d in depts
    ]
    items.sort(key=lambda t: (-t.publication_count, t.department.name))
    return ComparisonOut(items=items, total_publications=sum(t.publication_count for t in items))


def journal_stats(db: Session, top: Optional[int] = None) -> JournalStatsOut:
    """Journal reference data at a glance: per quartile, per data year (most
    recent first) and the largest categories."""
    limit = top or get_settings().TOP_DEPARTMENTS_LIMIT
    total, avg_if = db.execute(select(func.count(Journal.id), func.avg(Journal.impact_factor))).one()

    by_quartile = {
        q: (int(cnt), avg)
        for q, cnt, avg in db.execute(
            select(Journal.quartile, func.count(Journal.id), func.avg(Journal.impact_factor)).group_by(Journal.quartile)
        ).all()
    }
    quartile_stats = []
    for q in Quartile:
        count, avg = by_quartile.get(q.value, (0, None))
        quartile_stats.append(QuartileStat(quartile=q.value, count=count, average_impact_factor=_round(avg)))

    yearly = db.execute(
        select(Journal.year, func.count(Journal.id), func.avg(Journal.impact_factor))
        .group_by(Journal.year)
        .order_by(Journal.year.desc())
        .limit(limit)
    ).all()

    cnt = func.count(Journal.id).label("cnt")
    categories = db.execute(
        select(Journal.category, cnt).group_by(Journal.category).order_by(desc(cnt), Journal.category.asc()).limit(limit)
    ).all()

    return JournalStatsOut(
        total_journals=int(total or 0),
        average_impact_factor=_round(avg_if),
        quartile_stats=quartile_stats,
        yearly_stats=[YearCount(year=int(y), count=int(c), average_impact_factor=_round(a)) for y, c, a in yearly],
        category_stats=[CategoryCount(category=c, count=int(n)) for c, n in categories],
    )
