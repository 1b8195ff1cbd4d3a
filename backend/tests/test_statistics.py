from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from app import statistics
from app.errors import NotFoundError
from app.models import Department, Journal, Publication


@pytest.fixture()
def pubs(db, world):
    onco = Department(name="Oncology", code="ONCO")
    q2 = Journal(name="Journal of Neurology", impact_factor=Decimal("4.8"), quartile="Q2",
                 category="CLINICAL NEUROLOGY", year=2024)
    db.add_all([onco, q2])
    db.flush()

    rows = [
        ("C1", world.nature, world.cardio, 2021),
        ("C2", world.nature, world.cardio, 2023),
        ("C3", world.bmc, world.cardio, 2023),
        ("N1", q2, world.neuro, 2022),
        ("N2", world.bmc, world.neuro, 2023),
    ]
    for title, journal, dept, year in rows:
        db.add(Publication(title=title, authors="X", journal_id=journal.id, department_id=dept.id,
                           user_id=world.admin.id, publish_year=year))
    db.commit()
    return onco


def test_department_stats(db, world, pubs):
    s = statistics.department_stats(db, world.cardio.id)
    assert s.department.code == "CARDIO"
    assert s.total_publications == 3
    assert s.high_impact_publications == 2
    assert s.quartile_distribution.model_dump() == {"Q1": 2, "Q2": 0, "Q3": 1, "Q4": 0}
    assert s.average_impact_factor == pytest.approx((42.5 + 42.5 + 3.4) / 3, abs=1e-3)
    assert [(y.year, y.count) for y in s.yearly_trend] == [(2021, 1), (2023, 2)]


def test_yearly_trend_gap_filling_is_opt_in(db, world, pubs):
    filled = statistics.department_stats(db, world.cardio.id, fill_gaps=True)
    assert [(y.year, y.count) for y in filled.yearly_trend] == [(2021, 1), (2022, 0), (2023, 2)]

    ranged = statistics.department_stats(db, world.cardio.id, start_year=2020, end_year=2024, fill_gaps=True)
    assert [y.year for y in ranged.yearly_trend] == [2020, 2021, 2022, 2023, 2024]
    assert ranged.yearly_trend[0].count == 0


def test_year_range_filter(db, world, pubs):
    s = statistics.department_stats(db, world.cardio.id, start_year=2022, end_year=2023)
    assert s.total_publications == 2


def test_empty_department_has_zeroed_distribution(db, world, pubs):
    s = statistics.department_stats(db, pubs.id)
    assert s.total_publications == 0
    assert s.average_impact_factor == 0.0
    assert s.quartile_distribution.model_dump() == {"Q1": 0, "Q2": 0, "Q3": 0, "Q4": 0}
    assert s.yearly_trend == []


def test_unknown_department(db, world):
    with pytest.raises(NotFoundError):
        statistics.department_stats(db, 9999)


def test_overview_total_equals_sum_of_departments(db, world, pubs):
    o = statistics.overview(db)
    per_dept = sum(
        statistics.department_stats(db, d.id).total_publications
        for d in (world.cardio, world.neuro, pubs)
    )
    assert o.total_publications == per_dept == 5
    assert o.total_departments == 3
    assert o.total_journals == 3
    assert [t.department.code for t in o.top_departments] == ["CARDIO", "NEURO"]
    assert [t.publication_count for t in o.top_departments] == [3, 2]
    assert sum(o.quartile_distribution.model_dump().values()) == 5


def test_top_departments_tie_breaks_on_name(db, world, pubs):
    db.add(Publication(title="N3", authors="X", journal_id=world.bmc.id, department_id=world.neuro.id,
                       user_id=world.admin.id, publish_year=2024))
    db.commit()
    o = statistics.overview(db)
    assert [t.department.name for t in o.top_departments] == ["Cardiology", "Neurology"]


def test_comparison_includes_departments_without_publications(db, world, pubs):
    c = statistics.comparison(db, [pubs.id, world.neuro.id, world.cardio.id])
    assert [(t.department.code, t.publication_count) for t in c.items] == [
        ("CARDIO", 3), ("NEURO", 2), ("ONCO", 0),
    ]
    assert c.total_publications == 5


def test_comparison_unknown_department(db, world):
    with pytest.raises(NotFoundError) as exc:
        statistics.comparison(db, [world.cardio.id, 4242])
    assert exc.value.details == {"missing": [4242]}


def test_gap_filling_stays_within_publishable_years(db, world, pubs):
    trend = statistics.yearly_trend(db, [], fill_gaps=True, start_year=-1_000_000_000, end_year=1_000_000_000)
    years = [y.year for y in trend]
    assert years[0] == 1900
    assert years[-1] == date.today().year + 1
    assert sum(y.count for y in trend) == 5


def test_journal_stats(db, world, pubs):
    s = statistics.journal_stats(db)
    assert s.total_journals == 3
    assert [(q.quartile, q.count) for q in s.quartile_stats] == [("Q1", 1), ("Q2", 1), ("Q3", 1), ("Q4", 0)]
    assert s.quartile_stats[0].average_impact_factor == 42.5
    assert [(y.year, y.count) for y in s.yearly_stats] == [(2024, 3)]
    # ties on count break on category name
    assert [c.category for c in s.category_stats] == ["CLINICAL NEUROLOGY", "MULTIDISCIPLINARY SCIENCES", "ONCOLOGY"]
    assert s.average_impact_factor == pytest.approx((42.5 + 3.4 + 4.8) / 3, abs=1e-3)
