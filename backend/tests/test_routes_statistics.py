from __future__ import annotations

import pytest

from app.models import Publication


@pytest.fixture()
def seeded(db, world):
    rows = [
        (world.nature, world.cardio, 2022),
        (world.nature, world.cardio, 2024),
        (world.bmc, world.cardio, 2024),
        (world.bmc, world.neuro, 2024),
    ]
    for i, (journal, dept, year) in enumerate(rows):
        db.add(Publication(title=f"P{i}", authors="X", journal_id=journal.id, department_id=dept.id,
                           user_id=world.admin.id, publish_year=year))
    db.commit()
    return world


def test_overview_matches_department_totals(client, seeded, auth):
    headers = auth(seeded.admin)
    overview = client.get("/api/statistics/overview", headers=headers).json()
    totals = [
        client.get("/api/statistics/department", headers=headers, params={"departmentId": d.id}).json()["totalPublications"]
        for d in (seeded.cardio, seeded.neuro)
    ]
    assert overview["totalPublications"] == sum(totals) == 4
    assert overview["quartileDistribution"] == {"Q1": 2, "Q2": 0, "Q3": 2, "Q4": 0}
    assert overview["topDepartments"][0]["department"]["code"] == "CARDIO"
    assert [y["year"] for y in overview["yearlyTrend"]] == [2022, 2024]


def test_fill_gaps_query_flag(client, seeded, auth):
    resp = client.get("/api/statistics/department", headers=auth(seeded.admin),
                      params={"departmentId": seeded.cardio.id, "fillGaps": "true"})
    assert [(y["year"], y["count"]) for y in resp.json()["yearlyTrend"]] == [(2022, 1), (2023, 0), (2024, 2)]


def test_department_admin_defaults_to_own_department(client, seeded, auth):
    headers = auth(seeded.cardio_admin)
    own = client.get("/api/statistics/department", headers=headers)
    assert own.status_code == 200
    assert own.json()["department"]["code"] == "CARDIO"
    assert own.json()["highImpactPublications"] == 2

    other = client.get("/api/statistics/department", headers=headers, params={"departmentId": seeded.neuro.id})
    assert other.status_code == 403


def test_department_id_required_for_other_roles(client, seeded, auth):
    resp = client.get("/api/statistics/department", headers=auth(seeded.alice))
    assert resp.status_code == 400


def test_bad_year_range(client, seeded, auth):
    resp = client.get("/api/statistics/overview", headers=auth(seeded.admin),
                      params={"startYear": 2025, "endYear": 2020})
    assert resp.status_code == 400


def test_comparison(client, seeded, auth):
    headers = auth(seeded.admin)
    resp = client.get("/api/statistics/comparison", headers=headers,
                      params={"departmentIds": f"{seeded.neuro.id},{seeded.cardio.id}"})
    assert resp.status_code == 200
    body = resp.json()
    assert [i["publicationCount"] for i in body["items"]] == [3, 1]
    assert body["totalPublications"] == 4

    assert client.get("/api/statistics/comparison", headers=headers,
                      params={"departmentIds": "1,x"}).status_code == 400
    assert client.get("/api/statistics/comparison", headers=auth(seeded.cardio_admin),
                      params={"departmentIds": f"{seeded.cardio.id},{seeded.neuro.id}"}).status_code == 403


def test_statistics_need_a_token(client, seeded):
    resp = client.get("/api/statistics/overview")
    assert resp.status_code == 401
    assert resp.json()["reason"] == "TOKEN_MISSING"


def test_years_outside_the_publishable_range_are_refused(client, seeded, auth):
    headers = auth(seeded.admin)
    resp = client.get("/api/statistics/overview", headers=headers,
                      params={"fillGaps": "true", "startYear": -1000000000, "endYear": 1000000000})
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"
    assert client.get("/api/statistics/department", headers=headers,
                      params={"departmentId": seeded.cardio.id, "endYear": 99999}).status_code == 400


@pytest.mark.parametrize("raw", ["²", "1,²", "-1", "0", "1,x"])
def test_comparison_ids_must_be_positive_integers(client, seeded, auth, raw):
    resp = client.get("/api/statistics/comparison", headers=auth(seeded.admin), params={"departmentIds": raw})
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"
