from __future__ import annotations

import csv
import inspect
import io

from openpyxl import load_workbook

from app.models import Publication
from app.routers_journals import import_journals
from app.routers_publications import import_publications


def test_user_cannot_list_users(client, world, auth):
    resp = client.get("/api/users", headers=auth(world.alice))
    assert resp.status_code == 403


def test_admin_user_management(client, world, auth):
    headers = auth(world.admin)
    listed = client.get("/api/users", headers=headers, params={"role": "user"})
    assert listed.status_code == 200
    assert [u["username"] for u in listed.json()["items"]] == ["alice"]

    created = client.post("/api/users", headers=headers, json={
        "username": "drwang", "email": "wang@hospital.local", "password": "secret2",
        "role": "department_admin", "departmentId": world.neuro.id,
    })
    assert created.status_code == 201
    uid = created.json()["id"]
    assert created.json()["department"]["code"] == "NEURO"

    clash = client.post("/api/users", headers=headers, json={
        "username": "other", "email": "WANG@hospital.local", "password": "secret2",
    })
    assert clash.status_code == 409
    assert clash.json()["details"] == {"field": "email"}

    updated = client.patch(f"/api/users/{uid}", headers=headers, json={"role": "user"})
    assert updated.json()["role"] == "user"

    deleted = client.delete(f"/api/users/{uid}", headers=headers)
    assert deleted.status_code == 200
    assert client.get(f"/api/users/{uid}", headers=headers).json()["isActive"] is False


def test_department_admin_requires_department(client, world, auth):
    resp = client.post("/api/users", headers=auth(world.admin), json={
        "username": "nodept", "email": "nodept@hospital.local", "password": "secret2",
        "role": "department_admin",
    })
    assert resp.status_code == 400


def test_admin_cannot_deactivate_self(client, world, auth):
    resp = client.delete(f"/api/users/{world.admin.id}", headers=auth(world.admin))
    assert resp.status_code == 400


def test_invalid_username_is_a_validation_error(client, world, auth):
    resp = client.post("/api/users", headers=auth(world.admin), json={
        "username": "no spaces!", "email": "x@hospital.local", "password": "secret2",
    })
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"
    assert any(d["field"] == "username" for d in resp.json()["details"])


def test_departments_readable_by_everyone(client, world, auth):
    resp = client.get("/api/departments", headers=auth(world.alice))
    assert resp.status_code == 200
    assert [d["code"] for d in resp.json()] == ["CARDIO", "NEURO"]

    assert client.post("/api/departments", headers=auth(world.cardio_admin),
                       json={"name": "Oncology", "code": "ONCO"}).status_code == 403


def test_department_crud(client, world, auth, db):
    headers = auth(world.admin)
    created = client.post("/api/departments", headers=headers, json={"name": "Oncology", "code": "onco"})
    assert created.status_code == 201
    assert created.json()["code"] == "ONCO"

    dup = client.post("/api/departments", headers=headers, json={"name": "Radiology", "code": "ONCO"})
    assert dup.status_code == 409

    renamed = client.put(f"/api/departments/{created.json()['id']}", headers=headers,
                         json={"description": "Solid tumours"})
    assert renamed.status_code == 200
    assert renamed.json()["description"] == "Solid tumours"

    db.add(Publication(title="P", authors="X", journal_id=world.nature.id, department_id=world.neuro.id,
                       user_id=world.admin.id, publish_year=2024))
    db.commit()
    in_use = client.delete(f"/api/departments/{world.neuro.id}", headers=headers)
    assert in_use.status_code == 409
    assert in_use.json()["code"] == "RESOURCE_IN_USE"

    gone = client.delete(f"/api/departments/{created.json()['id']}", headers=headers)
    assert gone.status_code == 200


def test_journal_crud_and_import(client, world, auth):
    headers = auth(world.admin)
    listed = client.get("/api/journals", headers=auth(world.alice), params={"quartile": "Q1"})
    assert [j["name"] for j in listed.json()["items"]] == ["Nature"]

    created = client.post("/api/journals", headers=headers, json={
        "name": "Circulation", "issn": "0009-7322", "impactFactor": 35.5, "quartile": "Q1",
        "category": "CARDIAC & CARDIOVASCULAR SYSTEMS", "year": 2024,
    })
    assert created.status_code == 201
    assert created.json()["impactFactor"] == 35.5

    bad_if = client.post("/api/journals", headers=headers, json={
        "name": "Too High", "impactFactor": 75, "quartile": "Q1", "category": "X", "year": 2024,
    })
    assert bad_if.status_code == 400

    removed = client.delete(f"/api/journals/{world.nature.id}", headers=headers)
    assert removed.status_code == 200  # no publications reference it

    content = b"Name,Impact Factor,Quartile,Category,Year\nJAMA,20.1,Q1,MEDICINE,2024\nJAMA,20.1,Q1,MEDICINE,2024\n"
    imported = client.post("/api/journals/import", headers=headers,
                           files={"file": ("journals.csv", content, "text/csv")})
    assert imported.status_code == 200
    assert (imported.json()["success"], imported.json()["duplicates"]) == (1, 1)

    denied = client.post("/api/journals/import", headers=auth(world.cardio_admin),
                         files={"file": ("journals.csv", content, "text/csv")})
    assert denied.status_code == 403


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert "X-Request-ID" in resp.headers


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/nope")
    assert resp.status_code == 404
    assert resp.json()["code"] == "RESOURCE_NOT_FOUND"


def test_import_handlers_run_in_the_threadpool():
    assert not inspect.iscoroutinefunction(import_publications)
    assert not inspect.iscoroutinefunction(import_journals)


def test_journal_categories_and_statistics(client, world, auth):
    headers = auth(world.alice)
    cats = client.get("/api/journals/categories", headers=headers)
    assert cats.status_code == 200
    assert cats.json() == {"categories": ["MULTIDISCIPLINARY SCIENCES", "ONCOLOGY"]}

    stats = client.get("/api/journals/statistics", headers=headers)
    assert stats.status_code == 200
    body = stats.json()
    assert body["totalJournals"] == 2
    assert [q["count"] for q in body["quartileStats"]] == [1, 0, 1, 0]


def test_journal_export(client, world, auth):
    headers = auth(world.cardio_admin)
    resp = client.get("/api/journals/export", headers=headers, params={"fmt": "csv", "impactFactorMin": 10})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(resp.content.decode("utf-8-sig"))))
    assert rows[0][:3] == ["ID", "Name", "ISSN"]
    assert [r[1] for r in rows[1:]] == ["Nature"]

    xlsx = client.get("/api/journals/export", headers=headers, params={"category": "oncology"})
    ws = load_workbook(io.BytesIO(xlsx.content)).active
    assert [row[1] for row in ws.iter_rows(min_row=2, values_only=True)] == ["BMC Cancer"]

    assert client.get("/api/journals/export").status_code == 401
