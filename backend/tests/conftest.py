# backend/tests/conftest.py
"""
Pytest configuration and fixtures.
Every test gets its own SQLite file, a pinned clock for tokens and a fresh app.
"""
from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

# must be set before app.config / app.db are imported
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+pysqlite:///" + os.path.join(tempfile.mkdtemp(prefix="pubtrack-tests-"), "default.db"),
)
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.db import Base, build_engine, get_db
from app.main import create_app
from app.models import Department, Journal, Role, User
from app.security import TokenService, get_token_service, hash_password

PASSWORD = "secret1"


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def engine(tmp_path):
    eng = build_engine(f"sqlite+pysqlite:///{tmp_path / 'pubtrack.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return FrozenClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def tokens(clock):
    return TokenService("test-secret", ttl=timedelta(hours=2), clock=clock)


@pytest.fixture()
def app(engine, session_factory, tokens):
    application = create_app(engine)

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db] = _get_db
    application.dependency_overrides[get_token_service] = lambda: tokens
    return application


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


def _user(db, username: str, role: Role, department_id=None, is_active: bool = True) -> User:
    u = User(
        username=username,
        email=f"{username}@hospital.local",
        password_hash=hash_password(PASSWORD),
        role=role.value,
        department_id=department_id,
        is_active=is_active,
    )
    db.add(u)
    return u


@pytest.fixture()
def world(db):
    """Two departments, two journals and one user per role."""
    cardio = Department(name="Cardiology", code="CARDIO")
    neuro = Department(name="Neurology", code="NEURO")
    db.add_all([cardio, neuro])
    db.flush()

    nature = Journal(name="Nature", issn="0028-0836", impact_factor=Decimal("42.5"), quartile="Q1",
                     category="MULTIDISCIPLINARY SCIENCES", publisher="Nature Portfolio", year=2024)
    bmc = Journal(name="BMC Cancer", issn="1471-2407", impact_factor=Decimal("3.4"), quartile="Q3",
                  category="ONCOLOGY", publisher="BMC", year=2024)
    db.add_all([nature, bmc])

    admin = _user(db, "admin", Role.ADMIN)
    cardio_admin = _user(db, "cardioadmin", Role.DEPARTMENT_ADMIN, cardio.id)
    alice = _user(db, "alice", Role.USER, neuro.id)
    db.commit()
    return SimpleNamespace(
        cardio=cardio, neuro=neuro, nature=nature, bmc=bmc,
        admin=admin, cardio_admin=cardio_admin, alice=alice,
    )


@pytest.fixture()
def auth(tokens):
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {tokens.issue(user)}"}

    return _headers
