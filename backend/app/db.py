from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import NullPool
from .config import get_settings


def build_engine(url: str) -> Engine:
    # For SQLite: NullPool + check_same_thread=False, and enforce foreign keys so
    # RESTRICT / SET NULL behave as they do on the production database.
    # For Postgres/MySQL: enable pooling with pre_ping and recycling.
    if url.startswith("sqlite"):
        eng = create_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=NullPool,
        )

        @event.listens_for(eng, "connect")
        def _sqlite_fk_pragma(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return eng
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,      # validate connections before use
        pool_recycle=300,        # recycle connections periodically (seconds)
        pool_size=5,
        max_overflow=10,
        pool_use_lifo=True,
    )


settings = get_settings()
engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
