from __future__ import annotations
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from relay_worker.config import get_settings


class Base(DeclarativeBase):
    pass


def _dsn() -> str:
    s = get_settings()
    if not s.database_url:
        raise RuntimeError("DATABASE_URL is required for the worker database connection.")
    return s.database_url


engine = create_engine(_dsn(), pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def override_engine(e):  # test helper
    global engine, SessionLocal
    engine = e
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_session_factory() -> sessionmaker:
    return SessionLocal


def dispose_engine():
    engine.dispose()


def healthcheck() -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
        return True
