"""
Database engine and session management for workflow storage.
"""
from __future__ import annotations

from typing import Any, Generator

from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stepflow.config import settings

load_dotenv()


def _engine_options() -> dict[str, Any]:
    if settings.is_sqlite:
        options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        # An in-memory database lives in a single connection; share it.
        if ":memory:" in settings.database_url:
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


engine: Engine = create_engine(settings.database_url, echo=False, **_engine_options())

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting a database session.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create the workflows table if it does not exist."""
    from stepflow.models import Base

    Base.metadata.create_all(bind=engine)


def database_health() -> dict[str, Any]:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return {"ok": False, "dialect": engine.dialect.name, "error": str(exc)}
    return {"ok": True, "dialect": engine.dialect.name}


def check_database_connection() -> bool:
    return bool(database_health()["ok"])
