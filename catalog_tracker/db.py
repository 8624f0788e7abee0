# catalog_tracker/db.py
"""Database engine and session utilities.

Centralized SQLAlchemy engine creation and the session dependency helper for
FastAPI. The pipeline receives ``SessionLocal`` as its session factory.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from .config import DATABASE_URL, DB_POOL_SIZE, DB_MAX_OVERFLOW, DB_POOL_TIMEOUT
from .errors import ConfigurationError

if not DATABASE_URL:
    raise ConfigurationError("POSTGRES_URL not set")


def _engine_options(url):
    # pool sizing only applies to server databases; SQLite uses its own pools
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": DB_POOL_SIZE,
        "max_overflow": DB_MAX_OVERFLOW,
        "pool_timeout": DB_POOL_TIMEOUT,
        "pool_pre_ping": True,
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
