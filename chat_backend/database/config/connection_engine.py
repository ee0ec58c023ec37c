"""
Connection Engine (SQLAlchemy)

Purpose
-------
Centralizes database initialization for the application:
- Builds a SQLAlchemy connection URL from environment-backed settings.
- Creates the Engine (connection pool + SQL execution entry point) on demand.
- Defines shared MetaData for table and schema objects.
- Exposes a Declarative Base class for ORM models.

Notes
-----
- The engine is not created at import time: the FastAPI lifespan calls
  `build_engine(settings)` and hands the session factory to the store services,
  so tests can inject an in-memory SQLite engine instead.
- All ORM models must inherit from `declarativeBase` to participate in schema
  creation (`metadata.create_all`).
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.schema import MetaData

from chat_backend.database.config.config import Settings


def build_connection_url(settings: Settings) -> URL:
    """Construct the SQLAlchemy connection URL using values from Settings."""
    if settings.DB_DRIVER_NAME.startswith("sqlite"):
        return URL.create(drivername=settings.DB_DRIVER_NAME, database=settings.DB_DATABASE_NAME)
    return URL.create(
        drivername=settings.DB_DRIVER_NAME,   # e.g., "postgresql+psycopg2"
        username=settings.DB_USERNAME,
        password=settings.DB_PASSWORD,
        host=settings.DB_HOST,
        database=settings.DB_DATABASE_NAME,
    )


def build_engine(settings: Settings) -> Engine:
    """
    Engine object: core interface to the database.
    Responsible for managing connections, executing SQL, and pooling.
    """
    url = build_connection_url(settings)
    if url.drivername.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    """Session factory bound to `engine`; objects stay readable after commit."""
    return sessionmaker(bind=engine, expire_on_commit=False)


# --------------------------------------------------------------------
# Metadata object: stores schema-level information about tables,
# constraints, indexes, etc. Shared across all models.
# --------------------------------------------------------------------
metadata = MetaData()

# --------------------------------------------------------------------
# Declarative Base: root class for ORM models.
# --------------------------------------------------------------------
declarativeBase = declarative_base(metadata=metadata)
"""Declarative Base: Root class for ORM models."""
