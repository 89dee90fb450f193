"""
Database session management (SQLAlchemy)

Two databases are used: the primary store (DATABASE_URL) and a local-only
mirror (MIRROR_DATABASE_URL, SQLite file by default). Engines are built
explicitly and handed to the key-value stores; nothing here is global.
"""
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """
    SQLAlchemy declarative base for all ORM models
    """
    pass


def to_sqlalchemy_url(url: str) -> str:
    """
    Convert postgresql:// URLs to SQLAlchemy format (postgresql+psycopg://)
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def build_engine(url: str) -> Engine:
    """Create an engine for url.

    In-memory SQLite gets a StaticPool so every thread sees the same database.
    """
    url = to_sqlalchemy_url(url)
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def create_schema(engine: Engine) -> None:
    """Create missing tables (local mirror / tests). Primary DB uses alembic."""
    from subtracker.infrastructure.db import models  # noqa: F401  (registers tables)

    Base.metadata.create_all(engine)


def check_db_connection(engine: Engine) -> None:
    """
    Health check - проверка доступности БД

    Raises:
        sqlalchemy.exc.OperationalError: если БД недоступна
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
