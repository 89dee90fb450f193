"""
Alembic environment: primary database only (the local mirror is created on startup)
"""
from logging.config import fileConfig

from alembic import context

from subtracker.config import get_settings
from subtracker.infrastructure.db import models  # noqa: F401  (registers tables)
from subtracker.infrastructure.db.session import Base, build_engine, to_sqlalchemy_url

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=to_sqlalchemy_url(get_settings().DATABASE_URL),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = build_engine(get_settings().DATABASE_URL)
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
