"""Alembic environment for Stakework.

Runs on the connection handed over by ``stakework.database.init_db`` at
startup, or on a fresh engine for ``alembic upgrade head`` from the CLI.
SQLite needs batch mode for ALTER TABLE.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlmodel import SQLModel

from stakework.db_models import *  # noqa: F401, F403: register all tables

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata


def _cli_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    from stakework.config import settings

    db_path = settings.database_url
    if not db_path.startswith("sqlite"):
        return f"sqlite:///{db_path}"
    return db_path.replace("sqlite+aiosqlite", "sqlite")


def _run(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    context.configure(
        url=_cli_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connection = config.attributes.get("connection")
    if connection is not None:
        _run(connection)
        return

    config.set_main_option("sqlalchemy.url", _cli_url())
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as conn:
        _run(conn)


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
