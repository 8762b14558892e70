"""Async SQLModel database setup."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from stakework.config import settings
from stakework.db_models import (  # noqa: F401: register tables
    Account,
    Balance,
    JoinRequest,
    LedgerEntry,
    MarketEvent,
    Task,
    TaskSubmission,
    Treasury,
    UserProfile,
)

logger = logging.getLogger("stakework.database")

_engine = None
_session_factory = None

# Absolute path to the migrations directory (sibling of stakework/ package)
_MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


async def init_db(url: str = "sqlite+aiosqlite:///stakework.db") -> None:
    global _engine, _session_factory
    connect_args = {}
    if "sqlite" in url:
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30
    _engine = create_async_engine(url, echo=False, connect_args=connect_args, pool_pre_ping=True)
    _session_factory = sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)  # type: ignore[call-overload]

    async with _engine.begin() as conn:
        if "sqlite" in url:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA foreign_keys=ON"))
        await _run_alembic_upgrade(conn)

    async with _session_factory() as session:
        await ensure_treasury_account(session)


async def _run_alembic_upgrade(conn) -> None:
    """Run Alembic migrations on the existing async connection."""
    from alembic import command
    from alembic.config import Config

    def _do_upgrade(sync_conn):
        from alembic.migration import MigrationContext
        from alembic.script import ScriptDirectory

        alembic_cfg = Config()
        alembic_cfg.set_main_option("script_location", str(_MIGRATIONS_DIR))
        # Pass connection so env.py uses it instead of creating a new engine
        alembic_cfg.attributes["connection"] = sync_conn

        current_rev = MigrationContext.configure(sync_conn).get_current_revision()
        head_rev = ScriptDirectory.from_config(alembic_cfg).get_current_head()
        if current_rev != head_rev:
            logger.info("Upgrading database from %s to %s", current_rev or "(empty)", head_rev)
            command.upgrade(alembic_cfg, "head")
        else:
            logger.debug("Database schema is up to date at revision %s", current_rev)

    # Alembic's command API is synchronous; run_sync bridges the gap
    await conn.run_sync(_do_upgrade)


async def ensure_treasury_account(session: AsyncSession) -> None:
    """Create the well-known treasury account and fee row if they don't exist."""
    from stakework.services.ledger import TREASURY_ROW_ID

    if not await session.get(Account, settings.treasury_account_id):
        session.add(
            Account(
                id=settings.treasury_account_id,
                key_hash="",
                key_fingerprint="",
            )
        )
        logger.info("Created treasury account %s", settings.treasury_account_id)
    if not await session.get(Treasury, TREASURY_ROW_ID):
        session.add(Treasury(id=TREASURY_ROW_ID))
    await session.commit()


async def close_db() -> None:
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    assert _session_factory is not None, "Database not initialised, call init_db() first"
    async with _session_factory() as session:
        yield session


def get_session_factory() -> sessionmaker:
    assert _session_factory is not None
    return _session_factory
