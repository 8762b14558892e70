"""Test fixtures with in-memory SQLite via SQLModel."""

from __future__ import annotations

from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from stakework.auth import hash_key, key_fingerprint
from stakework.config import settings
from stakework.database import ensure_treasury_account, get_db_session
from stakework.db_models import (  # noqa: F401: register tables
    Account,
    Balance,
    JoinRequest,
    LedgerEntry,
    MarketEvent,
    Role,
    Task,
    TaskSubmission,
    Treasury,
    UserProfile,
)
from stakework.ids import account_id, api_key
from stakework.main import app
from stakework.parameters import UNIT, ParameterStore
from stakework.rate_limit import limiter
from stakework.services import tasks
from stakework.services.rails import WalletRail
from stakework.services.valuation import creator_stake_for

limiter.enabled = False


@pytest.fixture
async def db():
    engine = create_async_engine("sqlite+aiosqlite://", echo=False, connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)  # type: ignore[call-overload]
    async with factory() as session:
        await ensure_treasury_account(session)

    async def override_get_db_session():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.state.parameters = ParameterStore.from_settings(settings)
    app.state.rail = WalletRail()

    yield factory

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture
async def client(db, monkeypatch):
    # HTTP tests run on the in-app wallet rail with a signup allowance
    monkeypatch.setattr(settings, "initial_wallet_units", 100)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def session(db):
    async with db() as s:
        yield s


@pytest.fixture
def store():
    return ParameterStore.from_settings(settings)


@pytest.fixture
def rail():
    return WalletRail()


async def open_account(client: AsyncClient) -> dict:
    """Helper: open an account, return {"account_id", "api_key", "wallet"}."""
    resp = await client.post("/v1/accounts", headers={"Accept": "application/json"})
    assert resp.status_code == 201
    return resp.json()


async def register_user(client: AsyncClient, name: str = "test-user") -> dict:
    """Helper: open an account and register it as a user."""
    account = await open_account(client)
    resp = await client.post(
        "/v1/users/register",
        json={"name": name},
        headers=auth_header(account["api_key"]),
    )
    assert resp.status_code == 201
    return account


def auth_header(key: str) -> dict:
    return {"Authorization": f"Bearer {key}", "Accept": "application/json"}


async def make_account(
    session: AsyncSession,
    name: str | None = "user",
    role: Role = Role.member,
    wallet: int = 100 * UNIT,
) -> Account:
    """Insert an account directly; registers a profile unless ``name`` is None."""
    key = api_key()
    account = Account(
        id=account_id(), key_hash=hash_key(key), key_fingerprint=key_fingerprint(key), role=role, wallet=wallet
    )
    session.add(account)
    if name is not None:
        session.add(UserProfile(id=account.id, name=name))
    await session.commit()
    return account


@pytest.fixture
async def creator(session):
    return await make_account(session, "creator")


@pytest.fixture
async def member(session):
    return await make_account(session, "member")


@pytest.fixture
async def owner(session):
    return await make_account(session, "owner", role=Role.owner)


async def start_task(
    session: AsyncSession,
    store: ParameterStore,
    rail: WalletRail,
    creator: Account,
    member: Account,
    reward: int = 10 * UNIT,
    deadline_hours: int = 12,
    max_revision: int = 3,
    now: datetime | None = None,
) -> dict:
    """Drive a task from creation to in_progress with ``member`` assigned."""
    task = await tasks.create_task(session, store, rail, creator, "Write the docs", deadline_hours, max_revision, reward)
    stake = creator_stake_for(store, task["value_category"])
    await tasks.activate_task(session, store, rail, task["id"], creator, stake)
    await tasks.open_registration(session, task["id"], creator)
    await tasks.request_join_task(session, store, rail, task["id"], member, store.member_stake_for(reward))
    return await tasks.approve_join_request(session, task["id"], member.id, creator, now=now)
