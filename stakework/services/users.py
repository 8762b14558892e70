"""Accounts, user registration and reputation bookkeeping."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from stakework.auth import hash_key, key_fingerprint
from stakework.authorization import Action, authorizer
from stakework.config import settings
from stakework.db_models import Account, Role, UserProfile
from stakework.errors import AlreadyExists, InvalidInput, NotFound
from stakework.events import event_bus, record_event
from stakework.ids import account_id, api_key
from stakework.parameters import UNIT, ParameterStore
from stakework.services.ledger import get_balance

logger = logging.getLogger("stakework.users")


async def open_account(session: AsyncSession) -> dict:
    """Create a new account. Returns its id and raw API key."""
    aid = account_id()
    key = api_key()
    wallet = settings.initial_wallet_units * UNIT
    session.add(Account(id=aid, key_hash=hash_key(key), key_fingerprint=key_fingerprint(key), wallet=wallet))
    await session.commit()
    logger.info("Opened account %s", aid)
    return {"account_id": aid, "api_key": key, "wallet": wallet}


async def assign_role(session: AsyncSession, identity: str, role: Role, caller: Account | None = None) -> dict:
    """Change an account's role. ``caller`` is None when authorised by the admin key."""
    if caller is not None:
        authorizer.require(caller, Action.assign_role)
    account = await session.get(Account, identity)
    if not account:
        raise NotFound("Account not found")
    account.role = role
    session.add(account)
    record_event(session, "role_assigned", actor_id=caller.id if caller else None, identity=identity, role=role.value)
    await session.commit()
    return {"account_id": identity, "role": role.value}


async def register(
    session: AsyncSession,
    account: Account,
    name: str,
    age: int | None = None,
    github_url: str | None = None,
) -> dict:
    """Register the caller as a marketplace user with fresh counters."""
    if await session.get(UserProfile, account.id):
        raise AlreadyExists("Already registered")
    if not name.strip():
        raise InvalidInput("Name is required")

    user = UserProfile(id=account.id, name=name.strip(), age=age, github_url=github_url)
    session.add(user)
    event = record_event(session, "user_registered", actor_id=account.id, name=user.name)
    await session.commit()

    event_bus.publish(account.id, event)
    return user_dict(user)


async def unregister(session: AsyncSession, account: Account) -> dict:
    user = await session.get(UserProfile, account.id)
    if not user:
        raise NotFound("Not registered")
    await session.delete(user)
    event = record_event(session, "user_unregistered", actor_id=account.id)
    await session.commit()

    event_bus.publish(account.id, event)
    return {"id": account.id, "is_registered": False}


async def require_registered(session: AsyncSession, identity: str) -> UserProfile:
    user = await session.get(UserProfile, identity)
    if not user or not user.is_registered:
        raise NotFound(f"User {identity} is not registered")
    return user


async def get_user(session: AsyncSession, identity: str) -> dict | None:
    user = await session.get(UserProfile, identity)
    return user_dict(user) if user else None


async def get_me(session: AsyncSession, account: Account) -> dict:
    await session.refresh(account)
    user = await session.get(UserProfile, account.id)
    return {
        "account_id": account.id,
        "role": Role(account.role).value,
        "wallet": account.wallet,
        "balance": await get_balance(session, account.id),
        "user": user_dict(user) if user else None,
    }


def user_dict(user: UserProfile) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "age": user.age,
        "github_url": user.github_url,
        "reputation": user.reputation,
        "tasks_created": user.tasks_created,
        "tasks_completed": user.tasks_completed,
        "tasks_failed": user.tasks_failed,
        "is_registered": user.is_registered,
    }


# ---------------------------------------------------------------------------
# Lifecycle counters. Identities that have since unregistered are skipped.
# ---------------------------------------------------------------------------


async def adjust_reputation(session: AsyncSession, store: ParameterStore, identity: str, delta: int) -> None:
    user = await session.get(UserProfile, identity)
    if not user:
        return
    user.reputation = min(max(user.reputation + delta, 0), store.current.max_reputation)
    session.add(user)


async def increment_counter(session: AsyncSession, identity: str, counter: str) -> None:
    user = await session.get(UserProfile, identity)
    if not user:
        return
    setattr(user, counter, getattr(user, counter) + 1)
    session.add(user)
