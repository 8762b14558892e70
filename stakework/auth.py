"""Authentication: bcrypt hashing with fingerprint-based DB lookup."""

from __future__ import annotations

import hashlib
import secrets

import bcrypt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from stakework.database import get_db_session
from stakework.db_models import Account


def hash_key(key: str) -> str:
    return bcrypt.hashpw(key.encode(), bcrypt.gensalt()).decode()


def verify_key(key: str, key_hash: str) -> bool:
    return bcrypt.checkpw(key.encode(), key_hash.encode())


def key_fingerprint(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


async def get_current_account(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> Account:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    raw_key = auth[7:]
    fp = key_fingerprint(raw_key)

    result = await session.execute(select(Account).where(Account.key_fingerprint == fp))
    account = result.scalar_one_or_none()

    if not account or not account.key_hash or not verify_key(raw_key, account.key_hash):
        raise HTTPException(status_code=401, detail="Invalid API key")

    return account


AuthAccount = Depends(get_current_account)


def is_admin_key(request: Request) -> bool:
    """True when the bearer token is the configured admin key."""
    from stakework.config import settings

    if settings.admin_key is None:
        return False
    auth = request.headers.get("Authorization", "")
    return auth.startswith("Bearer ") and secrets.compare_digest(auth[7:], settings.admin_key)


async def get_admin_or_account(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> Account | None:
    """Resolve the caller: None for the admin key, otherwise the key's account."""
    if is_admin_key(request):
        return None
    return await get_current_account(request, session)
