"""Withdrawable-balance ledger, fee treasury and withdrawals."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from stakework.authorization import Action, authorizer
from stakework.config import settings
from stakework.db_models import Account, Balance, LedgerEntry, Treasury
from stakework.errors import InvalidInput, NotFound, ReentrantCall, TransferFailed
from stakework.events import event_bus, record_event
from stakework.ids import ledger_id
from stakework.services.rails import PaymentRail

logger = logging.getLogger("stakework.ledger")

TREASURY_ROW_ID = "fees"
MAX_BALANCE = 2**63 - 1


class ReentrancyGuard:
    """Rejects a second entry for a key while the first one is still running."""

    def __init__(self) -> None:
        self._active: set[str] = set()

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        if key in self._active:
            raise ReentrantCall(f"Operation already in progress for {key}")
        self._active.add(key)
        try:
            yield
        finally:
            self._active.discard(key)

    def is_held(self, key: str) -> bool:
        return key in self._active


transfer_guard = ReentrancyGuard()


async def record_entry(
    session: AsyncSession,
    identity: str,
    amount: int,
    reason: str,
    task_id: int | None = None,
) -> None:
    session.add(LedgerEntry(id=ledger_id(), identity=identity, amount=amount, reason=reason, task_id=task_id))


async def credit(
    session: AsyncSession,
    identity: str,
    amount: int,
    reason: str,
    task_id: int | None = None,
) -> int:
    """Saturating add to the withdrawable balance. Returns the new balance."""
    if amount < 0:
        raise InvalidInput("Credit amount must be non-negative")
    if amount == 0:
        return await get_balance(session, identity)

    balance = await session.get(Balance, identity)
    if balance is None:
        balance = Balance(identity=identity, amount=0)
    balance.amount = min(balance.amount + amount, MAX_BALANCE)
    session.add(balance)
    await record_entry(session, identity, amount, reason, task_id)
    return balance.amount


async def get_balance(session: AsyncSession, identity: str) -> int:
    balance = await session.get(Balance, identity)
    return balance.amount if balance else 0


async def get_ledger(
    session: AsyncSession, identity: str, offset: int = 0, limit: int = 50
) -> tuple[list[dict], int]:
    """Return (entries, total_count)."""
    count_result = await session.execute(
        select(func.count()).select_from(LedgerEntry).where(LedgerEntry.identity == identity)
    )
    total = count_result.scalar_one()

    result = await session.execute(
        select(LedgerEntry)
        .where(LedgerEntry.identity == identity)
        .order_by(LedgerEntry.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    entries = [
        {
            "id": r.id,
            "amount": r.amount,
            "reason": r.reason,
            "task_id": r.task_id,
            "created_at": r.created_at.isoformat() if r.created_at else None,
        }
        for r in result.scalars().all()
    ]
    return entries, total


async def _get_treasury(session: AsyncSession) -> Treasury:
    treasury = await session.get(Treasury, TREASURY_ROW_ID)
    if treasury is None:
        treasury = Treasury(id=TREASURY_ROW_ID)
        session.add(treasury)
    return treasury


async def collect_fee(session: AsyncSession, amount: int) -> None:
    treasury = await _get_treasury(session)
    treasury.fee_collected += amount
    session.add(treasury)


async def get_fees(session: AsyncSession) -> dict:
    treasury = await _get_treasury(session)
    return {"fee_collected": treasury.fee_collected, "fee_swept": treasury.fee_swept}


async def _reverse(session: AsyncSession, restore: Callable[[], Awaitable[None]]) -> None:
    await session.rollback()
    await restore()
    await session.commit()


async def _transfer_out(
    session: AsyncSession,
    rail: PaymentRail,
    recipient: str,
    amount: int,
    reason: str,
    restore: Callable[[], Awaitable[None]],
) -> None:
    """Send funds whose debit is already committed.

    Rails that pay inside the ledger write through ``session`` and are
    committed here. A failed send is undone by ``restore`` in a new transaction.
    """
    try:
        ok = await rail.send(session, recipient, amount, reason)
        if ok and session.in_transaction():
            await session.commit()
    except Exception:
        logger.exception("Transfer of %d to %s raised (%s); reversing", amount, recipient, reason)
        await _reverse(session, restore)
        raise
    if not ok:
        await _reverse(session, restore)
        logger.warning("Transfer of %d to %s failed (%s); reversed", amount, recipient, reason)
        raise TransferFailed(f"Transfer to {recipient} failed; the amount was credited back")


async def withdraw(session: AsyncSession, identity: str, rail: PaymentRail) -> dict:
    """Transfer the full withdrawable balance out. A zero balance withdraws zero."""
    async with transfer_guard.hold(f"withdraw:{identity}"):
        balance = await session.get(Balance, identity)
        amount = balance.amount if balance else 0
        if amount == 0:
            return {"identity": identity, "withdrawn": 0, "balance": 0}

        # The zeroed balance is committed before the rail is invoked
        balance.amount = 0
        session.add(balance)
        await record_entry(session, identity, -amount, "withdrawal")
        event = record_event(session, "withdrawal", actor_id=identity, amount=amount)
        await session.commit()

        async def restore() -> None:
            await credit(session, identity, amount, "withdrawal_reversed")
            record_event(session, "withdrawal_reversed", actor_id=identity, amount=amount)

        await _transfer_out(session, rail, identity, amount, "withdrawal", restore)

    logger.info("Withdrew %d for %s", amount, identity)
    event_bus.publish(identity, event)
    return {"identity": identity, "withdrawn": amount, "balance": 0}


async def sweep_fees(session: AsyncSession, caller: Account, rail: PaymentRail) -> dict:
    """Move collected fees to the treasury account. Owner only."""
    authorizer.require(caller, Action.sweep_fees)
    caller_id = caller.id

    async with transfer_guard.hold("fees"):
        treasury = await _get_treasury(session)
        amount = treasury.fee_collected
        if amount == 0:
            return {"swept": 0, "fee_swept": treasury.fee_swept}

        treasury.fee_collected = 0
        treasury.fee_swept += amount
        total = treasury.fee_swept
        session.add(treasury)
        event = record_event(session, "fees_swept", actor_id=caller_id, amount=amount)
        await session.commit()

        async def restore() -> None:
            restored = await _get_treasury(session)
            restored.fee_collected += amount
            restored.fee_swept -= amount
            session.add(restored)
            record_event(session, "fees_sweep_reversed", actor_id=caller_id, amount=amount)

        await _transfer_out(session, rail, settings.treasury_account_id, amount, "fee_sweep", restore)

    logger.info("Swept %d in fees to %s", amount, settings.treasury_account_id)
    event_bus.publish(caller_id, event)
    return {"swept": amount, "fee_swept": total}


async def grant_funds(session: AsyncSession, caller: Account, identity: str, amount: int) -> dict:
    """Top up an account wallet. Owner/employee only."""
    authorizer.require(caller, Action.grant_funds)
    if amount <= 0:
        raise InvalidInput("Grant amount must be positive")
    account = await session.get(Account, identity)
    if not account:
        raise NotFound("Account not found")
    account.wallet += amount
    session.add(account)
    event = record_event(session, "funds_granted", actor_id=caller.id, identity=identity, amount=amount)
    await session.commit()
    event_bus.publish(identity, event)
    return {"identity": identity, "granted": amount, "wallet": account.wallet}
