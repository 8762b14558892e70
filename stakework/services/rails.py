"""Payment rails: how value enters a call and how withdrawals leave the ledger."""

from __future__ import annotations

import logging

import httpx
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from stakework.config import Settings
from stakework.db_models import Account
from stakework.errors import InsufficientFunds

logger = logging.getLogger("stakework.rails")


class PaymentRail:
    """Base rail. Incoming value is always drawn from the caller's wallet."""

    async def collect(self, session: AsyncSession, identity: str, amount: int, reason: str) -> None:
        """Atomic wallet debit: single UPDATE with balance check."""
        if amount <= 0:
            return
        result = await session.execute(
            update(Account)
            .where(Account.id == identity, Account.wallet >= amount)
            .values(wallet=Account.wallet - amount)
        )
        if result.rowcount == 0:
            account = await session.get(Account, identity)
            have = account.wallet if account else 0
            raise InsufficientFunds(f"Insufficient wallet funds. Have {have}, need {amount}")
        logger.debug("Collected %d from %s for %s", amount, identity, reason)

    async def send(self, session: AsyncSession, identity: str, amount: int, reason: str) -> bool:
        """Transfer ``amount`` out to ``identity``. Returns False on failure."""
        raise NotImplementedError


class WalletRail(PaymentRail):
    """Pays out into the recipient's wallet inside the same transaction."""

    async def send(self, session: AsyncSession, identity: str, amount: int, reason: str) -> bool:
        result = await session.execute(
            update(Account).where(Account.id == identity).values(wallet=Account.wallet + amount)
        )
        return result.rowcount == 1


class WebhookPayoutRail(PaymentRail):
    """Hands payouts to an external payout service over HTTP."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout

    async def send(self, session: AsyncSession, identity: str, amount: int, reason: str) -> bool:
        payload = {"recipient": identity, "amount": amount, "reason": reason}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            logger.error("Payout to %s failed: %s", identity, e)
            return False
        if not resp.is_success:
            logger.error("Payout to %s rejected with %d", identity, resp.status_code)
        return resp.is_success


def rail_from_settings(s: Settings) -> PaymentRail:
    if s.payout_webhook_url:
        return WebhookPayoutRail(s.payout_webhook_url, timeout=s.payout_timeout_seconds)
    return WalletRail()
