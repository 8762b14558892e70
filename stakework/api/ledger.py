"""Balance and withdrawal routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from stakework.api.deps import get_payment_rail
from stakework.auth import AuthAccount
from stakework.config import settings
from stakework.content import render_response
from stakework.database import get_db_session
from stakework.db_models import Account
from stakework.models import BalanceResponse, ErrorResponse, WithdrawResponse
from stakework.rate_limit import limiter
from stakework.services.ledger import get_balance, get_ledger, withdraw

router = APIRouter()


@router.get("/v1/me/balance", response_model=BalanceResponse, responses={401: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_read)
async def my_balance(
    request: Request,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
):
    """Get your withdrawable balance and its ledger history."""
    ledger, total = await get_ledger(session, account.id, offset=offset, limit=limit)
    balance = await get_balance(session, account.id)
    return render_response(request, {"balance": balance, "total": total, "ledger": ledger})


@router.post(
    "/v1/me/withdraw",
    response_model=WithdrawResponse,
    responses={401: {"model": ErrorResponse}, 423: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_write)
async def withdraw_balance(
    request: Request,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    rail=Depends(get_payment_rail),
):
    """Transfer your whole balance out through the payment rail."""
    return render_response(request, await withdraw(session, account.id, rail))
