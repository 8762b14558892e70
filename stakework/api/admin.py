"""Administrative routes: market parameters, fees, funding and roles."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from stakework.api.deps import get_parameter_store, get_payment_rail
from stakework.auth import AuthAccount, get_admin_or_account
from stakework.authorization import Action, authorizer
from stakework.config import settings
from stakework.content import parse_body, render_response
from stakework.database import get_db_session
from stakework.db_models import Account
from stakework.errors import Unauthorized
from stakework.events import event_bus, record_event
from stakework.models import ErrorResponse, FeesResponse, GrantRequest, RoleRequest, SweepResponse
from stakework.rate_limit import limiter
from stakework.services.ledger import get_fees, grant_funds, sweep_fees
from stakework.services.users import assign_role

logger = logging.getLogger("stakework.admin")

router = APIRouter()

_ERRORS = {400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}


@router.get("/v1/admin/parameters", responses=_ERRORS)
@limiter.limit(settings.rate_limit_admin)
async def show_parameters(request: Request, account: Account = AuthAccount, store=Depends(get_parameter_store)):
    return render_response(request, store.current.model_dump())


@router.patch("/v1/admin/parameters", responses=_ERRORS)
@limiter.limit(settings.rate_limit_admin)
async def update_parameters(
    request: Request,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    store=Depends(get_parameter_store),
):
    """Change market parameters. Owner only; applies to later operations."""
    authorizer.require(account, Action.update_parameters)
    body = await parse_body(request)
    if not body:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    new_params, changed = store.prepare(**body)
    event = record_event(session, "parameters_updated", actor_id=account.id, changed=changed)
    await session.commit()
    store.replace(new_params)
    logger.info("Market parameters updated by %s: %s", account.id, changed)
    event_bus.publish(account.id, event)
    return render_response(request, {"changed": changed, "parameters": store.current.model_dump()})


@router.get("/v1/admin/fees", response_model=FeesResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_admin)
async def show_fees(request: Request, account: Account = AuthAccount, session=Depends(get_db_session)):
    if not authorizer.is_privileged_caller(account):
        raise Unauthorized("Only employees and owners may view fees")
    return render_response(request, await get_fees(session))


@router.post("/v1/admin/fees/sweep", response_model=SweepResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_admin)
async def sweep(
    request: Request,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    rail=Depends(get_payment_rail),
):
    """Transfer collected platform fees to the treasury account."""
    return render_response(request, await sweep_fees(session, account, rail))


@router.post("/v1/admin/funds/grant", responses=_ERRORS)
@limiter.limit(settings.rate_limit_admin)
async def grant(request: Request, account: Account = AuthAccount, session=Depends(get_db_session)):
    body = await parse_body(request)
    try:
        req = GrantRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    result = await grant_funds(session, account, req.account_id, req.amount)
    logger.info("Granted %d to %s by %s", req.amount, req.account_id, account.id)
    return render_response(request, result)


@router.post("/v1/admin/roles", responses=_ERRORS)
@limiter.limit(settings.rate_limit_admin)
async def set_role(
    request: Request,
    caller: Account | None = Depends(get_admin_or_account),
    session=Depends(get_db_session),
):
    """Assign a role. Accepts the admin key or an owner's API key."""
    body = await parse_body(request)
    try:
        req = RoleRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    return render_response(request, await assign_role(session, req.account_id, req.role, caller=caller))
