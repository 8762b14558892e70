"""Account, registration and profile routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError

from stakework.auth import AuthAccount
from stakework.config import settings
from stakework.content import parse_body, render_response
from stakework.database import get_db_session
from stakework.db_models import Account
from stakework.models import (
    AccountResponse,
    ErrorResponse,
    MeResponse,
    RegisterRequest,
    UserResponse,
)
from stakework.rate_limit import limiter
from stakework.services.users import get_me, get_user, open_account, register, unregister

router = APIRouter()


@router.post("/v1/accounts", response_model=AccountResponse, status_code=201)
@limiter.limit(settings.rate_limit_register)
async def create_account(request: Request, session=Depends(get_db_session)):
    """Open an account. The API key is shown once."""
    result = await open_account(session)
    return render_response(request, result, status_code=201)


@router.get("/v1/me", response_model=MeResponse, responses={401: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_read)
async def me(request: Request, account: Account = AuthAccount, session=Depends(get_db_session)):
    return render_response(request, await get_me(session, account))


@router.post(
    "/v1/users/register",
    response_model=UserResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit_register)
async def register_user(request: Request, account: Account = AuthAccount, session=Depends(get_db_session)):
    """Register as a marketplace user. Counters and reputation start at zero."""
    body = await parse_body(request, body_field="name")
    try:
        req = RegisterRequest(**body)
    except ValidationError:
        return render_response(request, {"error": "Invalid request body"}, status_code=400)

    user = await register(session, account, req.name, age=req.age, github_url=req.github_url)
    return render_response(request, user, status_code=201)


@router.post("/v1/users/unregister", responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_write)
async def unregister_user(request: Request, account: Account = AuthAccount, session=Depends(get_db_session)):
    return render_response(request, await unregister(session, account))


@router.get("/v1/users/{user_id}", response_model=UserResponse, responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.rate_limit_read)
async def show_user(request: Request, user_id: str, account: Account = AuthAccount, session=Depends(get_db_session)):
    user = await get_user(session, user_id)
    if not user:
        return render_response(request, {"error": "User not found"}, status_code=404)
    return render_response(request, user)
