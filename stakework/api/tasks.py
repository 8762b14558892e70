"""Task lifecycle routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError

from stakework.api.deps import get_parameter_store, get_payment_rail
from stakework.auth import AuthAccount
from stakework.config import settings
from stakework.content import parse_body, render_response
from stakework.database import get_db_session
from stakework.db_models import Account
from stakework.models import (
    ErrorResponse,
    JoinRequestResponse,
    RevisionRequest,
    SubmissionResponse,
    SubmitRequest,
    TaskCreateRequest,
    TaskListResponse,
    TaskResponse,
    ValueRequest,
)
from stakework.rate_limit import limiter
from stakework.services import tasks as svc

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse},
    402: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def _invalid_body(request: Request):
    return render_response(request, {"error": "Invalid request body"}, status_code=400)


@router.post("/v1/tasks", response_model=TaskResponse, status_code=201, responses=_ERRORS)
@limiter.limit(settings.rate_limit_create)
async def create_task(
    request: Request,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    store=Depends(get_parameter_store),
    rail=Depends(get_payment_rail),
):
    """Post a task. `value` is the full reward and is taken from your wallet."""
    body = await parse_body(request, body_field="title")
    try:
        req = TaskCreateRequest(**body)
    except ValidationError:
        return _invalid_body(request)

    task = await svc.create_task(
        session,
        store,
        rail,
        account,
        req.title,
        req.deadline_hours,
        req.max_revision,
        req.value,
        reference=req.reference,
    )
    return render_response(
        request, task, status_code=201, headers={"X-Task-Id": str(task["id"]), "X-Status": task["status"]}
    )


@router.get("/v1/tasks", response_model=TaskListResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def list_tasks(
    request: Request,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    role: str | None = None,
    status: str | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """List tasks. `role` is creator, member or any (relative to you)."""
    result = await svc.list_tasks(session, account.id, role=role, status=status, limit=limit, offset=offset)
    return render_response(request, result)


@router.get("/v1/tasks/{task_id}", response_model=TaskResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def show_task(request: Request, task_id: int, account: Account = AuthAccount, session=Depends(get_db_session)):
    task = await svc.get_task(session, task_id)
    if not task:
        return render_response(request, {"error": "Task not found"}, status_code=404)
    return render_response(request, task)


@router.delete("/v1/tasks/{task_id}", response_model=TaskResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def delete_task(request: Request, task_id: int, account: Account = AuthAccount, session=Depends(get_db_session)):
    """Delete a task that has no member yet. Reward and stake go to your balance."""
    return render_response(request, await svc.delete_task(session, task_id, account))


@router.post("/v1/tasks/{task_id}/activate", response_model=TaskResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def activate_task(
    request: Request,
    task_id: int,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    store=Depends(get_parameter_store),
    rail=Depends(get_payment_rail),
):
    """Lock the creator stake required by the task's value category."""
    body = await parse_body(request)
    try:
        req = ValueRequest(**body)
    except ValidationError:
        return _invalid_body(request)
    return render_response(request, await svc.activate_task(session, store, rail, task_id, account, req.value))


@router.post("/v1/tasks/{task_id}/open-registration", response_model=TaskResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def open_registration(
    request: Request, task_id: int, account: Account = AuthAccount, session=Depends(get_db_session)
):
    return render_response(request, await svc.open_registration(session, task_id, account))


@router.post("/v1/tasks/{task_id}/close-registration", response_model=TaskResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def close_registration(
    request: Request, task_id: int, account: Account = AuthAccount, session=Depends(get_db_session)
):
    return render_response(request, await svc.close_registration(session, task_id, account))


@router.post("/v1/tasks/{task_id}/join", response_model=JoinRequestResponse, status_code=201, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def request_join(
    request: Request,
    task_id: int,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    store=Depends(get_parameter_store),
    rail=Depends(get_payment_rail),
):
    """Apply to work on a task. `value` must equal the required member stake."""
    body = await parse_body(request)
    try:
        req = ValueRequest(**body)
    except ValidationError:
        return _invalid_body(request)
    result = await svc.request_join_task(session, store, rail, task_id, account, req.value)
    return render_response(request, result, status_code=201)


@router.post("/v1/tasks/{task_id}/join/withdraw", response_model=JoinRequestResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def withdraw_join(request: Request, task_id: int, account: Account = AuthAccount, session=Depends(get_db_session)):
    return render_response(request, await svc.withdraw_join_request(session, task_id, account))


@router.get("/v1/tasks/{task_id}/join-requests", response_model=list[JoinRequestResponse], responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def join_requests(request: Request, task_id: int, account: Account = AuthAccount, session=Depends(get_db_session)):
    return render_response(request, await svc.get_join_requests(session, task_id))


@router.post("/v1/tasks/{task_id}/join/{applicant_id}/approve", response_model=TaskResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def approve_join(
    request: Request,
    task_id: int,
    applicant_id: str,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
):
    """Assign the applicant as member. The deadline clock starts now."""
    return render_response(request, await svc.approve_join_request(session, task_id, applicant_id, account))


@router.post("/v1/tasks/{task_id}/join/{applicant_id}/reject", response_model=JoinRequestResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def reject_join(
    request: Request,
    task_id: int,
    applicant_id: str,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
):
    return render_response(request, await svc.reject_join_request(session, task_id, applicant_id, account))


@router.post("/v1/tasks/{task_id}/cancel", response_model=TaskResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def cancel_task(
    request: Request,
    task_id: int,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    store=Depends(get_parameter_store),
):
    """Walk away from an in-progress task. The canceller's stake is penalised."""
    return render_response(request, await svc.cancel_by_me(session, store, task_id, account))


@router.post("/v1/tasks/{task_id}/submit", response_model=SubmissionResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def submit_task(request: Request, task_id: int, account: Account = AuthAccount, session=Depends(get_db_session)):
    body = await parse_body(request)
    try:
        req = SubmitRequest(**body)
    except ValidationError:
        return _invalid_body(request)
    return render_response(request, await svc.request_submit_task(session, task_id, account, req.reference, req.note))


@router.post("/v1/tasks/{task_id}/resubmit", responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def resubmit_task(
    request: Request,
    task_id: int,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    store=Depends(get_parameter_store),
):
    """Resubmit after a revision. Returns the task instead once revisions run out."""
    body = await parse_body(request)
    try:
        req = SubmitRequest(**body)
    except ValidationError:
        return _invalid_body(request)
    result = await svc.resubmit_task(session, store, task_id, account, req.reference, req.note)
    return render_response(request, result)


@router.post("/v1/tasks/{task_id}/revision", responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def request_revision(
    request: Request,
    task_id: int,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    store=Depends(get_parameter_store),
):
    body = await parse_body(request)
    try:
        req = RevisionRequest(**body)
    except ValidationError:
        return _invalid_body(request)
    result = await svc.request_revision(session, store, task_id, account, req.note, req.extra_hours)
    return render_response(request, result)


@router.get("/v1/tasks/{task_id}/submission", response_model=SubmissionResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_read)
async def show_submission(request: Request, task_id: int, account: Account = AuthAccount, session=Depends(get_db_session)):
    return render_response(request, await svc.get_submission(session, task_id))


@router.post("/v1/tasks/{task_id}/approve", response_model=TaskResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def approve_task(
    request: Request,
    task_id: int,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    store=Depends(get_parameter_store),
):
    """Accept the pending submission and pay out reward and stakes."""
    return render_response(request, await svc.approve_task(session, store, task_id, account))


@router.post("/v1/tasks/{task_id}/trigger-deadline", response_model=TaskResponse, responses=_ERRORS)
@limiter.limit(settings.rate_limit_write)
async def trigger_deadline(
    request: Request,
    task_id: int,
    account: Account = AuthAccount,
    session=Depends(get_db_session),
    store=Depends(get_parameter_store),
):
    """Resolve an expired task. Anyone may call this once the deadline has passed."""
    return render_response(request, await svc.trigger_deadline(session, store, task_id, account))
