"""Per-task join requests: append-only, insertion ordered, one pending per applicant.

Lookups by applicant walk the task's requests in order; task lists are short,
so the scan stays O(n) per task.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from stakework.db_models import JoinRequest, JoinRequestStatus
from stakework.errors import AlreadyExists, NotFound


async def list_requests(session: AsyncSession, task_id: int) -> list[JoinRequest]:
    result = await session.execute(
        select(JoinRequest).where(JoinRequest.task_id == task_id).order_by(JoinRequest.seq.asc())
    )
    return list(result.scalars().all())


async def find_pending(session: AsyncSession, task_id: int, applicant_id: str) -> JoinRequest | None:
    for req in await list_requests(session, task_id):
        if req.applicant_id == applicant_id and req.is_pending and not req.has_withdrawn:
            return req
    return None


async def append_request(
    session: AsyncSession, task_id: int, applicant_id: str, stake_amount: int
) -> JoinRequest:
    if await find_pending(session, task_id, applicant_id):
        raise AlreadyExists("You already have a pending join request for this task")
    req = JoinRequest(task_id=task_id, applicant_id=applicant_id, stake_amount=stake_amount)
    session.add(req)
    await session.flush()
    return req


async def resolve(
    session: AsyncSession, task_id: int, applicant_id: str, status: JoinRequestStatus
) -> tuple[JoinRequest, int]:
    """Close the applicant's pending request and release its stake.

    Returns the request and the stake that left it; the caller decides where
    that stake goes (ledger refund or the task's member stake).
    """
    req = await find_pending(session, task_id, applicant_id)
    if not req:
        raise NotFound(f"No pending join request from {applicant_id}")
    stake = req.stake_amount
    req.status = status
    req.is_pending = False
    req.has_withdrawn = True
    req.stake_amount = 0
    session.add(req)
    return req, stake


def request_dict(req: JoinRequest) -> dict:
    return {
        "seq": req.seq,
        "task_id": req.task_id,
        "applicant_id": req.applicant_id,
        "stake_amount": req.stake_amount,
        "status": JoinRequestStatus(req.status).value,
        "is_pending": req.is_pending,
        "has_withdrawn": req.has_withdrawn,
        "created_at": req.created_at.isoformat() if req.created_at else None,
    }
