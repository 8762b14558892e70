"""Task lifecycle service: status transitions, escrow settlement, submissions.

created -> active <-> open_registration -> in_progress -> completed | cancelled

Deletion cancels from created/active; cancel_by_me and trigger_deadline cancel
from in_progress. Every status change goes through ``_transition``, a
conditional UPDATE whose rowcount decides which of two competing operations on
the same task wins.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from stakework.authorization import Action, authorizer
from stakework.db_models import (
    Account,
    JoinRequestStatus,
    SubmissionStatus,
    Task,
    TaskStatus,
    TaskSubmission,
    ValueCategory,
)
from stakework.errors import InvalidInput, InvalidState, NotFound, Unauthorized
from stakework.events import Event, event_bus, record_event
from stakework.parameters import ParameterStore
from stakework.services import join_requests
from stakework.services.ledger import collect_fee, credit
from stakework.services.rails import PaymentRail
from stakework.services.users import adjust_reputation, increment_counter, require_registered
from stakework.services.valuation import creator_stake_for, evaluate

logger = logging.getLogger("stakework.tasks")


def _aware(dt: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def status_str(status) -> str:
    return TaskStatus(status).value


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


async def _load_task(session: AsyncSession, task_id: int) -> Task:
    task = await session.get(Task, task_id)
    if not task or not task.exists:
        raise NotFound("Task not found")
    return task


def _require_creator(task: Task, caller_id: str) -> None:
    if task.creator_id != caller_id:
        raise Unauthorized("Only the task creator can do this")


def _require_member(task: Task, caller_id: str) -> None:
    if not task.member_id or task.member_id != caller_id:
        raise Unauthorized("Only the assigned member can do this")


def _require_status(task: Task, *allowed: TaskStatus) -> None:
    if TaskStatus(task.status) not in allowed:
        expected = " or ".join(s.value for s in allowed)
        raise InvalidState(f"Task is {status_str(task.status)}, not {expected}")


async def _transition(
    session: AsyncSession, task: Task, allowed: tuple[TaskStatus, ...], new_status: TaskStatus
) -> None:
    """Atomic status transition; fails if another operation moved the task first."""
    result = await session.execute(
        update(Task)
        .where(Task.id == task.id, Task.exists == True, Task.status.in_(allowed))  # noqa: E712
        .values(status=new_status, updated_at=datetime.now(UTC))
    )
    if result.rowcount == 0:
        await session.refresh(task)
        _require_status(task, *allowed)
        raise InvalidState("Task already changed status")
    await session.refresh(task)


async def _get_submission(session: AsyncSession, task_id: int) -> TaskSubmission:
    submission = await session.get(TaskSubmission, task_id)
    if submission is None:
        submission = TaskSubmission(task_id=task_id)
        session.add(submission)
    return submission


async def _settle(session: AsyncSession, task: Task, payouts: list[tuple[str, int, str]]) -> None:
    """Release all escrow on a task into ledger credits, then mark it empty."""
    for identity, amount, reason in payouts:
        if amount > 0:
            await credit(session, identity, amount, reason, task.id)
    task.creator_stake = 0
    task.member_stake = 0
    task.creator_stake_locked = False
    task.member_stake_locked = False
    task.is_reward_claimed = True
    task.updated_at = datetime.now(UTC)
    session.add(task)


def _publish(task: Task, event: Event, *extra: str) -> None:
    event_bus.publish_many([task.creator_id, task.member_id, *extra], event)


# ---------------------------------------------------------------------------
# Creation, activation, registration window
# ---------------------------------------------------------------------------


async def create_task(
    session: AsyncSession,
    store: ParameterStore,
    rail: PaymentRail,
    caller: Account,
    title: str,
    deadline_hours: int,
    max_revision: int,
    value: int,
    reference: str | None = None,
) -> dict:
    """Create a task; the whole reward is collected with the call."""
    authorizer.require(caller, Action.create_task)
    creator = await require_registered(session, caller.id)

    params = store.current
    if not title.strip():
        raise InvalidInput("Title is required")
    if value <= 0 or value > params.max_reward:
        raise InvalidInput(f"Reward must be between 1 and {params.max_reward}")
    if deadline_hours < 1:
        raise InvalidInput("deadline_hours must be at least 1")
    if max_revision < 0 or max_revision > params.max_revision:
        raise InvalidInput(f"max_revision must be between 0 and {params.max_revision}")

    await rail.collect(session, caller.id, value, "task_reward")

    valuation = evaluate(store, deadline_hours, max_revision, value, creator.reputation)
    task = Task(
        status=TaskStatus.created,
        value_category=valuation.category,
        creator_id=caller.id,
        title=title.strip(),
        reference=reference,
        reward=value,
        deadline_hours=deadline_hours,
        max_revision=max_revision,
    )
    session.add(task)
    # Flush so the task id exists for ledger and event rows
    await session.flush()

    await increment_counter(session, caller.id, "tasks_created")
    event = record_event(
        session,
        "task_created",
        task_id=task.id,
        actor_id=caller.id,
        reward=value,
        value_category=valuation.category.value,
        score=valuation.score,
    )
    await session.commit()

    logger.info("Task %d created by %s (%s)", task.id, caller.id, valuation.category.value)
    _publish(task, event)
    return task_dict(task)


async def delete_task(session: AsyncSession, task_id: int, caller: Account) -> dict:
    """Creator withdraws a task before any member is assigned; escrow is refunded."""
    task = await _load_task(session, task_id)
    _require_creator(task, caller.id)

    await _transition(session, task, (TaskStatus.created, TaskStatus.active), TaskStatus.cancelled)

    refunded_applicants = []
    for req in await join_requests.list_requests(session, task.id):
        if req.is_pending and not req.has_withdrawn:
            _, stake = await join_requests.resolve(session, task.id, req.applicant_id, JoinRequestStatus.cancelled)
            await credit(session, req.applicant_id, stake, "join_request_refund", task.id)
            refunded_applicants.append(req.applicant_id)

    refund = task.reward + task.creator_stake
    await _settle(session, task, [(task.creator_id, refund, "task_deleted")])
    task.exists = False
    session.add(task)

    event = record_event(session, "task_deleted", task_id=task.id, actor_id=caller.id, refund=refund)
    await session.commit()

    logger.info("Task %d deleted, refunded %d to %s", task.id, refund, task.creator_id)
    _publish(task, event, *refunded_applicants)
    return task_dict(task)


async def activate_task(
    session: AsyncSession,
    store: ParameterStore,
    rail: PaymentRail,
    task_id: int,
    caller: Account,
    value: int,
) -> dict:
    """Lock the creator stake for the task's value category, minus the platform fee."""
    task = await _load_task(session, task_id)
    _require_creator(task, caller.id)
    _require_status(task, TaskStatus.created)

    required = creator_stake_for(store, task.value_category)
    if value != required:
        raise InvalidInput(f"Creator stake must be exactly {required}, got {value}")

    await _transition(session, task, (TaskStatus.created,), TaskStatus.active)
    await rail.collect(session, caller.id, value, "creator_stake")

    fee = value * store.current.fee_percentage // 100
    await collect_fee(session, fee)
    task.creator_stake = value - fee
    task.creator_stake_locked = True
    session.add(task)

    event = record_event(
        session, "task_activated", task_id=task.id, actor_id=caller.id, creator_stake=task.creator_stake, fee=fee
    )
    await session.commit()

    _publish(task, event)
    return task_dict(task)


async def open_registration(session: AsyncSession, task_id: int, caller: Account) -> dict:
    task = await _load_task(session, task_id)
    _require_creator(task, caller.id)
    await _transition(session, task, (TaskStatus.active,), TaskStatus.open_registration)
    event = record_event(session, "registration_opened", task_id=task.id, actor_id=caller.id)
    await session.commit()
    _publish(task, event)
    return task_dict(task)


async def close_registration(session: AsyncSession, task_id: int, caller: Account) -> dict:
    task = await _load_task(session, task_id)
    _require_creator(task, caller.id)
    await _transition(session, task, (TaskStatus.open_registration,), TaskStatus.active)
    event = record_event(session, "registration_closed", task_id=task.id, actor_id=caller.id)
    await session.commit()
    _publish(task, event)
    return task_dict(task)


# ---------------------------------------------------------------------------
# Join requests
# ---------------------------------------------------------------------------


async def request_join_task(
    session: AsyncSession,
    store: ParameterStore,
    rail: PaymentRail,
    task_id: int,
    caller: Account,
    value: int,
) -> dict:
    task = await _load_task(session, task_id)
    _require_status(task, TaskStatus.open_registration)
    if task.creator_id == caller.id:
        raise Unauthorized("Cannot join your own task")
    await require_registered(session, caller.id)

    required = store.member_stake_for(task.reward)
    if value != required:
        raise InvalidInput(f"Member stake must be exactly {required}, got {value}")
    if value > store.current.max_stake:
        raise InvalidInput(f"Member stake {value} exceeds the maximum of {store.current.max_stake}")

    req = await join_requests.append_request(session, task.id, caller.id, value)
    await rail.collect(session, caller.id, value, "member_stake")

    event = record_event(session, "join_requested", task_id=task.id, actor_id=caller.id, stake=value)
    await session.commit()

    _publish(task, event, caller.id)
    return join_requests.request_dict(req)


async def withdraw_join_request(session: AsyncSession, task_id: int, caller: Account) -> dict:
    """Applicant takes back a pending request; the stake goes to their balance."""
    task = await session.get(Task, task_id)
    if not task:
        raise NotFound("Task not found")

    req, stake = await join_requests.resolve(session, task.id, caller.id, JoinRequestStatus.cancelled)
    await credit(session, caller.id, stake, "join_request_withdrawn", task.id)

    event = record_event(session, "join_withdrawn", task_id=task.id, actor_id=caller.id, stake=stake)
    await session.commit()

    _publish(task, event, caller.id)
    return join_requests.request_dict(req)


async def approve_join_request(
    session: AsyncSession,
    task_id: int,
    applicant_id: str,
    caller: Account,
    now: datetime | None = None,
) -> dict:
    """Assign the applicant as member; their stake moves into the task's escrow."""
    now = now or datetime.now(UTC)
    task = await _load_task(session, task_id)
    _require_creator(task, caller.id)
    _require_status(task, TaskStatus.open_registration)

    _, stake = await join_requests.resolve(session, task.id, applicant_id, JoinRequestStatus.accepted)
    await _transition(session, task, (TaskStatus.open_registration,), TaskStatus.in_progress)

    task.member_id = applicant_id
    task.member_stake = stake
    task.member_stake_locked = True
    task.deadline_at = now + timedelta(hours=task.deadline_hours)
    session.add(task)

    event = record_event(
        session,
        "join_approved",
        task_id=task.id,
        actor_id=caller.id,
        member_id=applicant_id,
        deadline_at=task.deadline_at.isoformat(),
    )
    await session.commit()

    logger.info("Task %d assigned to %s", task.id, applicant_id)
    _publish(task, event)
    return task_dict(task)


async def reject_join_request(session: AsyncSession, task_id: int, applicant_id: str, caller: Account) -> dict:
    task = await session.get(Task, task_id)
    if not task:
        raise NotFound("Task not found")
    _require_creator(task, caller.id)

    req, stake = await join_requests.resolve(session, task.id, applicant_id, JoinRequestStatus.rejected)
    await credit(session, applicant_id, stake, "join_request_rejected", task.id)

    event = record_event(session, "join_rejected", task_id=task.id, actor_id=caller.id, applicant_id=applicant_id)
    await session.commit()

    event_bus.publish(applicant_id, event)
    return join_requests.request_dict(req)


# ---------------------------------------------------------------------------
# Cancellation and deadline
# ---------------------------------------------------------------------------


async def cancel_by_me(session: AsyncSession, store: ParameterStore, task_id: int, caller: Account) -> dict:
    """Creator or member walks away from an in-progress task and pays the penalty."""
    task = await _load_task(session, task_id)
    _require_status(task, TaskStatus.in_progress)
    if not task.member_id:
        raise InvalidState("No member assigned")
    if caller.id not in (task.creator_id, task.member_id):
        raise Unauthorized("Only the creator or the member can cancel")

    params = store.current
    creator_stake, member_stake, reward = task.creator_stake, task.member_stake, task.reward
    if caller.id == task.member_id:
        penalty = member_stake * params.neg_penalty // 100
        payouts = [
            (task.member_id, member_stake - penalty, "cancel_stake_return"),
            (task.creator_id, creator_stake + reward + penalty, "cancel_refund"),
        ]
    else:
        penalty = creator_stake * params.neg_penalty // 100
        payouts = [
            (task.member_id, member_stake + penalty, "cancel_refund"),
            (task.creator_id, creator_stake - penalty + reward, "cancel_stake_return"),
        ]

    await _transition(session, task, (TaskStatus.in_progress,), TaskStatus.cancelled)
    await _settle(session, task, payouts)

    await adjust_reputation(session, store, caller.id, -params.cancel_by_me_rp)
    await increment_counter(session, caller.id, "tasks_failed")

    event = record_event(session, "task_cancelled", task_id=task.id, actor_id=caller.id, penalty=penalty)
    await session.commit()

    logger.info("Task %d cancelled by %s, penalty %d", task.id, caller.id, penalty)
    _publish(task, event)
    return task_dict(task)


async def trigger_deadline(
    session: AsyncSession,
    store: ParameterStore,
    task_id: int,
    caller: Account,
    now: datetime | None = None,
) -> dict:
    """Resolve an in-progress task whose deadline passed without a pending submission."""
    now = now or datetime.now(UTC)
    task = await _load_task(session, task_id)
    _require_status(task, TaskStatus.in_progress)

    submission = await session.get(TaskSubmission, task.id)
    if submission and SubmissionStatus(submission.status) == SubmissionStatus.pending:
        raise InvalidState("A submission is pending review")
    deadline_at = _aware(task.deadline_at)
    if deadline_at is None:
        raise InvalidState("Task has no deadline set")
    if now <= deadline_at:
        raise InvalidState(f"Deadline not reached until {deadline_at.isoformat()}")

    params = store.current
    creator_stake, member_stake, reward = task.creator_stake, task.member_stake, task.reward
    if task.member_id:
        penalty = member_stake * params.neg_penalty // 100
        payouts = [
            (task.member_id, member_stake - penalty, "deadline_stake_return"),
            (task.creator_id, creator_stake + reward + penalty, "deadline_refund"),
        ]
    else:
        penalty = 0
        payouts = [(task.creator_id, creator_stake + reward, "deadline_refund")]

    await _transition(session, task, (TaskStatus.in_progress,), TaskStatus.cancelled)
    await _settle(session, task, payouts)

    await adjust_reputation(session, store, task.creator_id, -params.deadline_hit_creator_rp)
    await increment_counter(session, task.creator_id, "tasks_failed")
    if task.member_id:
        await adjust_reputation(session, store, task.member_id, -params.deadline_hit_member_rp)
        await increment_counter(session, task.member_id, "tasks_failed")

    event = record_event(session, "deadline_triggered", task_id=task.id, actor_id=caller.id, penalty=penalty)
    await session.commit()

    logger.info("Task %d expired at %s (triggered by %s)", task.id, deadline_at.isoformat(), caller.id)
    _publish(task, event)
    return task_dict(task)


# ---------------------------------------------------------------------------
# Submission, revision, approval
# ---------------------------------------------------------------------------


def _check_before_deadline(task: Task, now: datetime) -> None:
    deadline_at = _aware(task.deadline_at)
    if deadline_at is not None and now > deadline_at:
        raise InvalidState("Deadline has passed")


def _revisions_left(task: Task, submission: TaskSubmission) -> int:
    """Revision requests the creator may still make. The work delivered after the last one is final."""
    return task.max_revision - submission.revision_time


async def request_submit_task(
    session: AsyncSession,
    task_id: int,
    caller: Account,
    reference: str,
    note: str | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or datetime.now(UTC)
    task = await _load_task(session, task_id)
    _require_member(task, caller.id)
    _require_status(task, TaskStatus.in_progress)
    _check_before_deadline(task, now)

    submission = await _get_submission(session, task.id)
    if SubmissionStatus(submission.status) != SubmissionStatus.none:
        raise InvalidState(f"Submission is {SubmissionStatus(submission.status).value}, use resubmit")

    submission.reference = reference
    submission.note = note
    submission.sender_id = caller.id
    submission.status = SubmissionStatus.pending
    submission.updated_at = now
    session.add(submission)

    event = record_event(session, "submission_pending", task_id=task.id, actor_id=caller.id, reference=reference)
    await session.commit()

    _publish(task, event)
    return submission_dict(submission)


async def resubmit_task(
    session: AsyncSession,
    store: ParameterStore,
    task_id: int,
    caller: Account,
    reference: str,
    note: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Resubmit after a revision request. After the last allowed revision the work is accepted."""
    now = now or datetime.now(UTC)
    task = await _load_task(session, task_id)
    _require_member(task, caller.id)
    _require_status(task, TaskStatus.in_progress)

    submission = await _get_submission(session, task.id)
    if SubmissionStatus(submission.status) != SubmissionStatus.revision_needed:
        raise InvalidState(f"Submission is {SubmissionStatus(submission.status).value}, not revision_needed")

    _check_before_deadline(task, now)
    if _revisions_left(task, submission) <= 0:
        return await _complete(session, store, task, submission, caller, forced=True)

    submission.reference = reference
    submission.note = note
    submission.sender_id = caller.id
    submission.status = SubmissionStatus.pending
    submission.updated_at = now
    session.add(submission)

    event = record_event(session, "submission_pending", task_id=task.id, actor_id=caller.id, reference=reference)
    await session.commit()

    _publish(task, event)
    return submission_dict(submission)


async def request_revision(
    session: AsyncSession,
    store: ParameterStore,
    task_id: int,
    caller: Account,
    note: str,
    extra_hours: int,
) -> dict:
    """Send the submission back. With no revisions left the pending work is accepted instead."""
    task = await _load_task(session, task_id)
    _require_creator(task, caller.id)
    _require_status(task, TaskStatus.in_progress)

    params = store.current
    if extra_hours < params.min_revision_hours:
        raise InvalidInput(f"extra_hours must be at least {params.min_revision_hours}")

    submission = await _get_submission(session, task.id)
    if SubmissionStatus(submission.status) != SubmissionStatus.pending:
        raise InvalidState(f"Submission is {SubmissionStatus(submission.status).value}, not pending")

    task.deadline_at = _aware(task.deadline_at) + timedelta(hours=extra_hours)
    session.add(task)
    submission.revision_time += 1

    if _revisions_left(task, submission) < 0:
        return await _complete(session, store, task, submission, caller, forced=True)

    submission.status = SubmissionStatus.revision_needed
    submission.note = note
    submission.new_deadline = task.deadline_at
    submission.updated_at = datetime.now(UTC)
    session.add(submission)

    await adjust_reputation(session, store, task.creator_id, -params.revision_rp)
    await adjust_reputation(session, store, task.member_id, -params.revision_rp)

    event = record_event(
        session,
        "revision_requested",
        task_id=task.id,
        actor_id=caller.id,
        revision_time=submission.revision_time,
        new_deadline=task.deadline_at.isoformat(),
    )
    await session.commit()

    _publish(task, event)
    return submission_dict(submission)


async def approve_task(session: AsyncSession, store: ParameterStore, task_id: int, caller: Account) -> dict:
    task = await _load_task(session, task_id)
    _require_creator(task, caller.id)
    submission = await _get_submission(session, task.id)
    return await _complete(session, store, task, submission, caller, forced=False)


async def _complete(
    session: AsyncSession,
    store: ParameterStore,
    task: Task,
    submission: TaskSubmission,
    caller: Account,
    forced: bool,
) -> dict:
    """Pay out a finished task. ``forced`` also accepts a revision_needed submission."""
    _require_status(task, TaskStatus.in_progress)
    allowed = {SubmissionStatus.pending}
    if forced:
        allowed.add(SubmissionStatus.revision_needed)
    if SubmissionStatus(submission.status) not in allowed:
        raise InvalidState(f"Submission is {SubmissionStatus(submission.status).value}, not pending")
    if task.is_reward_claimed:
        raise InvalidState("Reward already claimed")
    if not submission.sender_id or not task.member_id:
        raise InvalidState("No submitter on file")

    payouts = [
        (task.member_id, task.reward + task.member_stake, "task_reward"),
        (task.creator_id, task.creator_stake, "creator_stake_return"),
    ]
    await _transition(session, task, (TaskStatus.in_progress,), TaskStatus.completed)
    await _settle(session, task, payouts)

    params = store.current
    await adjust_reputation(session, store, task.creator_id, params.task_accept_creator_rp)
    await adjust_reputation(session, store, task.member_id, params.task_accept_member_rp)
    await increment_counter(session, task.creator_id, "tasks_completed")
    await increment_counter(session, task.member_id, "tasks_completed")

    submission.status = SubmissionStatus.accepted
    submission.reference = None
    submission.note = None
    submission.sender_id = None
    submission.new_deadline = None
    submission.updated_at = datetime.now(UTC)
    session.add(submission)

    event = record_event(
        session,
        "task_completed",
        task_id=task.id,
        actor_id=caller.id,
        forced=forced,
        revision_time=submission.revision_time,
    )
    await session.commit()

    logger.info("Task %d completed%s, member %s paid", task.id, " (revisions exhausted)" if forced else "", task.member_id)
    _publish(task, event)
    return task_dict(task)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_task(session: AsyncSession, task_id: int) -> dict | None:
    task = await session.get(Task, task_id)
    if not task or not task.exists:
        return None
    return task_dict(task)


async def list_tasks(
    session: AsyncSession,
    identity: str | None = None,
    role: str | None = None,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> dict:
    query = select(Task).where(Task.exists == True)  # noqa: E712
    if status is not None:
        try:
            query = query.where(Task.status == TaskStatus(status))
        except ValueError:
            raise InvalidInput(f"Invalid status: {status}") from None
    if role == "creator":
        query = query.where(Task.creator_id == identity)
    elif role == "member":
        query = query.where(Task.member_id == identity)
    elif role == "any":
        query = query.where(or_(Task.creator_id == identity, Task.member_id == identity))
    elif role is not None:
        raise InvalidInput(f"Invalid role: {role}")

    count_result = await session.execute(select(func.count()).select_from(query.subquery()))
    total = count_result.scalar_one()

    result = await session.execute(query.order_by(Task.id.asc()).offset(offset).limit(limit))
    return {"tasks": [task_dict(t) for t in result.scalars().all()], "total": total}


async def get_join_requests(session: AsyncSession, task_id: int) -> list[dict]:
    if not await session.get(Task, task_id):
        raise NotFound("Task not found")
    return [join_requests.request_dict(r) for r in await join_requests.list_requests(session, task_id)]


async def get_submission(session: AsyncSession, task_id: int) -> dict:
    await _load_task(session, task_id)
    submission = await session.get(TaskSubmission, task_id)
    if not submission:
        raise NotFound("No submission for this task")
    return submission_dict(submission)


def task_dict(task: Task) -> dict:
    deadline_at = _aware(task.deadline_at)
    return {
        "id": task.id,
        "status": status_str(task.status),
        "value_category": ValueCategory(task.value_category).value,
        "creator_id": task.creator_id,
        "member_id": task.member_id,
        "title": task.title,
        "reference": task.reference,
        "reward": task.reward,
        "creator_stake": task.creator_stake,
        "member_stake": task.member_stake,
        "deadline_hours": task.deadline_hours,
        "deadline_at": deadline_at.isoformat() if deadline_at else None,
        "max_revision": task.max_revision,
        "creator_stake_locked": task.creator_stake_locked,
        "member_stake_locked": task.member_stake_locked,
        "is_reward_claimed": task.is_reward_claimed,
        "exists": task.exists,
    }


def submission_dict(submission: TaskSubmission) -> dict:
    new_deadline = _aware(submission.new_deadline)
    return {
        "task_id": submission.task_id,
        "reference": submission.reference,
        "sender_id": submission.sender_id,
        "note": submission.note,
        "status": SubmissionStatus(submission.status).value,
        "revision_time": submission.revision_time,
        "new_deadline": new_deadline.isoformat() if new_deadline else None,
    }
