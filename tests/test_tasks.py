"""Test the task lifecycle: escrow, settlement, revisions, penalties and deadlines."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func
from sqlmodel import select

from stakework.db_models import (
    Account,
    Balance,
    JoinRequest,
    MarketEvent,
    Role,
    Task,
    TaskSubmission,
    Treasury,
    UserProfile,
)
from stakework.errors import InsufficientFunds, InvalidInput, InvalidState, NotFound, Unauthorized
from stakework.parameters import UNIT
from stakework.services import tasks, users
from stakework.services.ledger import get_balance, get_fees
from tests.conftest import make_account, start_task


async def _total_value(session) -> int:
    """Every micro-unit in the system: wallets, balances, fees, escrow and pending stakes."""
    wallets = (await session.execute(select(func.coalesce(func.sum(Account.wallet), 0)))).scalar_one()
    balances = (await session.execute(select(func.coalesce(func.sum(Balance.amount), 0)))).scalar_one()
    fees = (await session.execute(select(func.coalesce(func.sum(Treasury.fee_collected), 0)))).scalar_one()
    pending = (await session.execute(select(func.coalesce(func.sum(JoinRequest.stake_amount), 0)))).scalar_one()
    escrow = 0
    for task in (await session.execute(select(Task))).scalars().all():
        escrow += task.creator_stake + task.member_stake
        if not task.is_reward_claimed:
            escrow += task.reward
    return wallets + balances + fees + pending + escrow


async def _profile(session, identity) -> UserProfile:
    user = await session.get(UserProfile, identity)
    await session.refresh(user)
    return user


def _expired() -> datetime:
    return datetime.now(UTC) - timedelta(hours=13)


# ---------------------------------------------------------------------------
# Creation and activation
# ---------------------------------------------------------------------------


async def test_create_task_collects_reward(session, store, rail, creator):
    task = await tasks.create_task(session, store, rail, creator, "Write docs", 12, 3, 10 * UNIT)
    assert task["status"] == "created"
    assert task["value_category"] == "mid_low"
    assert task["reward"] == 10 * UNIT
    assert task["creator_stake"] == 0
    assert task["exists"] is True

    await session.refresh(creator)
    assert creator.wallet == 90 * UNIT
    assert (await _profile(session, creator.id)).tasks_created == 1


async def test_task_ids_increase(session, store, rail, creator):
    first = await tasks.create_task(session, store, rail, creator, "One", 12, 3, UNIT)
    second = await tasks.create_task(session, store, rail, creator, "Two", 12, 3, UNIT)
    assert second["id"] == first["id"] + 1


async def test_create_task_validation(session, store, rail, creator):
    with pytest.raises(InvalidInput):
        await tasks.create_task(session, store, rail, creator, "Too rich", 12, 3, 11 * UNIT)
    with pytest.raises(InvalidInput):
        await tasks.create_task(session, store, rail, creator, "Too many revisions", 12, 4, UNIT)
    with pytest.raises(InvalidInput):
        await tasks.create_task(session, store, rail, creator, "   ", 12, 3, UNIT)


async def test_create_task_requires_registration(session, store, rail):
    stranger = await make_account(session, name=None)
    with pytest.raises(NotFound):
        await tasks.create_task(session, store, rail, stranger, "Task", 12, 3, UNIT)


async def test_privileged_accounts_cannot_create(session, store, rail, owner):
    with pytest.raises(Unauthorized):
        await tasks.create_task(session, store, rail, owner, "Task", 12, 3, UNIT)


async def test_create_task_insufficient_wallet(session, store, rail):
    poor = await make_account(session, "poor", wallet=UNIT // 2)
    with pytest.raises(InsufficientFunds):
        await tasks.create_task(session, store, rail, poor, "Task", 12, 3, UNIT)


async def test_activate_stores_stake_minus_fee(session, store, rail, creator):
    task = await tasks.create_task(session, store, rail, creator, "Write docs", 12, 3, 10 * UNIT)

    with pytest.raises(InvalidInput, match="exactly"):
        await tasks.activate_task(session, store, rail, task["id"], creator, 1 * UNIT)

    active = await tasks.activate_task(session, store, rail, task["id"], creator, 2 * UNIT)
    assert active["status"] == "active"
    assert active["creator_stake"] == 1_900_000
    assert active["creator_stake_locked"] is True
    assert (await get_fees(session))["fee_collected"] == 100_000

    await session.refresh(creator)
    assert creator.wallet == 88 * UNIT

    with pytest.raises(InvalidState):
        await tasks.activate_task(session, store, rail, task["id"], creator, 2 * UNIT)


async def test_only_creator_activates(session, store, rail, creator, member):
    task = await tasks.create_task(session, store, rail, creator, "Write docs", 12, 3, 10 * UNIT)
    with pytest.raises(Unauthorized):
        await tasks.activate_task(session, store, rail, task["id"], member, 2 * UNIT)


async def test_registration_window_toggles(session, store, rail, creator):
    task = await tasks.create_task(session, store, rail, creator, "Write docs", 12, 3, 10 * UNIT)
    with pytest.raises(InvalidState):
        await tasks.open_registration(session, task["id"], creator)

    await tasks.activate_task(session, store, rail, task["id"], creator, 2 * UNIT)
    assert (await tasks.open_registration(session, task["id"], creator))["status"] == "open_registration"
    assert (await tasks.close_registration(session, task["id"], creator))["status"] == "active"
    assert (await tasks.open_registration(session, task["id"], creator))["status"] == "open_registration"


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


async def test_delete_refunds_reward_stake_and_applicants(session, store, rail, creator, member):
    before = await _total_value(session)
    task = await tasks.create_task(session, store, rail, creator, "Write docs", 12, 3, 10 * UNIT)
    await tasks.activate_task(session, store, rail, task["id"], creator, 2 * UNIT)
    await tasks.open_registration(session, task["id"], creator)
    await tasks.request_join_task(session, store, rail, task["id"], member, 5 * UNIT)
    await tasks.close_registration(session, task["id"], creator)

    deleted = await tasks.delete_task(session, task["id"], creator)
    assert deleted["status"] == "cancelled"
    assert deleted["exists"] is False

    assert await get_balance(session, creator.id) == 10 * UNIT + 1_900_000
    assert await get_balance(session, member.id) == 5 * UNIT
    assert await tasks.get_task(session, task["id"]) is None
    assert await _total_value(session) == before

    with pytest.raises(NotFound):
        await tasks.delete_task(session, task["id"], creator)


async def test_delete_created_task(session, store, rail, creator):
    task = await tasks.create_task(session, store, rail, creator, "Write docs", 12, 3, 10 * UNIT)
    await tasks.delete_task(session, task["id"], creator)
    assert await get_balance(session, creator.id) == 10 * UNIT


async def test_cannot_delete_in_progress(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member)
    with pytest.raises(InvalidState):
        await tasks.delete_task(session, task["id"], creator)


# ---------------------------------------------------------------------------
# Submission, revision, approval
# ---------------------------------------------------------------------------


async def test_happy_path_pays_member_and_conserves_value(session, store, rail, creator, member):
    before = await _total_value(session)
    task = await start_task(session, store, rail, creator, member)
    assert task["member_stake"] == 5 * UNIT
    assert await _total_value(session) == before

    sub = await tasks.request_submit_task(session, task["id"], member, "https://example.com/pr/1", "done")
    assert sub["status"] == "pending"
    assert sub["sender_id"] == member.id

    done = await tasks.approve_task(session, store, task["id"], creator)
    assert done["status"] == "completed"
    assert done["is_reward_claimed"] is True
    assert done["creator_stake"] == 0
    assert done["member_stake"] == 0
    assert done["creator_stake_locked"] is False
    assert done["member_stake_locked"] is False

    assert await get_balance(session, member.id) == 15 * UNIT
    assert await get_balance(session, creator.id) == 1_900_000
    assert await _total_value(session) == before

    creator_profile = await _profile(session, creator.id)
    member_profile = await _profile(session, member.id)
    assert creator_profile.reputation == 5
    assert member_profile.reputation == 2
    assert creator_profile.tasks_completed == 1
    assert member_profile.tasks_completed == 1

    submission = await tasks.get_submission(session, task["id"])
    assert submission["status"] == "accepted"
    assert submission["reference"] is None

    with pytest.raises(InvalidState):
        await tasks.approve_task(session, store, task["id"], creator)


async def test_only_member_submits(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member)
    with pytest.raises(Unauthorized):
        await tasks.request_submit_task(session, task["id"], creator, "https://example.com/x")


async def test_submit_twice_rejected(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member)
    await tasks.request_submit_task(session, task["id"], member, "https://example.com/x")
    with pytest.raises(InvalidState):
        await tasks.request_submit_task(session, task["id"], member, "https://example.com/y")


async def test_submit_after_deadline_rejected(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member, now=_expired())
    with pytest.raises(InvalidState, match="Deadline"):
        await tasks.request_submit_task(session, task["id"], member, "https://example.com/x")


async def test_approve_without_submission_rejected(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member)
    with pytest.raises(InvalidState):
        await tasks.approve_task(session, store, task["id"], creator)


async def test_revision_round_trip(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member)
    deadline = datetime.fromisoformat(task["deadline_at"])
    await tasks.request_submit_task(session, task["id"], member, "https://example.com/v1")

    with pytest.raises(InvalidInput):
        await tasks.request_revision(session, store, task["id"], creator, "Needs tests", 23)

    sub = await tasks.request_revision(session, store, task["id"], creator, "Needs tests", 24)
    assert sub["status"] == "revision_needed"
    assert sub["revision_time"] == 1
    assert sub["note"] == "Needs tests"
    assert datetime.fromisoformat(sub["new_deadline"]) == deadline + timedelta(hours=24)

    with pytest.raises(InvalidState):
        await tasks.request_submit_task(session, task["id"], member, "https://example.com/v2")

    sub = await tasks.resubmit_task(session, store, task["id"], member, "https://example.com/v2")
    assert sub["status"] == "pending"
    assert sub["reference"] == "https://example.com/v2"

    done = await tasks.approve_task(session, store, task["id"], creator)
    assert done["status"] == "completed"
    assert await get_balance(session, member.id) == 15 * UNIT


async def test_revision_costs_reputation(session, store, rail, creator, member):
    for identity in (creator.id, member.id):
        user = await session.get(UserProfile, identity)
        user.reputation = 12
    await session.commit()

    task = await start_task(session, store, rail, creator, member)
    await tasks.request_submit_task(session, task["id"], member, "https://example.com/v1")
    await tasks.request_revision(session, store, task["id"], creator, "Again", 24)

    assert (await _profile(session, creator.id)).reputation == 7
    assert (await _profile(session, member.id)).reputation == 7


async def test_revision_past_limit_completes_task(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member, max_revision=0)
    await tasks.request_submit_task(session, task["id"], member, "https://example.com/v1")

    result = await tasks.request_revision(session, store, task["id"], creator, "One more", 24)
    assert result["status"] == "completed"
    assert await get_balance(session, member.id) == 15 * UNIT


async def test_revision_rounds_end_with_final_resubmit(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member, max_revision=2)
    await tasks.request_submit_task(session, task["id"], member, "https://example.com/v1")

    await tasks.request_revision(session, store, task["id"], creator, "Round one", 24)
    sub = await tasks.resubmit_task(session, store, task["id"], member, "https://example.com/v2")
    assert sub["status"] == "pending"

    sub = await tasks.request_revision(session, store, task["id"], creator, "Round two", 24)
    assert sub["status"] == "revision_needed"
    assert sub["revision_time"] == 2

    result = await tasks.resubmit_task(session, store, task["id"], member, "https://example.com/v3")
    assert result["status"] == "completed"


async def test_resubmit_after_last_revision_completes(session, store, rail, creator, member):
    before = await _total_value(session)
    task = await start_task(session, store, rail, creator, member, max_revision=1)
    await tasks.request_submit_task(session, task["id"], member, "https://example.com/v1")
    await tasks.request_revision(session, store, task["id"], creator, "Round one", 24)

    result = await tasks.resubmit_task(session, store, task["id"], member, "https://example.com/v2")
    assert result["status"] == "completed"
    assert result["is_reward_claimed"] is True
    assert await get_balance(session, member.id) == 15 * UNIT
    assert await _total_value(session) == before

    submission = await session.get(TaskSubmission, task["id"])
    assert submission.status == "accepted"
    assert submission.revision_time == 1


async def test_final_resubmit_after_deadline_rejected(session, store, rail, creator, member):
    now = datetime.now(UTC)
    task = await start_task(session, store, rail, creator, member, max_revision=1, now=now)
    await tasks.request_submit_task(session, task["id"], member, "https://example.com/v1", now=now)
    sub = await tasks.request_revision(session, store, task["id"], creator, "Round one", 24)

    late = datetime.fromisoformat(sub["new_deadline"]) + timedelta(minutes=1)
    with pytest.raises(InvalidState):
        await tasks.resubmit_task(session, store, task["id"], member, "https://example.com/v2", now=late)


# ---------------------------------------------------------------------------
# Cancellation and deadline
# ---------------------------------------------------------------------------


async def test_member_cancel_pays_penalty_to_creator(session, store, rail, creator, member):
    before = await _total_value(session)
    task = await start_task(session, store, rail, creator, member)

    result = await tasks.cancel_by_me(session, store, task["id"], member)
    assert result["status"] == "cancelled"
    assert result["is_reward_claimed"] is True

    assert await get_balance(session, member.id) == 4_500_000
    assert await get_balance(session, creator.id) == 10 * UNIT + 1_900_000 + 500_000
    assert await _total_value(session) == before

    member_profile = await _profile(session, member.id)
    assert member_profile.reputation == 0
    assert member_profile.tasks_failed == 1


async def test_creator_cancel_pays_penalty_to_member(session, store, rail, creator, member):
    before = await _total_value(session)
    task = await start_task(session, store, rail, creator, member)

    await tasks.cancel_by_me(session, store, task["id"], creator)
    assert await get_balance(session, member.id) == 5 * UNIT + 190_000
    assert await get_balance(session, creator.id) == 10 * UNIT + 1_900_000 - 190_000
    assert await _total_value(session) == before
    assert (await _profile(session, creator.id)).tasks_failed == 1


async def test_outsider_cannot_cancel(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member)
    outsider = await make_account(session, "outsider")
    with pytest.raises(Unauthorized):
        await tasks.cancel_by_me(session, store, task["id"], outsider)


async def test_cancel_requires_in_progress(session, store, rail, creator):
    task = await tasks.create_task(session, store, rail, creator, "Write docs", 12, 3, 10 * UNIT)
    with pytest.raises(InvalidState):
        await tasks.cancel_by_me(session, store, task["id"], creator)


async def test_deadline_not_reached(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member)
    with pytest.raises(InvalidState, match="not reached"):
        await tasks.trigger_deadline(session, store, task["id"], member)


async def test_deadline_penalty_leaves_member_remainder(session, store, rail, creator, member):
    store.update(neg_penalty=20)
    before = await _total_value(session)
    task = await start_task(session, store, rail, creator, member, now=_expired())
    bystander = await make_account(session, "bystander")

    result = await tasks.trigger_deadline(session, store, task["id"], bystander)
    assert result["status"] == "cancelled"

    assert await get_balance(session, member.id) == 4 * UNIT
    assert await get_balance(session, creator.id) == 10 * UNIT + 1_900_000 + UNIT
    assert await get_balance(session, bystander.id) == 0
    assert await _total_value(session) == before

    for identity in (creator.id, member.id):
        profile = await _profile(session, identity)
        assert profile.reputation == 0
        assert profile.tasks_failed == 1


async def test_deadline_blocked_by_pending_submission(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member)
    await tasks.request_submit_task(session, task["id"], member, "https://example.com/v1")

    row = await session.get(Task, task["id"])
    row.deadline_at = _expired()
    await session.commit()

    with pytest.raises(InvalidState, match="pending"):
        await tasks.trigger_deadline(session, store, task["id"], creator)


async def test_unregistered_member_still_paid(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member)
    await tasks.request_submit_task(session, task["id"], member, "https://example.com/v1")
    await users.unregister(session, member)

    await tasks.approve_task(session, store, task["id"], creator)
    assert await get_balance(session, member.id) == 15 * UNIT
    assert await session.get(UserProfile, member.id) is None


# ---------------------------------------------------------------------------
# Queries and events
# ---------------------------------------------------------------------------


async def test_list_tasks_by_role(session, store, rail, creator, member):
    started = await start_task(session, store, rail, creator, member)
    await tasks.create_task(session, store, rail, creator, "Another", 12, 3, UNIT)

    assert (await tasks.list_tasks(session, creator.id, role="creator"))["total"] == 2
    mine = await tasks.list_tasks(session, member.id, role="member")
    assert [t["id"] for t in mine["tasks"]] == [started["id"]]
    assert (await tasks.list_tasks(session, member.id, role="any"))["total"] == 1
    assert (await tasks.list_tasks(session, status="created"))["total"] == 1

    with pytest.raises(InvalidInput):
        await tasks.list_tasks(session, creator.id, role="boss")
    with pytest.raises(InvalidInput):
        await tasks.list_tasks(session, status="bogus")


async def test_lifecycle_records_events(session, store, rail, creator, member):
    task = await start_task(session, store, rail, creator, member)
    await tasks.request_submit_task(session, task["id"], member, "https://example.com/v1")
    await tasks.approve_task(session, store, task["id"], creator)

    result = await session.execute(
        select(MarketEvent.kind).where(MarketEvent.task_id == task["id"]).order_by(MarketEvent.created_at)
    )
    kinds = list(result.scalars().all())
    assert kinds == [
        "task_created",
        "task_activated",
        "registration_opened",
        "join_requested",
        "join_approved",
        "submission_pending",
        "task_completed",
    ]


async def test_employee_can_still_work_on_tasks(session, store, rail, creator):
    staff = await make_account(session, "staff", role=Role.employee)
    task = await start_task(session, store, rail, creator, staff)
    assert task["member_id"] == staff.id
