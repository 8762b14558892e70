"""Test join request bookkeeping: ordering, one pending per applicant, resolution."""

from __future__ import annotations

import pytest

from stakework.db_models import JoinRequestStatus
from stakework.errors import AlreadyExists, InvalidInput, InvalidState, NotFound, Unauthorized
from stakework.parameters import UNIT
from stakework.services import join_requests, tasks
from stakework.services.ledger import get_balance
from stakework.services.valuation import creator_stake_for
from tests.conftest import make_account


async def _open_task(session, store, rail, creator, reward=10 * UNIT) -> dict:
    task = await tasks.create_task(session, store, rail, creator, "Fix the bug", 12, 3, reward)
    await tasks.activate_task(session, store, rail, task["id"], creator, creator_stake_for(store, task["value_category"]))
    return await tasks.open_registration(session, task["id"], creator)


async def test_requests_keep_insertion_order(session, store, rail, creator):
    task = await _open_task(session, store, rail, creator)
    applicants = [await make_account(session, f"applicant-{i}") for i in range(3)]
    for a in applicants:
        await tasks.request_join_task(session, store, rail, task["id"], a, 5 * UNIT)

    listed = await tasks.get_join_requests(session, task["id"])
    assert [r["applicant_id"] for r in listed] == [a.id for a in applicants]
    assert [r["seq"] for r in listed] == sorted(r["seq"] for r in listed)
    assert all(r["is_pending"] for r in listed)


async def test_duplicate_pending_request_rejected(session, store, rail, creator, member):
    task = await _open_task(session, store, rail, creator)
    await tasks.request_join_task(session, store, rail, task["id"], member, 5 * UNIT)
    with pytest.raises(AlreadyExists):
        await join_requests.append_request(session, task["id"], member.id, 5 * UNIT)


async def test_wrong_member_stake_rejected(session, store, rail, creator, member):
    task = await _open_task(session, store, rail, creator)
    with pytest.raises(InvalidInput, match="exactly"):
        await tasks.request_join_task(session, store, rail, task["id"], member, 4 * UNIT)


async def test_creator_cannot_join_own_task(session, store, rail, creator):
    task = await _open_task(session, store, rail, creator)
    with pytest.raises(Unauthorized):
        await tasks.request_join_task(session, store, rail, task["id"], creator, 5 * UNIT)


async def test_unregistered_applicant_rejected(session, store, rail, creator):
    task = await _open_task(session, store, rail, creator)
    stranger = await make_account(session, name=None)
    with pytest.raises(NotFound):
        await tasks.request_join_task(session, store, rail, task["id"], stranger, 5 * UNIT)


async def test_join_requires_open_registration(session, store, rail, creator, member):
    task = await _open_task(session, store, rail, creator)
    await tasks.close_registration(session, task["id"], creator)
    with pytest.raises(InvalidState):
        await tasks.request_join_task(session, store, rail, task["id"], member, 5 * UNIT)


async def test_withdraw_refunds_stake_to_balance(session, store, rail, creator, member):
    task = await _open_task(session, store, rail, creator)
    await tasks.request_join_task(session, store, rail, task["id"], member, 5 * UNIT)
    await session.refresh(member)
    assert member.wallet == 95 * UNIT

    req = await tasks.withdraw_join_request(session, task["id"], member)
    assert req["status"] == JoinRequestStatus.cancelled.value
    assert req["has_withdrawn"] is True
    assert req["is_pending"] is False
    assert req["stake_amount"] == 0
    assert await get_balance(session, member.id) == 5 * UNIT


async def test_request_resolves_only_once(session, store, rail, creator, member):
    task = await _open_task(session, store, rail, creator)
    await tasks.request_join_task(session, store, rail, task["id"], member, 5 * UNIT)
    await tasks.reject_join_request(session, task["id"], member.id, creator)

    with pytest.raises(NotFound):
        await tasks.withdraw_join_request(session, task["id"], member)
    with pytest.raises(NotFound):
        await tasks.approve_join_request(session, task["id"], member.id, creator)
    assert await get_balance(session, member.id) == 5 * UNIT


async def test_rejected_applicant_can_apply_again(session, store, rail, creator, member):
    task = await _open_task(session, store, rail, creator)
    await tasks.request_join_task(session, store, rail, task["id"], member, 5 * UNIT)
    await tasks.reject_join_request(session, task["id"], member.id, creator)
    await tasks.request_join_task(session, store, rail, task["id"], member, 5 * UNIT)

    listed = await tasks.get_join_requests(session, task["id"])
    assert [r["status"] for r in listed] == ["rejected", "request"]


async def test_only_creator_rejects(session, store, rail, creator, member):
    task = await _open_task(session, store, rail, creator)
    await tasks.request_join_task(session, store, rail, task["id"], member, 5 * UNIT)
    with pytest.raises(Unauthorized):
        await tasks.reject_join_request(session, task["id"], member.id, member)


async def test_approve_moves_stake_into_task(session, store, rail, creator, member):
    task = await _open_task(session, store, rail, creator)
    other = await make_account(session, "other")
    await tasks.request_join_task(session, store, rail, task["id"], member, 5 * UNIT)
    await tasks.request_join_task(session, store, rail, task["id"], other, 5 * UNIT)

    result = await tasks.approve_join_request(session, task["id"], member.id, creator)
    assert result["status"] == "in_progress"
    assert result["member_id"] == member.id
    assert result["member_stake"] == 5 * UNIT
    assert result["member_stake_locked"] is True
    assert result["deadline_at"] is not None

    # The other applicant stays pending and can still withdraw
    await tasks.withdraw_join_request(session, task["id"], other)
    assert await get_balance(session, other.id) == 5 * UNIT
