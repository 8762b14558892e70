"""SQLModel table definitions for Stakework."""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import Column, Index, JSON
from sqlmodel import Field, SQLModel


class Role(str, enum.Enum):
    member = "member"
    employee = "employee"
    owner = "owner"


class TaskStatus(str, enum.Enum):
    created = "created"
    active = "active"
    open_registration = "open_registration"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class ValueCategory(str, enum.Enum):
    low = "low"
    mid_low = "mid_low"
    mid = "mid"
    mid_high = "mid_high"
    high = "high"
    ultra_high = "ultra_high"


class JoinRequestStatus(str, enum.Enum):
    request = "request"
    accepted = "accepted"
    rejected = "rejected"
    cancelled = "cancelled"


class SubmissionStatus(str, enum.Enum):
    none = "none"
    pending = "pending"
    revision_needed = "revision_needed"
    accepted = "accepted"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Account(SQLModel, table=True):
    __tablename__ = "accounts"

    id: str = Field(primary_key=True)
    key_hash: str
    key_fingerprint: str = Field(index=True)
    role: Role = Field(default=Role.member)
    wallet: int = Field(default=0)
    created_at: datetime = Field(default_factory=_utcnow)


class UserProfile(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True, foreign_key="accounts.id")
    name: str
    age: int | None = None
    github_url: str | None = None
    reputation: int = Field(default=0)
    tasks_created: int = Field(default=0)
    tasks_completed: int = Field(default=0)
    tasks_failed: int = Field(default=0)
    is_registered: bool = Field(default=True)
    registered_at: datetime = Field(default_factory=_utcnow)


class Task(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_status_created_at", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id: int | None = Field(default=None, primary_key=True)
    status: TaskStatus = Field(default=TaskStatus.created, index=True)
    value_category: ValueCategory
    creator_id: str = Field(foreign_key="accounts.id", index=True)
    member_id: str | None = Field(default=None, foreign_key="accounts.id", index=True)
    title: str
    reference: str | None = None
    reward: int
    creator_stake: int = Field(default=0)
    member_stake: int = Field(default=0)
    deadline_hours: int
    deadline_at: datetime | None = Field(default=None, index=True)
    max_revision: int
    creator_stake_locked: bool = Field(default=False)
    member_stake_locked: bool = Field(default=False)
    is_reward_claimed: bool = Field(default=False)
    exists: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class JoinRequest(SQLModel, table=True):
    __tablename__ = "join_requests"
    __table_args__ = (
        Index("ix_join_requests_task_applicant", "task_id", "applicant_id"),
        {"sqlite_autoincrement": True},
    )

    seq: int | None = Field(default=None, primary_key=True)
    task_id: int = Field(foreign_key="tasks.id", index=True)
    applicant_id: str = Field(foreign_key="accounts.id")
    stake_amount: int
    status: JoinRequestStatus = Field(default=JoinRequestStatus.request)
    is_pending: bool = Field(default=True)
    has_withdrawn: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utcnow)


class TaskSubmission(SQLModel, table=True):
    __tablename__ = "task_submissions"

    task_id: int = Field(primary_key=True, foreign_key="tasks.id")
    reference: str | None = None
    sender_id: str | None = Field(default=None, foreign_key="accounts.id")
    note: str | None = None
    status: SubmissionStatus = Field(default=SubmissionStatus.none)
    revision_time: int = Field(default=0)
    new_deadline: datetime | None = None
    updated_at: datetime = Field(default_factory=_utcnow)


class Balance(SQLModel, table=True):
    __tablename__ = "balances"

    identity: str = Field(primary_key=True, foreign_key="accounts.id")
    amount: int = Field(default=0)


class LedgerEntry(SQLModel, table=True):
    __tablename__ = "ledger_entries"
    __table_args__ = (Index("ix_ledger_entries_identity_created", "identity", "created_at"),)

    id: str = Field(primary_key=True)
    identity: str = Field(foreign_key="accounts.id", index=True)
    amount: int  # positive for credits, negative for withdrawals
    reason: str
    task_id: int | None = Field(default=None, foreign_key="tasks.id")
    created_at: datetime = Field(default_factory=_utcnow)


class Treasury(SQLModel, table=True):
    __tablename__ = "treasury"

    id: str = Field(primary_key=True)
    fee_collected: int = Field(default=0)
    fee_swept: int = Field(default=0)


class MarketEvent(SQLModel, table=True):
    __tablename__ = "market_events"

    id: str = Field(primary_key=True)
    kind: str = Field(index=True)
    task_id: int | None = Field(default=None, index=True)
    actor_id: str | None = None
    data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utcnow, index=True)
