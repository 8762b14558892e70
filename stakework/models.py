"""Pydantic models for request/response schemas."""

from __future__ import annotations

from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from stakework.db_models import Role


def _validate_reference(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError("Reference must be an http(s) URL")
    return url


class ErrorResponse(BaseModel):
    error: str


class AccountResponse(BaseModel):
    account_id: str
    api_key: str
    wallet: int
    message: str = "SAVE YOUR API KEY. It cannot be recovered."


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    age: int | None = Field(default=None, ge=0, le=150)
    github_url: str | None = Field(default=None, max_length=2000)

    @field_validator("github_url")
    @classmethod
    def validate_github_url(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_reference(v)


class UserResponse(BaseModel):
    id: str
    name: str
    age: int | None = None
    github_url: str | None = None
    reputation: int
    tasks_created: int
    tasks_completed: int
    tasks_failed: int
    is_registered: bool


class MeResponse(BaseModel):
    account_id: str
    role: str
    wallet: int
    balance: int
    user: UserResponse | None = None


class TaskCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=500)
    reference: str | None = Field(default=None, max_length=2000)
    deadline_hours: int = Field(ge=1, le=24 * 365)
    max_revision: int = Field(ge=0)
    value: int = Field(ge=1, description="Reward in micro-units, sent with the call")

    @field_validator("reference")
    @classmethod
    def validate_reference(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_reference(v)


class ValueRequest(BaseModel):
    value: int = Field(ge=0, description="Amount in micro-units sent with the call")


class SubmitRequest(BaseModel):
    reference: str = Field(min_length=1, max_length=2000)
    note: str | None = Field(default=None, max_length=10_000)

    @field_validator("reference")
    @classmethod
    def validate_reference(cls, v: str) -> str:
        return _validate_reference(v)


class RevisionRequest(BaseModel):
    note: str = Field(min_length=1, max_length=10_000)
    extra_hours: int = Field(ge=0, le=24 * 365)


class TaskResponse(BaseModel):
    id: int
    status: str
    value_category: str
    creator_id: str
    member_id: str | None = None
    title: str
    reference: str | None = None
    reward: int
    creator_stake: int
    member_stake: int
    deadline_hours: int
    deadline_at: str | None = None
    max_revision: int
    creator_stake_locked: bool
    member_stake_locked: bool
    is_reward_claimed: bool
    exists: bool


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]
    total: int


class JoinRequestResponse(BaseModel):
    seq: int
    task_id: int
    applicant_id: str
    stake_amount: int
    status: str
    is_pending: bool
    has_withdrawn: bool
    created_at: str | None = None


class SubmissionResponse(BaseModel):
    task_id: int
    reference: str | None = None
    sender_id: str | None = None
    note: str | None = None
    status: str
    revision_time: int
    new_deadline: str | None = None


class LedgerEntryResponse(BaseModel):
    id: str
    amount: int
    reason: str
    task_id: int | None = None
    created_at: str | None = None


class BalanceResponse(BaseModel):
    balance: int
    total: int
    ledger: list[LedgerEntryResponse]


class WithdrawResponse(BaseModel):
    identity: str
    withdrawn: int
    balance: int


class FeesResponse(BaseModel):
    fee_collected: int
    fee_swept: int


class SweepResponse(BaseModel):
    swept: int
    fee_swept: int


class GrantRequest(BaseModel):
    account_id: str
    amount: int = Field(ge=1)


class RoleRequest(BaseModel):
    account_id: str
    role: Role
