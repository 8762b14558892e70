"""Initial schema.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- accounts ---
    op.create_table(
        "accounts",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("key_hash", sa.VARCHAR(), nullable=False),
        sa.Column("key_fingerprint", sa.VARCHAR(), nullable=False),
        sa.Column("role", sa.VARCHAR(), nullable=False, server_default="member"),
        sa.Column("wallet", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_accounts_key_fingerprint", "accounts", ["key_fingerprint"])

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("name", sa.VARCHAR(), nullable=False),
        sa.Column("age", sa.INTEGER(), nullable=True),
        sa.Column("github_url", sa.VARCHAR(), nullable=True),
        sa.Column("reputation", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("tasks_created", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("tasks_completed", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("tasks_failed", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("is_registered", sa.BOOLEAN(), nullable=False, server_default="1"),
        sa.Column("registered_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["id"], ["accounts.id"]),
    )

    # --- tasks ---
    op.create_table(
        "tasks",
        sa.Column("id", sa.INTEGER(), autoincrement=True, nullable=False),
        sa.Column("status", sa.VARCHAR(), nullable=False, server_default="created"),
        sa.Column("value_category", sa.VARCHAR(), nullable=False),
        sa.Column("creator_id", sa.VARCHAR(), nullable=False),
        sa.Column("member_id", sa.VARCHAR(), nullable=True),
        sa.Column("title", sa.VARCHAR(), nullable=False),
        sa.Column("reference", sa.VARCHAR(), nullable=True),
        sa.Column("reward", sa.INTEGER(), nullable=False),
        sa.Column("creator_stake", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("member_stake", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("deadline_hours", sa.INTEGER(), nullable=False),
        sa.Column("deadline_at", sa.DATETIME(), nullable=True),
        sa.Column("max_revision", sa.INTEGER(), nullable=False),
        sa.Column("creator_stake_locked", sa.BOOLEAN(), nullable=False, server_default="0"),
        sa.Column("member_stake_locked", sa.BOOLEAN(), nullable=False, server_default="0"),
        sa.Column("is_reward_claimed", sa.BOOLEAN(), nullable=False, server_default="0"),
        sa.Column("exists", sa.BOOLEAN(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["creator_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["member_id"], ["accounts.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_creator_id", "tasks", ["creator_id"])
    op.create_index("ix_tasks_member_id", "tasks", ["member_id"])
    op.create_index("ix_tasks_deadline_at", "tasks", ["deadline_at"])
    op.create_index("ix_tasks_status_created_at", "tasks", ["status", "created_at"])

    # --- join_requests ---
    op.create_table(
        "join_requests",
        sa.Column("seq", sa.INTEGER(), autoincrement=True, nullable=False),
        sa.Column("task_id", sa.INTEGER(), nullable=False),
        sa.Column("applicant_id", sa.VARCHAR(), nullable=False),
        sa.Column("stake_amount", sa.INTEGER(), nullable=False),
        sa.Column("status", sa.VARCHAR(), nullable=False, server_default="request"),
        sa.Column("is_pending", sa.BOOLEAN(), nullable=False, server_default="1"),
        sa.Column("has_withdrawn", sa.BOOLEAN(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
        sa.ForeignKeyConstraint(["applicant_id"], ["accounts.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_join_requests_task_id", "join_requests", ["task_id"])
    op.create_index("ix_join_requests_task_applicant", "join_requests", ["task_id", "applicant_id"])

    # --- task_submissions ---
    op.create_table(
        "task_submissions",
        sa.Column("task_id", sa.INTEGER(), nullable=False),
        sa.Column("reference", sa.VARCHAR(), nullable=True),
        sa.Column("sender_id", sa.VARCHAR(), nullable=True),
        sa.Column("note", sa.VARCHAR(), nullable=True),
        sa.Column("status", sa.VARCHAR(), nullable=False, server_default="none"),
        sa.Column("revision_time", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("new_deadline", sa.DATETIME(), nullable=True),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
        sa.ForeignKeyConstraint(["sender_id"], ["accounts.id"]),
    )

    # --- balances ---
    op.create_table(
        "balances",
        sa.Column("identity", sa.VARCHAR(), nullable=False),
        sa.Column("amount", sa.INTEGER(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("identity"),
        sa.ForeignKeyConstraint(["identity"], ["accounts.id"]),
    )

    # --- ledger_entries ---
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("identity", sa.VARCHAR(), nullable=False),
        sa.Column("amount", sa.INTEGER(), nullable=False),
        sa.Column("reason", sa.VARCHAR(), nullable=False),
        sa.Column("task_id", sa.INTEGER(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["identity"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
    )
    op.create_index("ix_ledger_entries_identity", "ledger_entries", ["identity"])
    op.create_index("ix_ledger_entries_identity_created", "ledger_entries", ["identity", "created_at"])

    # --- treasury ---
    op.create_table(
        "treasury",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("fee_collected", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("fee_swept", sa.INTEGER(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )

    # --- market_events ---
    op.create_table(
        "market_events",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("kind", sa.VARCHAR(), nullable=False),
        sa.Column("task_id", sa.INTEGER(), nullable=True),
        sa.Column("actor_id", sa.VARCHAR(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_market_events_kind", "market_events", ["kind"])
    op.create_index("ix_market_events_task_id", "market_events", ["task_id"])
    op.create_index("ix_market_events_created_at", "market_events", ["created_at"])


def downgrade() -> None:
    op.drop_table("market_events")
    op.drop_table("treasury")
    op.drop_table("ledger_entries")
    op.drop_table("balances")
    op.drop_table("task_submissions")
    op.drop_table("join_requests")
    op.drop_table("tasks")
    op.drop_table("users")
    op.drop_table("accounts")
