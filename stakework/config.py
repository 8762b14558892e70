from __future__ import annotations

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "data/stakework.db"
    host: str = "0.0.0.0"
    port: int = 8000
    admin_key: str | None = None
    treasury_account_id: str = "ac-treasury"
    initial_wallet_units: int = 0  # signup allowance, in-app wallet rail only
    payout_webhook_url: str | None = None
    payout_timeout_seconds: int = 10
    rate_limit_enabled: bool = True
    rate_limit_register: str = "5/hour"
    rate_limit_create: str = "30/minute"
    rate_limit_write: str = "60/minute"
    rate_limit_read: str = "120/minute"
    rate_limit_admin: str = "30/minute"

    # Market parameter defaults, copied into the ParameterStore at startup
    reward_score: int = 40
    reputation_score: int = 30
    deadline_score: int = 20
    revision_score: int = 10
    stake_tiers: list[int] = [1, 2, 3, 4, 5, 10]
    category_thresholds: list[int] = [1, 2, 3, 4, 5, 10]
    cancel_by_me_rp: int = 10
    revision_rp: int = 5
    task_accept_creator_rp: int = 5
    task_accept_member_rp: int = 2
    deadline_hit_creator_rp: int = 20
    deadline_hit_member_rp: int = 20
    max_stake_units: int = 10
    max_reward_units: int = 10
    min_revision_hours: int = 24
    neg_penalty: int = 10
    fee_percentage: int = 5
    max_revision: int = 3
    member_stake_percent: int = 50
    max_reputation: int = 1_000_000

    model_config = {"env_prefix": "STAKEWORK_"}

    @model_validator(mode="after")
    def check_wallet_funding(self) -> Settings:
        # An allowance nobody deposited must never leave through an external payout
        if self.payout_webhook_url and self.initial_wallet_units > 0:
            raise ValueError("initial_wallet_units must be 0 when payout_webhook_url is set")
        return self


settings = Settings()
