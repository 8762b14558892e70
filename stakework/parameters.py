"""Market parameters: weights, stake tiers, reputation deltas, penalties.

The core reads these through a ParameterStore instance that is handed to the
services explicitly (held on ``app.state`` by the HTTP layer). Only the owner
can replace values, and every replacement is validated as a whole.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, ValidationError, model_validator

from stakework.config import Settings
from stakework.errors import InvalidInput

logger = logging.getLogger("stakework.parameters")

# Micro-units per unit of the native currency
UNIT = 1_000_000

WEIGHT_TOTAL = 100

CATEGORY_COUNT = 6


class MarketParameters(BaseModel):
    reward_score: int = Field(ge=0, le=WEIGHT_TOTAL)
    reputation_score: int = Field(ge=0, le=WEIGHT_TOTAL)
    deadline_score: int = Field(ge=0, le=WEIGHT_TOTAL)
    revision_score: int = Field(ge=0, le=WEIGHT_TOTAL)
    stake_tiers: list[int]  # whole units, Low..UltraHigh
    category_thresholds: list[int]  # ascending, Low..UltraHigh
    cancel_by_me_rp: int = Field(ge=0)
    revision_rp: int = Field(ge=0)
    task_accept_creator_rp: int = Field(ge=0)
    task_accept_member_rp: int = Field(ge=0)
    deadline_hit_creator_rp: int = Field(ge=0)
    deadline_hit_member_rp: int = Field(ge=0)
    max_stake_units: int = Field(ge=1)
    max_reward_units: int = Field(ge=1)
    min_revision_hours: int = Field(ge=0)
    neg_penalty: int = Field(ge=0, le=100)
    fee_percentage: int = Field(ge=0, le=100)
    max_revision: int = Field(ge=0)
    member_stake_percent: int = Field(ge=0, le=100)
    max_reputation: int = Field(ge=1)

    @model_validator(mode="after")
    def check_consistency(self) -> MarketParameters:
        weights = self.reward_score + self.reputation_score + self.deadline_score + self.revision_score
        if weights != WEIGHT_TOTAL:
            raise ValueError(f"Weights must sum to {WEIGHT_TOTAL}, got {weights}")
        for name in ("stake_tiers", "category_thresholds"):
            values = getattr(self, name)
            if len(values) != CATEGORY_COUNT:
                raise ValueError(f"{name} needs exactly {CATEGORY_COUNT} values")
            if any(v < 0 for v in values):
                raise ValueError(f"{name} must be non-negative")
            if any(a > b for a, b in zip(values, values[1:])):
                raise ValueError(f"{name} must be ascending")
        return self

    @property
    def max_stake(self) -> int:
        return self.max_stake_units * UNIT

    @property
    def max_reward(self) -> int:
        return self.max_reward_units * UNIT

    @classmethod
    def from_settings(cls, s: Settings) -> MarketParameters:
        return cls(**{name: getattr(s, name) for name in cls.model_fields})


class ParameterStore:
    """Read-only view of the current MarketParameters, replaceable by the owner."""

    def __init__(self, params: MarketParameters):
        self._params = params

    @classmethod
    def from_settings(cls, s: Settings) -> ParameterStore:
        return cls(MarketParameters.from_settings(s))

    @property
    def current(self) -> MarketParameters:
        return self._params

    def stake_tier(self, index: int) -> int:
        return self._params.stake_tiers[index] * UNIT

    def member_stake_for(self, reward: int) -> int:
        return reward * self._params.member_stake_percent // 100

    def prepare(self, **changes) -> tuple[MarketParameters, dict]:
        """Validate a partial update without applying it. Returns (parameters, changed fields)."""
        unknown = set(changes) - set(MarketParameters.model_fields)
        if unknown:
            raise InvalidInput(f"Unknown parameters: {', '.join(sorted(unknown))}")

        merged = self._params.model_dump()
        merged.update(changes)
        try:
            new_params = MarketParameters(**merged)
        except ValidationError as e:
            raise InvalidInput(f"Invalid parameters: {e.errors()[0]['msg']}") from e

        old = self._params.model_dump()
        changed = {k: v for k, v in new_params.model_dump().items() if old[k] != v}
        return new_params, changed

    def replace(self, params: MarketParameters) -> None:
        self._params = params

    def update(self, **changes) -> dict:
        """Validate and apply a partial update. Returns the changed fields."""
        new_params, changed = self.prepare(**changes)
        self.replace(new_params)
        if changed:
            logger.info("Market parameters updated: %s", changed)
        return changed
