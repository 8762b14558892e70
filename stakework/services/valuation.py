"""Task valuation: weighted score -> value category -> required creator stake.

    score = reward_score * reward_units + revision_score * max_revision
            - reputation_score * reputation - deadline_score * deadline_hours

The score is floored at zero and compared against the ascending category
thresholds scaled by the weight total, so a score of 230 with thresholds
``[1, 2, 3, ...]`` lands in ``mid`` (200 < 230 <= 300).
"""

from __future__ import annotations

from dataclasses import dataclass

from stakework.db_models import ValueCategory
from stakework.parameters import UNIT, WEIGHT_TOTAL, MarketParameters, ParameterStore

CATEGORY_ORDER = [
    ValueCategory.low,
    ValueCategory.mid_low,
    ValueCategory.mid,
    ValueCategory.mid_high,
    ValueCategory.high,
    ValueCategory.ultra_high,
]


@dataclass(frozen=True)
class Valuation:
    score: int
    category: ValueCategory
    creator_stake: int


def value_score(
    params: MarketParameters,
    deadline_hours: int,
    max_revision: int,
    reward: int,
    reputation: int,
) -> int:
    score = (
        params.reward_score * (reward // UNIT)
        + params.revision_score * max_revision
        - params.reputation_score * reputation
        - params.deadline_score * deadline_hours
    )
    return max(score, 0)


def categorize(params: MarketParameters, score: int) -> ValueCategory:
    for category, threshold in zip(CATEGORY_ORDER[:-1], params.category_thresholds):
        if score <= threshold * WEIGHT_TOTAL:
            return category
    return ValueCategory.ultra_high


def creator_stake_for(store: ParameterStore, category: ValueCategory) -> int:
    return store.stake_tier(CATEGORY_ORDER.index(ValueCategory(category)))


def evaluate(
    store: ParameterStore,
    deadline_hours: int,
    max_revision: int,
    reward: int,
    reputation: int,
) -> Valuation:
    params = store.current
    score = value_score(params, deadline_hours, max_revision, reward, reputation)
    category = categorize(params, score)
    return Valuation(score=score, category=category, creator_stake=creator_stake_for(store, category))
