"""
Attribution Calculation Engine
==============================

Pure functions that turn the touchpoints of one deal into partner shares
(0-100 percent). One function per attribution model:

1. equal_split  - every unique partner gets 100 / N
2. first_touch  - partner of the earliest touchpoint gets 100
3. last_touch   - partner of the latest touchpoint gets 100
4. time_decay   - exp(-lambda * days_ago) per touchpoint, normalized
5. role_based   - per-type credit (or explicit weight), normalized

Models are looked up in MODEL_REGISTRY, so a new model only needs a
register_model() call. Nothing here touches storage; converting shares to
money and persisting them is the materializer's job.

Shares are rounded to 2 decimals per partner, independently. The sum can
therefore drift from exactly 100 by a few hundredths.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from exceptions import ValidationError
from models import (
    AttributionModel,
    PartnerShare,
    Touchpoint,
    DEFAULT_ROLE_WEIGHTS,
    DEFAULT_TIME_DECAY_LAMBDA,
    FALLBACK_ROLE_WEIGHT,
    parse_model,
)
from utils import days_between, round_to_cents

ModelFunction = Callable[..., List[PartnerShare]]


@dataclass
class ModelStrategy:
    func: ModelFunction
    description: str


# Keyed by model identifier string
MODEL_REGISTRY: Dict[str, ModelStrategy] = {}


def model_key(model) -> str:
    """Identifier string for an AttributionModel member or a custom model name."""
    return model.value if isinstance(model, AttributionModel) else str(model)


def register_model(model, func: ModelFunction, description: str) -> None:
    """Register (or replace) the strategy used for a model."""
    MODEL_REGISTRY[model_key(model)] = ModelStrategy(func=func, description=description)


def get_all_models() -> List:
    """All registered models, in registration order."""
    return [parse_model(key) or key for key in MODEL_REGISTRY]


def is_registered(model) -> bool:
    return model_key(model) in MODEL_REGISTRY


def get_model_description(model) -> str:
    strategy = MODEL_REGISTRY.get(model_key(model))
    return strategy.description if strategy else "Unknown model"


def calculate_shares(
    model,
    touchpoints: List[Touchpoint],
    reference_time: Optional[datetime] = None,
    **options
) -> List[PartnerShare]:
    """
    Main entry point: run one model over a deal's touchpoints.

    Args:
        model: Attribution model identifier
        touchpoints: All touchpoints of one deal
        reference_time: Instant time_decay measures touchpoint age from
        **options: Model-specific options (decay_lambda, role_weights)

    Returns:
        One PartnerShare per credited partner (empty for no touchpoints)
    """
    strategy = MODEL_REGISTRY.get(model_key(model))
    if strategy is None:
        raise ValidationError(f"Unknown attribution model: {model}", field="model", value=model)
    return strategy.func(touchpoints, reference_time=reference_time, **options)


# ============================================================================
# Calculation Methods (one per attribution model)
# ============================================================================

def equal_split(touchpoints: List[Touchpoint], reference_time=None, **options) -> List[PartnerShare]:
    """
    Divide 100% evenly among unique partners.

    Example: 3 partners → 33.33% each
    """
    if not touchpoints:
        return []

    partner_ids = list(dict.fromkeys(tp.partner_id for tp in touchpoints))
    percentage = round_to_cents(100 / len(partner_ids))
    return [PartnerShare(partner_id=pid, percentage=percentage) for pid in partner_ids]


def first_touch(touchpoints: List[Touchpoint], reference_time=None, **options) -> List[PartnerShare]:
    """
    100% credit to the earliest touchpoint.

    Ties go to whichever tied touchpoint comes first in the list.
    """
    if not touchpoints:
        return []

    earliest = min(touchpoints, key=lambda tp: tp.timestamp)
    return [PartnerShare(partner_id=earliest.partner_id, percentage=100.0)]


def last_touch(touchpoints: List[Touchpoint], reference_time=None, **options) -> List[PartnerShare]:
    """
    100% credit to the most recent touchpoint.

    Ties go to whichever tied touchpoint comes first in the list.
    """
    if not touchpoints:
        return []

    latest = max(touchpoints, key=lambda tp: tp.timestamp)
    return [PartnerShare(partner_id=latest.partner_id, percentage=100.0)]


def time_decay(
    touchpoints: List[Touchpoint],
    reference_time: Optional[datetime] = None,
    decay_lambda: float = DEFAULT_TIME_DECAY_LAMBDA,
    **options
) -> List[PartnerShare]:
    """
    More recent touchpoints get more credit (exponential decay).

    Formula: weight = exp(-lambda * days_ago), days_ago measured back from
    reference_time. Weights are summed per partner and normalized to 100.

    Ages are taken relative to the most recent touchpoint before
    exponentiating, so the newest weight is exactly 1. Touchpoints far in
    the past, or dated after reference_time, still sum to 100.

    Example: touchpoints at day 0 (A) and day 10 (B), reference day 10,
    lambda 0.1 → A ≈ 26.89%, B ≈ 73.11%
    """
    if not touchpoints:
        return []
    if reference_time is None:
        raise ValueError("time_decay requires a reference_time")
    if decay_lambda < 0:
        raise ValueError(f"decay_lambda must be non-negative (got {decay_lambda})")

    ages = [(tp, days_between(tp.timestamp, reference_time)) for tp in touchpoints]
    # Constant shift; cancels in normalization
    min_days = min(days_ago for _, days_ago in ages)

    partner_weights: Dict[str, float] = {}
    for tp, days_ago in ages:
        weight = math.exp(-decay_lambda * (days_ago - min_days))
        partner_weights[tp.partner_id] = partner_weights.get(tp.partner_id, 0.0) + weight

    return _normalize(partner_weights)


def role_based(
    touchpoints: List[Touchpoint],
    reference_time=None,
    role_weights: Optional[Dict[str, float]] = None,
    **options
) -> List[PartnerShare]:
    """
    Weight by touchpoint type.

    Each touchpoint scores its explicit weight if set, else the weight of its
    type, else FALLBACK_ROLE_WEIGHT. Scores are summed per partner and
    normalized to 100.
    """
    if not touchpoints:
        return []

    weights = role_weights if role_weights is not None else DEFAULT_ROLE_WEIGHTS

    partner_scores: Dict[str, float] = {}
    for tp in touchpoints:
        score = touchpoint_role_weight(tp, weights)
        partner_scores[tp.partner_id] = partner_scores.get(tp.partner_id, 0.0) + score

    return _normalize(partner_scores)


def touchpoint_role_weight(tp: Touchpoint, weights: Optional[Dict[str, float]] = None) -> float:
    """Credit a single touchpoint contributes under role_based."""
    if tp.weight is not None:
        return float(tp.weight)
    weights = weights if weights is not None else DEFAULT_ROLE_WEIGHTS
    return float(weights.get(tp.type, FALLBACK_ROLE_WEIGHT))


def _normalize(partner_values: Dict[str, float]) -> List[PartnerShare]:
    """Convert per-partner totals to percentages of the grand total."""
    total = sum(partner_values.values())
    if total <= 0:
        return []

    return [
        PartnerShare(partner_id=pid, percentage=round_to_cents(value / total * 100))
        for pid, value in partner_values.items()
    ]


# ============================================================================
# Explanations
# ============================================================================

def explain_share(model: AttributionModel, share: PartnerShare, touchpoints: List[Touchpoint]) -> str:
    """
    Generate human-readable explanation of how a share was calculated.
    """
    model = parse_model(model) or model
    partner_tps = [tp for tp in touchpoints if tp.partner_id == share.partner_id]
    partner_count = len({tp.partner_id for tp in touchpoints})

    if model == AttributionModel.EQUAL_SPLIT:
        return f"Equal split among {partner_count} partners → {share.percentage:.2f}%"

    elif model == AttributionModel.FIRST_TOUCH:
        return "First touch (earliest partner) → 100%"

    elif model == AttributionModel.LAST_TOUCH:
        return "Last touch (most recent partner) → 100%"

    elif model == AttributionModel.TIME_DECAY:
        return f"Time decay over {len(partner_tps)} touchpoints → {share.percentage:.2f}%"

    elif model == AttributionModel.ROLE_BASED:
        types = ", ".join(tp.type for tp in partner_tps)
        return f"Role-based: {types} → {share.percentage:.2f}%"

    return f"{model} → {share.percentage:.2f}%"


register_model(
    AttributionModel.EQUAL_SPLIT, equal_split,
    "Each partner gets an equal share of credit"
)
register_model(
    AttributionModel.FIRST_TOUCH, first_touch,
    "100% credit to the first partner who touched the deal"
)
register_model(
    AttributionModel.LAST_TOUCH, last_touch,
    "100% credit to the last partner who touched the deal"
)
register_model(
    AttributionModel.TIME_DECAY, time_decay,
    "More recent touchpoints get higher weight (exponential decay)"
)
register_model(
    AttributionModel.ROLE_BASED, role_based,
    "Different touchpoint types have different weights"
)
