from __future__ import annotations

from .domain import PricingRule

# Inclusive cabin-count bands; group booking starts at 3 cabins.
_TIERS = (
    (11, None, "11+", "group_discount_11_plus"),
    (6, 10, "6-10", "group_discount_6_to_10"),
    (3, 5, "3-5", "group_discount_3_to_5"),
)


def group_tier(num_cabins: int) -> str | None:
    for low, high, label, _knob in _TIERS:
        if num_cabins >= low and (high is None or num_cabins <= high):
            return label
    return None


def group_discount_rate(num_cabins: int, rule: PricingRule) -> float:
    """Discount fraction (0-1) for booking `num_cabins` together."""
    for low, high, _label, knob in _TIERS:
        if num_cabins >= low and (high is None or num_cabins <= high):
            return min(1.0, max(0.0, rule.knob(knob)))
    return 0.0
