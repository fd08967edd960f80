from __future__ import annotations

import logging

from .domain import InventoryStatus, PricingRule
from .stores import InventoryStore

logger = logging.getLogger(__name__)

# (threshold knob, multiplier knob, level), most scarce first.
_BANDS = (
    ("inventory_threshold_low", "price_multiplier_low", "low"),
    ("inventory_threshold_medium", "price_multiplier_medium", "medium"),
    ("inventory_threshold_high", "price_multiplier_high", "high"),
)


def status_for(total: int, remaining: int, rule: PricingRule) -> InventoryStatus:
    """
    Map remaining capacity onto the rule's scarcity bands.

    Comparison is strict (`<`): availability exactly on a threshold falls into
    the higher-availability band.
    """
    if total <= 0:
        return InventoryStatus(level="unknown", multiplier=1.0)

    remaining = max(0, min(remaining, total))
    pct = remaining / total * 100
    for threshold, multiplier, level in _BANDS:
        if pct < rule.knob(threshold):
            return InventoryStatus(
                level=level,  # type: ignore[arg-type]
                multiplier=rule.knob(multiplier),
                percentage_available=pct,
                total=total,
                remaining=remaining,
            )
    return InventoryStatus(level="ample", multiplier=1.0, percentage_available=pct, total=total, remaining=remaining)


class InventoryAssessor:
    """Scarcity surcharge from remaining cabin capacity. Missing data means no surcharge."""

    def __init__(self, store: InventoryStore):
        self.store = store

    def assess(self, cruise_id: str, cabin_category: str, rule: PricingRule) -> InventoryStatus:
        cap = self.store.get_capacity(cruise_id, cabin_category)
        if cap is None:
            logger.warning("No inventory for cruise=%s category=%s; assuming ample availability", cruise_id, cabin_category)
            return InventoryStatus(level="unknown", multiplier=1.0)
        return status_for(cap.total, cap.remaining, rule)

    def multiplier(self, cruise_id: str, cabin_category: str, rule: PricingRule) -> float:
        return self.assess(cruise_id, cabin_category, rule).multiplier
