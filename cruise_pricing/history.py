from __future__ import annotations

import os
from decimal import Decimal

from .domain import ChangeReason, Price, PriceHistory, round_money, to_decimal, utcnow

PRICE_HISTORY_MIN_CHANGE_PCT = float(os.getenv("PRICE_HISTORY_MIN_CHANGE_PCT", "5"))


def change_reason(applied_rules: list[str]) -> ChangeReason:
    if any(r.startswith("inventory:low") for r in applied_rules):
        return "inventory"
    if any(r.startswith("demand:") for r in applied_rules):
        return "demand"
    # Rejected codes are recorded as promo:<CODE>:<REASON>.
    if any(r.startswith("promo:") and r.count(":") == 1 for r in applied_rules):
        return "promotion"
    return "manual"


def price_change(
    previous_price: Decimal | float,
    price: Price,
    cruise_id: str,
    cabin_category: str,
    min_change_pct: float = PRICE_HISTORY_MIN_CHANGE_PCT,
    changed_by: str = "system",
) -> PriceHistory | None:
    """
    Build the audit record for a recalculated price, or None when the move
    against `previous_price` is below `min_change_pct` percent.
    """
    old = round_money(to_decimal(previous_price))
    new = price.final_price
    if old == new:
        return None
    if old > 0:
        change_pct = abs(new - old) / old * 100
        if change_pct < to_decimal(min_change_pct):
            return None

    return PriceHistory(
        cruise_id=cruise_id,
        cabin_category=cabin_category,
        old_price=old,
        new_price=new,
        change_reason=change_reason(price.applied_rules),
        change_details={"applied_rules": list(price.applied_rules), "rule_id": price.rule_id},
        changed_by=changed_by,
        changed_at=utcnow(),
    )
