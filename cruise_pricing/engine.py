from __future__ import annotations

import logging
import os
from datetime import datetime
from decimal import Decimal

from .demand import DemandAssessor
from .domain import (
    CruiseNotFoundError,
    Price,
    PriceBreakdown,
    PriceParams,
    PromotionValidation,
    format_amount,
    normalize_category,
    normalize_code,
    round_money,
    to_decimal,
)
from .group import group_discount_rate, group_tier
from .inventory import InventoryAssessor
from .promotions import PromotionValidator
from .rules import RuleRepository
from .stores import CruiseCatalog

PRICING_CURRENCY = os.getenv("PRICING_CURRENCY", "USD").strip().upper() or "USD"

_ZERO = Decimal("0.00")

logger = logging.getLogger(__name__)


def _pct(fraction: Decimal) -> str:
    return format_amount(fraction * 100)


def _discount(amount: Decimal) -> Decimal:
    # Discounts are negative deltas; avoid a signed zero in the breakdown.
    return -amount if amount else _ZERO


class PricingEngine:
    """
    Composes base price, scarcity surcharge, demand surcharge, group discount
    and promotion into a final price with an itemized breakdown.

    Stacking order:
    - inventory and demand adjustments are both computed on the base price
    - the group discount applies to base + inventory + demand
    - the promotion is validated against (and capped at) the subtotal after
      the group discount; an invalid code prices without it and is recorded
      in applied_rules as `promo:<CODE>:<REASON>`
    - inventory and demand discounts are clamped so base + inventory + demand
      never drops below 0
    - every component is rounded half-up to cents and the final price is the
      exact sum of the components, floored at 0

    The engine performs no writes. Callers that keep an audit trail append a
    PriceHistory entry from the returned Price (see `history`).
    """

    def __init__(
        self,
        catalog: CruiseCatalog,
        rules: RuleRepository,
        inventory: InventoryAssessor,
        demand: DemandAssessor,
        promotions: PromotionValidator,
        currency: str = PRICING_CURRENCY,
    ):
        self.catalog = catalog
        self.rules = rules
        self.inventory = inventory
        self.demand = demand
        self.promotions = promotions
        self.currency = currency

    def base_price(self, cruise_id: str, cabin_category: str, num_cabins: int = 1) -> Decimal:
        base = self.catalog.get_base_price(cruise_id)
        if base is None:
            raise CruiseNotFoundError(cruise_id)
        multiplier = self.catalog.get_category_multiplier(cabin_category)
        return round_money(to_decimal(base) * to_decimal(multiplier) * num_cabins)

    def calculate_price(self, params: PriceParams, now: datetime | None = None) -> Price:
        category = normalize_category(params.cabin_category)
        num_cabins = int(params.num_cabins)
        if num_cabins < 1:
            raise ValueError("numCabins must be at least 1")

        base = self.base_price(params.cruise_id, category, num_cabins)
        rule = self.rules.rule_for(params.cruise_id, category)
        applied_rules = [f"rule:{rule.id}"]

        inventory = self.inventory.assess(params.cruise_id, category, rule)
        inventory_adjustment = round_money(base * (to_decimal(inventory.multiplier) - 1))
        inventory_adjustment = max(inventory_adjustment, -base or _ZERO)
        if inventory_adjustment:
            pct = _pct(to_decimal(inventory.multiplier) - 1)
            applied_rules.append(f"inventory:{inventory.level}({pct}%)")

        demand = self.demand.assess(params.cruise_id, params.departure_date, rule)
        demand_adjustment = round_money(base * (to_decimal(demand.multiplier) - 1))
        # Discounting multipliers never take the adjusted subtotal below zero.
        demand_adjustment = max(demand_adjustment, -(base + inventory_adjustment) or _ZERO)
        if demand_adjustment:
            applied_rules.append(f"demand:{demand.level}")

        adjusted = base + inventory_adjustment + demand_adjustment
        rate = to_decimal(group_discount_rate(num_cabins, rule))
        group_discount = _discount(round_money(adjusted * rate)) if adjusted > 0 else _ZERO
        if group_discount:
            applied_rules.append(f"group:{group_tier(num_cabins)}({_pct(rate)}%)")

        subtotal = adjusted + group_discount
        promotion: PromotionValidation | None = None
        promotion_discount = _ZERO
        if params.promo_code and params.promo_code.strip():
            code = normalize_code(params.promo_code)
            promotion = self.promotions.validate(
                code,
                params.cruise_id,
                category,
                subtotal,
                user_id=params.user_id,
                now=now,
            )
            if promotion.is_valid:
                promotion_discount = _discount(min(promotion.discount_amount, max(subtotal, _ZERO)))
                if promotion_discount:
                    applied_rules.append(f"promo:{promotion.code or code}")
            else:
                applied_rules.append(f"promo:{code}:{promotion.reason}")

        breakdown = PriceBreakdown(
            base=base,
            inventory_adjustment=inventory_adjustment,
            demand_adjustment=demand_adjustment,
            group_discount=group_discount,
            promotion_discount=promotion_discount,
        )
        final_price = max(_ZERO, round_money(breakdown.total))

        logger.debug(
            "Priced cruise=%s category=%s cabins=%s final=%s rules=%s",
            params.cruise_id,
            category,
            num_cabins,
            final_price,
            applied_rules,
        )
        return Price(
            final_price=final_price,
            currency=self.currency,
            breakdown=breakdown,
            applied_rules=applied_rules,
            rule_id=rule.id,
            inventory=inventory,
            demand=demand,
            promotion=promotion,
        )
