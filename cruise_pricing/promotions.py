from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from .domain import (
    PromotionCode,
    PromotionValidation,
    as_naive_utc,
    format_amount,
    normalize_code,
    round_money,
    to_decimal,
    utcnow,
)
from .stores import PromotionStore, PromotionUsageLedger


def _reject(reason: str, message: str, code: str | None = None) -> PromotionValidation:
    return PromotionValidation(is_valid=False, message=message, reason=reason, code=code)


def discount_for(promo: PromotionCode, total_amount: Decimal) -> Decimal:
    if promo.type == "percentage":
        return round_money(total_amount * to_decimal(promo.value) / Decimal(100))
    return round_money(to_decimal(promo.value))


class PromotionValidator:
    """
    Checks a promotion code against its window, usage caps, minimum order and
    scope. Invalid codes are an expected outcome: `validate` never raises and
    always reports the first failing check.
    """

    def __init__(self, store: PromotionStore, usage_ledger: PromotionUsageLedger | None = None):
        self.store = store
        self.usage_ledger = usage_ledger

    def validate(
        self,
        code: str,
        cruise_id: str,
        cabin_category: str,
        total_amount: Decimal | float,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> PromotionValidation:
        normalized = normalize_code(code)
        promo = self.store.find_by_code(normalized) if normalized else None
        if promo is None:
            return _reject("NOT_FOUND", "Invalid promotion code")

        pc = promo.code
        if not promo.is_active:
            return _reject("INACTIVE", "Promotion code is not active", pc)

        at = as_naive_utc(now) if now is not None else utcnow()
        if at < as_naive_utc(promo.valid_from) or at > as_naive_utc(promo.valid_until):
            return _reject("EXPIRED", "Promotion code has expired", pc)

        if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
            return _reject("USAGE_LIMIT", "Promotion code usage limit reached", pc)

        if user_id and promo.max_uses_per_user is not None and self.usage_ledger is not None:
            if self.usage_ledger.uses_by(pc, user_id) >= promo.max_uses_per_user:
                return _reject("USER_LIMIT", "Promotion code already used the maximum number of times by this user", pc)

        total = to_decimal(total_amount)
        if promo.min_order_amount is not None and total < to_decimal(promo.min_order_amount):
            minimum = format_amount(to_decimal(promo.min_order_amount))
            return _reject("MIN_ORDER", f"Minimum order amount of ${minimum} required", pc)

        if promo.applicable_cruises is not None and cruise_id not in promo.applicable_cruises:
            return _reject("CRUISE_NOT_APPLICABLE", "Promotion not applicable to this cruise", pc)

        if promo.applicable_categories is not None and cabin_category not in promo.applicable_categories:
            return _reject("CATEGORY_NOT_APPLICABLE", "Promotion not applicable to this cabin category", pc)

        discount = discount_for(promo, total)
        return PromotionValidation(
            is_valid=True,
            message=f"Discount of ${discount:.2f} applied",
            discount_amount=discount,
            code=pc,
        )
