from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

CabinCategory = Literal["inside", "oceanview", "balcony", "suite"]
PromotionType = Literal["percentage", "fixed"]
ChangeReason = Literal["inventory", "demand", "promotion", "manual"]
InventoryLevel = Literal["low", "medium", "high", "ample", "unknown"]
DemandLevel = Literal["high", "medium", "low"]

CABIN_CATEGORIES: tuple[CabinCategory, ...] = ("inside", "oceanview", "balcony", "suite")

# Intrinsic price tier of each cabin class; the catalog may override per category.
CATEGORY_MULTIPLIER: dict[CabinCategory, float] = {
    "inside": 1.0,
    "oceanview": 1.3,
    "balcony": 1.6,
    "suite": 2.5,
}

# System defaults for every PricingRule knob left unset (None).
RULE_DEFAULTS: dict[str, float] = {
    "inventory_threshold_low": 30.0,
    "inventory_threshold_medium": 50.0,
    "inventory_threshold_high": 70.0,
    "price_multiplier_low": 1.20,
    "price_multiplier_medium": 1.10,
    "price_multiplier_high": 1.05,
    "demand_multiplier_high": 1.15,
    "demand_multiplier_medium": 1.07,
    "demand_multiplier_low": 1.00,
    "group_discount_3_to_5": 0.05,
    "group_discount_6_to_10": 0.10,
    "group_discount_11_plus": 0.15,
}

_CENT = Decimal("0.01")


class PricingError(Exception):
    pass


class CruiseNotFoundError(PricingError, LookupError):
    def __init__(self, cruise_id: str):
        super().__init__(f"Cruise not found: {cruise_id}")
        self.cruise_id = cruise_id


class InvalidCabinCategoryError(PricingError, ValueError):
    def __init__(self, cabin_category: str):
        super().__init__(f"Invalid cabin category. Must be one of: {', '.join(CABIN_CATEGORIES)}")
        self.cabin_category = cabin_category


class NoApplicableRuleError(PricingError, LookupError):
    def __init__(self, cruise_id: str, cabin_category: str):
        super().__init__(f"No active pricing rule applies to cruise {cruise_id} ({cabin_category}) and no default rule exists")
        self.cruise_id = cruise_id
        self.cabin_category = cabin_category


class PromotionRedemptionError(PricingError):
    pass


def to_decimal(value: float | int | Decimal | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    """Round half-up to whole cents."""
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal) -> str:
    """Cents-rounded amount without a trailing ".00" (1920 -> "1920", 12.5 -> "12.50")."""
    value = round_money(value)
    if value == value.to_integral_value():
        return f"{value:.0f}"
    return f"{value:.2f}"


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    # Timestamps are compared as naive UTC (SQLite drops tzinfo on round-trip).
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def normalize_category(value: str | None) -> CabinCategory:
    c = (value or "").strip().lower()
    if c not in CABIN_CATEGORIES:
        raise InvalidCabinCategoryError(value or "")
    return c  # type: ignore[return-value]


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


@dataclass(frozen=True)
class PricingRule:
    """
    Named, prioritized pricing configuration.

    Interpretation:
    - inventory thresholds are percentages of capacity still available, ascending
      (low < medium < high); each pairs with the multiplier of the same name and
      applies when availability is strictly below it
    - group rates are fractions (0.05 == 5%)
    - applicable_cruises / applicable_categories: None means "all"
    - any numeric knob left as None resolves to RULE_DEFAULTS via knob()
    """

    id: str
    name: str
    priority: int = 100
    is_active: bool = True
    created_at: datetime | None = None
    applicable_cruises: frozenset[str] | None = None
    applicable_categories: frozenset[str] | None = None

    inventory_threshold_low: float | None = None
    inventory_threshold_medium: float | None = None
    inventory_threshold_high: float | None = None
    price_multiplier_low: float | None = None
    price_multiplier_medium: float | None = None
    price_multiplier_high: float | None = None

    demand_multiplier_high: float | None = None
    demand_multiplier_medium: float | None = None
    demand_multiplier_low: float | None = None

    group_discount_3_to_5: float | None = None
    group_discount_6_to_10: float | None = None
    group_discount_11_plus: float | None = None

    def knob(self, name: str) -> float:
        value = getattr(self, name)
        if value is None:
            return RULE_DEFAULTS[name]
        return float(value)

    def applies_to(self, cruise_id: str, cabin_category: str) -> bool:
        if self.applicable_cruises is not None and cruise_id not in self.applicable_cruises:
            return False
        if self.applicable_categories is not None and cabin_category not in self.applicable_categories:
            return False
        return True


@dataclass(frozen=True)
class PromotionCode:
    code: str
    type: PromotionType
    value: float
    valid_from: datetime
    valid_until: datetime
    max_uses: int | None = None
    current_uses: int = 0
    max_uses_per_user: int | None = None
    min_order_amount: float | None = None
    applicable_cruises: frozenset[str] | None = None
    applicable_categories: frozenset[str] | None = None
    is_active: bool = True
    description: str | None = None
    currency: str | None = None


@dataclass(frozen=True)
class PromotionValidation:
    is_valid: bool
    message: str
    discount_amount: Decimal = Decimal("0.00")
    code: str | None = None
    # Machine-readable rejection reason (e.g. EXPIRED); None when valid.
    reason: str | None = None


@dataclass(frozen=True)
class Capacity:
    total: int
    remaining: int


@dataclass(frozen=True)
class InventoryStatus:
    level: InventoryLevel
    multiplier: float
    percentage_available: float | None = None
    total: int | None = None
    remaining: int | None = None


@dataclass(frozen=True)
class DemandSignal:
    score: float
    level: DemandLevel | None = None
    factors: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class DemandStatus:
    level: DemandLevel
    multiplier: float
    score: float | None = None
    factors: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceParams:
    cruise_id: str
    cabin_category: str
    num_cabins: int = 1
    promo_code: str | None = None
    departure_date: date | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class PriceBreakdown:
    base: Decimal
    inventory_adjustment: Decimal = Decimal("0.00")
    demand_adjustment: Decimal = Decimal("0.00")
    group_discount: Decimal = Decimal("0.00")
    promotion_discount: Decimal = Decimal("0.00")

    @property
    def total(self) -> Decimal:
        return self.base + self.inventory_adjustment + self.demand_adjustment + self.group_discount + self.promotion_discount


@dataclass(frozen=True)
class Price:
    final_price: Decimal
    currency: str
    breakdown: PriceBreakdown
    applied_rules: list[str]
    rule_id: str
    inventory: InventoryStatus
    demand: DemandStatus
    promotion: PromotionValidation | None = None


@dataclass(frozen=True)
class PriceHistory:
    cruise_id: str
    cabin_category: str
    old_price: Decimal
    new_price: Decimal
    change_reason: ChangeReason
    change_details: dict
    changed_by: str = "system"
    changed_at: datetime | None = None
    id: str | None = None
