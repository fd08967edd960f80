"""
Read-side collaborators the pricing core consumes, plus in-memory adapters.

The engine only sees these protocols; `persistence` provides the SQLAlchemy
implementations used by the service.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Protocol

from .domain import (
    CATEGORY_MULTIPLIER,
    Capacity,
    DemandSignal,
    PriceHistory,
    PricingRule,
    PromotionCode,
    normalize_code,
)


class CruiseCatalog(Protocol):
    def get_base_price(self, cruise_id: str) -> float | None: ...

    def get_category_multiplier(self, cabin_category: str) -> float: ...


class InventoryStore(Protocol):
    def get_capacity(self, cruise_id: str, cabin_category: str) -> Capacity | None: ...


class DemandSignalSource(Protocol):
    def get_demand_score(self, cruise_id: str, departure_date: date) -> DemandSignal | None: ...


class PricingRuleStore(Protocol):
    def list_active_rules(self) -> list[PricingRule]: ...


class PromotionStore(Protocol):
    def find_by_code(self, code: str) -> PromotionCode | None: ...


class PromotionUsageLedger(Protocol):
    def uses_by(self, code: str, user_id: str) -> int: ...


class PriceHistoryStore(Protocol):
    def append(self, entry: PriceHistory) -> PriceHistory: ...

    def latest(self, cruise_id: str, cabin_category: str) -> PriceHistory | None: ...


class InMemoryCatalog:
    def __init__(self, base_prices: dict[str, float], category_multipliers: dict[str, float] | None = None):
        self._base_prices = dict(base_prices)
        self._multipliers = {**CATEGORY_MULTIPLIER, **(category_multipliers or {})}

    def get_base_price(self, cruise_id: str) -> float | None:
        return self._base_prices.get(cruise_id)

    def get_category_multiplier(self, cabin_category: str) -> float:
        return float(self._multipliers.get(cabin_category, 1.0))


class InMemoryInventory:
    def __init__(self, capacities: dict[tuple[str, str], Capacity] | None = None):
        self._capacities = dict(capacities or {})

    def set(self, cruise_id: str, cabin_category: str, total: int, remaining: int) -> None:
        self._capacities[(cruise_id, cabin_category)] = Capacity(total=total, remaining=remaining)

    def get_capacity(self, cruise_id: str, cabin_category: str) -> Capacity | None:
        return self._capacities.get((cruise_id, cabin_category))


class StaticDemandSource:
    """Fixed demand signals keyed by cruise id (any departure date)."""

    def __init__(self, signals: dict[str, DemandSignal] | None = None):
        self._signals = dict(signals or {})

    def get_demand_score(self, cruise_id: str, departure_date: date) -> DemandSignal | None:
        return self._signals.get(cruise_id)


class InMemoryRuleStore:
    def __init__(self, rules: Iterable[PricingRule] = ()):
        self.rules = list(rules)

    def list_active_rules(self) -> list[PricingRule]:
        return [r for r in self.rules if r.is_active]


class InMemoryPromotionStore:
    def __init__(self, promotions: Iterable[PromotionCode] = (), usages: dict[tuple[str, str], int] | None = None):
        self._by_code = {normalize_code(p.code): p for p in promotions}
        self._usages = dict(usages or {})

    def find_by_code(self, code: str) -> PromotionCode | None:
        return self._by_code.get(normalize_code(code))

    def uses_by(self, code: str, user_id: str) -> int:
        return self._usages.get((normalize_code(code), user_id), 0)


class InMemoryPriceHistory:
    def __init__(self):
        self.entries: list[PriceHistory] = []

    def append(self, entry: PriceHistory) -> PriceHistory:
        self.entries.append(entry)
        return entry

    def latest(self, cruise_id: str, cabin_category: str) -> PriceHistory | None:
        for e in reversed(self.entries):
            if e.cruise_id == cruise_id and e.cabin_category == cabin_category:
                return e
        return None
