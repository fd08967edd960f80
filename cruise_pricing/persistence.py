"""
SQLAlchemy-backed collaborators for the pricing core.

List-valued scope fields are JSON columns; they become frozensets here and
nowhere else.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from uuid import uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.engine import Engine

from . import domain
from .db import session
from .demand import DemandAssessor, DemandBands, DemandScorer, SeasonalDemandScorer
from .engine import PricingEngine
from .inventory import InventoryAssessor
from .models import Booking, CabinCategory, CabinInventory, Cruise, PriceHistory, PricingRule, PromotionCode, PromotionUsage
from .promotions import PromotionValidator
from .rules import RuleRepository

logger = logging.getLogger(__name__)

_RULE_KNOBS = tuple(domain.RULE_DEFAULTS)


def _scope(values: list | None) -> frozenset[str] | None:
    if values is None:
        return None
    return frozenset(str(v) for v in values)


def rule_from_row(row: PricingRule) -> domain.PricingRule:
    return domain.PricingRule(
        id=row.id,
        name=row.name,
        priority=int(row.priority),
        is_active=bool(row.is_active),
        created_at=row.created_at,
        applicable_cruises=_scope(row.applicable_cruises),
        applicable_categories=_scope(row.applicable_categories),
        **{k: getattr(row, k) for k in _RULE_KNOBS},
    )


def promotion_from_row(row: PromotionCode) -> domain.PromotionCode:
    return domain.PromotionCode(
        code=row.code,
        type=row.type,  # type: ignore[arg-type]
        value=float(row.value),
        valid_from=row.valid_from,
        valid_until=row.valid_until,
        max_uses=row.max_uses,
        current_uses=int(row.current_uses or 0),
        max_uses_per_user=row.max_uses_per_user,
        min_order_amount=row.min_order_amount,
        applicable_cruises=_scope(row.applicable_cruises),
        applicable_categories=_scope(row.applicable_categories),
        is_active=bool(row.is_active),
        description=row.description,
        currency=row.currency,
    )


def history_from_row(row: PriceHistory) -> domain.PriceHistory:
    return domain.PriceHistory(
        id=row.id,
        cruise_id=row.cruise_id,
        cabin_category=row.cabin_category,
        old_price=domain.round_money(domain.to_decimal(row.old_price)),
        new_price=domain.round_money(domain.to_decimal(row.new_price)),
        change_reason=row.change_reason,  # type: ignore[arg-type]
        change_details=dict(row.change_details or {}),
        changed_by=row.changed_by,
        changed_at=row.changed_at,
    )


class SqlCruiseCatalog:
    def __init__(self, engine: Engine):
        self.engine = engine

    def get_base_price(self, cruise_id: str) -> float | None:
        with session(self.engine) as s:
            row = s.get(Cruise, cruise_id)
        if row is None:
            return None
        return float(row.starting_price)

    def get_category_multiplier(self, cabin_category: str) -> float:
        with session(self.engine) as s:
            row = s.get(CabinCategory, cabin_category)
        if row is None or row.price_multiplier is None:
            return domain.CATEGORY_MULTIPLIER.get(cabin_category, 1.0)  # type: ignore[call-overload]
        return float(row.price_multiplier)


class SqlInventoryStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def get_capacity(self, cruise_id: str, cabin_category: str) -> domain.Capacity | None:
        with session(self.engine) as s:
            row = (
                s.query(CabinInventory)
                .filter(CabinInventory.cruise_id == cruise_id)
                .filter(CabinInventory.cabin_category == cabin_category)
                .first()
            )
        if row is None:
            return None
        remaining = max(0, row.capacity - row.held - row.confirmed)
        return domain.Capacity(total=int(row.capacity), remaining=remaining)


class SqlDemandSignalSource:
    """Counts bookings in the trailing window and hands them to the scorer."""

    def __init__(self, engine: Engine, scorer: DemandScorer | None = None, window_days: int = 30, today: date | None = None):
        self.engine = engine
        self.scorer = scorer or SeasonalDemandScorer()
        self.window_days = window_days
        self.today = today

    def recent_bookings(self, cruise_id: str, since: datetime) -> int:
        with session(self.engine) as s:
            q = (
                select(func.count())
                .select_from(Booking)
                .where(Booking.cruise_id == cruise_id)
                .where(Booking.status != "cancelled")
                .where(Booking.created_at >= since)
            )
            return int(s.scalar(q) or 0)

    def get_demand_score(self, cruise_id: str, departure_date: date) -> domain.DemandSignal | None:
        now = domain.utcnow()
        today = self.today or now.date()
        since = datetime.combine(today, now.time()) - timedelta(days=self.window_days)
        return self.scorer.score(departure_date, today, self.recent_bookings(cruise_id, since))


class SqlPricingRuleStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def list_active_rules(self) -> list[domain.PricingRule]:
        with session(self.engine) as s:
            rows = s.query(PricingRule).filter(PricingRule.is_active.is_(True)).all()
        return [rule_from_row(r) for r in rows]


class SqlPromotionStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def find_by_code(self, code: str) -> domain.PromotionCode | None:
        with session(self.engine) as s:
            row = s.get(PromotionCode, domain.normalize_code(code))
        return promotion_from_row(row) if row is not None else None

    def uses_by(self, code: str, user_id: str) -> int:
        with session(self.engine) as s:
            q = (
                select(func.count())
                .select_from(PromotionUsage)
                .where(PromotionUsage.code == domain.normalize_code(code))
                .where(PromotionUsage.user_id == user_id)
            )
            return int(s.scalar(q) or 0)


class SqlPriceHistoryStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def append(self, entry: domain.PriceHistory) -> domain.PriceHistory:
        row = PriceHistory(
            id=entry.id or str(uuid4()),
            cruise_id=entry.cruise_id,
            cabin_category=entry.cabin_category,
            old_price=float(entry.old_price),
            new_price=float(entry.new_price),
            change_reason=entry.change_reason,
            change_details=dict(entry.change_details),
            changed_by=entry.changed_by,
            changed_at=entry.changed_at or domain.utcnow(),
        )
        with session(self.engine) as s:
            s.add(row)
            s.commit()
        logger.info(
            "Price history appended cruise=%s category=%s %s -> %s (%s)",
            row.cruise_id,
            row.cabin_category,
            row.old_price,
            row.new_price,
            row.change_reason,
        )
        return history_from_row(row)

    def latest(self, cruise_id: str, cabin_category: str) -> domain.PriceHistory | None:
        with session(self.engine) as s:
            row = (
                s.query(PriceHistory)
                .filter(PriceHistory.cruise_id == cruise_id)
                .filter(PriceHistory.cabin_category == cabin_category)
                .order_by(PriceHistory.changed_at.desc(), PriceHistory.id.desc())
                .first()
            )
        return history_from_row(row) if row is not None else None


def redeem_promotion(engine: Engine, code: str, user_id: str | None = None, now: datetime | None = None) -> domain.PromotionCode:
    """
    Consume one use of a promotion code.

    The usage-cap check and the increment are a single guarded UPDATE, so two
    concurrent redemptions cannot both take the last slot. Callers validate the
    code against the order first; this only enforces the counters.
    """
    c = domain.normalize_code(code)
    used_at = domain.as_naive_utc(now) if now is not None else domain.utcnow()
    with session(engine) as s, s.begin():
        row = s.get(PromotionCode, c)
        if row is None:
            raise domain.PromotionRedemptionError("Invalid promotion code")

        if user_id and row.max_uses_per_user is not None:
            used = s.scalar(
                select(func.count())
                .select_from(PromotionUsage)
                .where(PromotionUsage.code == c)
                .where(PromotionUsage.user_id == user_id)
            )
            if int(used or 0) >= row.max_uses_per_user:
                raise domain.PromotionRedemptionError("Promotion code already used the maximum number of times by this user")

        result = s.execute(
            update(PromotionCode)
            .where(PromotionCode.code == c)
            .where(or_(PromotionCode.max_uses.is_(None), PromotionCode.current_uses < PromotionCode.max_uses))
            .values(current_uses=PromotionCode.current_uses + 1, updated_at=used_at)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise domain.PromotionRedemptionError("Promotion code usage limit reached")

        s.add(PromotionUsage(id=str(uuid4()), code=c, user_id=user_id, used_at=used_at))
        s.flush()
        s.refresh(row)
        redeemed = promotion_from_row(row)

    logger.info("Promotion %s redeemed (user=%s, uses=%s)", c, user_id, redeemed.current_uses)
    return redeemed


def build_pricing_engine(
    engine: Engine,
    bands: DemandBands | None = None,
    scorer: DemandScorer | None = None,
    currency: str | None = None,
) -> PricingEngine:
    promotions = SqlPromotionStore(engine)
    kwargs = {"currency": currency} if currency else {}
    return PricingEngine(
        catalog=SqlCruiseCatalog(engine),
        rules=RuleRepository(SqlPricingRuleStore(engine)),
        inventory=InventoryAssessor(SqlInventoryStore(engine)),
        demand=DemandAssessor(SqlDemandSignalSource(engine, scorer=scorer), bands=bands),
        promotions=PromotionValidator(promotions, usage_ledger=promotions),
        **kwargs,
    )
