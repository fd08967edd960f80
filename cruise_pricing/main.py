from __future__ import annotations

import logging
import os
from datetime import date, datetime
from typing import Annotated, Literal
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import or_
from sqlalchemy.engine import Engine

from . import domain, events
from .db import get_engine, session
from .history import PRICE_HISTORY_MIN_CHANGE_PCT, price_change
from .models import PriceHistory as PriceHistoryRow
from .models import PricingRule as PricingRuleRow
from .models import PromotionCode as PromotionCodeRow
from .persistence import (
    SqlPriceHistoryStore,
    SqlPromotionStore,
    build_pricing_engine,
    redeem_promotion,
    rule_from_row,
)
from .promotions import PromotionValidator
from .security import issue_token, require_pricing_admin, require_roles

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Cruise Dynamic Pricing Service",
    version="0.1.0",
    description="Inventory/demand-driven cruise pricing with group discounts, promotion codes and an auditable price breakdown.",
)

DbEngine = Annotated[Engine, Depends(get_engine)]


@app.exception_handler(RequestValidationError)
async def _validation_error(_request: Request, exc: RequestValidationError):
    # Input errors are rejected with 400 before any computation.
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _money(value) -> float:
    return float(domain.round_money(domain.to_decimal(value)))


def _categories(values: list[str] | None, *, field: str) -> list[str] | None:
    if values is None:
        return None
    out: list[str] = []
    for v in values:
        try:
            out.append(domain.normalize_category(v))
        except domain.InvalidCabinCategoryError as e:
            raise HTTPException(status_code=400, detail=f"{field}: {e}")
    return sorted(set(out))


def _cruise_ids(values: list[str] | None) -> list[str] | None:
    if values is None:
        return None
    return sorted({(v or "").strip() for v in values if (v or "").strip()})


#
# Pricing
#


class PriceRequestIn(ApiModel):
    cruise_id: str = Field(min_length=1)
    cabin_category: str = Field(min_length=1, description="inside|oceanview|balcony|suite")
    num_cabins: int = Field(default=1, ge=1)
    promo_code: str | None = None
    departure_date: date | None = None
    user_id: str | None = Field(default=None, description="Optional: enables the per-user promotion usage cap")

    def to_params(self) -> domain.PriceParams:
        return domain.PriceParams(
            cruise_id=self.cruise_id.strip(),
            cabin_category=self.cabin_category,
            num_cabins=self.num_cabins,
            promo_code=self.promo_code,
            departure_date=self.departure_date,
            user_id=self.user_id,
        )


class BreakdownOut(ApiModel):
    base: float
    inventory_adjustment: float
    demand_adjustment: float
    promotion_discount: float
    group_discount: float


class InventoryOut(ApiModel):
    level: str
    multiplier: float
    percentage_available: float | None
    total: int | None
    remaining: int | None


class DemandOut(ApiModel):
    level: str
    multiplier: float
    score: float | None
    factors: dict[str, float]


class PromotionValidationOut(ApiModel):
    is_valid: bool
    code: str | None
    discount_amount: float
    message: str
    reason: str | None


class PriceOut(ApiModel):
    final_price: float
    currency: str
    breakdown: BreakdownOut
    applied_rules: list[str]
    rule_id: str
    inventory: InventoryOut
    demand: DemandOut
    promotion: PromotionValidationOut | None = None


def _validation_out(v: domain.PromotionValidation) -> PromotionValidationOut:
    return PromotionValidationOut(
        is_valid=v.is_valid,
        code=v.code,
        discount_amount=_money(v.discount_amount),
        message=v.message,
        reason=v.reason,
    )


def _price_out(p: domain.Price) -> PriceOut:
    b = p.breakdown
    return PriceOut(
        final_price=_money(p.final_price),
        currency=p.currency,
        breakdown=BreakdownOut(
            base=_money(b.base),
            inventory_adjustment=_money(b.inventory_adjustment),
            demand_adjustment=_money(b.demand_adjustment),
            promotion_discount=_money(b.promotion_discount),
            group_discount=_money(b.group_discount),
        ),
        applied_rules=list(p.applied_rules),
        rule_id=p.rule_id,
        inventory=InventoryOut(
            level=p.inventory.level,
            multiplier=p.inventory.multiplier,
            percentage_available=p.inventory.percentage_available,
            total=p.inventory.total,
            remaining=p.inventory.remaining,
        ),
        demand=DemandOut(level=p.demand.level, multiplier=p.demand.multiplier, score=p.demand.score, factors=dict(p.demand.factors)),
        promotion=_validation_out(p.promotion) if p.promotion is not None else None,
    )


def _calculate(db: Engine, params: domain.PriceParams) -> domain.Price:
    try:
        return build_pricing_engine(db).calculate_price(params)
    except domain.InvalidCabinCategoryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except domain.CruiseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except domain.NoApplicableRuleError as e:
        logger.error("Pricing failed: %s", e)
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/pricing/calculate", response_model=PriceOut)
def calculate_price(payload: PriceRequestIn, db: DbEngine):
    return _price_out(_calculate(db, payload.to_params()))


@app.get("/pricing/calculate", response_model=PriceOut)
def calculate_price_query(
    db: DbEngine,
    cruise_id: Annotated[str, Query(alias="cruiseId", min_length=1)],
    cabin_category: Annotated[str, Query(alias="cabinCategory", min_length=1)],
    num_cabins: Annotated[int, Query(alias="numCabins", ge=1)] = 1,
    promo_code: Annotated[str | None, Query(alias="promoCode")] = None,
    departure_date: Annotated[date | None, Query(alias="departureDate")] = None,
    user_id: Annotated[str | None, Query(alias="userId")] = None,
):
    params = domain.PriceParams(
        cruise_id=cruise_id.strip(),
        cabin_category=cabin_category,
        num_cabins=num_cabins,
        promo_code=promo_code,
        departure_date=departure_date,
        user_id=user_id,
    )
    return _price_out(_calculate(db, params))


class PromotionValidateIn(ApiModel):
    code: str = Field(min_length=1)
    cruise_id: str = Field(min_length=1)
    cabin_category: str = Field(min_length=1)
    total_amount: float = Field(gt=0)
    user_id: str | None = None


@app.post("/promotions/validate", response_model=PromotionValidationOut)
def validate_promotion(payload: PromotionValidateIn, db: DbEngine):
    try:
        category = domain.normalize_category(payload.cabin_category)
    except domain.InvalidCabinCategoryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    store = SqlPromotionStore(db)
    result = PromotionValidator(store, usage_ledger=store).validate(
        payload.code,
        payload.cruise_id.strip(),
        category,
        domain.to_decimal(payload.total_amount),
        user_id=payload.user_id,
    )
    return _validation_out(result)


class RecalculateIn(ApiModel):
    cruise_id: str = Field(min_length=1)
    cabin_category: str = Field(min_length=1)
    departure_date: date | None = None
    min_change_pct: float = Field(default=PRICE_HISTORY_MIN_CHANGE_PCT, ge=0)


class PriceHistoryOut(ApiModel):
    id: str
    cruise_id: str
    cabin_category: str
    old_price: float
    new_price: float
    change_reason: str
    change_details: dict
    changed_by: str
    changed_at: datetime


class RecalculateOut(ApiModel):
    price: PriceOut
    previous_price: float
    recorded: bool
    history: PriceHistoryOut | None = None


def _history_out(h: domain.PriceHistory) -> PriceHistoryOut:
    return PriceHistoryOut(
        id=h.id or "",
        cruise_id=h.cruise_id,
        cabin_category=h.cabin_category,
        old_price=_money(h.old_price),
        new_price=_money(h.new_price),
        change_reason=h.change_reason,
        change_details=dict(h.change_details),
        changed_by=h.changed_by,
        changed_at=h.changed_at or domain.utcnow(),
    )


@app.post("/pricing/recalculate", response_model=RecalculateOut)
async def recalculate_price(
    payload: RecalculateIn,
    db: DbEngine,
    principal: Annotated[dict, Depends(require_pricing_admin)],
):
    """
    Reprice the standard fare (one cabin, no promotion) and append a price
    history entry when it moved at least `minChangePct` percent against the
    last recorded price (or the list price when nothing is recorded yet).
    """
    params = domain.PriceParams(
        cruise_id=payload.cruise_id.strip(),
        cabin_category=payload.cabin_category,
        departure_date=payload.departure_date,
    )
    price = _calculate(db, params)
    category = domain.normalize_category(payload.cabin_category)

    store = SqlPriceHistoryStore(db)
    last = store.latest(params.cruise_id, category)
    previous = last.new_price if last is not None else price.breakdown.base

    entry = price_change(
        previous,
        price,
        params.cruise_id,
        category,
        min_change_pct=payload.min_change_pct,
        changed_by=str(principal.get("sub") or "system"),
    )
    if entry is None:
        return RecalculateOut(price=_price_out(price), previous_price=_money(previous), recorded=False)

    saved = store.append(entry)
    await events.publish_price_changed(saved, price.applied_rules)
    return RecalculateOut(price=_price_out(price), previous_price=_money(previous), recorded=True, history=_history_out(saved))


class PriceHistoryStatsOut(ApiModel):
    total: int
    by_reason: dict[str, int]
    avg_change_pct: float


class PriceHistoryListOut(ApiModel):
    items: list[PriceHistoryOut]
    stats: PriceHistoryStatsOut


@app.get("/price-history", response_model=PriceHistoryListOut)
def list_price_history(
    db: DbEngine,
    _principal: Annotated[dict, Depends(require_pricing_admin)],
    cruise_id: Annotated[str | None, Query(alias="cruiseId")] = None,
    cabin_category: Annotated[str | None, Query(alias="cabinCategory")] = None,
    change_reason: Annotated[Literal["inventory", "demand", "promotion", "manual"] | None, Query(alias="changeReason")] = None,
    start_date: Annotated[date | None, Query(alias="startDate")] = None,
    end_date: Annotated[date | None, Query(alias="endDate")] = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
):
    category = None
    if cabin_category:
        try:
            category = domain.normalize_category(cabin_category)
        except domain.InvalidCabinCategoryError as e:
            raise HTTPException(status_code=400, detail=str(e))

    with session(db) as s:
        q = s.query(PriceHistoryRow)
        if cruise_id:
            q = q.filter(PriceHistoryRow.cruise_id == cruise_id)
        if category:
            q = q.filter(PriceHistoryRow.cabin_category == category)
        if change_reason:
            q = q.filter(PriceHistoryRow.change_reason == change_reason)
        if start_date:
            q = q.filter(PriceHistoryRow.changed_at >= datetime.combine(start_date, datetime.min.time()))
        if end_date:
            q = q.filter(PriceHistoryRow.changed_at <= datetime.combine(end_date, datetime.max.time()))
        rows = q.order_by(PriceHistoryRow.changed_at.desc()).limit(limit).all()

    by_reason = {r: 0 for r in ("inventory", "demand", "promotion", "manual")}
    changes: list[float] = []
    for r in rows:
        by_reason[r.change_reason] = by_reason.get(r.change_reason, 0) + 1
        if r.old_price:
            changes.append((r.new_price - r.old_price) / r.old_price * 100)
    avg = round(sum(changes) / len(changes), 2) if changes else 0.0

    return PriceHistoryListOut(
        items=[
            PriceHistoryOut(
                id=r.id,
                cruise_id=r.cruise_id,
                cabin_category=r.cabin_category,
                old_price=r.old_price,
                new_price=r.new_price,
                change_reason=r.change_reason,
                change_details=dict(r.change_details or {}),
                changed_by=r.changed_by,
                changed_at=r.changed_at,
            )
            for r in rows
        ],
        stats=PriceHistoryStatsOut(total=len(rows), by_reason=by_reason, avg_change_pct=avg),
    )


#
# Admin: pricing rules
#

_THRESHOLDS = ("inventory_threshold_low", "inventory_threshold_medium", "inventory_threshold_high")
_MULTIPLIERS = (
    "price_multiplier_low",
    "price_multiplier_medium",
    "price_multiplier_high",
    "demand_multiplier_high",
    "demand_multiplier_medium",
    "demand_multiplier_low",
)
_GROUP_RATES = ("group_discount_3_to_5", "group_discount_6_to_10", "group_discount_11_plus")


def _check_rule_knobs(rule: domain.PricingRule) -> None:
    thresholds = [rule.knob(k) for k in _THRESHOLDS]
    if not all(0 < t <= 100 for t in thresholds):
        raise HTTPException(status_code=400, detail="Inventory thresholds must be within (0, 100]")
    if not (thresholds[0] < thresholds[1] < thresholds[2]):
        raise HTTPException(status_code=400, detail="Inventory thresholds must be ascending (low < medium < high)")
    for k in _MULTIPLIERS:
        if rule.knob(k) <= 0:
            raise HTTPException(status_code=400, detail=f"{to_camel(k)} must be > 0")
    # Inventory and demand adjustments both apply to the base price; together they must not discount more than it.
    price_deltas = [rule.knob(k) - 1 for k in _MULTIPLIERS[:3]] + [0.0]
    demand_deltas = [rule.knob(k) - 1 for k in _MULTIPLIERS[3:]]
    if min(price_deltas) + min(demand_deltas) < -1:
        raise HTTPException(status_code=400, detail="Combined inventory and demand multipliers must not discount below zero")
    for k in _GROUP_RATES:
        if not 0 <= rule.knob(k) <= 1:
            raise HTTPException(status_code=400, detail=f"{to_camel(k)} must be within [0, 1]")


class PricingRuleIn(ApiModel):
    id: str | None = Field(default=None, description="Optional stable id (e.g. default-pricing-rule)")
    name: str = Field(min_length=1)
    description: str | None = None

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

    applicable_cruises: list[str] | None = None
    applicable_categories: list[str] | None = None
    priority: int = 100
    is_active: bool = True


class PricingRulePatch(ApiModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None

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

    applicable_cruises: list[str] | None = None
    applicable_categories: list[str] | None = None
    priority: int | None = None
    is_active: bool | None = None


class PricingRuleOut(ApiModel):
    id: str
    name: str
    description: str | None

    inventory_threshold_low: float | None
    inventory_threshold_medium: float | None
    inventory_threshold_high: float | None
    price_multiplier_low: float | None
    price_multiplier_medium: float | None
    price_multiplier_high: float | None

    demand_multiplier_high: float | None
    demand_multiplier_medium: float | None
    demand_multiplier_low: float | None

    group_discount_3_to_5: float | None
    group_discount_6_to_10: float | None
    group_discount_11_plus: float | None

    applicable_cruises: list[str] | None
    applicable_categories: list[str] | None
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


def _rule_out(r: PricingRuleRow) -> PricingRuleOut:
    return PricingRuleOut(**{k: getattr(r, k) for k in PricingRuleOut.model_fields})


@app.get("/admin/pricing-rules", response_model=list[PricingRuleOut])
def list_pricing_rules(db: DbEngine, _principal: Annotated[dict, Depends(require_pricing_admin)]):
    with session(db) as s:
        rows = s.query(PricingRuleRow).order_by(PricingRuleRow.priority.desc(), PricingRuleRow.created_at.desc()).all()
    return [_rule_out(r) for r in rows]


@app.post("/admin/pricing-rules", response_model=PricingRuleOut)
def create_pricing_rule(payload: PricingRuleIn, db: DbEngine, _principal: Annotated[dict, Depends(require_pricing_admin)]):
    now = domain.utcnow()
    values = payload.model_dump(exclude={"id"})
    values["name"] = payload.name.strip()
    values["applicable_cruises"] = _cruise_ids(payload.applicable_cruises)
    values["applicable_categories"] = _categories(payload.applicable_categories, field="applicableCategories")
    row = PricingRuleRow(id=(payload.id or "").strip() or str(uuid4()), created_at=now, updated_at=now, **values)
    _check_rule_knobs(rule_from_row(row))

    with session(db) as s:
        if s.get(PricingRuleRow, row.id) is not None:
            raise HTTPException(status_code=409, detail="Pricing rule id already exists")
        s.add(row)
        s.commit()
    logger.info("Pricing rule created id=%s priority=%s", row.id, row.priority)
    return _rule_out(row)


@app.patch("/admin/pricing-rules/{rule_id}", response_model=PricingRuleOut)
def patch_pricing_rule(
    rule_id: str,
    payload: PricingRulePatch,
    db: DbEngine,
    _principal: Annotated[dict, Depends(require_pricing_admin)],
):
    changes = payload.model_dump(exclude_unset=True)
    if "applicable_cruises" in changes:
        changes["applicable_cruises"] = _cruise_ids(payload.applicable_cruises)
    if "applicable_categories" in changes:
        changes["applicable_categories"] = _categories(payload.applicable_categories, field="applicableCategories")
    if changes.get("name") is None:
        changes.pop("name", None)
    for k in ("priority", "is_active"):
        if k in changes and changes[k] is None:
            changes.pop(k)

    with session(db) as s:
        row = s.get(PricingRuleRow, rule_id)
        if row is None:
            raise HTTPException(status_code=404, detail="Pricing rule not found")
        for k, v in changes.items():
            setattr(row, k, v)
        _check_rule_knobs(rule_from_row(row))
        row.updated_at = domain.utcnow()
        s.commit()
    logger.info("Pricing rule updated id=%s fields=%s", rule_id, sorted(changes))
    return _rule_out(row)


@app.delete("/admin/pricing-rules/{rule_id}")
def delete_pricing_rule(rule_id: str, db: DbEngine, _principal: Annotated[dict, Depends(require_pricing_admin)]):
    with session(db) as s:
        row = s.get(PricingRuleRow, rule_id)
        if row is None:
            raise HTTPException(status_code=404, detail="Pricing rule not found")
        s.delete(row)
        s.commit()
    logger.info("Pricing rule deleted id=%s", rule_id)
    return {"status": "ok"}


#
# Admin: promotion codes
#


class PromotionIn(ApiModel):
    code: str = Field(min_length=1)
    type: domain.PromotionType
    value: float = Field(ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    description: str | None = None
    valid_from: datetime
    valid_until: datetime
    max_uses: int | None = Field(default=None, ge=0)
    max_uses_per_user: int | None = Field(default=1, ge=1)
    min_order_amount: float | None = Field(default=None, ge=0)
    applicable_cruises: list[str] | None = None
    applicable_categories: list[str] | None = None
    is_active: bool = True

    @model_validator(mode="after")
    def _validate(self) -> "PromotionIn":
        self.code = domain.normalize_code(self.code)
        if not self.code or any(ch.isspace() for ch in self.code):
            raise ValueError("code must be non-empty and must not contain whitespace")
        if self.type == "percentage" and self.value > 100:
            raise ValueError("percentage value must be within 0-100")
        if domain.as_naive_utc(self.valid_from) > domain.as_naive_utc(self.valid_until):
            raise ValueError("validFrom must not be after validUntil")
        return self


class PromotionPatch(ApiModel):
    type: domain.PromotionType | None = None
    value: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    description: str | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    max_uses: int | None = Field(default=None, ge=0)
    max_uses_per_user: int | None = Field(default=None, ge=1)
    min_order_amount: float | None = Field(default=None, ge=0)
    applicable_cruises: list[str] | None = None
    applicable_categories: list[str] | None = None
    is_active: bool | None = None


class PromotionOut(ApiModel):
    code: str
    type: str
    value: float
    currency: str | None
    description: str | None
    valid_from: datetime
    valid_until: datetime
    max_uses: int | None
    current_uses: int
    max_uses_per_user: int | None
    min_order_amount: float | None
    applicable_cruises: list[str] | None
    applicable_categories: list[str] | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


def _promotion_out(r: PromotionCodeRow) -> PromotionOut:
    return PromotionOut(**{k: getattr(r, k) for k in PromotionOut.model_fields})


def _check_promotion_row(r: PromotionCodeRow) -> None:
    if r.type not in ("percentage", "fixed"):
        raise HTTPException(status_code=400, detail="type must be 'percentage' or 'fixed'")
    if r.type == "percentage" and not 0 <= r.value <= 100:
        raise HTTPException(status_code=400, detail="percentage value must be within 0-100")
    if r.valid_from > r.valid_until:
        raise HTTPException(status_code=400, detail="validFrom must not be after validUntil")


@app.get("/admin/promotions", response_model=list[PromotionOut])
def list_promotions(
    db: DbEngine,
    _principal: Annotated[dict, Depends(require_pricing_admin)],
    is_active: Annotated[bool | None, Query(alias="isActive")] = None,
    search: str | None = None,
):
    with session(db) as s:
        q = s.query(PromotionCodeRow)
        if is_active is not None:
            q = q.filter(PromotionCodeRow.is_active.is_(is_active))
        term = (search or "").strip()
        if term:
            like = f"%{term}%"
            q = q.filter(or_(PromotionCodeRow.code.ilike(like), PromotionCodeRow.description.ilike(like)))
        rows = q.order_by(PromotionCodeRow.created_at.desc()).all()
    return [_promotion_out(r) for r in rows]


@app.post("/admin/promotions", response_model=PromotionOut)
def create_promotion(payload: PromotionIn, db: DbEngine, _principal: Annotated[dict, Depends(require_pricing_admin)]):
    now = domain.utcnow()
    currency = None
    if payload.type == "fixed":
        currency = (payload.currency or "USD").strip().upper()
    row = PromotionCodeRow(
        code=payload.code,
        type=payload.type,
        value=payload.value,
        currency=currency,
        description=payload.description,
        valid_from=domain.as_naive_utc(payload.valid_from),
        valid_until=domain.as_naive_utc(payload.valid_until),
        max_uses=payload.max_uses,
        current_uses=0,
        max_uses_per_user=payload.max_uses_per_user,
        min_order_amount=payload.min_order_amount,
        applicable_cruises=_cruise_ids(payload.applicable_cruises),
        applicable_categories=_categories(payload.applicable_categories, field="applicableCategories"),
        is_active=payload.is_active,
        created_at=now,
        updated_at=now,
    )
    with session(db) as s:
        if s.get(PromotionCodeRow, row.code) is not None:
            raise HTTPException(status_code=409, detail="Promotion code already exists")
        s.add(row)
        s.commit()
    logger.info("Promotion created code=%s type=%s value=%s", row.code, row.type, row.value)
    return _promotion_out(row)


@app.patch("/admin/promotions/{code}", response_model=PromotionOut)
def patch_promotion(
    code: str,
    payload: PromotionPatch,
    db: DbEngine,
    _principal: Annotated[dict, Depends(require_pricing_admin)],
):
    changes = payload.model_dump(exclude_unset=True)
    for k in ("type", "value", "valid_from", "valid_until", "is_active"):
        if k in changes and changes[k] is None:
            changes.pop(k)
    if "applicable_cruises" in changes:
        changes["applicable_cruises"] = _cruise_ids(payload.applicable_cruises)
    if "applicable_categories" in changes:
        changes["applicable_categories"] = _categories(payload.applicable_categories, field="applicableCategories")
    for k in ("valid_from", "valid_until"):
        if k in changes:
            changes[k] = domain.as_naive_utc(changes[k])
    if changes.get("currency"):
        changes["currency"] = changes["currency"].strip().upper()

    with session(db) as s:
        row = s.get(PromotionCodeRow, domain.normalize_code(code))
        if row is None:
            raise HTTPException(status_code=404, detail="Promotion code not found")
        for k, v in changes.items():
            setattr(row, k, v)
        _check_promotion_row(row)
        row.updated_at = domain.utcnow()
        s.commit()
    logger.info("Promotion updated code=%s fields=%s", row.code, sorted(changes))
    return _promotion_out(row)


@app.delete("/admin/promotions/{code}")
def delete_promotion(code: str, db: DbEngine, _principal: Annotated[dict, Depends(require_pricing_admin)]):
    with session(db) as s:
        row = s.get(PromotionCodeRow, domain.normalize_code(code))
        if row is None:
            raise HTTPException(status_code=404, detail="Promotion code not found")
        s.delete(row)
        s.commit()
    logger.info("Promotion deleted code=%s", domain.normalize_code(code))
    return {"status": "ok"}


class RedeemIn(ApiModel):
    user_id: str | None = None


@app.post("/promotions/{code}/redeem", response_model=PromotionOut)
def redeem(
    code: str,
    payload: RedeemIn,
    db: DbEngine,
    _principal: Annotated[dict, Depends(require_roles("agent", "staff", "admin"))],
):
    c = domain.normalize_code(code)
    with session(db) as s:
        if s.get(PromotionCodeRow, c) is None:
            raise HTTPException(status_code=404, detail="Promotion code not found")
    try:
        redeem_promotion(db, c, user_id=payload.user_id)
    except domain.PromotionRedemptionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    with session(db) as s:
        row = s.get(PromotionCodeRow, c)
    return _promotion_out(row)


#
# Dev
#


class TokenRequest(BaseModel):
    sub: str = "dev-user"
    role: str = Field(default="guest", description="guest|agent|staff|admin")


@app.post("/dev/token")
def dev_token(payload: TokenRequest):
    return {"access_token": issue_token(sub=payload.sub, role=payload.role), "token_type": "bearer"}

