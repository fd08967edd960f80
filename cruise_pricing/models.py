from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Cruise(Base):
    __tablename__ = "cruises"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, default="")
    starting_price: Mapped[float] = mapped_column(Float)  # per cabin, before category multiplier
    departure_date: Mapped[date | None] = mapped_column(Date, nullable=True)


class CabinCategory(Base):
    __tablename__ = "cabin_categories"

    code: Mapped[str] = mapped_column(String, primary_key=True)  # inside|oceanview|balcony|suite
    name: Mapped[str] = mapped_column(String, default="")
    price_multiplier: Mapped[float] = mapped_column(Float, default=1.0)


class CabinInventory(Base):
    __tablename__ = "cabin_inventory"
    __table_args__ = (UniqueConstraint("cruise_id", "cabin_category", name="uq_cabin_inventory_cruise_category"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    cruise_id: Mapped[str] = mapped_column(String, index=True)
    cabin_category: Mapped[str] = mapped_column(String, index=True)

    capacity: Mapped[int] = mapped_column(Integer, default=0)
    held: Mapped[int] = mapped_column(Integer, default=0)
    confirmed: Mapped[int] = mapped_column(Integer, default=0)


class Booking(Base):
    """Booking facts read for demand velocity; written by the booking flow."""

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    cruise_id: Mapped[str] = mapped_column(String, index=True)
    cabin_category: Mapped[str] = mapped_column(String)
    num_cabins: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String, index=True, default="confirmed")  # held|confirmed|cancelled
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)


class PricingRule(Base):
    __tablename__ = "pricing_rules"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(String, nullable=True)

    inventory_threshold_low: Mapped[float | None] = mapped_column(Float, nullable=True)
    inventory_threshold_medium: Mapped[float | None] = mapped_column(Float, nullable=True)
    inventory_threshold_high: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_multiplier_low: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_multiplier_medium: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_multiplier_high: Mapped[float | None] = mapped_column(Float, nullable=True)

    demand_multiplier_high: Mapped[float | None] = mapped_column(Float, nullable=True)
    demand_multiplier_medium: Mapped[float | None] = mapped_column(Float, nullable=True)
    demand_multiplier_low: Mapped[float | None] = mapped_column(Float, nullable=True)

    group_discount_3_to_5: Mapped[float | None] = mapped_column(Float, nullable=True)
    group_discount_6_to_10: Mapped[float | None] = mapped_column(Float, nullable=True)
    group_discount_11_plus: Mapped[float | None] = mapped_column(Float, nullable=True)

    applicable_cruises: Mapped[list | None] = mapped_column(JSON, nullable=True)
    applicable_categories: Mapped[list | None] = mapped_column(JSON, nullable=True)

    priority: Mapped[int] = mapped_column(Integer, default=100, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime)


class PromotionCode(Base):
    __tablename__ = "promotion_codes"

    code: Mapped[str] = mapped_column(String, primary_key=True)  # stored upper-cased
    type: Mapped[str] = mapped_column(String)  # percentage|fixed
    value: Mapped[float] = mapped_column(Float)
    currency: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)

    valid_from: Mapped[datetime] = mapped_column(DateTime)
    valid_until: Mapped[datetime] = mapped_column(DateTime)

    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_uses: Mapped[int] = mapped_column(Integer, default=0)
    max_uses_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_order_amount: Mapped[float | None] = mapped_column(Float, nullable=True)

    applicable_cruises: Mapped[list | None] = mapped_column(JSON, nullable=True)
    applicable_categories: Mapped[list | None] = mapped_column(JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime)


class PromotionUsage(Base):
    __tablename__ = "promotion_usages"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    code: Mapped[str] = mapped_column(String, index=True)
    user_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    used_at: Mapped[datetime] = mapped_column(DateTime)


class PriceHistory(Base):
    __tablename__ = "price_history"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    cruise_id: Mapped[str] = mapped_column(String, index=True)
    cabin_category: Mapped[str] = mapped_column(String, index=True)
    old_price: Mapped[float] = mapped_column(Float)
    new_price: Mapped[float] = mapped_column(Float)
    change_reason: Mapped[str] = mapped_column(String, index=True)  # inventory|demand|promotion|manual
    change_details: Mapped[dict] = mapped_column(JSON)
    changed_by: Mapped[str] = mapped_column(String, default="system")
    changed_at: Mapped[datetime] = mapped_column(DateTime, index=True)
