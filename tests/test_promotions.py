from datetime import datetime, timedelta
from decimal import Decimal

from cruise_pricing.domain import PromotionCode
from cruise_pricing.promotions import PromotionValidator, discount_for
from cruise_pricing.stores import InMemoryPromotionStore

NOW = datetime(2025, 7, 1, 12, 0)


def _promo(code: str = "SUMMER2025", **kw) -> PromotionCode:
    values = dict(
        code=code,
        type="percentage",
        value=15,
        valid_from=NOW - timedelta(days=30),
        valid_until=NOW + timedelta(days=30),
    )
    values.update(kw)
    return PromotionCode(**values)


def _validator(*promos, usages=None) -> PromotionValidator:
    store = InMemoryPromotionStore(promos, usages=usages)
    return PromotionValidator(store, usage_ledger=store)


def _check(validator, code="SUMMER2025", cruise="c1", category="balcony", total=2500, user=None, now=NOW):
    return validator.validate(code, cruise, category, total, user_id=user, now=now)


def test_valid_percentage_code():
    result = _check(_validator(_promo()))
    assert result.is_valid
    assert result.discount_amount == Decimal("375.00")
    assert result.code == "SUMMER2025"
    assert result.reason is None
    assert result.message == "Discount of $375.00 applied"


def test_lookup_is_case_insensitive():
    result = _check(_validator(_promo()), code="  summer2025 ")
    assert result.is_valid
    assert result.code == "SUMMER2025"


def test_unknown_code():
    result = _check(_validator(_promo()), code="WINTER")
    assert not result.is_valid
    assert result.reason == "NOT_FOUND"
    assert result.message == "Invalid promotion code"
    assert result.discount_amount == Decimal("0.00")


def test_each_rejection_reason():
    v = _validator(
        _promo("OFF", is_active=False),
        _promo("OLD", valid_until=NOW - timedelta(seconds=1)),
        _promo("SOON", valid_from=NOW + timedelta(days=1)),
        _promo("USEDUP", max_uses=10, current_uses=10),
        _promo("ONCE", max_uses_per_user=1),
        _promo("BIG", min_order_amount=5000),
        _promo("SHIP", applicable_cruises=frozenset({"c9"})),
        _promo("SUITES", applicable_categories=frozenset({"suite"})),
        usages={("ONCE", "u1"): 1},
    )
    expected = {
        "OFF": ("INACTIVE", "Promotion code is not active"),
        "OLD": ("EXPIRED", "Promotion code has expired"),
        "SOON": ("EXPIRED", "Promotion code has expired"),
        "USEDUP": ("USAGE_LIMIT", "Promotion code usage limit reached"),
        "ONCE": ("USER_LIMIT", "Promotion code already used the maximum number of times by this user"),
        "BIG": ("MIN_ORDER", "Minimum order amount of $5000 required"),
        "SHIP": ("CRUISE_NOT_APPLICABLE", "Promotion not applicable to this cruise"),
        "SUITES": ("CATEGORY_NOT_APPLICABLE", "Promotion not applicable to this cabin category"),
    }
    for code, (reason, message) in expected.items():
        result = _check(v, code=code, user="u1")
        assert not result.is_valid, code
        assert result.reason == reason, code
        assert result.message == message, code
        assert result.discount_amount == Decimal("0.00")


def test_first_failing_check_is_reported():
    # Inactive, expired, used up and below minimum all at once.
    promo = _promo(
        is_active=False,
        valid_until=NOW - timedelta(days=1),
        max_uses=1,
        current_uses=1,
        min_order_amount=10_000,
        applicable_cruises=frozenset({"c9"}),
    )
    assert _check(_validator(promo)).reason == "INACTIVE"

    promo = _promo(valid_until=NOW - timedelta(days=1), max_uses=1, current_uses=1, min_order_amount=10_000)
    assert _check(_validator(promo)).reason == "EXPIRED"

    promo = _promo(max_uses=1, current_uses=1, min_order_amount=10_000, applicable_cruises=frozenset({"c9"}))
    assert _check(_validator(promo)).reason == "USAGE_LIMIT"

    promo = _promo(min_order_amount=10_000, applicable_cruises=frozenset({"c9"}))
    assert _check(_validator(promo)).reason == "MIN_ORDER"

    promo = _promo(applicable_cruises=frozenset({"c9"}), applicable_categories=frozenset({"suite"}))
    assert _check(_validator(promo)).reason == "CRUISE_NOT_APPLICABLE"


def test_per_user_cap_needs_a_user():
    v = _validator(_promo(max_uses_per_user=1), usages={("SUMMER2025", "u1"): 1})
    assert _check(v, user="u1").reason == "USER_LIMIT"
    assert _check(v, user="u2").is_valid
    assert _check(v).is_valid


def test_window_bounds_are_inclusive_and_monotonic():
    promo = _promo(valid_from=NOW, valid_until=NOW + timedelta(days=10))
    v = _validator(promo)
    assert not _check(v, now=NOW - timedelta(seconds=1)).is_valid
    assert _check(v, now=NOW).is_valid
    assert _check(v, now=NOW + timedelta(days=10)).is_valid

    # Once expired, any later instant is expired too.
    for days in (11, 12, 30, 365):
        assert _check(v, now=NOW + timedelta(days=days)).reason == "EXPIRED"


def test_aware_now_is_compared_as_utc():
    from datetime import timezone

    promo = _promo(valid_from=NOW, valid_until=NOW + timedelta(hours=1))
    aware = (NOW + timedelta(minutes=30)).replace(tzinfo=timezone.utc)
    assert _check(_validator(promo), now=aware).is_valid


def test_minimum_order_is_inclusive():
    v = _validator(_promo(min_order_amount=2000))
    assert _check(v, total=2000).is_valid
    assert _check(v, total=Decimal("1999.99")).reason == "MIN_ORDER"


def test_discount_amounts():
    assert discount_for(_promo(value=15), Decimal("1999.99")) == Decimal("300.00")
    assert discount_for(_promo(value=10), Decimal("7296.00")) == Decimal("729.60")
    assert discount_for(_promo(type="fixed", value=99.99), Decimal("50")) == Decimal("99.99")
