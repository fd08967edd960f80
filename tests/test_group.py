from cruise_pricing.domain import PricingRule
from cruise_pricing.group import group_discount_rate, group_tier

RULE = PricingRule(id="r", name="defaults")


def test_tier_boundaries():
    expected = {1: None, 2: None, 3: "3-5", 5: "3-5", 6: "6-10", 10: "6-10", 11: "11+", 40: "11+"}
    for n, tier in expected.items():
        assert group_tier(n) == tier, n


def test_default_rates():
    expected = {1: 0.0, 2: 0.0, 3: 0.05, 5: 0.05, 6: 0.10, 10: 0.10, 11: 0.15}
    for n, rate in expected.items():
        assert group_discount_rate(n, RULE) == rate, n


def test_rates_are_clamped():
    rule = PricingRule(id="odd", name="odd", group_discount_3_to_5=-0.2, group_discount_11_plus=1.5)
    assert group_discount_rate(4, rule) == 0.0
    assert group_discount_rate(12, rule) == 1.0
