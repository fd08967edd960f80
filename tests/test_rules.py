from datetime import datetime

import pytest

from cruise_pricing.domain import NoApplicableRuleError, PricingRule
from cruise_pricing.rules import RuleRepository, select_rule
from cruise_pricing.stores import InMemoryRuleStore


def _rule(id: str, **kw) -> PricingRule:
    kw.setdefault("created_at", datetime(2025, 1, 1))
    return PricingRule(id=id, name=id, **kw)


def test_highest_priority_wins():
    rules = [_rule("low", priority=10), _rule("high", priority=200), _rule("mid", priority=100)]
    assert select_rule(rules, "c1", "suite").id == "high"


def test_ties_break_on_newest_then_id():
    a = _rule("a", created_at=datetime(2025, 2, 1))
    b = _rule("b", created_at=datetime(2025, 1, 1))
    c = _rule("c", created_at=datetime(2025, 2, 1))
    assert select_rule([a, b], "c1", "suite").id == "a"
    assert select_rule([a, c], "c1", "suite").id == select_rule([c, a], "c1", "suite").id == "c"


def test_scoped_rules_only_apply_in_scope():
    default = _rule("default", priority=10)
    suites = _rule("suites", priority=50, applicable_categories=frozenset({"suite"}))
    other_cruise = _rule("c9", priority=90, applicable_cruises=frozenset({"c9"}))
    rules = [default, suites, other_cruise]

    assert select_rule(rules, "c1", "suite").id == "suites"
    assert select_rule(rules, "c1", "inside").id == "default"
    assert select_rule(rules, "c9", "inside").id == "c9"


def test_inactive_rules_are_ignored():
    rules = [_rule("off", priority=500, is_active=False), _rule("on", priority=1)]
    assert select_rule(rules, "c1", "suite").id == "on"
    assert RuleRepository(InMemoryRuleStore(rules)).rule_for("c1", "suite").id == "on"


def test_no_candidate_raises():
    with pytest.raises(NoApplicableRuleError):
        select_rule([_rule("c9", applicable_cruises=frozenset({"c9"}))], "c1", "suite")
    with pytest.raises(NoApplicableRuleError):
        RuleRepository(InMemoryRuleStore()).rule_for("c1", "suite")
