from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from .domain import NoApplicableRuleError, PricingRule, as_naive_utc
from .stores import PricingRuleStore

logger = logging.getLogger(__name__)


def _rank(rule: PricingRule) -> tuple[int, datetime, str]:
    # Higher priority first, then newest, then id; a total order keeps selection idempotent.
    created = as_naive_utc(rule.created_at) if rule.created_at else datetime.min
    return (int(rule.priority), created, rule.id)


def select_rule(rules: Iterable[PricingRule], cruise_id: str, cabin_category: str) -> PricingRule:
    """
    Pick the single rule that prices (cruise_id, cabin_category).

    Candidates are active rules that are unscoped or whose scope includes the
    pair. Unscoped rules are the designated defaults; there is no implicit
    "no adjustment" fallback.
    """
    candidates = [r for r in rules if r.is_active and r.applies_to(cruise_id, cabin_category)]
    if not candidates:
        raise NoApplicableRuleError(cruise_id, cabin_category)
    best = max(candidates, key=_rank)
    logger.debug("Selected pricing rule %s (priority=%s) for cruise=%s category=%s", best.id, best.priority, cruise_id, cabin_category)
    return best


class RuleRepository:
    def __init__(self, store: PricingRuleStore):
        self.store = store

    def rule_for(self, cruise_id: str, cabin_category: str) -> PricingRule:
        return select_rule(self.store.list_active_rules(), cruise_id, cabin_category)
