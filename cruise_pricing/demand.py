"""
Demand signal -> demand level -> price multiplier.

The composite score (lead time, seasonality, weekday, booking velocity) is a
tunable heuristic, so it sits behind the `DemandScorer` protocol. The assessor
itself only bands a score into a level and reads the level's multiplier from
the selected pricing rule.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date
from typing import Protocol

from .domain import DemandLevel, DemandSignal, DemandStatus, PricingRule
from .stores import DemandSignalSource

DEMAND_BAND_HIGH = float(os.getenv("DEMAND_BAND_HIGH", "70"))
DEMAND_BAND_MEDIUM = float(os.getenv("DEMAND_BAND_MEDIUM", "40"))

_MULTIPLIER_KNOB: dict[DemandLevel, str] = {
    "high": "demand_multiplier_high",
    "medium": "demand_multiplier_medium",
    "low": "demand_multiplier_low",
}


@dataclass(frozen=True)
class DemandBands:
    """Score cutoffs (inclusive lower bounds) for the high and medium levels."""

    high: float = DEMAND_BAND_HIGH
    medium: float = DEMAND_BAND_MEDIUM

    def __post_init__(self):
        if self.medium > self.high:
            raise ValueError("demand band medium must not exceed high")

    def level(self, score: float) -> DemandLevel:
        if score >= self.high:
            return "high"
        if score >= self.medium:
            return "medium"
        return "low"


class DemandScorer(Protocol):
    def score(self, departure_date: date, today: date, recent_bookings: int) -> DemandSignal: ...


class SeasonalDemandScorer:
    """
    Default 0-100 demand score.

    Factors:
    - lead time: <30 days 30, <60 days 20, <90 days 10, otherwise 0
    - season: June-September and December-January 30, otherwise 10
    - weekday: Saturday/Sunday departures 20, otherwise 0
    - booking velocity (bookings in the trailing window): >=50 20, >=30 15, >=10 10, otherwise 5
    """

    def score(self, departure_date: date, today: date, recent_bookings: int) -> DemandSignal:
        days = (departure_date - today).days
        if days < 30:
            lead = 30
        elif days < 60:
            lead = 20
        elif days < 90:
            lead = 10
        else:
            lead = 0

        season = 30 if departure_date.month in (6, 7, 8, 9, 12, 1) else 10
        weekday = 20 if departure_date.weekday() >= 5 else 0

        if recent_bookings >= 50:
            velocity = 20
        elif recent_bookings >= 30:
            velocity = 15
        elif recent_bookings >= 10:
            velocity = 10
        else:
            velocity = 5

        factors = {
            "days_until_departure": float(lead),
            "seasonality": float(season),
            "weekday": float(weekday),
            "booking_velocity": float(velocity),
        }
        return DemandSignal(score=float(lead + season + weekday + velocity), factors=factors)


class DemandAssessor:
    def __init__(self, source: DemandSignalSource | None, bands: DemandBands | None = None):
        self.source = source
        self.bands = bands or DemandBands()

    def assess(self, cruise_id: str, departure_date: date | None, rule: PricingRule) -> DemandStatus:
        signal = None
        if departure_date is not None and self.source is not None:
            signal = self.source.get_demand_score(cruise_id, departure_date)
        if signal is None:
            return DemandStatus(level="low", multiplier=rule.knob("demand_multiplier_low"))

        level = signal.level if signal.level in _MULTIPLIER_KNOB else self.bands.level(signal.score)
        return DemandStatus(
            level=level,
            multiplier=rule.knob(_MULTIPLIER_KNOB[level]),
            score=signal.score,
            factors=dict(signal.factors),
        )

    def multiplier(self, cruise_id: str, departure_date: date | None, rule: PricingRule) -> float:
        return self.assess(cruise_id, departure_date, rule).multiplier
