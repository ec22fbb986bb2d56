# Overview: Demand forecast for one stock ledger entry (pure functions, no DB access).

"""
Forecast rules:

- Fewer than MIN_HISTORY_PERIODS months of sales history: zero-confidence
  forecast, predicted demand 0, reorder recommendation = low-stock threshold.
- Otherwise: moving average over the last MIN_HISTORY_PERIODS months,
  projected with GROWTH_FACTOR, then
      recommended_reorder = max(2 * predicted, threshold)
      reorder_point       = ceil(0.5 * predicted)
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

MIN_HISTORY_PERIODS = 3
GROWTH_FACTOR = 1.1
FORECAST_CONFIDENCE = 70


@dataclass(frozen=True)
class Forecast:
    predicted_demand: int
    confidence: int
    recommended_reorder: int
    reorder_point: int
    periods_used: int

    @property
    def has_history(self) -> bool:
        return self.periods_used >= MIN_HISTORY_PERIODS

    def to_dict(self) -> dict:
        return {
            "predicted_demand": self.predicted_demand,
            "confidence": self.confidence,
            "recommended_reorder": self.recommended_reorder,
            "reorder_point": self.reorder_point,
            "periods_used": self.periods_used,
        }


def forecast_demand(monthly_quantities: Sequence[int], low_stock_threshold: int) -> Forecast:
    """
    Args:
        monthly_quantities: Units sold per month, oldest first
        low_stock_threshold: The entry's current threshold

    Returns:
        Forecast snapshot (never raises for short history)
    """
    periods = len(monthly_quantities)
    if periods < MIN_HISTORY_PERIODS:
        return Forecast(
            predicted_demand=0,
            confidence=0,
            recommended_reorder=low_stock_threshold,
            reorder_point=0,
            periods_used=periods,
        )

    recent = list(monthly_quantities)[-MIN_HISTORY_PERIODS:]
    average = sum(recent) / MIN_HISTORY_PERIODS
    predicted = _round_half_up(average * GROWTH_FACTOR)

    return Forecast(
        predicted_demand=predicted,
        confidence=FORECAST_CONFIDENCE,
        recommended_reorder=max(2 * predicted, low_stock_threshold),
        reorder_point=math.ceil(0.5 * predicted),
        periods_used=MIN_HISTORY_PERIODS,
    )


def _round_half_up(value: float) -> int:
    # round() is banker's rounding; demand figures round .5 upwards
    return int(math.floor(value + 0.5))
