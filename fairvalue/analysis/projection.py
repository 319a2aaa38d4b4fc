"""Scenario projection: metric series, discounted fair value, safety margin.

Fixed two-step model:

1. Grow the per-share metric at the estimated rate for N years.
2. Apply the terminal multiple to the year-N metric and discount the
   result back N years at the desired return.

Pure and stateless; callers supply every input including the price.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from fairvalue.analysis.derived_metrics import safety_margin
from fairvalue.data.contracts import ProjectionOutcome, ScenarioAssumptions

logger = logging.getLogger(__name__)


class UndefinedValuationError(ValueError):
    """Raised when a fair value has no finite definition for the inputs."""


def _check_years(years: int) -> None:
    if isinstance(years, bool) or not isinstance(years, (int, np.integer)) or years < 0:
        raise ValueError(f"years must be a non-negative integer, got {years!r}")


def project_series(
    metric_value: float,
    growth_pct: float,
    years: int,
) -> tuple[float, ...]:
    """Compound a per-share metric for years 0..N inclusive.

    Args:
        metric_value: Current per-share metric (year 0).
        growth_pct: Annual growth in percent.
        years: Number of years to project.

    Returns:
        Tuple of length years + 1; element 0 equals metric_value.

    Raises:
        ValueError: If years is negative or not an integer.
    """
    _check_years(years)
    exponents = np.arange(years + 1, dtype=float)
    with np.errstate(over="ignore", invalid="ignore"):
        series = metric_value * np.power(1 + growth_pct / 100, exponents)
    return tuple(float(v) for v in series)


def discount_to_present(value: float, rate_pct: float, years: int) -> float:
    """Discount a year-N value to today at an annual rate.

    Raises:
        UndefinedValuationError: If the discount factor is zero or the
            result is not finite.
    """
    _check_years(years)
    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        factor = float(np.power(1 + rate_pct / 100, float(years)))
    if factor == 0 or not math.isfinite(factor):
        raise UndefinedValuationError(
            f"Discount factor undefined for rate {rate_pct}% over {years} years"
        )
    present = value / factor
    if not math.isfinite(present):
        raise UndefinedValuationError(
            f"Present value not finite (value={value}, factor={factor})"
        )
    return present


def project(
    metric_value: float,
    assumptions: ScenarioAssumptions,
    years: int,
    current_price: float,
) -> ProjectionOutcome:
    """Project one assumption set into a series, fair value and margin.

    Args:
        metric_value: Current per-share metric (EPS, OCF or FCF per share).
        assumptions: Growth, desired return and terminal multiple.
        years: Projection horizon; 0 means no growth and no discounting.
        current_price: Market price used for the safety margin.

    Returns:
        ProjectionOutcome. ``safety_margin_pct`` is None when the price
        is not positive.

    Raises:
        ValueError: If years is negative or not an integer.
        UndefinedValuationError: If the fair value is not finite.
    """
    series = project_series(metric_value, assumptions.estimated_growth_pct, years)
    terminal_value = series[years] * assumptions.terminal_multiple
    if not math.isfinite(terminal_value):
        raise UndefinedValuationError(
            f"Terminal value not finite after {years} years "
            f"at {assumptions.estimated_growth_pct}% growth"
        )
    fair_value = discount_to_present(
        terminal_value, assumptions.desired_return_pct, years,
    )
    margin = safety_margin(fair_value, current_price)

    logger.debug(
        "Projected %d years: terminal=%.4f fair=%.4f margin=%s",
        years,
        terminal_value,
        fair_value,
        "undefined" if margin is None else f"{margin:.2f}%",
    )
    return ProjectionOutcome(
        projected_series=series,
        fair_value=fair_value,
        safety_margin_pct=margin,
    )
