"""Derived valuation metrics.

Standalone formulas used for supplementary reporting: terminal price,
potential CAGR, safety margin, and cross-method / per-scenario summary
tables. None of these feed back into the fair value itself.

Undefined results are returned as None (scalars) or pandas NA (tables),
never as nan or inf.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable

import pandas as pd

from fairvalue.data.contracts import (
    METHOD_ORDER,
    SCENARIO_ORDER,
    ValuationResult,
)

logger = logging.getLogger(__name__)

_SCENARIO_COLUMNS = [
    "scenario",
    "growth_pct",
    "terminal_multiple",
    "terminal_price",
    "potential_cagr_pct",
    "fair_value",
    "safety_margin_pct",
]

_METHOD_COLUMNS = [
    "method",
    "label",
    "fair_value",
    "safety_margin_pct",
    "terminal_multiple",
]


def safety_margin(fair_value: float, current_price: float) -> float | None:
    """Percent by which fair value exceeds the current price.

    Positive means undervalued per the model.

    Args:
        fair_value: Model fair value per share.
        current_price: Market price per share.

    Returns:
        Margin in percent, or None if the price is not positive or the result
        is not finite.
    """
    if current_price <= 0:
        return None
    margin = (fair_value - current_price) / current_price * 100
    if not math.isfinite(margin):
        return None
    return margin


def terminal_price(
    metric_value: float,
    growth_pct: float,
    terminal_multiple: float,
    years: int,
) -> float:
    """Projected share price after ``years`` of growth at an exit multiple.

    Same arithmetic as the projector's terminal value, undiscounted.
    """
    future_metric = metric_value * (1 + growth_pct / 100) ** years
    return future_metric * terminal_multiple


def potential_cagr(
    current_price: float,
    future_price: float,
    years: float,
) -> float | None:
    """Annualised return implied by moving from current to future price.

    Args:
        current_price: Price paid today.
        future_price: Projected price after ``years``.
        years: Holding period.

    Returns:
        CAGR in percent, or None if the price is non-positive, the
        period is zero, the price ratio is negative, or the result is
        not finite.
    """
    if current_price <= 0 or years == 0:
        return None
    ratio = future_price / current_price
    if ratio < 0:
        return None
    try:
        cagr = (ratio ** (1 / years) - 1) * 100
    except (ZeroDivisionError, OverflowError):
        return None
    if not math.isfinite(cagr):
        return None
    return cagr


def average_fair_value(results: Iterable[ValuationResult | None]) -> float | None:
    """Mean fair value across the computed methods.

    Returns:
        Arithmetic mean of fair values, or None if no method was computed.
    """
    values = [r.fair_value for r in results if r is not None]
    if not values:
        return None
    return sum(values) / len(values)


def average_safety_margin(
    results: Iterable[ValuationResult | None],
    current_price: float,
) -> float | None:
    """Safety margin of the cross-method average fair value."""
    average = average_fair_value(results)
    if average is None:
        return None
    return safety_margin(average, current_price)


def scenario_price_targets(result: ValuationResult) -> pd.DataFrame:
    """Per-scenario terminal price and potential CAGR for one result.

    One row per scenario in pessimistic/neutral/optimistic order, or a
    single ``base`` row for a single-scenario result. Terminal price and
    CAGR are recomputed from the inputs rather than read from the
    projection.

    Args:
        result: A built valuation result.

    Returns:
        DataFrame with columns scenario, growth_pct, terminal_multiple,
        terminal_price, potential_cagr_pct, fair_value, safety_margin_pct.
        Undefined cells hold pandas NA.
    """
    inputs = result.inputs
    years = inputs.years_to_project
    rows: list[dict[str, object]] = []

    if inputs.named_scenarios is not None and result.scenario_results is not None:
        for scenario in SCENARIO_ORDER:
            assumptions = inputs.named_scenarios[scenario]
            outcome = result.scenario_results[scenario]
            price = terminal_price(
                inputs.metric_value,
                assumptions.estimated_growth_pct,
                assumptions.terminal_multiple,
                years,
            )
            rows.append({
                "scenario": scenario.value,
                "growth_pct": assumptions.estimated_growth_pct,
                "terminal_multiple": assumptions.terminal_multiple,
                "terminal_price": price,
                "potential_cagr_pct": potential_cagr(
                    result.current_price, price, years,
                ),
                "fair_value": outcome.fair_value,
                "safety_margin_pct": outcome.safety_margin_pct,
            })
    else:
        base = inputs.base_assumptions
        price = terminal_price(
            inputs.metric_value,
            base.estimated_growth_pct,
            base.terminal_multiple,
            years,
        )
        rows.append({
            "scenario": "base",
            "growth_pct": base.estimated_growth_pct,
            "terminal_multiple": base.terminal_multiple,
            "terminal_price": price,
            "potential_cagr_pct": potential_cagr(result.current_price, price, years),
            "fair_value": result.fair_value,
            "safety_margin_pct": result.safety_margin_pct,
        })

    df = pd.DataFrame(rows, columns=_SCENARIO_COLUMNS)
    numeric = [c for c in _SCENARIO_COLUMNS if c != "scenario"]
    return df.astype({c: "Float64" for c in numeric})


def method_comparison(results: Iterable[ValuationResult | None]) -> pd.DataFrame:
    """One row per computed method, in eps/ocf/fcf order.

    Args:
        results: Method results; None entries are skipped.

    Returns:
        DataFrame with columns method, label, fair_value,
        safety_margin_pct, terminal_multiple.
    """
    by_method = {r.method: r for r in results if r is not None}
    rows = [
        {
            "method": method.value,
            "label": method.label,
            "fair_value": by_method[method].fair_value,
            "safety_margin_pct": by_method[method].safety_margin_pct,
            "terminal_multiple": (
                by_method[method].inputs.reported_assumptions.terminal_multiple
            ),
        }
        for method in METHOD_ORDER
        if method in by_method
    ]
    logger.debug("Method comparison over %d results", len(rows))
    df = pd.DataFrame(rows, columns=_METHOD_COLUMNS)
    return df.astype({
        "fair_value": "Float64",
        "safety_margin_pct": "Float64",
        "terminal_multiple": "Float64",
    })
