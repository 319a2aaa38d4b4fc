"""Valuation result assembly and the per-session method table."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fairvalue.analysis.derived_metrics import average_fair_value, average_safety_margin
from fairvalue.analysis.scenarios import AggregateOutcome, aggregate_inputs
from fairvalue.data.contracts import (
    METHOD_ORDER,
    ValuationInputs,
    ValuationMethod,
    ValuationResult,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def epoch_microseconds(created_at: datetime) -> int:
    """Exact integer microseconds since the epoch.

    Naive datetimes are interpreted in the local timezone.
    """
    if created_at.tzinfo is None:
        created_at = created_at.astimezone()
    return (created_at - _EPOCH) // timedelta(microseconds=1)


def result_id(stock_name: str, method: ValuationMethod, created_at: datetime) -> str:
    """Advisory identifier, unique per stock, method and creation instant."""
    return f"{stock_name}-{method.value}-{epoch_microseconds(created_at)}"


def assemble_result(
    method: ValuationMethod,
    inputs: ValuationInputs,
    outcome: AggregateOutcome,
    created_at: datetime,
) -> ValuationResult:
    """Stamp an aggregate outcome into an immutable ValuationResult.

    Args:
        method: Per-share metric the inputs describe.
        inputs: Submission the outcome was computed from.
        outcome: Aggregated projection.
        created_at: Build instant; sets id, timestamp and calendar years.

    Returns:
        ValuationResult with ``years`` running from created_at.year for
        years_to_project + 1 consecutive calendar years.
    """
    start_year = created_at.year
    years = tuple(
        start_year + i for i in range(inputs.years_to_project + 1)
    )
    return ValuationResult(
        id=result_id(inputs.stock_name, method, created_at),
        timestamp=epoch_microseconds(created_at) / 1e6,
        method=method,
        inputs=inputs,
        fair_value=outcome.fair_value,
        current_price=inputs.current_price,
        safety_margin_pct=outcome.safety_margin_pct,
        projected_series=outcome.projected_series,
        years=years,
        scenario_results=outcome.scenario_results,
    )


def build_result(
    method: ValuationMethod,
    inputs: ValuationInputs,
    created_at: datetime,
) -> ValuationResult:
    """Compute and stamp a valuation for one method.

    Args:
        method: Per-share metric the inputs describe.
        inputs: Calculator submission.
        created_at: Build instant supplied by the caller.

    Returns:
        A new ValuationResult.
    """
    outcome = aggregate_inputs(inputs)
    result = assemble_result(method, inputs, outcome, created_at)
    logger.debug(
        "Built %s result for %s: fair value %.4f",
        method.value,
        inputs.stock_name,
        result.fair_value,
    )
    return result


class MethodResults:
    """Latest result per valuation method for one working session.

    Recording a result for a method supersedes the previous one; the
    superseded instance is left untouched.
    """

    def __init__(self) -> None:
        self._results: dict[ValuationMethod, ValuationResult | None] = {
            m: None for m in METHOD_ORDER
        }

    def record(self, result: ValuationResult) -> None:
        self._results[result.method] = result

    def get(self, method: ValuationMethod) -> ValuationResult | None:
        return self._results[method]

    def clear(self) -> None:
        for method in METHOD_ORDER:
            self._results[method] = None

    def computed(self) -> list[ValuationResult]:
        """Recorded results in eps/ocf/fcf order."""
        return [r for r in self._results.values() if r is not None]

    def average_fair_value(self) -> float | None:
        return average_fair_value(self._results.values())

    def average_safety_margin(self, current_price: float) -> float | None:
        return average_safety_margin(self._results.values(), current_price)

    def to_record_valuations(self) -> dict[ValuationMethod, ValuationResult | None]:
        """Method -> result mapping in the shape a saved record holds."""
        return dict(self._results)

    def __len__(self) -> int:
        return len(self.computed())
