"""Single vs. multi-scenario aggregation.

In single-scenario mode the base assumptions are projected directly.
In multi-scenario mode the pessimistic, neutral and optimistic
assumption sets are each projected; the reported fair value is their
unweighted mean and the safety margin is recomputed from that mean.
The neutral series is the reported baseline series.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from fairvalue.analysis.derived_metrics import safety_margin
from fairvalue.analysis.projection import project
from fairvalue.data.contracts import (
    SCENARIO_ORDER,
    ProjectionOutcome,
    Scenario,
    ScenarioAssumptions,
    ScenarioResultSet,
    ValuationInputs,
)

logger = logging.getLogger(__name__)

DEFAULT_SCENARIOS: Mapping[Scenario, ScenarioAssumptions] = MappingProxyType({
    Scenario.PESSIMISTIC: ScenarioAssumptions(
        estimated_growth_pct=10.0, desired_return_pct=12.0, terminal_multiple=12.0,
    ),
    Scenario.NEUTRAL: ScenarioAssumptions(
        estimated_growth_pct=15.0, desired_return_pct=12.0, terminal_multiple=15.0,
    ),
    Scenario.OPTIMISTIC: ScenarioAssumptions(
        estimated_growth_pct=20.0, desired_return_pct=12.0, terminal_multiple=18.0,
    ),
})


@dataclass(frozen=True)
class AggregateOutcome:
    """Reportable result of one calculation.

    Attributes:
        fair_value: Direct fair value, or the mean of the three scenarios.
        safety_margin_pct: Margin of ``fair_value`` against the price.
            None if the price is not positive.
        projected_series: Base series, or the neutral scenario's series.
        scenario_results: Per-scenario outcomes. None in single mode.
    """

    fair_value: float
    safety_margin_pct: float | None
    projected_series: tuple[float, ...]
    scenario_results: ScenarioResultSet | None = None


def aggregate(
    metric_value: float,
    current_price: float,
    years: int,
    base_assumptions: ScenarioAssumptions,
    named_scenarios: Mapping[Scenario, ScenarioAssumptions] | None = None,
) -> AggregateOutcome:
    """Run the projector for one or three scenarios and combine.

    Args:
        metric_value: Current per-share metric.
        current_price: Market price per share.
        years: Projection horizon.
        base_assumptions: Used when no named scenarios are given.
        named_scenarios: Pessimistic, neutral and optimistic assumptions.
            All three are required when given.

    Returns:
        AggregateOutcome.

    Raises:
        ValueError: If named_scenarios lacks one of the three scenarios.
    """
    if named_scenarios is None:
        outcome = project(metric_value, base_assumptions, years, current_price)
        return AggregateOutcome(
            fair_value=outcome.fair_value,
            safety_margin_pct=outcome.safety_margin_pct,
            projected_series=outcome.projected_series,
        )

    missing = [s.value for s in SCENARIO_ORDER if s not in named_scenarios]
    if missing:
        raise ValueError(f"Multi-scenario valuation missing scenarios: {missing}")

    scenario_results: dict[Scenario, ProjectionOutcome] = {}
    for scenario in SCENARIO_ORDER:
        scenario_results[scenario] = project(
            metric_value, named_scenarios[scenario], years, current_price,
        )

    mean_fair_value = (
        sum(o.fair_value for o in scenario_results.values()) / len(SCENARIO_ORDER)
    )
    neutral = scenario_results[Scenario.NEUTRAL]

    logger.debug(
        "Aggregated %d scenarios: mean fair value %.4f",
        len(scenario_results),
        mean_fair_value,
    )
    return AggregateOutcome(
        fair_value=mean_fair_value,
        safety_margin_pct=safety_margin(mean_fair_value, current_price),
        projected_series=neutral.projected_series,
        scenario_results=MappingProxyType(scenario_results),
    )


def aggregate_inputs(inputs: ValuationInputs) -> AggregateOutcome:
    """Aggregate a full calculator submission."""
    return aggregate(
        inputs.metric_value,
        inputs.current_price,
        inputs.years_to_project,
        inputs.base_assumptions,
        inputs.named_scenarios,
    )
