"""Projection charts for a single valuation result.

Both public functions take a ValuationResult and return a matplotlib
Figure. Uses the viridis colourmap; non-baseline scenarios are dashed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.axes import Axes
from matplotlib.figure import Figure
from matplotlib.ticker import FuncFormatter

from fairvalue.analysis.derived_metrics import scenario_price_targets
from fairvalue.data.contracts import Scenario

if TYPE_CHECKING:
    from fairvalue.data.contracts import ValuationResult

logger = logging.getLogger(__name__)

_VIRIDIS = plt.colormaps["viridis"]
_SCENARIO_COLOURS = {
    "pessimistic": _VIRIDIS(0.1),
    "neutral": _VIRIDIS(0.45),
    "optimistic": _VIRIDIS(0.8),
    "base": _VIRIDIS(0.45),
}


def _currency_axis(ax: Axes, result: ValuationResult) -> None:
    symbol = result.inputs.currency.symbol
    ax.yaxis.set_major_formatter(
        FuncFormatter(lambda v, _pos: f"{symbol}{v:,.2f}")
    )


def metric_projection(result: ValuationResult) -> Figure:
    """Line chart of the projected per-share metric by calendar year.

    The baseline (base or neutral) series is solid. In multi-scenario
    results the pessimistic and optimistic series are drawn dashed.

    Args:
        result: A built valuation result.

    Returns:
        Matplotlib Figure.
    """
    fig, ax = plt.subplots(figsize=(10, 5))
    years = np.asarray(result.years)

    ax.plot(
        years,
        result.projected_series,
        marker="o",
        color=_SCENARIO_COLOURS["base"],
        label=f"{result.method.label} - Base",
    )

    if result.scenario_results is not None:
        for scenario in (Scenario.PESSIMISTIC, Scenario.OPTIMISTIC):
            outcome = result.scenario_results[scenario]
            ax.plot(
                years,
                outcome.projected_series,
                linestyle="--",
                marker="o",
                color=_SCENARIO_COLOURS[scenario.value],
                label=scenario.label,
            )

    ax.set_title(f"{result.stock_name} — {result.method.label} Projection")
    ax.set_xlabel("Year")
    ax.set_ylabel(result.method.label)
    ax.set_xticks(years)
    _currency_axis(ax, result)
    ax.legend(loc="upper left")
    fig.tight_layout()
    return fig


def price_projection(result: ValuationResult) -> Figure:
    """Current price against the undiscounted terminal price per scenario.

    Args:
        result: A built valuation result.

    Returns:
        Matplotlib Figure with one segment per scenario (or one for base).
    """
    targets = scenario_price_targets(result)
    first_year = result.years[0]
    last_year = result.years[-1]

    fig, ax = plt.subplots(figsize=(10, 5))
    for _, row in targets.iterrows():
        name = str(row["scenario"])
        label = "Projected price" if name == "base" else f"Projected price - {name.capitalize()}"
        ax.plot(
            [first_year, last_year],
            [result.current_price, float(row["terminal_price"])],
            marker="o",
            linestyle="-" if name in ("base", "neutral") else "--",
            color=_SCENARIO_COLOURS[name],
            label=label,
        )

    ax.set_title(f"{result.stock_name} — Price Projection")
    ax.set_xlabel("Year")
    ax.set_ylabel("Price")
    ax.set_xticks(sorted({first_year, last_year}))
    _currency_axis(ax, result)
    ax.legend(loc="upper left")
    fig.tight_layout()
    return fig
