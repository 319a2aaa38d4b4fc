"""Input gathering: market quote to calculator submission."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from fairvalue.config import ValuationDefaults
from fairvalue.data.contracts import Scenario, ScenarioAssumptions, ValuationInputs
from fairvalue.data.market_data import (
    MarketDataProvider,
    MarketQuote,
    auto_select_provider,
)

logger = logging.getLogger(__name__)

__all__ = ["MarketQuote", "inputs_from_quote", "load_inputs"]


def inputs_from_quote(
    quote: MarketQuote,
    defaults: ValuationDefaults | None = None,
    metric_value: float | None = None,
    named_scenarios: Mapping[Scenario, ScenarioAssumptions] | None = None,
) -> ValuationInputs:
    """Build a submission from a market quote and form defaults.

    Args:
        quote: Quote from a market data provider.
        defaults: Growth, return, multiple and horizon defaults.
        metric_value: Per-share metric override (OCF or FCF per share,
            which the quote does not carry). Defaults to the quote's EPS.
        named_scenarios: Optional pessimistic/neutral/optimistic set.

    Returns:
        ValuationInputs priced and named from the quote.
    """
    defaults = defaults or ValuationDefaults()
    return ValuationInputs(
        stock_name=quote.name,
        current_price=quote.price,
        metric_value=quote.metric_value if metric_value is None else metric_value,
        years_to_project=defaults.years_to_project,
        currency=quote.currency,
        base_assumptions=ScenarioAssumptions(
            estimated_growth_pct=defaults.estimated_growth_pct,
            desired_return_pct=defaults.desired_return_pct,
            terminal_multiple=defaults.terminal_multiple,
        ),
        named_scenarios=None if named_scenarios is None else dict(named_scenarios),
    )


def load_inputs(
    symbol: str,
    provider: MarketDataProvider | None = None,
    defaults: ValuationDefaults | None = None,
    metric_value: float | None = None,
    named_scenarios: Mapping[Scenario, ScenarioAssumptions] | None = None,
) -> ValuationInputs:
    """Fetch a quote and turn it into a calculator submission.

    Provider errors propagate unchanged.
    """
    provider = provider or auto_select_provider()
    quote = provider.quote(symbol)
    logger.info("%s: loaded quote for %s", symbol, quote.name)
    return inputs_from_quote(quote, defaults, metric_value, named_scenarios)
