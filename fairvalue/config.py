"""Calculator configuration dataclasses."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# Symbol search is only worth a request once the query narrows the field.
MIN_SEARCH_QUERY_LENGTH: int = 2

# Saved passwords shorter than this are rejected as weak.
MIN_PASSWORD_LENGTH: int = 6


@dataclass
class ValuationDefaults:
    """Form defaults applied when the user leaves a field untouched."""

    years_to_project: int = 5
    estimated_growth_pct: float = 15.0
    desired_return_pct: float = 12.0
    terminal_multiple: float = 15.0
    currency_code: str = "EUR"


@dataclass
class MarketDataConfig:
    """Market data client parameters."""

    base_url: str = "https://www.alphavantage.co/query"
    cache_ttl_seconds: float = 300.0
    request_timeout: int = 10
    max_retries: int = 3
    backoff_factor: float = 1.0
    min_query_length: int = MIN_SEARCH_QUERY_LENGTH


@dataclass
class StoreConfig:
    """Local account and valuation store."""

    db_path: Path = Path("data/fairvalue.db")

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Build a config honouring FAIRVALUE_DB_PATH when set."""
        env_path = os.environ.get("FAIRVALUE_DB_PATH")
        if env_path:
            return cls(db_path=Path(env_path))
        return cls()


@dataclass
class ReportConfig:
    """PDF report and chart output."""

    output_dir: Path = Path("output")
    chart_dpi: int = 150
