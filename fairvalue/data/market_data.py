"""Market data lookup and symbol search.

Provides a MarketDataProvider protocol with two implementations:
- AlphaVantageProvider: Primary, using the Alpha Vantage query endpoint
  behind a time-boxed response cache.
- YFinanceProvider: Fallback when no Alpha Vantage API key is available.

Values returned here are handed to the valuation engine as-is; currency
consistency between price and metric is not checked.
"""

from __future__ import annotations

import logging
import math
import os
import time
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import urlencode

import requests

from fairvalue.config import MarketDataConfig
from fairvalue.data.cache import TTLCache
from fairvalue.data.contracts import Currency, get_currency

logger = logging.getLogger(__name__)

_RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
_DEFAULT_CURRENCY_CODE = "USD"
_UNAVAILABLE = "Not available"


class MarketDataError(Exception):
    """Market data could not be retrieved."""


class RateLimitError(MarketDataError):
    """The data vendor refused the request because of its call quota."""


class SymbolNotFoundError(MarketDataError):
    """The vendor has no data for the requested symbol."""


@dataclass(frozen=True)
class SymbolMatch:
    """One symbol search candidate."""

    symbol: str
    name: str
    type: str
    region: str
    currency: str


@dataclass(frozen=True)
class MarketQuote:
    """Current market snapshot for one symbol.

    Attributes:
        symbol: Ticker as requested.
        name: Company name (falls back to the symbol).
        price: Latest traded price.
        currency: Quote currency.
        metric_value: Latest annual EPS, 0.0 if unavailable.
        sector: Business sector.
        industry: Industry.
        description: Company description.
    """

    symbol: str
    name: str
    price: float
    currency: Currency
    metric_value: float
    sector: str
    industry: str
    description: str


class MarketDataProvider(Protocol):
    """Interface for quote lookup and symbol search."""

    def search(self, query: str) -> list[SymbolMatch]:
        """Return ordered candidates for a partial name or ticker.

        Queries shorter than the configured minimum return an empty list.
        """
        ...

    def quote(self, symbol: str) -> MarketQuote:
        """Fetch the current quote for a symbol.

        Raises:
            SymbolNotFoundError: No data for the symbol.
            RateLimitError: Vendor quota exhausted.
            MarketDataError: Any other retrieval failure.
        """
        ...


def _safe_float(value: object, default: float = 0.0) -> float:
    """Parse a vendor numeric field, defaulting on blanks and 'None'."""
    try:
        f = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if not math.isfinite(f):
        return default
    return f


class AlphaVantageProvider:
    """Quotes and symbol search from the Alpha Vantage query API.

    Successful responses are cached per request URL for
    ``config.cache_ttl_seconds``. Failed responses are never cached.
    Retries with exponential backoff on 429/5xx status codes and
    transport errors.

    Args:
        api_key: Alpha Vantage key (from ALPHA_VANTAGE_API_KEY).
        config: Endpoint, timeout, retry and cache parameters.
        cache: Response cache; a fresh TTLCache when omitted.
    """

    def __init__(
        self,
        api_key: str,
        config: MarketDataConfig | None = None,
        cache: TTLCache | None = None,
    ) -> None:
        self._api_key = api_key
        self._config = config or MarketDataConfig()
        self._cache = cache or TTLCache(ttl_seconds=self._config.cache_ttl_seconds)

    def search(self, query: str) -> list[SymbolMatch]:
        keywords = query.strip()
        if len(keywords) < self._config.min_query_length:
            return []

        data = self._request({"function": "SYMBOL_SEARCH", "keywords": keywords})
        matches = data.get("bestMatches") or []
        results = [
            SymbolMatch(
                symbol=m.get("1. symbol", ""),
                name=m.get("2. name", ""),
                type=m.get("3. type", ""),
                region=m.get("4. region", ""),
                currency=m.get("8. currency") or _DEFAULT_CURRENCY_CODE,
            )
            for m in matches
        ]
        logger.info("Search %r: %d matches", keywords, len(results))
        return results

    def quote(self, symbol: str) -> MarketQuote:
        symbol = symbol.strip()
        if not symbol:
            raise ValueError("Ticker symbol is required")

        quote_data = self._request({"function": "GLOBAL_QUOTE", "symbol": symbol})
        global_quote = quote_data.get("Global Quote") or {}
        if not global_quote.get("05. price"):
            raise SymbolNotFoundError(f"{symbol}: no price available")
        price = _safe_float(global_quote["05. price"])

        overview = self._request({"function": "OVERVIEW", "symbol": symbol})
        if not overview.get("Symbol"):
            raise SymbolNotFoundError(f"{symbol}: no company overview available")

        income = self._request({"function": "INCOME_STATEMENT", "symbol": symbol})
        reports = income.get("annualReports") or []
        eps = _safe_float(reports[0].get("eps")) if reports else 0.0

        currency = get_currency(overview.get("Currency") or _DEFAULT_CURRENCY_CODE)
        logger.info("%s: price %.2f %s, EPS %.2f", symbol, price, currency.code, eps)
        return MarketQuote(
            symbol=symbol,
            name=overview.get("Name") or symbol,
            price=price,
            currency=currency,
            metric_value=eps,
            sector=overview.get("Sector") or _UNAVAILABLE,
            industry=overview.get("Industry") or _UNAVAILABLE,
            description=overview.get("Description") or _UNAVAILABLE,
        )

    def _request(self, params: dict[str, str]) -> dict[str, Any]:
        """Cached GET for one query."""
        query = dict(params, apikey=self._api_key)
        url = f"{self._config.base_url}?{urlencode(query)}"
        return self._cache.get_or_fetch(url, lambda: self._fetch(query))  # type: ignore[no-any-return]

    def _fetch(self, params: dict[str, str]) -> dict[str, Any]:
        """Uncached GET with retry logic.

        Raises:
            RateLimitError: Response body carries a quota notice, or every
                attempt was answered with HTTP 429.
            SymbolNotFoundError: Response body carries an error message.
            MarketDataError: Transport failure after all retries, or a
                malformed response.
        """
        max_retries = self._config.max_retries
        function = params.get("function", "?")
        last_status: int | None = None

        for attempt in range(max_retries):
            try:
                response = requests.get(
                    self._config.base_url,
                    params=params,
                    timeout=self._config.request_timeout,
                )

                if response.status_code in _RETRY_STATUS_CODES:
                    last_status = response.status_code
                    if attempt < max_retries - 1:
                        sleep_time = self._config.backoff_factor * (2**attempt)
                        logger.warning(
                            "Alpha Vantage %s returned %d, retrying in %.1fs "
                            "(attempt %d/%d)",
                            function,
                            response.status_code,
                            sleep_time,
                            attempt + 1,
                            max_retries,
                        )
                        time.sleep(sleep_time)
                    continue

                response.raise_for_status()
                data = response.json()

            except requests.RequestException as e:
                if attempt < max_retries - 1:
                    sleep_time = self._config.backoff_factor * (2**attempt)
                    logger.warning(
                        "Alpha Vantage request failed: %s. Retrying in %.1fs "
                        "(attempt %d/%d)",
                        e,
                        sleep_time,
                        attempt + 1,
                        max_retries,
                    )
                    time.sleep(sleep_time)
                    continue
                raise MarketDataError(
                    f"Alpha Vantage {function} failed after {max_retries} attempts: {e}"
                ) from e
            except ValueError as e:
                raise MarketDataError(
                    f"Alpha Vantage {function} returned malformed JSON"
                ) from e

            return _check_payload(data, function)

        if last_status == 429:
            raise RateLimitError(
                f"Alpha Vantage {function} rate limited after {max_retries} attempts"
            )
        raise MarketDataError(
            f"Alpha Vantage {function} failed after {max_retries} attempts "
            f"(HTTP {last_status})"
        )


def _check_payload(data: Any, function: str) -> dict[str, Any]:
    """Translate vendor error bodies into exceptions."""
    if not isinstance(data, dict):
        raise MarketDataError(f"Alpha Vantage {function}: unexpected response shape")
    if "Note" in data or "Information" in data:
        notice = data.get("Note") or data.get("Information")
        logger.warning("Alpha Vantage rate limit: %s", notice)
        raise RateLimitError("API request limit reached, try again in a minute")
    if "Error Message" in data:
        raise SymbolNotFoundError(str(data["Error Message"]))
    return data


class YFinanceProvider:
    """Quotes and symbol search via yfinance (fallback provider).

    yfinance is imported lazily so the Alpha Vantage path works without
    touching it.
    """

    def __init__(self, config: MarketDataConfig | None = None) -> None:
        self._config = config or MarketDataConfig()

    def search(self, query: str) -> list[SymbolMatch]:
        keywords = query.strip()
        if len(keywords) < self._config.min_query_length:
            return []

        yf = _import_yfinance()
        try:
            quotes = yf.Search(keywords).quotes
        except Exception as e:
            raise MarketDataError(f"yfinance search failed: {e}") from e

        return [
            SymbolMatch(
                symbol=q.get("symbol", ""),
                name=q.get("longname") or q.get("shortname") or "",
                type=q.get("quoteType", ""),
                region=q.get("exchange", ""),
                currency=q.get("currency") or _DEFAULT_CURRENCY_CODE,
            )
            for q in quotes
        ]

    def quote(self, symbol: str) -> MarketQuote:
        symbol = symbol.strip()
        if not symbol:
            raise ValueError("Ticker symbol is required")

        yf = _import_yfinance()
        try:
            ticker = yf.Ticker(symbol)
            info = ticker.info or {}
            price = _safe_float(
                info.get("currentPrice") or info.get("regularMarketPrice"),
            )
            if price <= 0:
                hist = ticker.history(period="5d")
                if not hist.empty:
                    price = _safe_float(hist["Close"].iloc[-1])
        except Exception as e:
            raise MarketDataError(f"{symbol}: yfinance error: {e}") from e

        if price <= 0:
            raise SymbolNotFoundError(f"{symbol}: no price available")

        return MarketQuote(
            symbol=symbol,
            name=info.get("longName") or info.get("shortName") or symbol,
            price=price,
            currency=get_currency(info.get("currency") or _DEFAULT_CURRENCY_CODE),
            metric_value=_safe_float(info.get("trailingEps")),
            sector=info.get("sector") or _UNAVAILABLE,
            industry=info.get("industry") or _UNAVAILABLE,
            description=info.get("longBusinessSummary") or _UNAVAILABLE,
        )


def _import_yfinance() -> Any:
    try:
        import yfinance as yf  # noqa: PLC0415
    except ImportError as e:
        raise MarketDataError(
            "yfinance is not installed. Install it with: pip install yfinance"
        ) from e
    return yf


def auto_select_provider(config: MarketDataConfig | None = None) -> MarketDataProvider:
    """Select a provider based on available credentials.

    Returns AlphaVantageProvider if ALPHA_VANTAGE_API_KEY is set in the
    environment, otherwise YFinanceProvider.
    """
    api_key = os.environ.get("ALPHA_VANTAGE_API_KEY")
    if api_key:
        logger.info("Using AlphaVantageProvider (ALPHA_VANTAGE_API_KEY found)")
        return AlphaVantageProvider(api_key=api_key, config=config)
    logger.warning("ALPHA_VANTAGE_API_KEY not found, falling back to yfinance")
    return YFinanceProvider(config=config)
