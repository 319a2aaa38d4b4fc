"""Tests for fairvalue.data.market_data."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest
import requests

from fairvalue.config import MarketDataConfig
from fairvalue.data.cache import TTLCache
from fairvalue.data.market_data import (
    AlphaVantageProvider,
    MarketDataError,
    RateLimitError,
    SymbolNotFoundError,
    YFinanceProvider,
    auto_select_provider,
)

PAYLOADS: dict[str, dict[str, Any]] = {
    "GLOBAL_QUOTE": {"Global Quote": {"01. symbol": "ACME", "05. price": "150.0000"}},
    "OVERVIEW": {
        "Symbol": "ACME",
        "Name": "Acme Corp",
        "Currency": "USD",
        "Sector": "TECHNOLOGY",
        "Industry": "SOFTWARE",
        "Description": "Makes everything.",
    },
    "INCOME_STATEMENT": {"annualReports": [{"eps": "10.5"}, {"eps": "9.0"}]},
    "SYMBOL_SEARCH": {
        "bestMatches": [
            {
                "1. symbol": "ACME",
                "2. name": "Acme Corp",
                "3. type": "Equity",
                "4. region": "United States",
                "8. currency": "USD",
            },
            {
                "1. symbol": "ACME.PA",
                "2. name": "Acme SA",
                "3. type": "Equity",
                "4. region": "Paris",
            },
        ],
    },
}


def _response(payload: Any, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


def _vendor(payloads: dict[str, Any] | None = None) -> MagicMock:
    """requests.get stand-in answering by the ``function`` parameter."""
    table = dict(PAYLOADS)
    table.update(payloads or {})

    def get(url: str, params: dict[str, str], timeout: int) -> MagicMock:
        return _response(table[params["function"]])

    return MagicMock(side_effect=get)


def _provider() -> AlphaVantageProvider:
    return AlphaVantageProvider(api_key="test-key", config=MarketDataConfig())


# ---------------------------------------------------------------------------
# AlphaVantageProvider.quote
# ---------------------------------------------------------------------------


class TestAlphaVantageQuote:

    def test_successful_quote(self) -> None:
        with patch("fairvalue.data.market_data.requests.get", _vendor()):
            quote = _provider().quote("ACME")

        assert quote.symbol == "ACME"
        assert quote.name == "Acme Corp"
        assert quote.price == 150.0
        assert quote.currency.code == "USD"
        assert quote.metric_value == 10.5
        assert quote.sector == "TECHNOLOGY"

    def test_passes_api_key(self) -> None:
        mock_get = _vendor()
        with patch("fairvalue.data.market_data.requests.get", mock_get):
            _provider().quote("ACME")

        for call in mock_get.call_args_list:
            assert call.kwargs["params"]["apikey"] == "test-key"

    def test_missing_eps_defaults_to_zero(self) -> None:
        vendor = _vendor({"INCOME_STATEMENT": {"annualReports": []}})
        with patch("fairvalue.data.market_data.requests.get", vendor):
            quote = _provider().quote("ACME")

        assert quote.metric_value == 0.0

    def test_missing_fields_use_placeholder(self) -> None:
        vendor = _vendor({"OVERVIEW": {"Symbol": "ACME"}})
        with patch("fairvalue.data.market_data.requests.get", vendor):
            quote = _provider().quote("ACME")

        assert quote.name == "ACME"
        assert quote.sector == "Not available"
        assert quote.currency.code == "USD"

    def test_no_price_is_not_found(self) -> None:
        vendor = _vendor({"GLOBAL_QUOTE": {"Global Quote": {}}})
        with patch("fairvalue.data.market_data.requests.get", vendor):
            with pytest.raises(SymbolNotFoundError):
                _provider().quote("NOPE")

    def test_no_overview_is_not_found(self) -> None:
        vendor = _vendor({"OVERVIEW": {}})
        with patch("fairvalue.data.market_data.requests.get", vendor):
            with pytest.raises(SymbolNotFoundError):
                _provider().quote("ACME")

    def test_error_message_is_not_found(self) -> None:
        vendor = _vendor({"GLOBAL_QUOTE": {"Error Message": "Invalid API call."}})
        with patch("fairvalue.data.market_data.requests.get", vendor):
            with pytest.raises(SymbolNotFoundError, match="Invalid API call"):
                _provider().quote("ACME")

    def test_blank_symbol_rejected(self) -> None:
        with pytest.raises(ValueError):
            _provider().quote("   ")

    def test_rate_limit_note(self) -> None:
        vendor = _vendor({"GLOBAL_QUOTE": {"Note": "Thank you for using Alpha Vantage!"}})
        with patch("fairvalue.data.market_data.requests.get", vendor):
            with pytest.raises(RateLimitError):
                _provider().quote("ACME")

    def test_rate_limit_is_market_data_error(self) -> None:
        assert issubclass(RateLimitError, MarketDataError)
        assert issubclass(SymbolNotFoundError, MarketDataError)


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


class TestAlphaVantageCache:

    def test_repeat_quote_served_from_cache(self) -> None:
        mock_get = _vendor()
        provider = _provider()
        with patch("fairvalue.data.market_data.requests.get", mock_get):
            provider.quote("ACME")
            provider.quote("ACME")

        assert mock_get.call_count == 3

    def test_expired_entries_refetched(self) -> None:
        now = [0.0]
        cache = TTLCache(ttl_seconds=300, clock=lambda: now[0])
        provider = AlphaVantageProvider(api_key="k", cache=cache)
        mock_get = _vendor()
        with patch("fairvalue.data.market_data.requests.get", mock_get):
            provider.search("acme")
            now[0] = 301.0
            provider.search("acme")

        assert mock_get.call_count == 2

    def test_errors_not_cached(self) -> None:
        provider = _provider()
        limited = _vendor({"SYMBOL_SEARCH": {"Note": "rate limited"}})
        with patch("fairvalue.data.market_data.requests.get", limited):
            with pytest.raises(RateLimitError):
                provider.search("acme")

        with patch("fairvalue.data.market_data.requests.get", _vendor()):
            matches = provider.search("acme")
        assert len(matches) == 2


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


class TestAlphaVantageSearch:

    def test_maps_matches(self) -> None:
        with patch("fairvalue.data.market_data.requests.get", _vendor()):
            matches = _provider().search("acme")

        assert [m.symbol for m in matches] == ["ACME", "ACME.PA"]
        assert matches[0].name == "Acme Corp"
        assert matches[0].region == "United States"

    def test_currency_defaults_to_usd(self) -> None:
        with patch("fairvalue.data.market_data.requests.get", _vendor()):
            matches = _provider().search("acme")

        assert matches[1].currency == "USD"

    def test_short_query_makes_no_request(self) -> None:
        mock_get = _vendor()
        with patch("fairvalue.data.market_data.requests.get", mock_get):
            assert _provider().search("a") == []
            assert _provider().search(" b ") == []

        mock_get.assert_not_called()

    def test_no_matches(self) -> None:
        vendor = _vendor({"SYMBOL_SEARCH": {"bestMatches": []}})
        with patch("fairvalue.data.market_data.requests.get", vendor):
            assert _provider().search("zzzz") == []


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------


class TestAlphaVantageRetries:

    def test_retries_on_server_error(self) -> None:
        mock_get = MagicMock(side_effect=[
            _response({}, status_code=503),
            _response(PAYLOADS["SYMBOL_SEARCH"]),
        ])
        with patch("fairvalue.data.market_data.requests.get", mock_get), \
                patch("fairvalue.data.market_data.time.sleep") as mock_sleep:
            matches = _provider().search("acme")

        assert len(matches) == 2
        mock_sleep.assert_called_once_with(1.0)

    def test_persistent_429_is_rate_limit(self) -> None:
        mock_get = MagicMock(return_value=_response({}, status_code=429))
        with patch("fairvalue.data.market_data.requests.get", mock_get), \
                patch("fairvalue.data.market_data.time.sleep") as mock_sleep:
            with pytest.raises(RateLimitError, match="3 attempts"):
                _provider().search("acme")

        assert mock_get.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    def test_persistent_server_error_gives_up(self) -> None:
        mock_get = MagicMock(return_value=_response({}, status_code=503))
        with patch("fairvalue.data.market_data.requests.get", mock_get), \
                patch("fairvalue.data.market_data.time.sleep") as mock_sleep:
            with pytest.raises(MarketDataError, match="HTTP 503") as excinfo:
                _provider().search("acme")

        assert not isinstance(excinfo.value, RateLimitError)
        assert mock_get.call_count == 3
        assert mock_sleep.call_count == 2

    def test_transport_error_raises_after_retries(self) -> None:
        mock_get = MagicMock(side_effect=requests.ConnectionError("offline"))
        with patch("fairvalue.data.market_data.requests.get", mock_get), \
                patch("fairvalue.data.market_data.time.sleep"):
            with pytest.raises(MarketDataError, match="offline"):
                _provider().search("acme")

        assert mock_get.call_count == 3

    def test_malformed_json(self) -> None:
        response = _response(None)
        response.json.side_effect = ValueError("not json")
        with patch("fairvalue.data.market_data.requests.get", return_value=response):
            with pytest.raises(MarketDataError, match="malformed"):
                _provider().search("acme")

    def test_non_object_body(self) -> None:
        with patch(
            "fairvalue.data.market_data.requests.get", return_value=_response([1, 2]),
        ):
            with pytest.raises(MarketDataError, match="unexpected"):
                _provider().search("acme")


# ---------------------------------------------------------------------------
# YFinanceProvider
# ---------------------------------------------------------------------------


class TestYFinanceProvider:

    def test_quote_from_info(self) -> None:
        yf = MagicMock()
        yf.Ticker.return_value.info = {
            "longName": "Acme Corp",
            "currentPrice": 42.0,
            "currency": "EUR",
            "trailingEps": 3.5,
            "sector": "Industrials",
        }
        with patch("fairvalue.data.market_data._import_yfinance", return_value=yf):
            quote = YFinanceProvider().quote("ACME")

        assert quote.price == 42.0
        assert quote.currency.symbol == "€"
        assert quote.metric_value == 3.5
        assert quote.industry == "Not available"

    def test_falls_back_to_history(self) -> None:
        yf = MagicMock()
        yf.Ticker.return_value.info = {}
        yf.Ticker.return_value.history.return_value = pd.DataFrame(
            {"Close": [40.0, 41.0]},
        )
        with patch("fairvalue.data.market_data._import_yfinance", return_value=yf):
            quote = YFinanceProvider().quote("ACME")

        assert quote.price == 41.0
        assert quote.name == "ACME"

    def test_no_price_is_not_found(self) -> None:
        yf = MagicMock()
        yf.Ticker.return_value.info = {}
        yf.Ticker.return_value.history.return_value = pd.DataFrame()
        with patch("fairvalue.data.market_data._import_yfinance", return_value=yf):
            with pytest.raises(SymbolNotFoundError):
                YFinanceProvider().quote("NOPE")

    def test_library_errors_wrapped(self) -> None:
        yf = MagicMock()
        yf.Ticker.side_effect = RuntimeError("boom")
        with patch("fairvalue.data.market_data._import_yfinance", return_value=yf):
            with pytest.raises(MarketDataError, match="boom"):
                YFinanceProvider().quote("ACME")

    def test_search(self) -> None:
        yf = MagicMock()
        yf.Search.return_value.quotes = [
            {"symbol": "ACME", "shortname": "Acme", "quoteType": "EQUITY", "exchange": "NMS"},
        ]
        with patch("fairvalue.data.market_data._import_yfinance", return_value=yf):
            matches = YFinanceProvider().search("acme")

        assert matches[0].symbol == "ACME"
        assert matches[0].name == "Acme"
        assert matches[0].currency == "USD"

    def test_short_search_skips_library(self) -> None:
        with patch("fairvalue.data.market_data._import_yfinance") as mock_import:
            assert YFinanceProvider().search("x") == []
        mock_import.assert_not_called()


# ---------------------------------------------------------------------------
# auto_select_provider
# ---------------------------------------------------------------------------


class TestAutoSelectProvider:

    def test_selects_alpha_vantage_when_key_present(self) -> None:
        with patch.dict("os.environ", {"ALPHA_VANTAGE_API_KEY": "test-key"}):
            provider = auto_select_provider()
        assert isinstance(provider, AlphaVantageProvider)

    def test_selects_yfinance_when_no_key(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            provider = auto_select_provider()
        assert isinstance(provider, YFinanceProvider)
