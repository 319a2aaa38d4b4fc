"""Tests for CLI entry point (main.py)."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import matplotlib

matplotlib.use("Agg")

import pytest

from fairvalue.data.contracts import CURRENCIES, Scenario
from fairvalue.data.market_data import MarketQuote, SymbolMatch, SymbolNotFoundError
from fairvalue.main import _assumption_triple, _build_inputs, _parse_args, main

# --- Test fixtures ---


def _quote() -> MarketQuote:
    return MarketQuote(
        symbol="ACME",
        name="Acme Corp",
        price=150.0,
        currency=CURRENCIES["USD"],
        metric_value=10.0,
        sector="Technology",
        industry="Software",
        description="Makes everything.",
    )


def _credentials(db_path: Path) -> list[str]:
    return ["--db-path", str(db_path), "--email", "ada@example.com", "--password", "secret1"]


# --- Argument parsing ---


class TestParseArgs:

    def test_value_defaults(self) -> None:
        args = _parse_args(["value", "--name", "Acme", "--price", "150", "--metric", "10"])

        assert args.command == "value"
        assert args.method == "eps"
        assert args.years == 5
        assert args.growth == 15.0
        assert args.desired_return == 12.0
        assert args.multiple == 15.0
        assert args.pessimistic is None

    def test_scenario_triple(self) -> None:
        args = _parse_args(["value", "--optimistic", "25,10,20"])
        assert args.optimistic.estimated_growth_pct == 25.0
        assert args.optimistic.terminal_multiple == 20.0

    def test_bad_triple_exits(self) -> None:
        with pytest.raises(SystemExit):
            _parse_args(["value", "--neutral", "1,2"])

    def test_triple_parser(self) -> None:
        assumptions = _assumption_triple("10,12,12")
        assert assumptions.desired_return_pct == 12.0


class TestBuildInputs:

    def test_manual_inputs(self) -> None:
        args = _parse_args([
            "value", "--name", "Acme", "--price", "150", "--metric", "10",
            "--currency", "gbp",
        ])
        inputs = _build_inputs(args)

        assert inputs.stock_name == "Acme"
        assert inputs.currency.symbol == "£"
        assert not inputs.is_multi_scenario

    def test_default_currency_is_euro(self) -> None:
        args = _parse_args(["value", "--name", "A", "--price", "1", "--metric", "1"])
        assert _build_inputs(args).currency.code == "EUR"

    def test_scenario_override_fills_defaults(self) -> None:
        args = _parse_args([
            "value", "--name", "Acme", "--price", "150", "--metric", "10",
            "--pessimistic", "5,12,10",
        ])
        inputs = _build_inputs(args)

        assert inputs.named_scenarios is not None
        assert inputs.named_scenarios[Scenario.PESSIMISTIC].estimated_growth_pct == 5.0
        assert inputs.named_scenarios[Scenario.OPTIMISTIC].terminal_multiple == 18.0

    def test_symbol_prefills_and_flags_override(self) -> None:
        provider = MagicMock()
        provider.quote.return_value = _quote()
        args = _parse_args(["value", "--symbol", "ACME", "--price", "120"])

        with patch("fairvalue.data.auto_select_provider", return_value=provider):
            inputs = _build_inputs(args)

        assert inputs.stock_name == "Acme Corp"
        assert inputs.current_price == 120.0
        assert inputs.metric_value == 10.0
        assert inputs.currency.code == "USD"

    def test_missing_manual_fields(self) -> None:
        args = _parse_args(["value", "--name", "Acme"])
        with pytest.raises(ValueError, match="--price"):
            _build_inputs(args)


# --- Commands ---


class TestValueCommand:

    def test_prints_summary(self, capsys: pytest.CaptureFixture[str]) -> None:
        main(["value", "--name", "Acme", "--price", "150", "--metric", "10"])
        out = capsys.readouterr().out

        assert "Acme (EPS)" in out
        assert "€171.2" in out
        assert "+14.1" in out

    def test_scenarios_table(self, capsys: pytest.CaptureFixture[str]) -> None:
        main(["value", "--name", "Acme", "--price", "150", "--metric", "10", "--scenarios"])
        out = capsys.readouterr().out

        assert "pessimistic" in out
        assert "optimistic" in out

    def test_zero_price_prints_dash(self, capsys: pytest.CaptureFixture[str]) -> None:
        main(["value", "--name", "Acme", "--price", "0", "--metric", "10"])
        assert "Safety margin : —" in capsys.readouterr().out

    def test_missing_fields_exit_1(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["value", "--name", "Acme"])
        assert exc_info.value.code == 1

    def test_writes_pdf(self, tmp_path: Path) -> None:
        html_cls = MagicMock()
        html_cls.return_value.write_pdf.return_value = b"%PDF"
        with patch("fairvalue.reports.pdf.weasyprint.HTML", html_cls):
            main([
                "value", "--name", "Acme", "--price", "150", "--metric", "10",
                "--pdf", str(tmp_path),
            ])

        [pdf] = list(tmp_path.glob("valuation-acme-*.pdf"))
        assert pdf.read_bytes() == b"%PDF"

    def test_pdf_without_path_uses_report_dir(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.chdir(tmp_path)
        html_cls = MagicMock()
        html_cls.return_value.write_pdf.return_value = b"%PDF"
        with patch("fairvalue.reports.pdf.weasyprint.HTML", html_cls):
            main([
                "value", "--name", "Acme", "--price", "150", "--metric", "10",
                "--pdf",
            ])

        [pdf] = list((tmp_path / "output").glob("valuation-acme-*.pdf"))
        assert pdf.read_bytes() == b"%PDF"

    def test_pdf_flag_parsing(self) -> None:
        assert _parse_args(["value", "--pdf"]).pdf == Path("output")
        assert _parse_args(["value", "--pdf", "r.pdf"]).pdf == Path("r.pdf")
        assert _parse_args(["value"]).pdf is None


class TestMarketCommands:

    def test_search(self, capsys: pytest.CaptureFixture[str]) -> None:
        provider = MagicMock()
        provider.search.return_value = [
            SymbolMatch("ACME", "Acme Corp", "Equity", "United States", "USD"),
        ]
        with patch("fairvalue.main.auto_select_provider", return_value=provider):
            main(["search", "acme"])

        assert "Acme Corp" in capsys.readouterr().out

    def test_quote_not_found_exits_1(self) -> None:
        provider = MagicMock()
        provider.quote.side_effect = SymbolNotFoundError("NOPE: no price available")
        with patch("fairvalue.main.auto_select_provider", return_value=provider):
            with pytest.raises(SystemExit) as exc_info:
                main(["quote", "NOPE"])
        assert exc_info.value.code == 1


class TestAccountCommands:

    def test_save_list_delete(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        db_path = tmp_path / "fv.db"
        main(["signup", *_credentials(db_path)])
        main([
            "save", *_credentials(db_path),
            "--name", "Acme", "--price", "150", "--metric", "10",
            "--also", "fcf", "8",
        ])
        out = capsys.readouterr().out
        record_id = out.strip().splitlines()[-1].removeprefix("Saved as ")

        main(["list", *_credentials(db_path)])
        listing = capsys.readouterr().out
        assert record_id in listing
        assert "EPS" in listing
        assert "FCF/Share" in listing

        main(["delete", record_id, *_credentials(db_path)])
        main(["list", *_credentials(db_path)])
        assert "No saved valuations" in capsys.readouterr().out

    def test_signin(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        db_path = tmp_path / "fv.db"
        main(["signup", *_credentials(db_path)])
        uid = capsys.readouterr().out.strip().removeprefix("Account created: ")

        main(["signin", *_credentials(db_path)])
        assert capsys.readouterr().out.strip() == f"Signed in as {uid}"

    def test_wrong_password_exits_1(self, tmp_path: Path) -> None:
        db_path = tmp_path / "fv.db"
        main(["signup", *_credentials(db_path)])
        with pytest.raises(SystemExit) as exc_info:
            main([
                "list", "--db-path", str(db_path),
                "--email", "ada@example.com", "--password", "nope-nope",
            ])
        assert exc_info.value.code == 1

    def test_export_import(self, tmp_path: Path) -> None:
        db_path = tmp_path / "fv.db"
        export_path = tmp_path / "out" / "export.json"
        main(["signup", *_credentials(db_path)])
        main([
            "save", *_credentials(db_path),
            "--name", "Acme", "--price", "150", "--metric", "10",
        ])
        main(["export", str(export_path), *_credentials(db_path)])

        documents = json.loads(export_path.read_text())
        assert len(documents) == 1
        assert documents[0]["stock_name"] == "Acme"

        main(["import", str(export_path), *_credentials(db_path)])
        main(["export", str(export_path), *_credentials(db_path)])
        assert len(json.loads(export_path.read_text())) == 2
