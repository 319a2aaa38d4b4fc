"""CLI entry point for the fair value calculator."""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from fairvalue.analysis.derived_metrics import scenario_price_targets
from fairvalue.analysis.results import MethodResults, build_result
from fairvalue.analysis.scenarios import DEFAULT_SCENARIOS
from fairvalue.config import ReportConfig, StoreConfig, ValuationDefaults
from fairvalue.data import load_inputs
from fairvalue.data.contracts import (
    Scenario,
    ScenarioAssumptions,
    ValuationInputs,
    ValuationMethod,
    ValuationResult,
    get_currency,
)
from fairvalue.data.market_data import MarketDataError, auto_select_provider
from fairvalue.reports.formatting import format_currency, format_percentage
from fairvalue.reports.pdf import generate_pdf, report_filename
from fairvalue.store.auth import AccountStore, AuthError, Session
from fairvalue.store.valuations import StoreError, ValuationStore

logger = logging.getLogger(__name__)

METHOD_MAP = {m.value: m for m in ValuationMethod}


def _assumption_triple(text: str) -> ScenarioAssumptions:
    """Parse ``growth,return,multiple`` into ScenarioAssumptions."""
    parts = text.split(",")
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(
            f"expected growth,return,multiple but got {text!r}"
        )
    try:
        growth, ret, multiple = (float(p) for p in parts)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"non-numeric value in {text!r}") from e
    return ScenarioAssumptions(
        estimated_growth_pct=growth,
        desired_return_pct=ret,
        terminal_multiple=multiple,
    )


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_store_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help="Store database path (default: FAIRVALUE_DB_PATH or data/fairvalue.db)",
    )


def _add_credentials(parser: argparse.ArgumentParser) -> None:
    _add_store_args(parser)
    parser.add_argument("--email", required=True, help="Account email")
    parser.add_argument(
        "--password",
        default=None,
        help="Account password (prompted when omitted)",
    )


def _add_valuation_args(parser: argparse.ArgumentParser) -> None:
    defaults = ValuationDefaults()
    parser.add_argument(
        "--symbol",
        default=None,
        help="Ticker to prefill name, price, EPS and currency from market data",
    )
    parser.add_argument("--name", default=None, help="Company name")
    parser.add_argument("--price", type=float, default=None, help="Current share price")
    parser.add_argument(
        "--metric",
        type=float,
        default=None,
        help="Per-share metric value (EPS, OCF or FCF per share)",
    )
    parser.add_argument(
        "--method",
        choices=sorted(METHOD_MAP),
        default="eps",
        help="Valuation method (default: eps)",
    )
    parser.add_argument(
        "--years",
        type=int,
        default=defaults.years_to_project,
        help=f"Years to project (default: {defaults.years_to_project})",
    )
    parser.add_argument(
        "--growth",
        type=float,
        default=defaults.estimated_growth_pct,
        help=f"Estimated annual growth %% (default: {defaults.estimated_growth_pct:g})",
    )
    parser.add_argument(
        "--return",
        dest="desired_return",
        type=float,
        default=defaults.desired_return_pct,
        help=f"Desired annual return %% (default: {defaults.desired_return_pct:g})",
    )
    parser.add_argument(
        "--multiple",
        type=float,
        default=defaults.terminal_multiple,
        help=f"Terminal multiple (default: {defaults.terminal_multiple:g})",
    )
    parser.add_argument(
        "--currency",
        default=None,
        help=f"Currency code (default: {defaults.currency_code})",
    )
    parser.add_argument(
        "--scenarios",
        action="store_true",
        help="Value across pessimistic/neutral/optimistic scenarios",
    )
    for scenario in Scenario:
        parser.add_argument(
            f"--{scenario.value}",
            type=_assumption_triple,
            default=None,
            metavar="G,R,M",
            help=f"{scenario.label} growth,return,multiple (implies --scenarios)",
        )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="fairvalue",
        description="Per-share fair value calculator",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    value_parser = subparsers.add_parser(
        "value", help="Compute a valuation and print a summary"
    )
    _add_valuation_args(value_parser)
    value_parser.add_argument(
        "--pdf",
        nargs="?",
        const=ReportConfig().output_dir,
        type=Path,
        default=None,
        help=(
            "Write a PDF report to this path (a directory gets a generated "
            "name; without a path the report goes to %(const)s/)"
        ),
    )
    _add_common(value_parser)

    search_parser = subparsers.add_parser("search", help="Search ticker symbols")
    search_parser.add_argument("query", help="Partial company name or ticker")
    _add_common(search_parser)

    quote_parser = subparsers.add_parser("quote", help="Show a market quote")
    quote_parser.add_argument("symbol", help="Ticker symbol")
    _add_common(quote_parser)

    signup_parser = subparsers.add_parser("signup", help="Create an account")
    _add_credentials(signup_parser)
    signup_parser.add_argument("--first-name", default="", help="First name")
    signup_parser.add_argument("--last-name", default="", help="Last name")
    signup_parser.add_argument("--username", default="", help="Display name")
    _add_common(signup_parser)

    signin_parser = subparsers.add_parser("signin", help="Check account credentials")
    _add_credentials(signin_parser)
    _add_common(signin_parser)

    save_parser = subparsers.add_parser(
        "save", help="Compute valuations and save them to your account"
    )
    _add_credentials(save_parser)
    _add_valuation_args(save_parser)
    save_parser.add_argument(
        "--also",
        nargs=2,
        action="append",
        default=[],
        metavar=("METHOD", "METRIC"),
        help="Additional method and metric value to save in the same bundle",
    )
    _add_common(save_parser)

    list_parser = subparsers.add_parser("list", help="List saved valuations")
    _add_credentials(list_parser)
    _add_common(list_parser)

    delete_parser = subparsers.add_parser("delete", help="Delete a saved valuation")
    delete_parser.add_argument("record_id", help="Saved valuation id")
    _add_credentials(delete_parser)
    _add_common(delete_parser)

    export_parser = subparsers.add_parser("export", help="Export saved valuations to JSON")
    export_parser.add_argument("output", type=Path, help="Output JSON path")
    _add_credentials(export_parser)
    _add_common(export_parser)

    import_parser = subparsers.add_parser("import", help="Import valuations from JSON")
    import_parser.add_argument("input", type=Path, help="JSON file from export")
    _add_credentials(import_parser)
    _add_common(import_parser)

    return parser.parse_args(argv)


def _store_config(args: argparse.Namespace) -> StoreConfig:
    config = StoreConfig.from_env()
    if getattr(args, "db_path", None) is not None:
        config.db_path = args.db_path
    return config


def _sign_in(args: argparse.Namespace) -> Session:
    password = args.password if args.password is not None else getpass.getpass()
    accounts = AccountStore(_store_config(args).db_path)
    return accounts.sign_in(args.email, password)


def _named_scenarios(
    args: argparse.Namespace,
) -> dict[Scenario, ScenarioAssumptions] | None:
    """Scenario set from flags; defaults fill any scenario not given."""
    overrides = {
        s: getattr(args, s.value) for s in Scenario
        if getattr(args, s.value) is not None
    }
    if not args.scenarios and not overrides:
        return None
    scenarios = dict(DEFAULT_SCENARIOS)
    scenarios.update(overrides)
    return scenarios


def _build_inputs(
    args: argparse.Namespace,
    metric_override: float | None = None,
) -> ValuationInputs:
    """Combine market data (if --symbol) with explicit flags."""
    defaults = ValuationDefaults(
        years_to_project=args.years,
        estimated_growth_pct=args.growth,
        desired_return_pct=args.desired_return,
        terminal_multiple=args.multiple,
    )
    named = _named_scenarios(args)
    metric = metric_override if metric_override is not None else args.metric

    if args.symbol:
        inputs = load_inputs(
            args.symbol,
            defaults=defaults,
            metric_value=metric,
            named_scenarios=named,
        )
        if args.name is not None:
            inputs = replace(inputs, stock_name=args.name)
        if args.price is not None:
            inputs = replace(inputs, current_price=args.price)
        if args.currency is not None:
            inputs = replace(inputs, currency=get_currency(args.currency))
        return inputs

    if args.name is None or args.price is None or metric is None:
        raise ValueError("--name, --price and --metric are required without --symbol")

    return ValuationInputs(
        stock_name=args.name,
        current_price=args.price,
        metric_value=metric,
        years_to_project=defaults.years_to_project,
        currency=get_currency(args.currency or defaults.currency_code),
        base_assumptions=ScenarioAssumptions(
            estimated_growth_pct=defaults.estimated_growth_pct,
            desired_return_pct=defaults.desired_return_pct,
            terminal_multiple=defaults.terminal_multiple,
        ),
        named_scenarios=named,
    )


def _print_result(result: ValuationResult) -> None:
    currency = result.inputs.currency
    print(f"{result.stock_name} ({result.method.label})")
    print(f"  Current price : {format_currency(result.current_price, currency)}")
    print(f"  Fair value    : {format_currency(result.fair_value, currency)}")
    print(f"  Safety margin : {format_percentage(result.safety_margin_pct)}")
    print()
    targets = scenario_price_targets(result)
    print(targets.to_string(index=False))


def run_value(args: argparse.Namespace) -> None:
    """Execute the value command."""
    inputs = _build_inputs(args)
    method = METHOD_MAP[args.method]
    now = datetime.now()
    result = build_result(method, inputs, now)
    _print_result(result)

    if args.pdf is not None:
        output: Path = args.pdf
        if output.is_dir() or output.suffix.lower() != ".pdf":
            output = output / report_filename(result.stock_name, now)
        session_results = MethodResults()
        session_results.record(result)
        generate_pdf(
            session_results.to_record_valuations(),
            method,
            output,
            now,
            ReportConfig(),
        )
        print(f"\nReport written to {output}")


def run_search(args: argparse.Namespace) -> None:
    provider = auto_select_provider()
    for match in provider.search(args.query):
        print(f"{match.symbol:<12} {match.name} ({match.region}, {match.currency})")


def run_quote(args: argparse.Namespace) -> None:
    provider = auto_select_provider()
    quote = provider.quote(args.symbol)
    print(f"{quote.symbol}: {quote.name}")
    print(f"  Price    : {format_currency(quote.price, quote.currency)}")
    print(f"  EPS      : {format_currency(quote.metric_value, quote.currency)}")
    print(f"  Sector   : {quote.sector}")
    print(f"  Industry : {quote.industry}")


def run_signup(args: argparse.Namespace) -> None:
    password = args.password if args.password is not None else getpass.getpass()
    accounts = AccountStore(_store_config(args).db_path)
    profile = accounts.sign_up(
        args.email,
        password,
        args.first_name,
        args.last_name,
        args.username,
        datetime.now(),
    )
    print(f"Account created: {profile.uid}")


def run_signin(args: argparse.Namespace) -> None:
    session = _sign_in(args)
    print(f"Signed in as {session.user_id}")


def run_save(args: argparse.Namespace) -> None:
    """Compute one or more method valuations and save them as one bundle."""
    session = _sign_in(args)
    now = datetime.now()
    session_results = MethodResults()

    primary = build_result(METHOD_MAP[args.method], _build_inputs(args), now)
    session_results.record(primary)
    for method_name, metric in args.also:
        if method_name not in METHOD_MAP:
            raise ValueError(f"Unknown method {method_name!r}")
        extra_inputs = _build_inputs(args, metric_override=float(metric))
        session_results.record(
            build_result(METHOD_MAP[method_name], extra_inputs, now)
        )

    store = ValuationStore(_store_config(args).db_path)
    record_id = store.save(
        session,
        primary.stock_name,
        primary.current_price,
        session_results.to_record_valuations(),
        now,
    )
    for result in session_results.computed():
        _print_result(result)
        print()
    print(f"Saved as {record_id}")


def run_list(args: argparse.Namespace) -> None:
    session = _sign_in(args)
    store = ValuationStore(_store_config(args).db_path)
    records = store.list_for_user(session)
    if not records:
        print("No saved valuations")
        return
    for record in records:
        saved = datetime.fromtimestamp(record.timestamp).strftime("%Y-%m-%d %H:%M")
        methods = ", ".join(
            f"{r.method.label} {format_currency(r.fair_value, r.inputs.currency)}"
            for r in record.computed()
        )
        print(f"{record.id}  {saved}  {record.stock_name}  {methods}")


def run_delete(args: argparse.Namespace) -> None:
    session = _sign_in(args)
    store = ValuationStore(_store_config(args).db_path)
    store.delete(session, args.record_id)
    print(f"Deleted {args.record_id}")


def run_export(args: argparse.Namespace) -> None:
    session = _sign_in(args)
    store = ValuationStore(_store_config(args).db_path)
    documents = store.export_records(session)
    output: Path = args.output
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(documents, indent=2))
    logger.info("Exported %d valuations to %s", len(documents), output)


def run_import(args: argparse.Namespace) -> None:
    session = _sign_in(args)
    store = ValuationStore(_store_config(args).db_path)
    documents = json.loads(args.input.read_text())
    if isinstance(documents, dict):
        documents = [documents]
    for document in documents:
        record_id = store.import_record(session, document)
        print(f"Imported {document.get('stock_name', '?')} as {record_id}")


COMMANDS = {
    "value": run_value,
    "search": run_search,
    "quote": run_quote,
    "signup": run_signup,
    "signin": run_signin,
    "save": run_save,
    "list": run_list,
    "delete": run_delete,
    "export": run_export,
    "import": run_import,
}


def main(argv: list[str] | None = None) -> None:
    """Main entry point.

    Args:
        argv: Argument list (defaults to sys.argv[1:]).
    """
    args = _parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    handler = COMMANDS.get(args.command)
    if handler is None:
        logger.error("Unknown command: %s", args.command)
        sys.exit(1)

    try:
        handler(args)
    except (AuthError, StoreError, MarketDataError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        sys.exit(1)


if __name__ == "__main__":
    main()
