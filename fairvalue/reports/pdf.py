"""PDF report generation using Jinja2 templates and WeasyPrint.

Renders the active method's valuation (summary, scenarios, charts) and a
comparison of every computed method into an HTML template, then converts
it to PDF. All numbers pass through the formatters, so undefined values
print as a dash.
"""

from __future__ import annotations

import base64
import io
import logging
import re
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import jinja2
import matplotlib
import matplotlib.pyplot as plt
import weasyprint

from fairvalue.analysis.derived_metrics import (
    average_fair_value,
    average_safety_margin,
    method_comparison,
    scenario_price_targets,
)
from fairvalue.charts.projection import metric_projection, price_projection
from fairvalue.config import ReportConfig
from fairvalue.data.contracts import Scenario, ValuationMethod, ValuationResult
from fairvalue.reports.formatting import (
    format_currency,
    format_multiple,
    format_percentage,
)

if TYPE_CHECKING:
    from matplotlib.figure import Figure

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


def report_filename(stock_name: str, generated_at: datetime) -> str:
    """``valuation-<slug>-<YYYY-MM-DD>.pdf`` for a company name."""
    slug = re.sub(r"\s+", "-", stock_name.strip().lower()) or "company"
    return f"valuation-{slug}-{generated_at:%Y-%m-%d}.pdf"


def generate_pdf(
    results: Mapping[ValuationMethod, ValuationResult | None],
    active_method: ValuationMethod,
    output_path: Path,
    generated_at: datetime,
    config: ReportConfig | None = None,
) -> Path:
    """Generate a valuation report PDF.

    Args:
        results: Method -> result, None for methods not computed.
        active_method: Method whose detail pages are rendered.
        output_path: Destination file.
        generated_at: Date printed on the report.
        config: Chart resolution.

    Returns:
        Path to the generated PDF file.

    Raises:
        ValueError: If the active method has no result.
    """
    active = results.get(active_method)
    if active is None:
        raise ValueError(f"No {active_method.value} result to report")

    matplotlib.use("Agg")
    config = config or ReportConfig()
    output_path.parent.mkdir(parents=True, exist_ok=True)

    context = _build_context(results, active, generated_at, config)

    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=True,
    )
    template = env.get_template("report.html")
    html_content = template.render(**context)

    pdf_doc = weasyprint.HTML(string=html_content).write_pdf()
    output_path.write_bytes(pdf_doc)

    logger.info("PDF report generated: %s", output_path)
    return output_path


def _build_context(
    results: Mapping[ValuationMethod, ValuationResult | None],
    active: ValuationResult,
    generated_at: datetime,
    config: ReportConfig,
) -> dict[str, Any]:
    """Build the Jinja2 template context."""
    currency = active.inputs.currency
    assumptions = active.inputs.reported_assumptions
    assumption_set = "Neutral scenario" if active.inputs.is_multi_scenario else "Base"

    summary = [
        ("Current price", format_currency(active.current_price, currency)),
        ("Fair value", format_currency(active.fair_value, currency)),
        ("Safety margin", format_percentage(active.safety_margin_pct)),
        ("Assumption set", assumption_set),
        ("Estimated growth", f"{assumptions.estimated_growth_pct:g}%"),
        ("Desired return", f"{assumptions.desired_return_pct:g}%"),
        ("Terminal multiple", format_multiple(assumptions.terminal_multiple)),
        ("Years projected", str(active.inputs.years_to_project)),
    ]

    scenarios: list[dict[str, str]] = []
    if active.scenario_results is not None:
        targets = scenario_price_targets(active)
        for _, row in targets.iterrows():
            scenarios.append({
                "name": Scenario(row["scenario"]).label,
                "fair_value": format_currency(row["fair_value"], currency),
                "safety_margin": format_percentage(row["safety_margin_pct"]),
                "growth": f"{float(row['growth_pct']):g}%",
                "multiple": format_multiple(row["terminal_multiple"]),
                "terminal_price": format_currency(row["terminal_price"], currency),
                "potential_cagr": format_percentage(row["potential_cagr_pct"]),
            })

    comparison = method_comparison(results.values())
    methods = [
        {
            "label": row["label"],
            "fair_value": format_currency(row["fair_value"], currency),
            "safety_margin": format_percentage(row["safety_margin_pct"]),
            "multiple": format_multiple(row["terminal_multiple"]),
        }
        for _, row in comparison.iterrows()
    ]

    return {
        "title": "Valuation Report",
        "stock_name": active.stock_name,
        "method_label": active.method.label,
        "report_date": generated_at.strftime("%d %B %Y"),
        "summary": summary,
        "scenarios": scenarios,
        "methods": methods,
        "average_fair_value": format_currency(
            average_fair_value(results.values()), currency,
        ),
        "average_safety_margin": format_percentage(
            average_safety_margin(results.values(), active.current_price),
        ),
        "charts": _render_charts(active, config),
    }


def _render_charts(result: ValuationResult, config: ReportConfig) -> list[str]:
    """Render the projection charts to base64 strings."""
    charts: list[str] = []
    for name, fn in (("metric", metric_projection), ("price", price_projection)):
        try:
            fig = fn(result)
            charts.append(_fig_to_base64(fig, config.chart_dpi))
        except Exception:
            logger.exception("Failed to render %s chart", name)
    return charts


def _fig_to_base64(fig: Figure, dpi: int = 150) -> str:
    """Convert a matplotlib figure to a base64-encoded PNG string."""
    buf = io.BytesIO()
    try:
        fig.savefig(buf, format="png", dpi=dpi, bbox_inches="tight")
    finally:
        plt.close(fig)
    buf.seek(0)
    result = base64.b64encode(buf.read()).decode("ascii")
    buf.close()
    return result
