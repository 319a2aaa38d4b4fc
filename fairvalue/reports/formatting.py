"""Display formatting for report values.

Undefined values (None, pandas NA, non-finite floats) render as a dash.
"""

from __future__ import annotations

import math

import pandas as pd

from fairvalue.data.contracts import Currency

UNDEFINED = "—"


def is_undefined(value: object) -> bool:
    """True for None, pandas NA/NaN, and non-finite numbers."""
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
        return not math.isfinite(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return True


def format_currency(value: float | None, currency: Currency) -> str:
    """Format an amount with the currency symbol and two decimals."""
    if is_undefined(value):
        return UNDEFINED
    amount = float(value)  # type: ignore[arg-type]
    sign = "-" if amount < 0 else ""
    return f"{sign}{currency.symbol}{abs(amount):,.2f}"


def format_percentage(value: float | None) -> str:
    """Format a percent value with an explicit sign, e.g. +14.13%."""
    if is_undefined(value):
        return UNDEFINED
    return f"{float(value):+.2f}%"  # type: ignore[arg-type]


def format_multiple(value: float | None) -> str:
    if is_undefined(value):
        return UNDEFINED
    return f"{float(value):g}x"  # type: ignore[arg-type]
