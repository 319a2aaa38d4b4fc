"""Valuation data contracts.

Dataclasses defining the shape of data passed between the projection
engine, the result builder, and the store/report collaborators.

Numeric fields that can be mathematically undefined (a safety margin
against a non-positive price, a CAGR over zero years) are typed ``float | None``;
``None`` means undefined and is rendered as a dash downstream.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

# Epoch values above this are treated as milliseconds (year ~5138 in seconds).
_MILLISECOND_THRESHOLD = 1e11


class ValuationMethod(Enum):
    """Per-share metric the valuation projects."""

    EPS = "eps"
    OCF = "ocf"
    FCF = "fcf"

    @property
    def label(self) -> str:
        return _METHOD_LABELS[self]


_METHOD_LABELS = {
    ValuationMethod.EPS: "EPS",
    ValuationMethod.OCF: "OCF/Share",
    ValuationMethod.FCF: "FCF/Share",
}

METHOD_ORDER: tuple[ValuationMethod, ...] = (
    ValuationMethod.EPS,
    ValuationMethod.OCF,
    ValuationMethod.FCF,
)


class Scenario(Enum):
    """Named assumption sets used to bracket uncertainty."""

    PESSIMISTIC = "pessimistic"
    NEUTRAL = "neutral"
    OPTIMISTIC = "optimistic"

    @property
    def label(self) -> str:
        return self.value.capitalize()


# Display and iteration order. Has no effect on the averaged fair value.
SCENARIO_ORDER: tuple[Scenario, ...] = (
    Scenario.PESSIMISTIC,
    Scenario.NEUTRAL,
    Scenario.OPTIMISTIC,
)


@dataclass(frozen=True)
class Currency:
    """Currency the price and metric are quoted in."""

    code: str
    symbol: str
    name: str


CURRENCIES: dict[str, Currency] = {
    "EUR": Currency(code="EUR", symbol="€", name="Euro"),
    "USD": Currency(code="USD", symbol="$", name="US Dollar"),
    "GBP": Currency(code="GBP", symbol="£", name="Pound Sterling"),
    "CHF": Currency(code="CHF", symbol="CHF", name="Swiss Franc"),
    "JPY": Currency(code="JPY", symbol="¥", name="Japanese Yen"),
}


def get_currency(code: str) -> Currency:
    """Look up a supported currency, falling back to a bare code record."""
    code = code.upper()
    if code in CURRENCIES:
        return CURRENCIES[code]
    return Currency(code=code, symbol=code, name=code)


@dataclass(frozen=True)
class ScenarioAssumptions:
    """Growth, discount and exit multiple for one projection.

    Attributes:
        estimated_growth_pct: Annual growth of the per-share metric, in percent.
        desired_return_pct: Required annual return, used as the discount rate.
        terminal_multiple: Multiple applied to the final projected metric.
    """

    estimated_growth_pct: float
    desired_return_pct: float
    terminal_multiple: float

    def to_dict(self) -> dict[str, float]:
        return {
            "estimated_growth_pct": self.estimated_growth_pct,
            "desired_return_pct": self.desired_return_pct,
            "terminal_multiple": self.terminal_multiple,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScenarioAssumptions:
        return cls(
            estimated_growth_pct=float(data["estimated_growth_pct"]),
            desired_return_pct=float(data["desired_return_pct"]),
            terminal_multiple=float(data["terminal_multiple"]),
        )


def _ordered_scenarios(
    scenarios: Mapping[Scenario, Any],
) -> Mapping[Scenario, Any]:
    """Read-only copy keyed in SCENARIO_ORDER, requiring all three."""
    missing = [s.value for s in SCENARIO_ORDER if s not in scenarios]
    if missing:
        raise ValueError(f"Missing scenarios: {missing}")
    extra = [s for s in scenarios if s not in SCENARIO_ORDER]
    if extra:
        raise ValueError(f"Unknown scenarios: {extra}")
    return MappingProxyType({s: scenarios[s] for s in SCENARIO_ORDER})


@dataclass(frozen=True)
class ValuationInputs:
    """A full calculator submission.

    When ``named_scenarios`` is set the valuation runs in multi-scenario
    mode and ``base_assumptions`` only serves as the per-method default.
    Prices and metric values are not range-checked.
    """

    stock_name: str
    current_price: float
    metric_value: float
    years_to_project: int
    currency: Currency
    base_assumptions: ScenarioAssumptions
    named_scenarios: Mapping[Scenario, ScenarioAssumptions] | None = None

    def __post_init__(self) -> None:
        years = self.years_to_project
        if isinstance(years, bool) or not isinstance(years, int) or years < 0:
            raise ValueError(
                f"years_to_project must be a non-negative integer, got {years!r}"
            )
        if self.named_scenarios is not None:
            object.__setattr__(
                self, "named_scenarios", _ordered_scenarios(self.named_scenarios),
            )

    @property
    def is_multi_scenario(self) -> bool:
        return self.named_scenarios is not None

    @property
    def reported_assumptions(self) -> ScenarioAssumptions:
        """Assumptions behind the reported baseline series.

        The neutral scenario in multi-scenario mode, otherwise the base.
        """
        if self.named_scenarios is not None:
            return self.named_scenarios[Scenario.NEUTRAL]
        return self.base_assumptions

    def to_dict(self) -> dict[str, Any]:
        return {
            "stock_name": self.stock_name,
            "current_price": self.current_price,
            "metric_value": self.metric_value,
            "years_to_project": self.years_to_project,
            "currency": {
                "code": self.currency.code,
                "symbol": self.currency.symbol,
                "name": self.currency.name,
            },
            "base_assumptions": self.base_assumptions.to_dict(),
            "named_scenarios": (
                None
                if self.named_scenarios is None
                else {s.value: a.to_dict() for s, a in self.named_scenarios.items()}
            ),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ValuationInputs:
        raw_scenarios = data.get("named_scenarios")
        named = None
        if raw_scenarios is not None:
            named = {
                Scenario(name): ScenarioAssumptions.from_dict(values)
                for name, values in raw_scenarios.items()
            }
        return cls(
            stock_name=str(data["stock_name"]),
            current_price=float(data["current_price"]),
            metric_value=float(data["metric_value"]),
            years_to_project=int(data["years_to_project"]),
            currency=Currency(**data["currency"]),
            base_assumptions=ScenarioAssumptions.from_dict(data["base_assumptions"]),
            named_scenarios=named,
        )


@dataclass(frozen=True)
class ProjectionOutcome:
    """Projection of one assumption set.

    Attributes:
        projected_series: Metric value for year 0..N (length N + 1).
        fair_value: Terminal value discounted back to today.
        safety_margin_pct: Percent gap between fair value and price.
            None if the price is not positive.
    """

    projected_series: tuple[float, ...]
    fair_value: float
    safety_margin_pct: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "projected_series": list(self.projected_series),
            "fair_value": self.fair_value,
            "safety_margin_pct": self.safety_margin_pct,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProjectionOutcome:
        margin = data.get("safety_margin_pct")
        return cls(
            projected_series=tuple(float(v) for v in data["projected_series"]),
            fair_value=float(data["fair_value"]),
            safety_margin_pct=None if margin is None else float(margin),
        )


# Scenario name -> outcome, always keyed in SCENARIO_ORDER.
ScenarioResultSet = Mapping[Scenario, ProjectionOutcome]


@dataclass(frozen=True)
class ValuationResult:
    """Report-ready valuation for one method.

    Created once per calculation and never mutated; recomputing produces
    a new instance. ``user_id`` stays empty until the store attaches an
    owner through :meth:`with_user`.
    """

    id: str
    timestamp: float
    method: ValuationMethod
    inputs: ValuationInputs
    fair_value: float
    current_price: float
    safety_margin_pct: float | None
    projected_series: tuple[float, ...]
    years: tuple[int, ...]
    scenario_results: ScenarioResultSet | None = None
    user_id: str = ""

    def __post_init__(self) -> None:
        if self.scenario_results is not None:
            object.__setattr__(
                self, "scenario_results", _ordered_scenarios(self.scenario_results),
            )

    @property
    def stock_name(self) -> str:
        return self.inputs.stock_name

    def with_user(self, user_id: str) -> ValuationResult:
        """Return a copy owned by user_id."""
        return replace(self, user_id=user_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "method": self.method.value,
            "inputs": self.inputs.to_dict(),
            "fair_value": self.fair_value,
            "current_price": self.current_price,
            "safety_margin_pct": self.safety_margin_pct,
            "projected_series": list(self.projected_series),
            "years": list(self.years),
            "scenario_results": (
                None
                if self.scenario_results is None
                else {s.value: o.to_dict() for s, o in self.scenario_results.items()}
            ),
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ValuationResult:
        raw_results = data.get("scenario_results")
        scenario_results = None
        if raw_results is not None:
            scenario_results = _ordered_scenarios({
                Scenario(name): ProjectionOutcome.from_dict(values)
                for name, values in raw_results.items()
            })
        margin = data.get("safety_margin_pct")
        return cls(
            id=str(data["id"]),
            timestamp=float(data["timestamp"]),
            method=ValuationMethod(data["method"]),
            inputs=ValuationInputs.from_dict(data["inputs"]),
            fair_value=float(data["fair_value"]),
            current_price=float(data["current_price"]),
            safety_margin_pct=None if margin is None else float(margin),
            projected_series=tuple(float(v) for v in data["projected_series"]),
            years=tuple(int(y) for y in data["years"]),
            scenario_results=scenario_results,
            user_id=str(data.get("user_id", "")),
        )


@dataclass(frozen=True)
class CompanyValuationRecord:
    """A saved bundle of up to three method results for one company.

    Attributes:
        id: Storage-assigned key.
        user_id: Owner.
        stock_name: Company the bundle values.
        current_price: Price at save time.
        timestamp: Save time, epoch seconds.
        valuations: Method -> result, None for methods not computed.
    """

    id: str
    user_id: str
    stock_name: str
    current_price: float
    timestamp: float
    valuations: Mapping[ValuationMethod, ValuationResult | None] = field(
        default_factory=dict,
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "valuations", MappingProxyType(dict(self.valuations)))

    def computed(self) -> list[ValuationResult]:
        """Non-empty results in method order."""
        results: list[ValuationResult] = []
        for method in METHOD_ORDER:
            result = self.valuations.get(method)
            if result is not None:
                results.append(result)
        return results

    def valuations_to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for method in METHOD_ORDER:
            result = self.valuations.get(method)
            payload[method.value] = None if result is None else result.to_dict()
        return payload

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "stock_name": self.stock_name,
            "current_price": self.current_price,
            "timestamp": self.timestamp,
            "valuations": self.valuations_to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CompanyValuationRecord:
        """Decode a record whose timestamps are already epoch seconds."""
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            stock_name=str(data["stock_name"]),
            current_price=float(data["current_price"]),
            timestamp=float(data["timestamp"]),
            valuations=cls.valuations_from_dict(data.get("valuations") or {}),
        )

    @staticmethod
    def valuations_from_dict(
        data: Mapping[str, Any],
    ) -> dict[ValuationMethod, ValuationResult | None]:
        valuations: dict[ValuationMethod, ValuationResult | None] = {}
        for method in METHOD_ORDER:
            raw = data.get(method.value)
            valuations[method] = None if raw is None else ValuationResult.from_dict(raw)
        return valuations


def normalize_timestamp(value: Any) -> float:
    """Convert any stored timestamp shape to epoch seconds.

    Accepts epoch seconds, epoch milliseconds, a server timestamp mapping
    (``{"seconds": s, "nanoseconds": n}``), a datetime, or None (0.0).

    Raises:
        ValueError: If the value has no recognisable timestamp shape.
    """
    if value is None:
        return 0.0
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, Mapping):
        if "seconds" not in value:
            raise ValueError(f"Unrecognised timestamp mapping: {dict(value)!r}")
        seconds = float(value["seconds"])
        nanos = float(value.get("nanoseconds", 0) or 0)
        return seconds + nanos / 1e9
    if isinstance(value, bool):
        raise ValueError(f"Unrecognised timestamp: {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Unrecognised timestamp: {value!r}") from e
    if not math.isfinite(number):
        raise ValueError(f"Non-finite timestamp: {value!r}")
    if abs(number) > _MILLISECOND_THRESHOLD:
        return number / 1000.0
    return number
