"""
valuation.py — Fair Price / Margin-of-Safety Valuation Engine

Purpose:
- Turn a small set of editable assumptions (price, sales growth, margin,
  share count change, horizon, required return) into projected EPS,
  fair price and margin-of-safety price.
- Pure function: no state, no I/O. Safe to call concurrently.

Inputs are percentages in "human" units (15 means 15%), sales and market
sizes in millions of the reporting currency.

Numeric semantics:
- IEEE-754 doubles throughout.
- Only the zero-guards listed in `compute_valuation` return 0. Everything
  else follows float semantics, so a negative growth base under a fractional
  horizon produces NaN. Python raises where IEEE returns NaN/Infinity
  (`math.pow` domain errors, float division by zero), so unguarded power and
  division go through `_ieee_pow` / `_ieee_div`.

This module does NOT:
- Persist anything (see services/research/stock_repository.py).
- Format values for display (see services/modeling/valuation_report.py).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple

# -----------------------------------------------------------------------------
# Persisted key mapping
# -----------------------------------------------------------------------------

# (python attribute, persisted JSON key)
INPUT_KEYS: Tuple[Tuple[str, str], ...] = (
    ("current_price", "currentPrice"),
    ("investment_horizon", "investmentHorizon"),
    ("current_sales", "currentSales"),
    ("sales_growth_cagr", "salesGrowthCAGR"),
    ("net_profit_margin", "netProfitMargin"),
    ("shares_outstanding", "sharesOutstanding"),
    ("expected_pe_at_year_end", "expectedPEAtYearEnd"),
    ("share_repurchase_dividend_issue", "shareRepurchaseDividendIssue"),
    ("expected_return", "expectedReturn"),
    ("margin_of_safety_percent", "marginOfSafetyPercent"),
    ("tam", "tam"),
    ("sam", "sam"),
)

OUTPUT_KEYS: Tuple[Tuple[str, str], ...] = (
    ("normalized_net_profit", "normalizedNetProfit"),
    ("normalized_eps", "normalizedEPS"),
    ("normalized_current_pe", "normalizedCurrentPE"),
    ("pe_expansion_percent", "peExpansionPercent"),
    ("sales_at_year_end", "salesAtYearEnd"),
    ("penetration_rate", "penetrationRate"),
    ("market_share_percent", "marketSharePercent"),
    ("net_profit_at_year_end", "netProfitAtYearEnd"),
    ("eps_at_year_end", "epsAtYearEnd"),
    ("eps_expansion_percent", "epsExpansionPercent"),
    ("total_return_percent", "totalReturnPercent"),
    ("return_difference_percent", "returnDifferencePercent"),
    ("fair_price", "fairPrice"),
    ("fair_price_with_margin_of_safety", "fairPriceWithMarginOfSafety"),
)


def to_number(raw: Any) -> float:
    """
    Coerce a user-entered value to a finite float; anything else becomes 0.

    Mirrors the form behaviour: `"12.5"` → 12.5, `"abc"` / `""` / None → 0.
    """
    if isinstance(raw, bool) or raw is None:
        return 0.0
    if isinstance(raw, (int, float)):
        try:
            value = float(raw)
        except OverflowError:
            # int beyond the double range (long JSON integer literal)
            return 0.0
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    return value if math.isfinite(value) else 0.0


# -----------------------------------------------------------------------------
# Data contracts
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ValuationInputs:
    """
    Editable valuation assumptions for one stock.

    Defaults match the values a new valuation starts from; price, TAM and SAM
    come from the stock itself (see `default_valuation_inputs`).
    """
    current_price: float = 0.0
    investment_horizon: float = 5.0
    current_sales: float = 0.0
    sales_growth_cagr: float = 15.0
    net_profit_margin: float = 20.0
    shares_outstanding: float = 1_000_000.0
    expected_pe_at_year_end: float = 25.0
    share_repurchase_dividend_issue: float = 2.0
    expected_return: float = 15.0
    margin_of_safety_percent: float = 25.0
    tam: float = 0.0
    sam: float = 0.0

    @classmethod
    def from_dict(
        cls,
        data: Optional[Mapping[str, Any]],
        defaults: Optional["ValuationInputs"] = None,
    ) -> "ValuationInputs":
        """
        Hydrate a persisted valuation blob over `defaults`.

        Accepts the persisted camelCase keys as well as attribute names.
        Absent keys keep the default; present but non-numeric values become 0.
        """
        base = defaults if defaults is not None else cls()
        if not data:
            return base

        updates: Dict[str, float] = {}
        for attr, key in INPUT_KEYS:
            if key in data:
                updates[attr] = to_number(data[key])
            elif attr in data:
                updates[attr] = to_number(data[attr])
        return replace(base, **updates)

    def to_dict(self) -> Dict[str, float]:
        """Serialize to the persisted camelCase shape."""
        return {key: getattr(self, attr) for attr, key in INPUT_KEYS}


@dataclass(frozen=True)
class ValuationOutputs:
    """Derived valuation metrics. Never persisted, always recomputed."""
    normalized_net_profit: float
    normalized_eps: float
    normalized_current_pe: float
    pe_expansion_percent: float
    sales_at_year_end: float
    penetration_rate: float
    market_share_percent: float
    net_profit_at_year_end: float
    eps_at_year_end: float
    eps_expansion_percent: float
    total_return_percent: float
    return_difference_percent: float
    fair_price: float
    fair_price_with_margin_of_safety: float

    def to_dict(self, finite_only: bool = False) -> Dict[str, Optional[float]]:
        """
        Serialize with camelCase keys.

        With `finite_only=True`, NaN/Infinity become None so the result is
        JSON-compliant; callers display None as an "undefined" placeholder.
        """
        result: Dict[str, Optional[float]] = {}
        for attr, key in OUTPUT_KEYS:
            value = getattr(self, attr)
            if finite_only and not math.isfinite(value):
                result[key] = None
            else:
                result[key] = value
        return result

    def non_finite_fields(self) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(self) if not math.isfinite(getattr(self, f.name)))


def default_valuation_inputs(
    current_price: Optional[float] = None,
    tam: Optional[float] = None,
    sam: Optional[float] = None,
) -> ValuationInputs:
    """
    Starting assumptions for a stock that has no saved valuation yet.

    Args:
        current_price: the stock's manually entered price (None → 0)
        tam, sam: market sizes from the stock's TAM section (None → 0)
    """
    return ValuationInputs(
        current_price=current_price or 0.0,
        tam=tam or 0.0,
        sam=sam or 0.0,
    )


# -----------------------------------------------------------------------------
# IEEE-754 helpers
# -----------------------------------------------------------------------------


def _is_odd_integer(value: float) -> bool:
    value = float(value)
    return value.is_integer() and int(value) % 2 == 1


def _ieee_pow(base: float, exponent: float) -> float:
    """`math.pow` that returns NaN/±Infinity instead of raising."""
    try:
        return math.pow(base, exponent)
    except OverflowError:
        if base < 0 and _is_odd_integer(exponent):
            return -math.inf
        return math.inf
    except ValueError:
        # Either 0 ** negative or negative ** non-integer
        if base == 0.0:
            if _is_odd_integer(exponent):
                return math.copysign(math.inf, base)
            return math.inf
        return math.nan


def _ieee_div(numerator: float, denominator: float) -> float:
    """Float division that returns NaN/±Infinity on a zero denominator."""
    if denominator == 0.0:
        if numerator == 0.0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)
    return numerator / denominator


# -----------------------------------------------------------------------------
# Main computation
# -----------------------------------------------------------------------------


def compute_valuation(inputs: ValuationInputs) -> ValuationOutputs:
    """
    Compute every derived valuation metric from `inputs`.

    Formulas, in dependency order:
        normalized net profit  = sales × margin
        normalized EPS         = net profit / shares                 (0 if shares <= 0)
        normalized current P/E = price / normalized EPS              (0 if EPS <= 0)
        %P/E expansion         = ((P/E end / P/E now)^(1/h) - 1)     (0 if P/E <= 0 or h <= 0)
        sales @year end        = sales × (1 + g)^h
        %penetration rate      = TAM / SAM                           (0 if SAM <= 0)
        %market share          = sales @year end / SAM               (0 if SAM <= 0)
        net profit @year end   = sales @year end × margin
        adjusted shares        = shares × (1 - buyback)^h
        EPS @year end          = net profit @year end / adj. shares  (0 if adj. shares <= 0)
        %EPS expansion         = ((EPS end / EPS now)^(1/h) - 1)     (0 if EPS <= 0 or h <= 0)
        total return           = g + %P/E exp + %P/E exp × %EPS exp + buyback
        difference             = total return - expected return
        fair price             = EPS end × P/E end / (1 + r)^h       (0 if h <= 0)
        fair price (MOS)       = fair price × (1 - MOS)

    Never raises for finite inputs.
    """
    horizon = inputs.investment_horizon
    growth = inputs.sales_growth_cagr
    margin = inputs.net_profit_margin / 100
    buyback = inputs.share_repurchase_dividend_issue

    normalized_net_profit = inputs.current_sales * margin

    normalized_eps = (
        normalized_net_profit / inputs.shares_outstanding
        if inputs.shares_outstanding > 0
        else 0.0
    )

    normalized_current_pe = (
        inputs.current_price / normalized_eps
        if normalized_eps > 0
        else 0.0
    )

    if normalized_current_pe > 0 and horizon > 0:
        pe_expansion_percent = (
            _ieee_pow(inputs.expected_pe_at_year_end / normalized_current_pe, 1 / horizon) - 1
        ) * 100
    else:
        pe_expansion_percent = 0.0

    sales_at_year_end = inputs.current_sales * _ieee_pow(1 + growth / 100, horizon)

    if inputs.sam > 0:
        penetration_rate = (inputs.tam / inputs.sam) * 100
        market_share_percent = (sales_at_year_end / inputs.sam) * 100
    else:
        penetration_rate = 0.0
        market_share_percent = 0.0

    net_profit_at_year_end = sales_at_year_end * margin

    adjusted_shares = inputs.shares_outstanding * _ieee_pow(1 - buyback / 100, horizon)
    eps_at_year_end = (
        net_profit_at_year_end / adjusted_shares
        if adjusted_shares > 0
        else 0.0
    )

    if normalized_eps > 0 and horizon > 0:
        eps_expansion_percent = (
            _ieee_pow(eps_at_year_end / normalized_eps, 1 / horizon) - 1
        ) * 100
    else:
        eps_expansion_percent = 0.0

    total_return_percent = (
        growth
        + pe_expansion_percent
        + (pe_expansion_percent * eps_expansion_percent / 100)
        + buyback
    )
    return_difference_percent = total_return_percent - inputs.expected_return

    if horizon > 0:
        fair_price = _ieee_div(
            eps_at_year_end * inputs.expected_pe_at_year_end,
            _ieee_pow(1 + inputs.expected_return / 100, horizon),
        )
    else:
        fair_price = 0.0

    fair_price_with_margin_of_safety = fair_price * (1 - inputs.margin_of_safety_percent / 100)

    return ValuationOutputs(
        normalized_net_profit=normalized_net_profit,
        normalized_eps=normalized_eps,
        normalized_current_pe=normalized_current_pe,
        pe_expansion_percent=pe_expansion_percent,
        sales_at_year_end=sales_at_year_end,
        penetration_rate=penetration_rate,
        market_share_percent=market_share_percent,
        net_profit_at_year_end=net_profit_at_year_end,
        eps_at_year_end=eps_at_year_end,
        eps_expansion_percent=eps_expansion_percent,
        total_return_percent=total_return_percent,
        return_difference_percent=return_difference_percent,
        fair_price=fair_price,
        fair_price_with_margin_of_safety=fair_price_with_margin_of_safety,
    )
