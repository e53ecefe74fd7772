"""
financials.py — Manually Entered Financials: Rollups and KPIs

Purpose:
- Derive the views shown next to a stock's financial table:
    * quarterly rows in chronological order
    * fiscal-year rows rolled up from complete sets of four quarters
    * headline KPIs (revenue growth, net margin, FCF margin)
    * cross-stock comparison series for one metric, plus a key-metrics
      table (price, day change, P/E, P/S)
- Small helpers for editing the table (next quarter label, custom metric keys)
  and for scoring the "7 Powers" moat list.

Inputs:
- Financial rows as plain dicts with camelCase keys ("period", "revenue",
  "netIncome", ..., plus any custom metric keys).

This module does NOT:
- Read or write the database (see services/research/stock_repository.py).
- Validate user input beyond numeric coercion.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from stockdesk.utils.period_sort import is_quarter, parse_period, sort_periods

# Built-in financial columns, in display order
STANDARD_METRIC_KEYS: Sequence[str] = (
    "revenue",
    "grossProfit",
    "operatingIncome",
    "netIncome",
    "rdExpense",
    "smExpense",
    "gaExpense",
    "freeCashFlow",
    "capex",
    "sharesOutstanding",
)

COMPARISON_METRICS = frozenset({"revenue", "netIncome", "freeCashFlow"})

# Point-in-time metrics take the last quarter's value instead of the sum
POINT_IN_TIME_KEYS = frozenset({"sharesOutstanding"})

DEFAULT_SEED_QUARTER = "Q4 2023"

CUSTOM_METRIC_COLORS: Sequence[str] = (
    "hsl(var(--chart-5))",
    "hsl(var(--chart-1))",
    "hsl(var(--chart-2))",
    "hsl(var(--chart-3))",
    "hsl(var(--chart-4))",
)

MOAT_POWERS: Sequence[str] = (
    "Scale Economies",
    "Network Economies",
    "Counter Positioning",
    "Switching Costs",
    "Branding",
    "Cornered Resource",
    "Process Power",
)

MOAT_STRENGTH_POINTS: Dict[str, int] = {"High": 3, "Normal": 2, "Weak": 1}
MOAT_MAX_SCORE = len(MOAT_POWERS) * MOAT_STRENGTH_POINTS["High"]


def _num(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def _period(row: Mapping[str, Any]) -> str:
    return str(row.get("period") or "")


# -----------------------------------------------------------------------------
# Views
# -----------------------------------------------------------------------------


def quarterly_view(financials: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Quarterly rows only, oldest first."""
    quarters = [dict(row) for row in financials if is_quarter(_period(row))]
    return sort_periods(quarters, key=_period)


def annual_rollup(
    financials: Iterable[Mapping[str, Any]],
    custom_keys: Sequence[str] = (),
) -> List[Dict[str, Any]]:
    """
    Roll quarterly rows up into "FY YYYY" rows.

    Only years with exactly four quarterly rows produce an annual row. Every
    metric is summed across the quarters except point-in-time metrics
    (shares outstanding), which take the value of the last quarter as entered.
    """
    by_year: "OrderedDict[int, List[Mapping[str, Any]]]" = OrderedDict()
    for row in financials:
        label = _period(row)
        if not is_quarter(label):
            continue
        year, _ = parse_period(label)
        by_year.setdefault(year, []).append(row)

    metric_keys = list(STANDARD_METRIC_KEYS) + [k for k in custom_keys if k not in STANDARD_METRIC_KEYS]

    annual: List[Dict[str, Any]] = []
    for year, quarters in by_year.items():
        if len(quarters) != 4:
            continue
        rollup: Dict[str, Any] = {"period": f"FY {year}"}
        for key in metric_keys:
            if key in POINT_IN_TIME_KEYS:
                rollup[key] = _num(quarters[-1].get(key))
            else:
                rollup[key] = sum(_num(q.get(key)) for q in quarters)
        annual.append(rollup)

    return sort_periods(annual, key=_period)


def financial_kpis(rows: Sequence[Mapping[str, Any]]) -> Optional[Dict[str, float]]:
    """
    Headline KPIs of the latest period, given rows in chronological order.

    Returns None with fewer than two periods. Percentages are 0 when their
    denominator (previous or latest revenue) is 0.
    """
    if len(rows) < 2:
        return None

    latest = rows[-1]
    previous = rows[-2]

    latest_revenue = _num(latest.get("revenue"))
    previous_revenue = _num(previous.get("revenue"))

    revenue_growth = (
        (latest_revenue - previous_revenue) / previous_revenue * 100
        if previous_revenue
        else 0.0
    )
    net_profit_margin = (
        _num(latest.get("netIncome")) / latest_revenue * 100
        if latest_revenue
        else 0.0
    )
    fcf_margin = (
        _num(latest.get("freeCashFlow")) / latest_revenue * 100
        if latest_revenue
        else 0.0
    )

    return {
        "revenueGrowth": revenue_growth,
        "netProfitMargin": net_profit_margin,
        "fcfMargin": fcf_margin,
    }


def comparison_series(
    stocks: Iterable[Mapping[str, Any]],
    metric: str = "revenue",
) -> List[Dict[str, Any]]:
    """
    Merge one metric of several stocks into per-period rows.

    Args:
        stocks: items with "symbol" and "financials" (list of rows)
        metric: one of COMPARISON_METRICS

    Returns:
        [{"period": "Q1 2024", "AAPL": 100.0, "MSFT": 80.0}, ...], oldest first.
        A stock without a row for a period has no key in that period's row.
    """
    if metric not in COMPARISON_METRICS:
        raise ValueError(
            f"Unsupported comparison metric '{metric}'. Expected one of: {sorted(COMPARISON_METRICS)}"
        )

    periods: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for stock in stocks:
        symbol = stock.get("symbol")
        for row in stock.get("financials") or []:
            label = _period(row)
            entry = periods.setdefault(label, {"period": label})
            entry[symbol] = _num(row.get(metric))

    return sort_periods(list(periods.values()), key=_period)


def comparison_key_metrics(stocks: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """
    Price, day change and valuation ratios of several stocks, side by side.

    Ratios come from each stock's saved valuation inputs:
        P/E = price / (currentSales × netProfitMargin / sharesOutstanding)
        P/S = price × sharesOutstanding / currentSales

    A ratio is None when the inputs it needs are missing or zero, or when
    P/E is not positive.
    """
    metrics: List[Dict[str, Any]] = []
    for stock in stocks:
        price = _num(stock.get("currentPrice"))
        valuation = stock.get("valuation") or {}
        sales = _num(valuation.get("currentSales"))
        shares = _num(valuation.get("sharesOutstanding"))
        margin = _num(valuation.get("netProfitMargin"))

        pe_ratio: Optional[float] = None
        if sales and shares and margin:
            normalized_eps = sales * (margin / 100) / shares
            pe = price / normalized_eps if normalized_eps > 0 else 0.0
            pe_ratio = pe if pe > 0 else None

        ps_ratio: Optional[float] = None
        if shares and sales > 0:
            ps_ratio = price * shares / sales

        metrics.append(
            {
                "symbol": stock.get("symbol"),
                "companyName": stock.get("companyName"),
                "currentPrice": price,
                "dayChange": _num(stock.get("dayChange")),
                "peRatio": pe_ratio,
                "psRatio": ps_ratio,
            }
        )
    return metrics


# -----------------------------------------------------------------------------
# Editing helpers
# -----------------------------------------------------------------------------


def next_quarter(label: Optional[str] = None) -> str:
    """
    Label of the quarter after `label` ("Q4 2024" → "Q1 2025").

    Falls back to the seed quarter when `label` is empty or not a quarter.
    """
    if not label or not is_quarter(label):
        label = DEFAULT_SEED_QUARTER
    year, quarter = parse_period(label)
    if quarter == 4:
        return f"Q1 {year + 1}"
    return f"Q{quarter + 1} {year}"


def new_period_row(
    existing: Sequence[Mapping[str, Any]],
    custom_keys: Sequence[str] = (),
) -> Dict[str, Any]:
    """Blank row for the quarter following the last quarterly row entered."""
    quarters = [_period(row) for row in existing if is_quarter(_period(row))]
    row: Dict[str, Any] = {"period": next_quarter(quarters[-1] if quarters else None)}
    for key in STANDARD_METRIC_KEYS:
        row[key] = 0.0
    for key in custom_keys:
        row[key] = 0.0
    return row


def custom_metric_key(label: str) -> str:
    """Lowercase, whitespace to "_", drop anything outside [a-z0-9_-]."""
    key = re.sub(r"\s+", "_", label.lower())
    return re.sub(r"[^a-z0-9_-]", "", key)


def new_custom_metric(label: str, existing_count: int) -> Dict[str, str]:
    """Custom metric definition; colors cycle through the chart palette."""
    return {
        "key": custom_metric_key(label),
        "label": label,
        "color": CUSTOM_METRIC_COLORS[existing_count % len(CUSTOM_METRIC_COLORS)],
    }


def moat_score(moat: Iterable[Mapping[str, Any]]) -> int:
    """3 points per High, 2 per Normal, 1 per Weak. Maximum is MOAT_MAX_SCORE."""
    return sum(MOAT_STRENGTH_POINTS.get(power.get("strength") or "", 0) for power in moat)
