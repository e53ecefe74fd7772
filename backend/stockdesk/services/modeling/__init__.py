"""
modeling — Valuation engine, valuation report and financial analytics.

Everything in this package is pure computation over plain values; persistence
lives in services/research.
"""

from stockdesk.services.modeling.financials import (
    annual_rollup,
    comparison_key_metrics,
    comparison_series,
    custom_metric_key,
    financial_kpis,
    moat_score,
    next_quarter,
    quarterly_view,
)
from stockdesk.services.modeling.valuation import (
    ValuationInputs,
    ValuationOutputs,
    compute_valuation,
    default_valuation_inputs,
)
from stockdesk.services.modeling.valuation_report import (
    build_valuation_report,
    render_csv,
    render_xlsx,
)

__all__ = [
    "annual_rollup",
    "comparison_key_metrics",
    "comparison_series",
    "custom_metric_key",
    "financial_kpis",
    "moat_score",
    "next_quarter",
    "quarterly_view",
    "ValuationInputs",
    "ValuationOutputs",
    "compute_valuation",
    "default_valuation_inputs",
    "build_valuation_report",
    "render_csv",
    "render_xlsx",
]
