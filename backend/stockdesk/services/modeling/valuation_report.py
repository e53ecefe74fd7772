"""
valuation_report.py — Tabular Valuation Report (CSV / XLSX)

Purpose:
- Flatten one stock's valuation inputs and computed outputs into an ordered
  two-column table: a title row, the editable inputs as entered, then the
  auto-calculated outputs formatted to 2 decimal places.
- Render that table as CSV text or as an .xlsx workbook (openpyxl).

Undefined outputs (NaN / Infinity) are shown as "—", never as a number.

This module does NOT:
- Compute anything (see services/modeling/valuation.py).
- Load or save the inputs.
"""

from __future__ import annotations

import csv
import math
from io import BytesIO, StringIO
from typing import List, Optional, Tuple, Union

from openpyxl import Workbook
from openpyxl.styles import Font

from stockdesk.services.modeling.valuation import ValuationInputs, ValuationOutputs

ReportValue = Union[str, float]
ReportRow = Tuple[str, ReportValue]

REPORT_TITLE = "Valuation Analysis"
INPUTS_HEADER = "EDITABLE INPUTS"
OUTPUTS_HEADER = "AUTO-CALCULATED OUTPUTS"
UNDEFINED_PLACEHOLDER = "—"

INPUT_LABELS: Tuple[Tuple[str, str], ...] = (
    ("current_price", "Current Price"),
    ("investment_horizon", "Investment Horizon (Years)"),
    ("current_sales", "Current Sales (MB)"),
    ("sales_growth_cagr", "%Sales Growth (CAGR)"),
    ("net_profit_margin", "%Net Profit Margin"),
    ("shares_outstanding", "No. of Shares (Include Warrant)"),
    ("expected_pe_at_year_end", "P/E @Year End"),
    ("share_repurchase_dividend_issue", "Share Repurchase / Dividend Paid / Share Issue"),
    ("expected_return", "Expected Return"),
    ("margin_of_safety_percent", "Margin of Safety"),
    ("tam", "TAM"),
    ("sam", "SAM"),
)

OUTPUT_LABELS: Tuple[Tuple[str, str], ...] = (
    ("normalized_net_profit", "Normalized Net Profit Margin"),
    ("normalized_eps", "Normalized EPS"),
    ("normalized_current_pe", "Normalized Current P/E"),
    ("pe_expansion_percent", "%P/E Expansion"),
    ("sales_at_year_end", "Sales @Year End"),
    ("penetration_rate", "%Penetration Rate"),
    ("market_share_percent", "%Market Share"),
    ("net_profit_at_year_end", "Net Profit @Year End"),
    ("eps_at_year_end", "EPS @Year End"),
    ("eps_expansion_percent", "%EPS Expansion"),
    ("total_return_percent", "Total Return"),
    ("return_difference_percent", "Dif."),
    ("fair_price", "Fair Price"),
    ("fair_price_with_margin_of_safety", "Fair Price (Include MOS)"),
)

SECTION_HEADERS = frozenset({INPUTS_HEADER, OUTPUTS_HEADER})


def format_value(value: Optional[float], decimals: int = 2) -> str:
    """Fixed-point display value; None / NaN / Infinity → "—"."""
    if value is None or not math.isfinite(value):
        return UNDEFINED_PLACEHOLDER
    # + 0.0 turns -0.0 into 0.0
    return f"{value + 0.0:.{decimals}f}"


def _format_raw(value: ReportValue) -> str:
    if isinstance(value, str):
        return value
    value = float(value)
    if not math.isfinite(value):
        return UNDEFINED_PLACEHOLDER
    if value.is_integer():
        return str(int(value))
    return repr(value)


def export_filename(symbol: str, extension: str = "csv") -> str:
    return f"{symbol.upper()}_valuation.{extension}"


def build_valuation_report(
    symbol: str,
    inputs: ValuationInputs,
    outputs: ValuationOutputs,
) -> List[ReportRow]:
    """
    Build the ordered (label, value) rows of the valuation report.

    Inputs are kept as raw floats; outputs are pre-formatted strings so every
    renderer shows the same 2-decimal figures.
    """
    rows: List[ReportRow] = [(REPORT_TITLE, symbol), ("", "")]

    rows.append((INPUTS_HEADER, ""))
    for attr, label in INPUT_LABELS:
        rows.append((label, getattr(inputs, attr)))

    rows.append(("", ""))
    rows.append((OUTPUTS_HEADER, ""))
    for attr, label in OUTPUT_LABELS:
        rows.append((label, format_value(getattr(outputs, attr))))

    return rows


# -----------------------------------------------------------------------------
# Renderers
# -----------------------------------------------------------------------------


def render_csv(rows: List[ReportRow]) -> str:
    buffer = StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for label, value in rows:
        writer.writerow([label, _format_raw(value)])
    return buffer.getvalue()


def render_xlsx(rows: List[ReportRow]) -> bytes:
    """
    Render the report as a single-sheet workbook named "Valuation".

    Title and section headers are bold; input values stay numeric cells.
    """
    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = "Valuation"

    for row_index, (label, value) in enumerate(rows, start=1):
        label_cell = worksheet.cell(row=row_index, column=1, value=label or None)
        if value != "":
            worksheet.cell(row=row_index, column=2, value=value)

        if row_index == 1:
            label_cell.font = Font(bold=True, size=14)
        elif label in SECTION_HEADERS:
            label_cell.font = Font(bold=True)

    worksheet.column_dimensions["A"].width = 48
    worksheet.column_dimensions["B"].width = 18

    output = BytesIO()
    workbook.save(output)
    return output.getvalue()
