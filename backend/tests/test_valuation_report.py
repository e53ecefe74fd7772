"""
Unit tests for the valuation report (services/modeling/valuation_report.py).
"""

import csv
from io import BytesIO, StringIO

import pytest
from openpyxl import load_workbook

from stockdesk.services.modeling.valuation import ValuationInputs, compute_valuation
from stockdesk.services.modeling.valuation_report import (
    INPUT_LABELS,
    OUTPUT_LABELS,
    UNDEFINED_PLACEHOLDER,
    build_valuation_report,
    export_filename,
    format_value,
    render_csv,
    render_xlsx,
)


@pytest.fixture
def report_rows():
    inputs = ValuationInputs(current_price=170, current_sales=1000)
    return build_valuation_report("AAPL", inputs, compute_valuation(inputs))


def test_report_layout(report_rows):
    """Title, blank, inputs section, blank, outputs section."""
    labels = [label for label, _ in report_rows]

    assert report_rows[0] == ("Valuation Analysis", "AAPL")
    assert report_rows[1] == ("", "")
    assert labels[2] == "EDITABLE INPUTS"
    assert labels[3:15] == [label for _, label in INPUT_LABELS]
    assert report_rows[15] == ("", "")
    assert labels[16] == "AUTO-CALCULATED OUTPUTS"
    assert labels[17:] == [label for _, label in OUTPUT_LABELS]
    assert len(report_rows) == 17 + 14


def test_report_values(report_rows):
    values = dict(report_rows)

    assert values["Current Price"] == 170
    assert values["Investment Horizon (Years)"] == 5
    assert values["Normalized Net Profit Margin"] == "200.00"
    assert values["Normalized EPS"] == "0.00"
    assert values["Sales @Year End"] == "2011.36"
    assert values["%Penetration Rate"] == "0.00"


def test_undefined_outputs_render_as_placeholder():
    inputs = ValuationInputs(current_sales=1000, sales_growth_cagr=-150, investment_horizon=2.5)
    rows = build_valuation_report("XYZ", inputs, compute_valuation(inputs))
    values = dict(rows)

    assert values["Sales @Year End"] == UNDEFINED_PLACEHOLDER
    assert values["Fair Price"] == UNDEFINED_PLACEHOLDER


@pytest.mark.parametrize(
    "value, expected",
    [
        (1.005, "1.00"),
        (2011.357, "2011.36"),
        (-0.0, "0.00"),
        (None, UNDEFINED_PLACEHOLDER),
        (float("nan"), UNDEFINED_PLACEHOLDER),
        (float("-inf"), UNDEFINED_PLACEHOLDER),
    ],
)
def test_format_value(value, expected):
    assert format_value(value) == expected


def test_render_csv(report_rows):
    text = render_csv(report_rows)
    parsed = list(csv.reader(StringIO(text)))

    assert parsed[0] == ["Valuation Analysis", "AAPL"]
    assert parsed[1] == ["", ""]
    assert parsed[2] == ["EDITABLE INPUTS", ""]
    assert parsed[3] == ["Current Price", "170"]
    assert ["Fair Price (Include MOS)", dict(report_rows)["Fair Price (Include MOS)"]] == parsed[-1]


def test_render_xlsx(report_rows):
    workbook = load_workbook(BytesIO(render_xlsx(report_rows)))
    sheet = workbook["Valuation"]

    assert workbook.sheetnames == ["Valuation"]
    assert sheet["A1"].value == "Valuation Analysis"
    assert sheet["B1"].value == "AAPL"
    assert sheet["A1"].font.bold
    assert sheet["A3"].value == "EDITABLE INPUTS"
    assert sheet["A3"].font.bold
    assert sheet["A4"].value == "Current Price"
    assert sheet["B4"].value == 170
    assert sheet["A17"].value == "AUTO-CALCULATED OUTPUTS"
    assert sheet["A17"].font.bold
    assert sheet["B18"].value == "200.00"


def test_export_filename():
    assert export_filename("aapl") == "AAPL_valuation.csv"
    assert export_filename("MSFT", "xlsx") == "MSFT_valuation.xlsx"
