"""
Unit tests for services/modeling/financials.py

Annual rollups, KPIs, comparison series and the table editing helpers.
"""

import pytest

from stockdesk.services.modeling.financials import (
    MOAT_MAX_SCORE,
    MOAT_POWERS,
    annual_rollup,
    comparison_key_metrics,
    comparison_series,
    custom_metric_key,
    financial_kpis,
    moat_score,
    new_custom_metric,
    new_period_row,
    next_quarter,
    quarterly_view,
)


def _quarter(period, revenue, net_income=0.0, shares=0.0, **extra):
    row = {
        "period": period,
        "revenue": revenue,
        "netIncome": net_income,
        "freeCashFlow": revenue / 10,
        "sharesOutstanding": shares,
    }
    row.update(extra)
    return row


@pytest.fixture
def quarterly_rows():
    """Complete 2023, incomplete 2024, entered out of order."""
    return [
        _quarter("Q2 2023", 110, 11, 1000, arpu=2),
        _quarter("Q1 2023", 100, 10, 1010, arpu=1),
        _quarter("Q3 2023", 120, 12, 990, arpu=3),
        _quarter("Q4 2023", 130, 13, 980, arpu=4),
        _quarter("Q1 2024", 140, 14, 970, arpu=5),
        {"period": "FY 2022", "revenue": 400},
    ]


# -----------------------------------------------------------------------------
# Views
# -----------------------------------------------------------------------------

def test_quarterly_view_sorts_and_drops_annual_rows(quarterly_rows):
    periods = [row["period"] for row in quarterly_view(quarterly_rows)]
    assert periods == ["Q1 2023", "Q2 2023", "Q3 2023", "Q4 2023", "Q1 2024"]


def test_annual_rollup_only_complete_years(quarterly_rows):
    annual = annual_rollup(quarterly_rows, custom_keys=["arpu"])

    assert [row["period"] for row in annual] == ["FY 2023"]
    fy = annual[0]
    assert fy["revenue"] == 460
    assert fy["netIncome"] == 46
    assert fy["freeCashFlow"] == pytest.approx(46.0)
    assert fy["arpu"] == 10
    assert fy["operatingIncome"] == 0


def test_annual_rollup_takes_last_entered_share_count(quarterly_rows):
    fy = annual_rollup(quarterly_rows)[0]
    # Q4 2023 is the last 2023 quarter in entry order
    assert fy["sharesOutstanding"] == 980


def test_annual_rollup_sorted_across_years():
    rows = [_quarter(f"Q{q} {year}", 10) for year in (2024, 2022) for q in (1, 2, 3, 4)]
    assert [row["period"] for row in annual_rollup(rows)] == ["FY 2022", "FY 2024"]


def test_annual_rollup_ignores_year_with_extra_quarter_row():
    rows = [_quarter(f"Q{q} 2023", 10) for q in (1, 2, 3, 4)] + [_quarter("Q4 2023", 10)]
    assert annual_rollup(rows) == []


# -----------------------------------------------------------------------------
# KPIs
# -----------------------------------------------------------------------------

def test_financial_kpis_latest_vs_previous():
    rows = [_quarter("Q1 2024", 100, 10), _quarter("Q2 2024", 125, 25)]
    kpis = financial_kpis(rows)

    assert kpis["revenueGrowth"] == pytest.approx(25.0)
    assert kpis["netProfitMargin"] == pytest.approx(20.0)
    assert kpis["fcfMargin"] == pytest.approx(10.0)


def test_financial_kpis_zero_revenue():
    rows = [_quarter("Q1 2024", 0, 0), _quarter("Q2 2024", 0, 5)]
    kpis = financial_kpis(rows)

    assert kpis == {"revenueGrowth": 0.0, "netProfitMargin": 0.0, "fcfMargin": 0.0}


def test_financial_kpis_needs_two_periods():
    assert financial_kpis([]) is None
    assert financial_kpis([_quarter("Q1 2024", 100)]) is None


# -----------------------------------------------------------------------------
# Comparison
# -----------------------------------------------------------------------------

def test_comparison_series_merges_by_period():
    stocks = [
        {"symbol": "AAPL", "financials": [_quarter("Q2 2024", 200), _quarter("Q1 2024", 100)]},
        {"symbol": "MSFT", "financials": [_quarter("Q1 2024", 80)]},
    ]
    rows = comparison_series(stocks, "revenue")

    assert rows == [
        {"period": "Q1 2024", "AAPL": 100.0, "MSFT": 80.0},
        {"period": "Q2 2024", "AAPL": 200.0},
    ]


def test_comparison_series_other_metric():
    stocks = [{"symbol": "AAPL", "financials": [_quarter("Q1 2024", 100, 30)]}]
    assert comparison_series(stocks, "netIncome") == [{"period": "Q1 2024", "AAPL": 30.0}]


def test_comparison_series_rejects_unknown_metric():
    with pytest.raises(ValueError):
        comparison_series([], "grossProfit")


def _valued(symbol, price, sales, shares, margin):
    return {
        "symbol": symbol,
        "companyName": symbol.title(),
        "currentPrice": price,
        "dayChange": 1.5,
        "valuation": {"currentSales": sales, "sharesOutstanding": shares, "netProfitMargin": margin},
    }


def test_comparison_key_metrics_ratios():
    [metrics] = comparison_key_metrics([_valued("AAPL", 50.0, 1000.0, 25.0, 10.0)])

    # EPS = 1000 * 10% / 25 = 4
    assert metrics["peRatio"] == pytest.approx(12.5)
    assert metrics["psRatio"] == pytest.approx(1.25)
    assert metrics["currentPrice"] == 50.0
    assert metrics["dayChange"] == 1.5
    assert metrics["companyName"] == "Aapl"


@pytest.mark.parametrize(
    "sales, shares, margin, ps",
    [
        (1000.0, 25.0, 0.0, 1.25),
        (1000.0, 25.0, -10.0, 1.25),
        (1000.0, 0.0, 10.0, None),
        (0.0, 25.0, 10.0, None),
        (-1000.0, 25.0, 10.0, None),
    ],
)
def test_comparison_key_metrics_without_pe(sales, shares, margin, ps):
    [metrics] = comparison_key_metrics([_valued("AAPL", 50.0, sales, shares, margin)])

    assert metrics["peRatio"] is None
    if ps is None:
        assert metrics["psRatio"] is None
    else:
        assert metrics["psRatio"] == pytest.approx(ps)


def test_comparison_key_metrics_without_valuation():
    stocks = [{"symbol": "MSFT", "companyName": "Microsoft", "currentPrice": 400.0, "valuation": None}]
    assert comparison_key_metrics(stocks) == [
        {
            "symbol": "MSFT",
            "companyName": "Microsoft",
            "currentPrice": 400.0,
            "dayChange": 0.0,
            "peRatio": None,
            "psRatio": None,
        }
    ]


# -----------------------------------------------------------------------------
# Editing helpers
# -----------------------------------------------------------------------------

@pytest.mark.parametrize(
    "label, expected",
    [
        ("Q1 2024", "Q2 2024"),
        ("Q4 2024", "Q1 2025"),
        (None, "Q1 2024"),
        ("FY 2020", "Q1 2024"),
    ],
)
def test_next_quarter(label, expected):
    assert next_quarter(label) == expected


def test_new_period_row_follows_last_entered_quarter():
    row = new_period_row([_quarter("Q3 2024", 1), {"period": "FY 2023"}], custom_keys=["arpu"])

    assert row["period"] == "Q4 2024"
    assert row["revenue"] == 0.0
    assert row["arpu"] == 0.0


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Daily Active Users", "daily_active_users"),
        ("ARPU ($)", "arpu_"),
        ("  Gross  Margin % ", "_gross_margin__"),
        ("net-adds", "net-adds"),
    ],
)
def test_custom_metric_key(label, expected):
    assert custom_metric_key(label) == expected


def test_new_custom_metric_cycles_colors():
    first = new_custom_metric("ARPU", 0)
    sixth = new_custom_metric("DAU", 5)

    assert first == {"key": "arpu", "label": "ARPU", "color": "hsl(var(--chart-5))"}
    assert sixth["color"] == first["color"]


def test_moat_score():
    moat = [
        {"name": "Scale Economies", "strength": "High"},
        {"name": "Network Economies", "strength": "Normal"},
        {"name": "Branding", "strength": "Weak"},
        {"name": "Process Power", "strength": None},
    ]
    assert moat_score(moat) == 6
    assert moat_score([{"name": p, "strength": "High"} for p in MOAT_POWERS]) == MOAT_MAX_SCORE == 21
