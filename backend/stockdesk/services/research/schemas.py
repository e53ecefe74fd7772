"""
schemas.py — Stock Research Aggregate (API / Service Contract)

Purpose:
- Typed shape of one watchlist stock with all of its research sections, as
  the frontend reads and writes it (camelCase field names).
- Each section is optional: absence means "never entered", not an empty
  placeholder.

This module does NOT:
- Know how sections are packed into database columns
  (see services/research/stock_repository.py).
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from stockdesk.services.modeling.financials import moat_score

MoatStrength = Literal["Weak", "Normal", "High"]
GuidanceTone = Literal["Bullish", "Neutral", "Bearish"]


# -----------------------------------------------------------------------------
# Business overview
# -----------------------------------------------------------------------------

class RevenueSegment(BaseModel):
    segment: str = ""
    percentage: float = 0.0
    revenue: float = 0.0


class MoatPower(BaseModel):
    """One of the "7 Powers" with the analyst's strength rating."""
    name: str
    strength: Optional[MoatStrength] = None
    explanation: Optional[str] = None


class BusinessOverview(BaseModel):
    whatTheyDo: str = ""
    customers: str = ""
    revenueBreakdown: List[RevenueSegment] = Field(default_factory=list)
    moat: List[MoatPower] = Field(default_factory=list)
    growthEngine: str = ""

    @computed_field
    @property
    def moatScore(self) -> int:
        """3 per High, 2 per Normal, 1 per Weak power; out of 21."""
        return moat_score(power.model_dump() for power in self.moat)


class MarketSize(BaseModel):
    """Total / serviceable / obtainable market, in millions."""
    tam: float = 0.0
    sam: float = 0.0
    som: float = 0.0


class ThinkForMarket(BaseModel):
    """Free-text market reasoning notes."""
    tam: str = ""
    marketShare: str = ""
    unitEconomics: str = ""


# -----------------------------------------------------------------------------
# Financials
# -----------------------------------------------------------------------------

class FinancialRow(BaseModel):
    """
    One period of manually entered financials.

    Custom metric values ride along as extra fields keyed by the metric key.
    """
    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "period": "Q1 2024",
                "revenue": 1200.0,
                "grossProfit": 480.0,
                "netIncome": 150.0,
                "sharesOutstanding": 1000.0,
                "arpu": 12.5,
            }
        },
    )

    period: str
    revenue: float = 0.0
    grossProfit: float = 0.0
    operatingIncome: float = 0.0
    netIncome: float = 0.0
    rdExpense: float = 0.0
    smExpense: float = 0.0
    gaExpense: float = 0.0
    freeCashFlow: float = 0.0
    sharesOutstanding: float = 0.0
    capex: float = 0.0


class CustomMetric(BaseModel):
    key: str
    label: str
    color: str = ""


# -----------------------------------------------------------------------------
# Story & risks
# -----------------------------------------------------------------------------

class QuarterlyNote(BaseModel):
    quarter: str
    content: str = ""


class Story(BaseModel):
    quarters: List[QuarterlyNote] = Field(default_factory=list)
    guidanceTone: GuidanceTone = "Neutral"


class RiskAssessment(BaseModel):
    keyBusinessRisks: str = ""
    financialRisks: str = ""
    managementRisks: str = ""
    macroRisks: str = ""

    def has_content(self) -> bool:
        return any([self.keyBusinessRisks, self.financialRisks, self.managementRisks, self.macroRisks])


# -----------------------------------------------------------------------------
# Aggregate
# -----------------------------------------------------------------------------

class Stock(BaseModel):
    """A watchlist stock with every research section entered so far."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "6f1c0f1e-8a43-4c44-9c55-0d8d3f1f2a10",
                "symbol": "AAPL",
                "companyName": "Apple Inc.",
                "currentPrice": 170.0,
                "dayChange": 0.0,
                "tam": {"tam": 5000.0, "sam": 2000.0, "som": 300.0},
            }
        }
    )

    id: str
    symbol: str
    companyName: str
    currentPrice: float = 0.0
    dayChange: float = 0.0  # no live price feed

    businessOverview: Optional[BusinessOverview] = None
    tam: Optional[MarketSize] = None
    thinkForMarket: Optional[ThinkForMarket] = None
    tippingPoint: Optional[str] = None
    financials: Optional[List[FinancialRow]] = None
    customMetrics: Optional[List[CustomMetric]] = None
    valuation: Optional[Dict[str, Any]] = None
    story: Optional[Story] = None
    riskAssessment: Optional[RiskAssessment] = None
