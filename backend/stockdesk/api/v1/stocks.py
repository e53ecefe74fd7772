"""
stocks.py — Watchlist & Research API Endpoints

Purpose:
- CRUD for the signed-in user's watchlist stocks.
- Save the research sections of a stock (business overview, financials,
  story, risk assessment).
- Read-only analytics over entered financials (quarterly / annual summary,
  cross-stock comparison).

Endpoints:
- GET    /stocks                            → all stocks, newest first
- POST   /stocks                            → add a stock
- GET    /stocks/compare?ids=..&metric=..   → comparison series + key metrics
- GET    /stocks/{id}                       → one stock with all sections
- PATCH  /stocks/{id}                       → update symbol / name / price
- DELETE /stocks/{id}                       → delete stock and its research
- PUT    /stocks/{id}/business-overview     → overview, market size, notes
- PUT    /stocks/{id}/financials            → replace financial rows
- POST   /stocks/{id}/financials/periods    → append the next quarter (blank)
- GET    /stocks/{id}/financials/summary    → view=quarterly|annual + KPIs
- POST   /stocks/{id}/custom-metrics        → define a custom metric
- DELETE /stocks/{id}/custom-metrics/{key}  → drop a custom metric
- PUT    /stocks/{id}/story                 → quarterly story
- PUT    /stocks/{id}/risks                 → risk assessment

All endpoints require a bearer token; rows of other users are never visible.
"""

from typing import Any, Dict, List, Literal, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockdesk.core.database import get_db
from stockdesk.core.logging import get_logger
from stockdesk.core.security import get_current_user_id
from stockdesk.services.modeling.financials import (
    annual_rollup,
    comparison_key_metrics,
    comparison_series,
    financial_kpis,
    quarterly_view,
)
from stockdesk.services.research.schemas import (
    BusinessOverview,
    CustomMetric,
    FinancialRow,
    MarketSize,
    RiskAssessment,
    Stock,
    Story,
    ThinkForMarket,
)
from stockdesk.services.research.stock_repository import (
    DuplicateStockError,
    InvalidStockDataError,
    StockNotFoundError,
    StockRepository,
    StockRepositoryError,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/stocks",
    tags=["stocks"]
)


# -----------------------------------------------------------------------------
# Dependencies & error mapping
# -----------------------------------------------------------------------------

def get_stock_repository(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> StockRepository:
    return StockRepository(db, user_id)


def raise_http_error(exc: Exception, action: str) -> NoReturn:
    """Translate repository / database errors into HTTP errors."""
    if isinstance(exc, StockNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, DuplicateStockError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, (InvalidStockDataError, ValueError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    logger.exception("Failed to %s", action)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    ) from exc


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------

class StockCreate(BaseModel):
    """Request body for adding a stock to the watchlist."""
    symbol: str = Field(..., min_length=1, max_length=16)
    companyName: str = Field(..., min_length=1)
    currentPrice: float = Field(0.0, ge=0)


class StockUpdate(BaseModel):
    symbol: Optional[str] = Field(None, min_length=1, max_length=16)
    companyName: Optional[str] = None
    currentPrice: Optional[float] = Field(None, ge=0)


class BusinessOverviewUpdate(BaseModel):
    """Any subset of the qualitative sections; omitted sections are kept."""
    businessOverview: Optional[BusinessOverview] = None
    tam: Optional[MarketSize] = None
    thinkForMarket: Optional[ThinkForMarket] = None
    tippingPoint: Optional[str] = None


class FinancialsUpdate(BaseModel):
    financials: List[FinancialRow]
    customMetrics: Optional[List[CustomMetric]] = None


class CustomMetricCreate(BaseModel):
    label: str = Field(..., min_length=1)


class FinancialKpis(BaseModel):
    revenueGrowth: float
    netProfitMargin: float
    fcfMargin: float


class FinancialSummary(BaseModel):
    view: Literal["quarterly", "annual"]
    rows: List[Dict[str, Any]]
    kpis: Optional[FinancialKpis] = None


class KeyMetrics(BaseModel):
    """One row of the key-metrics table; a ratio is null when it cannot be computed."""
    symbol: str
    companyName: str
    currentPrice: float
    dayChange: float
    peRatio: Optional[float] = None
    psRatio: Optional[float] = None


class ComparisonResponse(BaseModel):
    metric: str
    symbols: List[str]
    rows: List[Dict[str, Any]]
    keyMetrics: List[KeyMetrics]


# -----------------------------------------------------------------------------
# Watchlist
# -----------------------------------------------------------------------------

@router.get("", response_model=List[Stock])
def list_stocks(repo: StockRepository = Depends(get_stock_repository)):
    """GET /stocks — all stocks of the current user, most recently added first."""
    try:
        return repo.list_stocks()
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "load stocks")


@router.post("", response_model=Stock, status_code=status.HTTP_201_CREATED)
def add_stock(payload: StockCreate, repo: StockRepository = Depends(get_stock_repository)):
    """
    POST /stocks

    Raises:
        409: the symbol is already on the watchlist
    """
    try:
        return repo.add_stock(payload.symbol, payload.companyName, payload.currentPrice)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "add stock")


@router.get("/compare", response_model=ComparisonResponse)
def compare_stocks(
    ids: List[str] = Query(..., description="Stock ids, repeated or comma-separated"),
    metric: Literal["revenue", "netIncome", "freeCashFlow"] = Query("revenue"),
    repo: StockRepository = Depends(get_stock_repository),
):
    """
    GET /stocks/compare?ids=<id>&ids=<id>&metric=revenue

    Returns one row per period with one value per stock symbol, and the
    key-metrics table (price, day change, P/E, P/S) of the same stocks.
    """
    stock_ids = [part.strip() for value in ids for part in value.split(",") if part.strip()]
    try:
        stocks = repo.get_stocks(stock_ids)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "compare stocks")

    series_input = [
        {
            "symbol": stock.symbol,
            "financials": [row.model_dump() for row in stock.financials or []],
        }
        for stock in stocks
    ]
    return ComparisonResponse(
        metric=metric,
        symbols=[stock.symbol for stock in stocks],
        rows=comparison_series(series_input, metric),
        keyMetrics=comparison_key_metrics(stock.model_dump() for stock in stocks),
    )


@router.get("/{stock_id}", response_model=Stock)
def get_stock(stock_id: str, repo: StockRepository = Depends(get_stock_repository)):
    try:
        return repo.get_stock(stock_id)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "load stock")


@router.patch("/{stock_id}", response_model=Stock)
def update_stock(
    stock_id: str,
    payload: StockUpdate,
    repo: StockRepository = Depends(get_stock_repository),
):
    try:
        return repo.update_stock(
            stock_id,
            symbol=payload.symbol,
            company_name=payload.companyName,
            current_price=payload.currentPrice,
        )
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "update stock")


@router.delete("/{stock_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_stock(stock_id: str, repo: StockRepository = Depends(get_stock_repository)):
    """DELETE /stocks/{id} — also removes the stock's overview, financials and risks."""
    try:
        repo.delete_stock(stock_id)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "delete stock")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -----------------------------------------------------------------------------
# Research sections
# -----------------------------------------------------------------------------

@router.put("/{stock_id}/business-overview", response_model=Stock)
def save_business_overview(
    stock_id: str,
    payload: BusinessOverviewUpdate,
    repo: StockRepository = Depends(get_stock_repository),
):
    try:
        return repo.save_business_overview(
            stock_id,
            overview=payload.businessOverview,
            market_size=payload.tam,
            think_for_market=payload.thinkForMarket,
            tipping_point=payload.tippingPoint,
        )
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "save business overview")


@router.put("/{stock_id}/financials", response_model=Stock)
def save_financials(
    stock_id: str,
    payload: FinancialsUpdate,
    repo: StockRepository = Depends(get_stock_repository),
):
    """PUT /stocks/{id}/financials — replaces every financial row of the stock."""
    try:
        return repo.save_financials(stock_id, payload.financials, payload.customMetrics)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "save financials")


@router.get("/{stock_id}/financials/summary", response_model=FinancialSummary)
def financial_summary(
    stock_id: str,
    view: Literal["quarterly", "annual"] = Query("quarterly"),
    repo: StockRepository = Depends(get_stock_repository),
):
    """
    GET /stocks/{id}/financials/summary?view=quarterly|annual

    Annual rows exist only for years with all four quarters entered.
    KPIs compare the latest two rows of the chosen view.
    """
    try:
        stock = repo.get_stock(stock_id)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "load financials")

    rows = [row.model_dump() for row in stock.financials or []]
    if view == "annual":
        custom_keys = [metric.key for metric in stock.customMetrics or []]
        display = annual_rollup(rows, custom_keys)
    else:
        display = quarterly_view(rows)

    return FinancialSummary(view=view, rows=display, kpis=financial_kpis(display))


@router.put("/{stock_id}/story", response_model=Stock)
def save_story(stock_id: str, payload: Story, repo: StockRepository = Depends(get_stock_repository)):
    try:
        return repo.save_story(stock_id, payload)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "save story")


@router.put("/{stock_id}/risks", response_model=Stock)
def save_risk_assessment(
    stock_id: str,
    payload: RiskAssessment,
    repo: StockRepository = Depends(get_stock_repository),
):
    try:
        return repo.save_risk_assessment(stock_id, payload)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "save risk assessment")


@router.post("/{stock_id}/financials/periods", response_model=Stock, status_code=status.HTTP_201_CREATED)
def add_financial_period(stock_id: str, repo: StockRepository = Depends(get_stock_repository)):
    """POST /stocks/{id}/financials/periods — blank row for the quarter after the latest one."""
    try:
        return repo.add_financial_period(stock_id)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "add financial period")


@router.post("/{stock_id}/custom-metrics", response_model=Stock, status_code=status.HTTP_201_CREATED)
def add_custom_metric(
    stock_id: str,
    payload: CustomMetricCreate,
    repo: StockRepository = Depends(get_stock_repository),
):
    """
    POST /stocks/{id}/custom-metrics

    Raises:
        400: the label has no usable characters or the metric already exists
    """
    try:
        return repo.add_custom_metric(stock_id, payload.label)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "add custom metric")


@router.delete("/{stock_id}/custom-metrics/{key}", response_model=Stock)
def remove_custom_metric(
    stock_id: str,
    key: str,
    repo: StockRepository = Depends(get_stock_repository),
):
    try:
        return repo.remove_custom_metric(stock_id, key)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "remove custom metric")
