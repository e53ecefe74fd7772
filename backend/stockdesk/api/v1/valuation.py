"""
valuation.py — Valuation API Endpoints

Purpose:
- Load / save a stock's valuation assumptions and return them together with
  the freshly computed outputs.
- Stateless "what-if" calculation without persistence.
- Export the valuation report as CSV or XLSX.

Endpoints:
- GET  /stocks/{id}/valuation                    → {inputs, outputs}
- PUT  /stocks/{id}/valuation                    → save inputs, {inputs, outputs}
- POST /valuation/calculate                      → {inputs, outputs}, nothing saved
- GET  /stocks/{id}/valuation/export?format=...  → csv | xlsx download

Outputs that are undefined for the given inputs (NaN / Infinity, e.g. a
negative growth base under a fractional horizon) are returned as null.
"""

from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, Response
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from stockdesk.api.v1.stocks import get_stock_repository, raise_http_error
from stockdesk.core.logging import get_logger
from stockdesk.services.modeling.valuation import (
    ValuationInputs,
    compute_valuation,
)
from stockdesk.services.modeling.valuation_report import (
    build_valuation_report,
    export_filename,
    render_csv,
    render_xlsx,
)
from stockdesk.services.research.stock_repository import (
    StockRepository,
    StockRepositoryError,
)

logger = get_logger(__name__)

router = APIRouter(tags=["valuation"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# -----------------------------------------------------------------------------
# Schemas
# -----------------------------------------------------------------------------

class ValuationResponse(BaseModel):
    """Inputs as used (camelCase keys) and every derived output."""
    inputs: Dict[str, float]
    outputs: Dict[str, Optional[float]]


def _valuation_response(inputs: ValuationInputs) -> ValuationResponse:
    outputs = compute_valuation(inputs)
    if outputs.non_finite_fields():
        logger.info("Valuation has undefined outputs: %s", ", ".join(outputs.non_finite_fields()))
    return ValuationResponse(inputs=inputs.to_dict(), outputs=outputs.to_dict(finite_only=True))


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------

@router.get("/stocks/{stock_id}/valuation", response_model=ValuationResponse)
def get_valuation(stock_id: str, repo: StockRepository = Depends(get_stock_repository)):
    """
    GET /stocks/{id}/valuation

    Unsaved fields fall back to the defaults (price, TAM and SAM from the stock).
    """
    try:
        inputs = repo.get_valuation_inputs(stock_id)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "load valuation")
    return _valuation_response(inputs)


@router.put("/stocks/{stock_id}/valuation", response_model=ValuationResponse)
def save_valuation(
    stock_id: str,
    payload: Dict[str, Any] = Body(..., examples=[{"currentSales": 1000, "salesGrowthCAGR": 15}]),
    repo: StockRepository = Depends(get_stock_repository),
):
    """
    PUT /stocks/{id}/valuation

    Body: any subset of the valuation inputs (camelCase keys). Provided keys
    override the saved values; non-numeric values are stored as 0.
    """
    try:
        current = repo.get_valuation_inputs(stock_id)
        inputs = ValuationInputs.from_dict(payload, current)
        repo.save_valuation(stock_id, inputs)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "save valuation")
    return _valuation_response(inputs)


@router.post("/valuation/calculate", response_model=ValuationResponse)
def calculate_valuation(payload: Optional[Dict[str, Any]] = Body(None)):
    """
    POST /valuation/calculate

    Compute a valuation from the given inputs over the standard defaults.
    Needs neither a database nor a signed-in user.
    """
    return _valuation_response(ValuationInputs.from_dict(payload or {}))


@router.get("/stocks/{stock_id}/valuation/export")
def export_valuation(
    stock_id: str,
    format: Literal["csv", "xlsx"] = Query("csv"),
    repo: StockRepository = Depends(get_stock_repository),
):
    """
    GET /stocks/{id}/valuation/export?format=csv|xlsx

    Downloads `<SYMBOL>_valuation.<format>`.
    """
    try:
        stock = repo.get_stock(stock_id)
        inputs = repo.get_valuation_inputs(stock_id)
    except (StockRepositoryError, SQLAlchemyError) as e:
        raise_http_error(e, "export valuation")

    rows = build_valuation_report(stock.symbol, inputs, compute_valuation(inputs))
    filename = export_filename(stock.symbol, format)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}

    logger.info("Exporting valuation of %s as %s", stock.symbol, format)
    if format == "xlsx":
        return Response(content=render_xlsx(rows), media_type=XLSX_MEDIA_TYPE, headers=headers)
    return Response(content=render_csv(rows), media_type="text/csv; charset=utf-8", headers=headers)
