"""
stock_repository.py — Watchlist & Research Persistence

Purpose:
- Read and write one user's watchlist stocks and their research sections
  (business overview, market size, financials, valuation inputs, story,
  risk assessment) in the managed backend's tables.
- Assemble rows from four tables into the `Stock` aggregate and split the
  aggregate's sections back into rows.

Column packing (shared with data already written by the frontend):
- business_overviews.tam      JSON {tam, sam, som, valuation}
- business_overviews.channel  JSON {story, thinkForMarket, tippingPoint}
- business_overviews.revenue_segment / moat  JSON lists
- financials: gross profit stored as cost_of_revenue, share count as eps
- risks: one row per risk type

Key Constraints:
- Every query is filtered on `user_id`; another user's rows behave as if
  they did not exist.
- Related rows link to a stock through (user_id, stock_symbol).
- Malformed JSON in a column is logged and the section treated as absent.

This module does NOT:
- Compute valuations or analytics (see services/modeling/*).
- Verify tokens (see core/security.py).
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockdesk.core.logging import get_logger
from stockdesk.models import BusinessOverview as BusinessOverviewRow
from stockdesk.models import Financial as FinancialRecord
from stockdesk.models import Risk as RiskRow
from stockdesk.models import Stock as StockRow
from stockdesk.services.modeling.financials import new_custom_metric, new_period_row
from stockdesk.services.modeling.valuation import (
    ValuationInputs,
    default_valuation_inputs,
)
from stockdesk.services.research.schemas import (
    BusinessOverview,
    CustomMetric,
    FinancialRow,
    MarketSize,
    MoatPower,
    RevenueSegment,
    RiskAssessment,
    Stock,
    Story,
    ThinkForMarket,
)
from stockdesk.utils.period_sort import sort_periods

logger = get_logger(__name__)

DEFAULT_MARKET = "US"

# risks.type → RiskAssessment field
RISK_TYPE_FIELDS: Dict[str, str] = {
    "business": "keyBusinessRisks",
    "financial": "financialRisks",
    "management": "managementRisks",
    "macro": "macroRisks",
}


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------

class StockRepositoryError(Exception):
    """Base class for watchlist persistence errors."""


class StockNotFoundError(StockRepositoryError):
    def __init__(self, stock_id: str) -> None:
        super().__init__(f"Stock {stock_id} not found")
        self.stock_id = stock_id


class DuplicateStockError(StockRepositoryError):
    def __init__(self, symbol: str) -> None:
        super().__init__(f"{symbol} is already in your watchlist")
        self.symbol = symbol


class InvalidStockDataError(StockRepositoryError):
    """Raised when a write is missing required values (e.g. an empty symbol)."""


# -----------------------------------------------------------------------------
# JSON column helpers
# -----------------------------------------------------------------------------

def _load_json(raw: Any, column: str, symbol: str) -> Any:
    """Parse a JSON text column; return None (and log) when malformed."""
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Malformed JSON in %s for %s: %s", column, symbol, exc)
        return None


def _load_json_object(raw: Any, column: str, symbol: str) -> Dict[str, Any]:
    value = _load_json(raw, column, symbol)
    return value if isinstance(value, dict) else {}


def _dump_json(value: Any) -> str:
    return json.dumps(value)


def _parse_section(model: type, data: Any, section: str, symbol: str) -> Optional[Any]:
    """Validate a stored section against its schema; None (and log) if it does not fit."""
    if data is None:
        return None
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning("Ignoring invalid %s section for %s: %s", section, symbol, exc)
        return None


def _parse_list(model: type, data: Any, section: str, symbol: str) -> List[Any]:
    if not isinstance(data, list):
        return []
    items = []
    for item in data:
        parsed = _parse_section(model, item, section, symbol)
        if parsed is not None:
            items.append(parsed)
    return items


def _as_dict(value: Union[BaseModel, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump()
    return dict(value)


def _parse_custom_metrics(overview_row: Optional[BusinessOverviewRow], symbol: str) -> List[CustomMetric]:
    if overview_row is None:
        return []
    return _parse_list(
        CustomMetric,
        _load_json(overview_row.custom_metrics, "custom_metrics", symbol),
        "custom metric",
        symbol,
    )


def _clean_growth_engine(text: Optional[str], symbol: str) -> str:
    """
    Older rows kept custom metric definitions as JSON inside growth_engine.
    Those are not prose, so they read back as empty text.
    """
    if not text:
        return ""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(parsed, dict) and parsed.get("customMetrics"):
        logger.info("Ignoring legacy custom metrics payload in growth_engine for %s", symbol)
        return ""
    return text


# -----------------------------------------------------------------------------
# Repository
# -----------------------------------------------------------------------------

class StockRepository:
    """
    Owner-scoped access to the watchlist tables.

    Usage:
        repo = StockRepository(db, user_id)
        stock = repo.add_stock("AAPL", "Apple Inc.", 170.0)
        repo.save_valuation(stock.id, inputs)
    """

    def __init__(self, db: Session, user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id is required")
        self._db = db
        self._user_id = user_id

    # ------------------------------------------------------------------ #
    # Row lookups
    # ------------------------------------------------------------------ #

    def _stock_row(self, stock_id: str) -> StockRow:
        row = (
            self._db.query(StockRow)
            .filter(StockRow.id == stock_id, StockRow.user_id == self._user_id)
            .first()
        )
        if row is None:
            raise StockNotFoundError(stock_id)
        return row

    def _overview_row(self, symbol: str) -> Optional[BusinessOverviewRow]:
        return (
            self._db.query(BusinessOverviewRow)
            .filter(
                BusinessOverviewRow.user_id == self._user_id,
                BusinessOverviewRow.stock_symbol == symbol,
            )
            .first()
        )

    def _overview_row_for_write(self, symbol: str) -> BusinessOverviewRow:
        row = self._overview_row(symbol)
        if row is None:
            row = BusinessOverviewRow(user_id=self._user_id, stock_symbol=symbol)
            self._db.add(row)
        return row

    def _symbol_taken(self, symbol: str, exclude_id: Optional[str] = None) -> bool:
        query = self._db.query(StockRow.id).filter(
            StockRow.user_id == self._user_id,
            StockRow.symbol == symbol,
        )
        if exclude_id is not None:
            query = query.filter(StockRow.id != exclude_id)
        return query.first() is not None

    def _commit(self, symbol: str) -> None:
        try:
            self._db.commit()
        except IntegrityError as exc:
            self._db.rollback()
            # uq_stocks_user_symbol raced with another request
            logger.warning("Integrity error while saving %s: %s", symbol, exc.orig)
            raise DuplicateStockError(symbol) from exc

    # ------------------------------------------------------------------ #
    # Watchlist
    # ------------------------------------------------------------------ #

    def list_stocks(self) -> List[Stock]:
        """All of the user's stocks, most recently added first."""
        rows = (
            self._db.query(StockRow)
            .filter(StockRow.user_id == self._user_id)
            .order_by(StockRow.created_at.desc())
            .all()
        )
        if not rows:
            return []

        symbols = [row.symbol for row in rows]
        overviews = {
            o.stock_symbol: o
            for o in self._db.query(BusinessOverviewRow).filter(
                BusinessOverviewRow.user_id == self._user_id,
                BusinessOverviewRow.stock_symbol.in_(symbols),
            )
        }
        financials: Dict[str, List[FinancialRecord]] = {}
        for f in self._db.query(FinancialRecord).filter(
            FinancialRecord.user_id == self._user_id,
            FinancialRecord.stock_symbol.in_(symbols),
        ):
            financials.setdefault(f.stock_symbol, []).append(f)
        risks: Dict[str, List[RiskRow]] = {}
        for r in self._db.query(RiskRow).filter(
            RiskRow.user_id == self._user_id,
            RiskRow.stock_symbol.in_(symbols),
        ):
            risks.setdefault(r.stock_symbol, []).append(r)

        return [
            self._assemble(
                row,
                overviews.get(row.symbol),
                financials.get(row.symbol, []),
                risks.get(row.symbol, []),
            )
            for row in rows
        ]

    def get_stock(self, stock_id: str) -> Stock:
        row = self._stock_row(stock_id)
        return self._assemble_row(row)

    def get_stocks(self, stock_ids: Sequence[str]) -> List[Stock]:
        """Several stocks in the requested order; unknown ids raise StockNotFoundError."""
        return [self.get_stock(stock_id) for stock_id in stock_ids]

    def add_stock(
        self,
        symbol: str,
        company_name: str,
        current_price: Optional[float] = 0.0,
        market: str = DEFAULT_MARKET,
    ) -> Stock:
        """
        Add a stock to the watchlist. The symbol is stored upper-cased.

        Raises:
            InvalidStockDataError: empty symbol or company name
            DuplicateStockError: the user already tracks this symbol
        """
        symbol = (symbol or "").strip().upper()
        company_name = (company_name or "").strip()
        if not symbol:
            raise InvalidStockDataError("Symbol is required")
        if not company_name:
            raise InvalidStockDataError("Company name is required")
        if self._symbol_taken(symbol):
            raise DuplicateStockError(symbol)

        row = StockRow(
            user_id=self._user_id,
            symbol=symbol,
            name=company_name,
            price=current_price or 0.0,
            market=market,
        )
        self._db.add(row)
        self._commit(symbol)
        self._db.refresh(row)

        logger.info("Added %s to watchlist of user %s", symbol, self._user_id)
        return self._assemble(row, None, [], [])

    def update_stock(
        self,
        stock_id: str,
        symbol: Optional[str] = None,
        company_name: Optional[str] = None,
        current_price: Optional[float] = None,
    ) -> Stock:
        """
        Update the watchlist fields that were provided.

        Renaming the symbol carries the stock's research rows along.
        """
        row = self._stock_row(stock_id)

        if symbol:
            new_symbol = symbol.strip().upper()
            if new_symbol and new_symbol != row.symbol:
                if self._symbol_taken(new_symbol, exclude_id=row.id):
                    raise DuplicateStockError(new_symbol)
                for model in (BusinessOverviewRow, FinancialRecord, RiskRow):
                    self._db.query(model).filter(
                        model.user_id == self._user_id,
                        model.stock_symbol == row.symbol,
                    ).update({model.stock_symbol: new_symbol}, synchronize_session=False)
                row.symbol = new_symbol
        if company_name:
            row.name = company_name.strip()
        if current_price is not None:
            row.price = current_price

        self._commit(row.symbol)
        self._db.refresh(row)
        return self._assemble_row(row)

    def delete_stock(self, stock_id: str) -> None:
        """Delete a stock together with its overview, financials and risks."""
        row = self._stock_row(stock_id)
        for model in (BusinessOverviewRow, FinancialRecord, RiskRow):
            self._db.query(model).filter(
                model.user_id == self._user_id,
                model.stock_symbol == row.symbol,
            ).delete(synchronize_session=False)
        self._db.delete(row)
        self._db.commit()
        logger.info("Deleted %s from watchlist of user %s", row.symbol, self._user_id)

    # ------------------------------------------------------------------ #
    # Research sections
    # ------------------------------------------------------------------ #

    def save_business_overview(
        self,
        stock_id: str,
        overview: Optional[BusinessOverview] = None,
        market_size: Optional[MarketSize] = None,
        think_for_market: Optional[ThinkForMarket] = None,
        tipping_point: Optional[str] = None,
    ) -> Stock:
        """
        Save whichever qualitative sections are provided; the rest are kept.

        Market size is written next to any saved valuation inputs, and
        think-for-market / tipping point next to any saved story.
        """
        row = self._stock_row(stock_id)
        overview_row = self._overview_row_for_write(row.symbol)

        if overview is not None:
            overview_row.business_model = overview.whatTheyDo
            overview_row.customer_segment = overview.customers
            overview_row.revenue_segment = _dump_json([s.model_dump() for s in overview.revenueBreakdown])
            overview_row.moat = _dump_json([m.model_dump() for m in overview.moat])
            overview_row.growth_engine = overview.growthEngine

        if market_size is not None:
            tam_data = _load_json_object(overview_row.tam, "tam", row.symbol)
            tam_data.update(market_size.model_dump())
            overview_row.tam = _dump_json(tam_data)

        if think_for_market is not None or tipping_point:
            channel = _load_json_object(overview_row.channel, "channel", row.symbol)
            if think_for_market is not None:
                channel["thinkForMarket"] = think_for_market.model_dump()
            if tipping_point:
                channel["tippingPoint"] = tipping_point
            overview_row.channel = _dump_json(channel)

        self._db.commit()
        logger.info("Saved business overview for %s", row.symbol)
        return self._assemble_row(row)

    def save_financials(
        self,
        stock_id: str,
        financials: Sequence[Union[FinancialRow, Mapping[str, Any]]],
        custom_metrics: Optional[Sequence[Union[CustomMetric, Mapping[str, Any]]]] = None,
    ) -> Stock:
        """
        Replace every financial row of the stock.

        Storage mapping per row:
            cost_of_revenue = revenue - grossProfit   (when grossProfit is set)
            net_profit      = netIncome
            eps             = netIncome / sharesOutstanding  (0 without shares)
            custom_data     = values of the custom metric keys present

        When `custom_metrics` is given, the metric definitions are saved too;
        otherwise the stored definitions decide which custom values are kept.
        """
        row = self._stock_row(stock_id)

        metric_dicts = [_as_dict(m) for m in custom_metrics] if custom_metrics is not None else None
        if metric_dicts is not None:
            custom_keys = [m["key"] for m in metric_dicts]
        else:
            custom_keys = [m.key for m in self._stored_custom_metrics(row.symbol)]

        self._db.query(FinancialRecord).filter(
            FinancialRecord.user_id == self._user_id,
            FinancialRecord.stock_symbol == row.symbol,
        ).delete(synchronize_session=False)

        for item in financials:
            data = _as_dict(item)
            revenue = data.get("revenue") or 0.0
            gross_profit = data.get("grossProfit")
            net_income = data.get("netIncome") or 0.0
            shares = data.get("sharesOutstanding")

            custom_data = {key: data[key] for key in custom_keys if key in data}

            self._db.add(
                FinancialRecord(
                    user_id=self._user_id,
                    stock_symbol=row.symbol,
                    period=data.get("period"),
                    revenue=revenue,
                    cost_of_revenue=revenue - gross_profit if gross_profit else (data.get("cost_of_revenue") or 0.0),
                    net_profit=net_income,
                    eps=net_income / shares if shares else 0.0,
                    custom_data=custom_data or None,
                )
            )

        if metric_dicts is not None:
            overview_row = self._overview_row_for_write(row.symbol)
            overview_row.custom_metrics = metric_dicts

        self._db.commit()
        logger.info("Saved %d financial rows for %s", len(financials), row.symbol)
        return self._assemble_row(row)

    def _stored_custom_metrics(self, symbol: str) -> List[CustomMetric]:
        return _parse_custom_metrics(self._overview_row(symbol), symbol)

    def add_financial_period(self, stock_id: str) -> Stock:
        """Append a blank row for the quarter after the latest quarter entered."""
        stock = self.get_stock(stock_id)
        rows = [f.model_dump() for f in stock.financials or []]
        custom_keys = [m.key for m in stock.customMetrics or []]

        new_row = new_period_row(rows, custom_keys)

        logger.info("Adding period %s for %s", new_row["period"], stock.symbol)
        return self.save_financials(stock_id, rows + [new_row])

    def add_custom_metric(self, stock_id: str, label: str) -> Stock:
        """
        Define a custom financial metric; every existing row gets a 0 value.

        Raises:
            InvalidStockDataError: empty label or a key that is already defined
        """
        label = (label or "").strip()
        if not label:
            raise InvalidStockDataError("Metric label is required")

        stock = self.get_stock(stock_id)
        metrics = [m.model_dump() for m in stock.customMetrics or []]
        metric = new_custom_metric(label, len(metrics))
        if not metric["key"]:
            raise InvalidStockDataError(f"Metric label '{label}' has no usable characters")
        if any(m["key"] == metric["key"] for m in metrics):
            raise InvalidStockDataError(f"Metric '{metric['key']}' already exists")

        rows = [dict(f.model_dump(), **{metric["key"]: 0.0}) for f in stock.financials or []]
        return self.save_financials(stock_id, rows, metrics + [metric])

    def remove_custom_metric(self, stock_id: str, key: str) -> Stock:
        """Drop a custom metric definition and its values from every row."""
        stock = self.get_stock(stock_id)
        metrics = [m.model_dump() for m in stock.customMetrics or [] if m.key != key]
        if len(metrics) == len(stock.customMetrics or []):
            raise InvalidStockDataError(f"Metric '{key}' not found")

        rows = [
            {k: v for k, v in f.model_dump().items() if k != key}
            for f in stock.financials or []
        ]
        return self.save_financials(stock_id, rows, metrics)

    def save_valuation(
        self,
        stock_id: str,
        inputs: Union[ValuationInputs, Mapping[str, Any]],
    ) -> Stock:
        """Save valuation inputs, keeping the stored TAM / SAM / SOM."""
        row = self._stock_row(stock_id)
        if not isinstance(inputs, ValuationInputs):
            inputs = ValuationInputs.from_dict(inputs, self._default_inputs(self._assemble_row(row)))

        overview_row = self._overview_row_for_write(row.symbol)
        tam_data = _load_json_object(overview_row.tam, "tam", row.symbol)
        tam_data["valuation"] = inputs.to_dict()
        overview_row.tam = _dump_json(tam_data)

        self._db.commit()
        logger.info("Saved valuation inputs for %s", row.symbol)
        return self._assemble_row(row)

    def save_story(self, stock_id: str, story: Story) -> Stock:
        """Save the quarterly story; notes are stored oldest quarter first."""
        row = self._stock_row(stock_id)

        ordered = story.model_copy(
            update={"quarters": sort_periods(list(story.quarters), key=lambda note: note.quarter)}
        )

        overview_row = self._overview_row_for_write(row.symbol)
        channel = _load_json_object(overview_row.channel, "channel", row.symbol)
        channel["story"] = ordered.model_dump()
        overview_row.channel = _dump_json(channel)

        self._db.commit()
        logger.info("Saved story for %s (%d quarters)", row.symbol, len(ordered.quarters))
        return self._assemble_row(row)

    def save_risk_assessment(self, stock_id: str, risks: RiskAssessment) -> Stock:
        """Replace the four risk rows of the stock."""
        row = self._stock_row(stock_id)

        self._db.query(RiskRow).filter(
            RiskRow.user_id == self._user_id,
            RiskRow.stock_symbol == row.symbol,
        ).delete(synchronize_session=False)

        for risk_type, field in RISK_TYPE_FIELDS.items():
            self._db.add(
                RiskRow(
                    user_id=self._user_id,
                    stock_symbol=row.symbol,
                    type=risk_type,
                    description=getattr(risks, field) or "",
                )
            )

        self._db.commit()
        logger.info("Saved risk assessment for %s", row.symbol)
        return self._assemble_row(row)

    def get_valuation_inputs(self, stock_id: str) -> ValuationInputs:
        """Saved valuation inputs over the defaults derived from the stock."""
        stock = self.get_stock(stock_id)
        return ValuationInputs.from_dict(stock.valuation, self._default_inputs(stock))

    # ------------------------------------------------------------------ #
    # Assembly
    # ------------------------------------------------------------------ #

    @staticmethod
    def _default_inputs(stock: Stock) -> ValuationInputs:
        return default_valuation_inputs(
            current_price=stock.currentPrice,
            tam=stock.tam.tam if stock.tam else None,
            sam=stock.tam.sam if stock.tam else None,
        )

    def _assemble_row(self, row: StockRow) -> Stock:
        financials = (
            self._db.query(FinancialRecord)
            .filter(FinancialRecord.user_id == self._user_id, FinancialRecord.stock_symbol == row.symbol)
            .all()
        )
        risks = (
            self._db.query(RiskRow)
            .filter(RiskRow.user_id == self._user_id, RiskRow.stock_symbol == row.symbol)
            .all()
        )
        return self._assemble(row, self._overview_row(row.symbol), financials, risks)

    def _assemble(
        self,
        row: StockRow,
        overview_row: Optional[BusinessOverviewRow],
        financial_rows: Iterable[FinancialRecord],
        risk_rows: Iterable[RiskRow],
    ) -> Stock:
        symbol = row.symbol
        stock = Stock(
            id=row.id,
            symbol=symbol,
            companyName=row.name,
            currentPrice=row.price or 0.0,
            dayChange=0.0,
        )

        if overview_row is not None:
            self._apply_overview(stock, overview_row)

        financials = [self._financial_from_row(f, symbol) for f in financial_rows]
        if financials:
            stock.financials = sort_periods(financials, key=lambda f: f.period)

        risks = RiskAssessment()
        for risk in risk_rows:
            field = RISK_TYPE_FIELDS.get(risk.type)
            if field and not getattr(risks, field):
                setattr(risks, field, risk.description or "")
        if risks.has_content():
            stock.riskAssessment = risks

        return stock

    def _apply_overview(self, stock: Stock, overview_row: BusinessOverviewRow) -> None:
        symbol = stock.symbol

        has_overview = any(
            value is not None
            for value in (
                overview_row.business_model,
                overview_row.customer_segment,
                overview_row.revenue_segment,
                overview_row.moat,
                overview_row.growth_engine,
            )
        )
        if has_overview:
            stock.businessOverview = BusinessOverview(
                whatTheyDo=overview_row.business_model or "",
                customers=overview_row.customer_segment or "",
                revenueBreakdown=_parse_list(
                    RevenueSegment,
                    _load_json(overview_row.revenue_segment, "revenue_segment", symbol),
                    "revenue segment",
                    symbol,
                ),
                moat=_parse_list(
                    MoatPower,
                    _load_json(overview_row.moat, "moat", symbol),
                    "moat",
                    symbol,
                ),
                growthEngine=_clean_growth_engine(overview_row.growth_engine, symbol),
            )

        tam_data = _load_json_object(overview_row.tam, "tam", symbol)
        if "tam" in tam_data:
            stock.tam = _parse_section(
                MarketSize,
                {k: tam_data.get(k) or 0.0 for k in ("tam", "sam", "som")},
                "market size",
                symbol,
            )
        if isinstance(tam_data.get("valuation"), dict):
            stock.valuation = tam_data["valuation"]

        channel = _load_json_object(overview_row.channel, "channel", symbol)
        stock.story = _parse_section(Story, channel.get("story"), "story", symbol)
        stock.thinkForMarket = _parse_section(
            ThinkForMarket, channel.get("thinkForMarket"), "think for market", symbol
        )
        stock.tippingPoint = channel.get("tippingPoint") or None

        custom_metrics = _parse_custom_metrics(overview_row, symbol)
        if custom_metrics:
            stock.customMetrics = custom_metrics

    def _financial_from_row(self, record: FinancialRecord, symbol: str) -> FinancialRow:
        revenue = record.revenue or 0.0
        net_profit = record.net_profit or 0.0
        data: Dict[str, Any] = {
            "period": record.period or "",
            "revenue": revenue,
            "grossProfit": revenue - (record.cost_of_revenue or 0.0),
            "netIncome": net_profit,
            "sharesOutstanding": net_profit / record.eps if record.eps else 0.0,
        }
        custom_data = _load_json_object(record.custom_data, "custom_data", symbol)
        for key, value in custom_data.items():
            data[key] = value
        return FinancialRow(**data)
