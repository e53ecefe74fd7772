"""
ai_command.py — Natural-Language Data Entry via OpenAI Tool Calling

Purpose:
- Turn a free-text command ("add AAPL at 170", "set Q1 2024 revenue of MSFT
  to 62000") into exactly one structured write on the research tables.
- The model is forced to answer through a single function tool,
  `execute_database_operation(operation, table, data, filters)`; its
  arguments are then validated before anything touches the database.

Safety rules:
- operation ∈ {insert, update, upsert}; table ∈ {stocks, financials,
  business_overviews, risks}; only the listed columns may be written.
- `user_id` is always the caller's, never the model's.
- Updates are filtered by `user_id` and must name at least one filter.

Failure mapping (done by the API layer):
- AICommandValidationError      → 400 (empty / too long command)
- AICommandRateLimitError       → 429
- AICommandPaymentRequiredError → 402
- anything else (AICommandError) → 500 "Unable to process command. Please try again."

This module does NOT:
- Read research sections back (see stock_repository.py).
- Interpret free text itself; parsing is entirely the model's job.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from openai import APIConnectionError, APIStatusError, OpenAI, RateLimitError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stockdesk.core.config import settings
from stockdesk.core.logging import get_logger
from stockdesk.models import BusinessOverview, Financial, Risk, Stock

logger = get_logger(__name__)

TOOL_NAME = "execute_database_operation"

ALLOWED_OPERATIONS: Tuple[str, ...] = ("insert", "update", "upsert")

OPERATION_PAST_TENSE: Dict[str, str] = {
    "insert": "inserted",
    "update": "updated",
    "upsert": "upserted",
}

# table → (ORM model, writable columns)
TABLES: Dict[str, Tuple[type, Tuple[str, ...]]] = {
    "stocks": (Stock, ("symbol", "name", "price", "market")),
    "financials": (Financial, ("stock_symbol", "revenue", "cost_of_revenue", "net_profit", "eps", "period")),
    "business_overviews": (
        BusinessOverview,
        (
            "stock_symbol",
            "business_model",
            "customer_segment",
            "revenue_segment",
            "channel",
            "moat",
            "tam",
            "growth_engine",
        ),
    ),
    "risks": (Risk, ("stock_symbol", "type", "description")),
}

# Natural keys used by upsert when the model gives no row id
UPSERT_KEYS: Dict[str, Tuple[str, ...]] = {
    "stocks": ("symbol",),
    "financials": ("stock_symbol", "period"),
    "business_overviews": ("stock_symbol",),
    "risks": ("stock_symbol", "type"),
}

NUMERIC_COLUMNS = frozenset({"price", "revenue", "cost_of_revenue", "net_profit", "eps"})
SYMBOL_COLUMNS = frozenset({"symbol", "stock_symbol"})
# Text columns that hold JSON documents
JSON_TEXT_COLUMNS = frozenset({"revenue_segment", "channel", "moat", "tam"})

GENERIC_FAILURE_MESSAGE = "Unable to process command. Please try again."


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------

class AICommandError(Exception):
    """Command could not be carried out; details are logged, not shown."""


class AICommandValidationError(AICommandError):
    """The command itself is unacceptable (client error)."""


class AICommandRateLimitError(AICommandError):
    pass


class AICommandPaymentRequiredError(AICommandError):
    pass


class AICommandConfigurationError(AICommandError):
    """LLM disabled or no API key configured."""


class UnsafeOperationError(AICommandError):
    """The model proposed an operation outside the allowed set."""


# -----------------------------------------------------------------------------
# Prompt & tool definition
# -----------------------------------------------------------------------------

def build_system_prompt() -> str:
    return """You are a data management assistant. Parse user commands to determine database operations.
Available tables: stocks, financials, business_overviews, risks.

Table schemas:
- stocks: symbol (TEXT, UNIQUE), name (TEXT), price (NUMERIC), market (TEXT)
- financials: stock_symbol (TEXT), revenue (NUMERIC), cost_of_revenue (NUMERIC), net_profit (NUMERIC), eps (NUMERIC), period (TEXT, e.g. "Q1 2024" or "FY 2023")
- business_overviews: stock_symbol (TEXT), business_model (TEXT), customer_segment (TEXT), revenue_segment (TEXT), channel (TEXT), moat (TEXT), tam (TEXT), growth_engine (TEXT)
- risks: stock_symbol (TEXT), type (TEXT: business, financial, management or macro), description (TEXT)

Respond with structured data about the operation to perform."""


def build_tool_definition() -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": TOOL_NAME,
            "description": "Execute a database operation based on the user command",
            "parameters": {
                "type": "object",
                "properties": {
                    "operation": {
                        "type": "string",
                        "enum": list(ALLOWED_OPERATIONS),
                        "description": "The database operation to perform",
                    },
                    "table": {
                        "type": "string",
                        "enum": list(TABLES.keys()),
                        "description": "The table to operate on",
                    },
                    "data": {
                        "type": "object",
                        "description": "The data to insert or update",
                    },
                    "filters": {
                        "type": "object",
                        "description": 'Filter conditions for update operations (e.g., {"symbol": "AAPL"})',
                    },
                },
                "required": ["operation", "table", "data"],
            },
        },
    }


# -----------------------------------------------------------------------------
# Data contracts
# -----------------------------------------------------------------------------

@dataclass
class DatabaseOperation:
    """Validated tool-call arguments."""
    operation: str
    table: str
    data: Dict[str, Any]
    filters: Dict[str, Any] = field(default_factory=dict)
    row_id: Optional[str] = None


def validate_command(command: Any, max_length: Optional[int] = None) -> str:
    """Return the trimmed command or raise AICommandValidationError."""
    if not command or not isinstance(command, str):
        raise AICommandValidationError("Invalid request: command required")
    command = command.strip()
    if not command:
        raise AICommandValidationError("Invalid request: command required")
    limit = max_length if max_length is not None else settings.AI_COMMAND_MAX_LENGTH
    if len(command) > limit:
        raise AICommandValidationError("Command too long")
    return command


def parse_tool_arguments(response: Any) -> Dict[str, Any]:
    """Extract the JSON arguments of the first tool call of a chat completion."""
    try:
        tool_call = response.choices[0].message.tool_calls[0]
    except (AttributeError, IndexError, TypeError) as exc:
        raise AICommandError("No tool call in AI response") from exc

    try:
        args = json.loads(tool_call.function.arguments)
    except (AttributeError, TypeError, json.JSONDecodeError) as exc:
        raise AICommandError(f"Failed to parse tool call arguments: {exc}") from exc

    if not isinstance(args, dict):
        raise AICommandError("Tool call arguments must be a JSON object")
    return args


def _coerce_value(column: str, value: Any) -> Any:
    if column in NUMERIC_COLUMNS:
        if value is None:
            return None
        if isinstance(value, bool):
            raise UnsafeOperationError(f"Column '{column}' expects a number")
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise UnsafeOperationError(f"Column '{column}' expects a number, got {value!r}") from exc
    if column in SYMBOL_COLUMNS and isinstance(value, str):
        return value.strip().upper()
    if column in JSON_TEXT_COLUMNS and isinstance(value, (dict, list)):
        return json.dumps(value)
    if value is not None and not isinstance(value, str):
        return str(value)
    return value


def validate_operation(args: Dict[str, Any]) -> DatabaseOperation:
    """
    Check model-proposed arguments against the allowed operations, tables
    and columns, and coerce values to the column types.
    """
    operation = args.get("operation")
    table = args.get("table")
    data = args.get("data")
    filters = args.get("filters") or {}

    if operation not in ALLOWED_OPERATIONS:
        raise UnsafeOperationError(f"Operation not allowed: {operation!r}")
    if table not in TABLES:
        raise UnsafeOperationError(f"Table not allowed: {table!r}")
    if not isinstance(data, dict) or not data:
        raise UnsafeOperationError("Invalid data format")
    if not isinstance(filters, dict):
        raise UnsafeOperationError("Invalid filters format")

    _, columns = TABLES[table]
    data = {k: v for k, v in data.items() if k != "user_id"}
    row_id = data.pop("id", None) if operation == "upsert" else None

    unknown = sorted(set(data) - set(columns))
    if unknown:
        raise UnsafeOperationError(f"Unknown columns for {table}: {unknown}")

    filters = {k: v for k, v in filters.items() if k != "user_id"}
    unknown_filters = sorted(set(filters) - set(columns) - {"id"})
    if unknown_filters:
        raise UnsafeOperationError(f"Unknown filter columns for {table}: {unknown_filters}")
    if operation == "update" and not filters:
        raise UnsafeOperationError("Update requires at least one filter")

    return DatabaseOperation(
        operation=operation,
        table=table,
        data={k: _coerce_value(k, v) for k, v in data.items()},
        filters={k: (v if k == "id" else _coerce_value(k, v)) for k, v in filters.items()},
        row_id=str(row_id) if row_id else None,
    )


def row_to_dict(row: Any) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for column in row.__table__.columns:
        value = getattr(row, column.name)
        result[column.name] = value.isoformat() if isinstance(value, datetime) else value
    return result


# -----------------------------------------------------------------------------
# Service
# -----------------------------------------------------------------------------

class AICommandService:
    """
    Run one natural-language command for one user.

    Usage:
        result = AICommandService(db, user_id).run("Add NVDA, Nvidia, price 120")
        # {"success": True, "message": "Successfully inserted stocks record.", "data": [...]}
    """

    def __init__(self, db: Session, user_id: str, client: Optional[Any] = None) -> None:
        self._db = db
        self._user_id = user_id
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not settings.LLM_ENABLED:
            raise AICommandConfigurationError("AI command endpoint is disabled (LLM_ENABLED=False)")
        if not settings.OPENAI_API_KEY:
            raise AICommandConfigurationError(
                "OpenAI API key not configured. Set OPENAI_API_KEY environment variable "
                "or OPENAI_API_KEY_PATH to a file containing the key."
            )
        self._client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.LLM_TIMEOUT_SECONDS)
        return self._client

    # ------------------------------------------------------------------ #
    def run(self, command: Any) -> Dict[str, Any]:
        command = validate_command(command)
        logger.info("Running AI command for user %s (%d chars)", self._user_id, len(command))

        args = self._request_operation(command)
        operation = validate_operation(args)
        rows = self.execute(operation)

        logger.info(
            "AI command %s on %s affected %d row(s) for user %s",
            operation.operation,
            operation.table,
            len(rows),
            self._user_id,
        )
        return {
            "success": True,
            "message": f"Successfully {OPERATION_PAST_TENSE[operation.operation]} {operation.table} record.",
            "data": rows,
        }

    # ------------------------------------------------------------------ #
    @retry(
        stop=stop_after_attempt(settings.LLM_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((APIConnectionError,)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _create_completion(self, command: str) -> Any:
        return self._get_client().chat.completions.create(
            model=settings.OPENAI_MODEL,
            messages=[
                {"role": "system", "content": build_system_prompt()},
                {"role": "user", "content": command},
            ],
            tools=[build_tool_definition()],
            tool_choice={"type": "function", "function": {"name": TOOL_NAME}},
            temperature=0,
        )

    def _request_operation(self, command: str) -> Dict[str, Any]:
        try:
            response = self._create_completion(command)
        except RateLimitError as exc:
            logger.warning("OpenAI rate limit hit: %s", exc)
            raise AICommandRateLimitError("Rate limit exceeded. Please try again later.") from exc
        except APIStatusError as exc:
            if exc.status_code == 402:
                raise AICommandPaymentRequiredError(
                    "Payment required. Please add credits to your workspace."
                ) from exc
            raise AICommandError(f"OpenAI API error ({exc.status_code}): {exc}") from exc
        except APIConnectionError as exc:
            raise AICommandError(f"OpenAI API unreachable: {exc}") from exc

        return parse_tool_arguments(response)

    # ------------------------------------------------------------------ #
    def execute(self, op: DatabaseOperation) -> List[Dict[str, Any]]:
        """Apply a validated operation inside one transaction."""
        model, _ = TABLES[op.table]
        try:
            if op.operation == "insert":
                rows = [self._insert(model, op.data)]
            elif op.operation == "update":
                rows = self._update(model, op.data, op.filters)
            else:
                rows = [self._upsert(model, op)]
            self._db.commit()
        except IntegrityError as exc:
            self._db.rollback()
            raise AICommandError(f"Write rejected by database: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            self._db.rollback()
            raise AICommandError(f"Database error: {exc}") from exc

        for row in rows:
            self._db.refresh(row)
        return [row_to_dict(row) for row in rows]

    def _insert(self, model: type, data: Dict[str, Any], row_id: Optional[str] = None) -> Any:
        row = model(**data, user_id=self._user_id)
        if row_id:
            row.id = row_id
        self._db.add(row)
        self._db.flush()
        return row

    def _update(self, model: type, data: Dict[str, Any], filters: Dict[str, Any]) -> List[Any]:
        query = self._db.query(model).filter(model.user_id == self._user_id)
        for column, value in filters.items():
            query = query.filter(getattr(model, column) == value)
        rows = query.all()
        for row in rows:
            self._rename_research_rows(row, data)
            for column, value in data.items():
                setattr(row, column, value)
        self._db.flush()
        return rows

    def _rename_research_rows(self, row: Any, data: Dict[str, Any]) -> None:
        """Move a stock's overview, financials and risks along with a symbol change."""
        new_symbol = data.get("symbol")
        if not isinstance(row, Stock) or not new_symbol or new_symbol == row.symbol:
            return
        for model in (BusinessOverview, Financial, Risk):
            self._db.query(model).filter(
                model.user_id == self._user_id,
                model.stock_symbol == row.symbol,
            ).update({model.stock_symbol: new_symbol}, synchronize_session=False)
        logger.info("Renamed %s to %s with its research rows", row.symbol, new_symbol)

    def _upsert(self, model: type, op: DatabaseOperation) -> Any:
        query = self._db.query(model).filter(model.user_id == self._user_id)
        if op.row_id:
            existing = query.filter(model.id == op.row_id).first()
        else:
            keys = UPSERT_KEYS[op.table]
            if all(k in op.data for k in keys):
                for k in keys:
                    query = query.filter(getattr(model, k) == op.data[k])
                existing = query.first()
            else:
                existing = None

        if existing is None:
            return self._insert(model, op.data, op.row_id)

        self._rename_research_rows(existing, op.data)
        for column, value in op.data.items():
            setattr(existing, column, value)
        self._db.flush()
        return existing
