"""
Tests for services/research/ai_command.py.

The OpenAI client is replaced by a fake exposing `chat.completions.create`,
returning a tool call with the arguments under test.
"""

import json
import time
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError, APIStatusError, RateLimitError

from stockdesk.models import BusinessOverview, Financial, Risk, Stock
from stockdesk.services.research.ai_command import (
    TOOL_NAME,
    AICommandConfigurationError,
    AICommandError,
    AICommandPaymentRequiredError,
    AICommandRateLimitError,
    AICommandService,
    AICommandValidationError,
    UnsafeOperationError,
    build_tool_definition,
    parse_tool_arguments,
    validate_command,
    validate_operation,
)
from conftest import OTHER_USER_ID, USER_ID

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _tool_response(args):
    call = SimpleNamespace(function=SimpleNamespace(name=TOOL_NAME, arguments=json.dumps(args)))
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(tool_calls=[call]))])


class FakeCompletions:
    """Returns (or raises) the queued outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return _tool_response(outcome)


def _service(db_session, *outcomes, user_id=USER_ID):
    completions = FakeCompletions(*outcomes)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return AICommandService(db_session, user_id, client=client), completions


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda seconds: None)


# -----------------------------------------------------------------------------
# Command validation
# -----------------------------------------------------------------------------

@pytest.mark.parametrize("command", [None, "", "   ", 42, ["add"]])
def test_validate_command_requires_text(command):
    with pytest.raises(AICommandValidationError, match="command required"):
        validate_command(command)


def test_validate_command_length():
    assert validate_command("  add AAPL  ", max_length=10) == "add AAPL"
    with pytest.raises(AICommandValidationError, match="Command too long"):
        validate_command("x" * 11, max_length=10)


def test_invalid_command_never_reaches_the_model(db_session):
    service, completions = _service(db_session)
    with pytest.raises(AICommandValidationError):
        service.run("x" * 501)
    assert completions.calls == []


def test_missing_api_key_is_a_configuration_error(db_session, monkeypatch):
    from stockdesk.core.config import settings

    monkeypatch.setattr(settings, "LLM_ENABLED", True)
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
    with pytest.raises(AICommandConfigurationError):
        AICommandService(db_session, USER_ID).run("add AAPL")


# -----------------------------------------------------------------------------
# Tool call parsing & operation validation
# -----------------------------------------------------------------------------

def test_tool_definition_lists_allowed_values():
    params = build_tool_definition()["function"]["parameters"]

    assert params["properties"]["operation"]["enum"] == ["insert", "update", "upsert"]
    assert set(params["properties"]["table"]["enum"]) == {"stocks", "financials", "business_overviews", "risks"}
    assert params["required"] == ["operation", "table", "data"]


def test_parse_tool_arguments_errors():
    with pytest.raises(AICommandError):
        parse_tool_arguments(SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(tool_calls=None))]))

    bad_json = SimpleNamespace(function=SimpleNamespace(arguments="{oops"))
    with pytest.raises(AICommandError):
        parse_tool_arguments(SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(tool_calls=[bad_json]))]))


@pytest.mark.parametrize(
    "args",
    [
        {"operation": "delete", "table": "stocks", "data": {"symbol": "AAPL"}},
        {"operation": "insert", "table": "users", "data": {"symbol": "AAPL"}},
        {"operation": "insert", "table": "stocks", "data": {}},
        {"operation": "insert", "table": "stocks", "data": "AAPL"},
        {"operation": "insert", "table": "stocks", "data": {"symbol": "AAPL", "password": "x"}},
        {"operation": "update", "table": "stocks", "data": {"price": 1}},
        {"operation": "update", "table": "stocks", "data": {"price": 1}, "filters": {"owner": "x"}},
        {"operation": "insert", "table": "financials", "data": {"revenue": "lots"}},
    ],
)
def test_validate_operation_rejects(args):
    with pytest.raises(UnsafeOperationError):
        validate_operation(args)


def test_validate_operation_coerces_values():
    op = validate_operation(
        {
            "operation": "upsert",
            "table": "business_overviews",
            "data": {
                "id": "abc",
                "stock_symbol": " aapl",
                "moat": [{"name": "Branding", "strength": "High"}],
                "user_id": "someone-else",
            },
        }
    )

    assert op.row_id == "abc"
    assert op.data["stock_symbol"] == "AAPL"
    assert json.loads(op.data["moat"]) == [{"name": "Branding", "strength": "High"}]
    assert "user_id" not in op.data
    assert "id" not in op.data


# -----------------------------------------------------------------------------
# Writes
# -----------------------------------------------------------------------------

def test_insert_stock_for_current_user(db_session):
    service, completions = _service(
        db_session,
        {"operation": "insert", "table": "stocks", "data": {"symbol": "nvda", "name": "Nvidia", "price": "120", "user_id": OTHER_USER_ID}},
    )

    result = service.run("Add NVDA, Nvidia, price 120")

    assert result["success"] is True
    assert result["message"] == "Successfully inserted stocks record."
    assert result["data"][0]["symbol"] == "NVDA"
    assert result["data"][0]["price"] == 120.0
    assert result["data"][0]["user_id"] == USER_ID

    call = completions.calls[0]
    assert call["messages"][1] == {"role": "user", "content": "Add NVDA, Nvidia, price 120"}
    assert call["tool_choice"] == {"type": "function", "function": {"name": TOOL_NAME}}

    stored = db_session.query(Stock).one()
    assert stored.user_id == USER_ID


def test_update_only_touches_current_users_rows(db_session):
    db_session.add_all(
        [
            Stock(user_id=USER_ID, symbol="AAPL", name="Apple", price=170.0),
            Stock(user_id=OTHER_USER_ID, symbol="AAPL", name="Apple", price=170.0),
        ]
    )
    db_session.commit()

    service, _ = _service(
        db_session,
        {"operation": "update", "table": "stocks", "data": {"price": 180}, "filters": {"symbol": "aapl"}},
    )
    result = service.run("Set AAPL price to 180")

    assert result["message"] == "Successfully updated stocks record."
    assert len(result["data"]) == 1
    prices = {s.user_id: s.price for s in db_session.query(Stock)}
    assert prices == {USER_ID: 180.0, OTHER_USER_ID: 170.0}


def test_symbol_update_moves_research_rows(db_session):
    db_session.add_all(
        [
            Stock(user_id=USER_ID, symbol="FB", name="Meta", price=300.0),
            Financial(user_id=USER_ID, stock_symbol="FB", period="Q1 2024", revenue=100.0),
            Risk(user_id=USER_ID, stock_symbol="FB", type="regulatory", description="EU"),
            BusinessOverview(user_id=USER_ID, stock_symbol="FB", business_model="Ads"),
            Financial(user_id=OTHER_USER_ID, stock_symbol="FB", period="Q1 2024", revenue=1.0),
        ]
    )
    db_session.commit()

    service, _ = _service(
        db_session,
        {"operation": "update", "table": "stocks", "data": {"symbol": "meta"}, "filters": {"symbol": "FB"}},
    )
    result = service.run("Rename FB to META")

    assert result["data"][0]["symbol"] == "META"
    own = [Financial, Risk, BusinessOverview]
    for model in own:
        symbols = {r.stock_symbol for r in db_session.query(model).filter(model.user_id == USER_ID)}
        assert symbols == {"META"}
    other = db_session.query(Financial).filter(Financial.user_id == OTHER_USER_ID).one()
    assert other.stock_symbol == "FB"


def test_upsert_financials_by_symbol_and_period(db_session):
    upsert = {
        "operation": "upsert",
        "table": "financials",
        "data": {"stock_symbol": "MSFT", "period": "Q1 2024", "revenue": 62000},
    }
    service, _ = _service(db_session, upsert, dict(upsert, data=dict(upsert["data"], revenue=63000)))

    first = service.run("MSFT Q1 2024 revenue 62000")
    second = service.run("MSFT Q1 2024 revenue 63000")

    assert first["message"] == "Successfully upserted financials record."
    assert second["data"][0]["id"] == first["data"][0]["id"]
    assert db_session.query(Financial).one().revenue == 63000.0


def test_database_rejection_is_an_ai_command_error(db_session):
    # stocks.name is required
    service, _ = _service(db_session, {"operation": "insert", "table": "stocks", "data": {"symbol": "NVDA"}})

    with pytest.raises(AICommandError):
        service.run("Add NVDA")
    assert db_session.query(Stock).count() == 0


# -----------------------------------------------------------------------------
# LLM failures
# -----------------------------------------------------------------------------

def test_rate_limit(db_session):
    error = RateLimitError("slow down", response=httpx.Response(429, request=_REQUEST), body=None)
    service, _ = _service(db_session, error)

    with pytest.raises(AICommandRateLimitError, match="Rate limit exceeded"):
        service.run("add AAPL")


def test_payment_required(db_session):
    error = APIStatusError("no credits", response=httpx.Response(402, request=_REQUEST), body=None)
    service, _ = _service(db_session, error)

    with pytest.raises(AICommandPaymentRequiredError, match="Payment required"):
        service.run("add AAPL")


def test_connection_errors_are_retried(db_session):
    args = {"operation": "insert", "table": "risks", "data": {"stock_symbol": "AAPL", "type": "macro", "description": "Rates"}}
    service, completions = _service(db_session, APIConnectionError(request=_REQUEST), args)

    result = service.run("AAPL macro risk: rates")

    assert len(completions.calls) == 2
    assert result["data"][0]["type"] == "macro"


def test_connection_errors_give_up(db_session):
    service, completions = _service(
        db_session,
        APIConnectionError(request=_REQUEST),
        APIConnectionError(request=_REQUEST),
        APIConnectionError(request=_REQUEST),
    )

    with pytest.raises(AICommandError):
        service.run("add AAPL")
    assert len(completions.calls) == 3
