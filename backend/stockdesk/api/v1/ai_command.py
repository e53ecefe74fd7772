"""
ai_command.py — Natural-Language Command Endpoint

Endpoints:
- POST /ai-command  {"command": "..."} → {"success", "message", "data"}

Error responses:
- 400 empty or too long command
- 401 missing / invalid token
- 402 LLM billing problem, 429 LLM rate limit
- 500 anything else, always with the same generic message
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from stockdesk.core.database import get_db
from stockdesk.core.logging import get_logger
from stockdesk.core.security import get_current_user_id
from stockdesk.services.research.ai_command import (
    GENERIC_FAILURE_MESSAGE,
    AICommandError,
    AICommandPaymentRequiredError,
    AICommandRateLimitError,
    AICommandService,
    AICommandValidationError,
)

logger = get_logger(__name__)

router = APIRouter(
    prefix="/ai-command",
    tags=["ai-command"]
)


class AICommandRequest(BaseModel):
    # Any type; validated by the service so bad input maps to 400
    command: Any = None


class AICommandResponse(BaseModel):
    success: bool
    message: str
    data: List[Dict[str, Any]]


def get_ai_command_service(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> AICommandService:
    return AICommandService(db, user_id)


@router.post("", response_model=AICommandResponse)
def run_ai_command(
    payload: AICommandRequest,
    service: AICommandService = Depends(get_ai_command_service),
):
    """
    POST /ai-command

    Parse the command with the LLM and apply the resulting write for the
    current user.
    """
    try:
        return service.run(payload.command)
    except AICommandValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except AICommandRateLimitError as e:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(e))
    except AICommandPaymentRequiredError as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    except AICommandError:
        logger.exception("AI command failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=GENERIC_FAILURE_MESSAGE,
        )
