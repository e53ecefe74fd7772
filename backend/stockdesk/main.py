"""
main.py — FastAPI Application Entrypoint

Purpose:
- Initialize application services (logging, config, DB session dependency).
- Register API routers.
- Define root-level health/status endpoints.
- Provide `app` object used by ASGI server (uvicorn).

This file should stay clean — no business logic here.

Run locally:
    cd backend && uvicorn stockdesk.main:app --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stockdesk.api.v1 import ai_command, stocks, valuation
from stockdesk.core.config import settings
from stockdesk.core.logging import configure_logging

# -----------------------------------------------------------------------------
# App Initialization
# -----------------------------------------------------------------------------

configure_logging(settings.LOG_LEVEL)

app = FastAPI(
    title="Stockdesk Backend",
    description="Watchlist research notes, manual financials and fair-price valuation",
    version="0.1.0",
)

# -----------------------------------------------------------------------------
# CORS
# -----------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------------------------------------------------------
# Router Registration
# -----------------------------------------------------------------------------

# Mount all v1 API routers under /api/v1 prefix
app.include_router(stocks.router, prefix="/api/v1")
app.include_router(valuation.router, prefix="/api/v1")
app.include_router(ai_command.router, prefix="/api/v1")

# -----------------------------------------------------------------------------
# Health Check
# -----------------------------------------------------------------------------

@app.get("/")
def root():
    return {"status": "ok", "message": "Stockdesk backend running"}
