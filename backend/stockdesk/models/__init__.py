"""
ORM models for the watchlist and research tables.

Importing this package registers every table on `Base.metadata`.
"""

from stockdesk.models.base import Base
from stockdesk.models.business_overview import BusinessOverview
from stockdesk.models.financial import Financial
from stockdesk.models.risk import Risk
from stockdesk.models.stock import Stock

__all__ = [
    "Base",
    "BusinessOverview",
    "Financial",
    "Risk",
    "Stock",
]
