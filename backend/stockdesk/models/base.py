"""
base.py — Shared Declarative Base and Column Helpers

All ORM models register on this single `Base` so one `create_all` covers
stocks / financials / business_overviews / risks.
"""

import datetime
import uuid

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def new_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class OwnedRowMixin:
    """
    Columns present on every table of the managed backend.

    `user_id` is the owner (Supabase auth user id); every repository query
    filters on it.
    """

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
