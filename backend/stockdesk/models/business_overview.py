"""
business_overview.py — ORM Model for Qualitative Research Notes

Purpose:
- One row per (user, stock) holding the qualitative research sections.

Column layout (shared with the existing frontend data):
- business_model / customer_segment / growth_engine: plain text
- revenue_segment: JSON text, list of {segment, percentage, revenue}
- moat: JSON text, list of {name, strength, explanation}
- tam: JSON text, {tam, sam, som, valuation: {...valuation inputs...}}
- channel: JSON text, {story, thinkForMarket, tippingPoint}
- custom_metrics: JSON list of custom metric definitions {key, label, color}

The JSON text columns are packed/unpacked by the research repository only.
"""

from sqlalchemy import JSON, Column, Index, String, Text

from stockdesk.models.base import Base, OwnedRowMixin


class BusinessOverview(OwnedRowMixin, Base):
    __tablename__ = "business_overviews"

    stock_symbol = Column(String, nullable=False)

    business_model = Column(Text, nullable=True)
    customer_segment = Column(Text, nullable=True)
    revenue_segment = Column(Text, nullable=True)
    channel = Column(Text, nullable=True)
    moat = Column(Text, nullable=True)
    tam = Column(Text, nullable=True)
    growth_engine = Column(Text, nullable=True)

    custom_metrics = Column(JSON, nullable=True, default=list)

    __table_args__ = (
        Index("idx_business_overviews_user_symbol", "user_id", "stock_symbol"),
    )

    def __repr__(self):
        return f"<BusinessOverview {self.stock_symbol}>"
