"""
risk.py — ORM Model for Risk Assessment Entries

One row per (stock, risk type). Types written by the app:
"business", "financial", "management", "macro".
"""

from sqlalchemy import Column, Index, String, Text

from stockdesk.models.base import Base, OwnedRowMixin


class Risk(OwnedRowMixin, Base):
    __tablename__ = "risks"

    stock_symbol = Column(String, nullable=False)
    type = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_risks_user_symbol", "user_id", "stock_symbol"),
    )

    def __repr__(self):
        return f"<Risk {self.stock_symbol} | {self.type}>"
