"""
financial.py — ORM Model for Per-Period Financial Rows

Purpose:
- Store the manually entered financial figures of a stock, one row per period
  ("Q1 2024", "FY 2023", ...).

Storage notes:
- Only revenue, cost_of_revenue, net_profit and eps have dedicated columns.
  Gross profit and share count are derived from them when rows are read back.
- Values of user-defined custom metrics live in `custom_data` as
  {metric_key: value}.
"""

from sqlalchemy import JSON, Column, Float, Index, String

from stockdesk.models.base import Base, OwnedRowMixin


class Financial(OwnedRowMixin, Base):
    __tablename__ = "financials"

    stock_symbol = Column(String, nullable=False)

    revenue = Column(Float, nullable=True)
    cost_of_revenue = Column(Float, nullable=True)
    net_profit = Column(Float, nullable=True)
    eps = Column(Float, nullable=True)
    period = Column(String, nullable=True)

    custom_data = Column(JSON, nullable=True, default=dict)

    __table_args__ = (
        Index("idx_financials_user_symbol", "user_id", "stock_symbol"),
    )

    def __repr__(self):
        return f"<Financial {self.stock_symbol} {self.period} revenue={self.revenue}>"
