"""
stock.py — ORM Model for Watchlist Entries

Purpose:
- Represent one stock on a user's watchlist.
- Provides the symbol that every research table links to
  (financials, business_overviews, risks use `stock_symbol`).

Fields:
- symbol: ticker, upper-cased, unique per user
- name: display name
- price: manually entered current price (no live feed)
- market: listing market, "US" by default

Important Design Rule:
- This table stores the watchlist entry only. Research notes, financials
  and valuation assumptions live in the related tables.
"""

from sqlalchemy import Column, Float, Index, String, UniqueConstraint

from stockdesk.models.base import Base, OwnedRowMixin


class Stock(OwnedRowMixin, Base):
    __tablename__ = "stocks"

    symbol = Column(String, nullable=False)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=True)
    market = Column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "symbol", name="uq_stocks_user_symbol"),
        Index("idx_stocks_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<Stock {self.symbol} | {self.name}>"
