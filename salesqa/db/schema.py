"""
POS tables the copilot aggregates over (SQLAlchemy Core).

Amounts are integer minor currency units (cents).  ``ordered_at`` holds naive
business-local timestamps.
"""
from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
)

metadata = MetaData()

locations = Table(
    "locations",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255)),
)

orders = Table(
    "orders",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("location_id", String(64), ForeignKey("locations.id"), nullable=False, index=True),
    Column("ordered_at", DateTime, nullable=False, index=True),
    Column("state", String(32), nullable=False),
    Column("total_amount", BigInteger, nullable=False, default=0),
    Column("currency", String(3), nullable=False, default="CAD"),
)

line_items = Table(
    "line_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String(64), ForeignKey("orders.id"), nullable=False, index=True),
    Column("item_id", String(64)),
    Column("name", String(255), nullable=False),
    Column("quantity", Integer, nullable=False, default=1),
    Column("total_price", BigInteger, nullable=False, default=0),
)
