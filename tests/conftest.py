"""
Shared fixtures -- a small, fully known POS dataset in a file-backed SQLite
store, a location resolver built from it, and a scripted language model.
"""
from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import create_engine, insert

from salesqa.copilot.locations import LocationRecord, LocationResolver
from salesqa.db.schema import line_items, locations, metadata, orders

HQ = "LZEVY2P88KZA8"
YONGE = "LAH170A0KK47P"
BLOOR = "LPSSMJYZX8X7P"

REFERENCE_NOW = datetime(2025, 9, 19, 12, 0)

LOCATION_ROWS = [
    {"id": HQ, "name": "De Mello Coffee - HQ (Main)"},
    {"id": YONGE, "name": "De Mello Coffee - Yonge"},
    {"id": BLOOR, "name": "De Mello Coffee - Bloor"},
]

# (id, location, ordered_at, state, total cents, [(item, qty, line cents)])
ORDERS = [
    ("o1", HQ, datetime(2025, 9, 19, 9, 0), "COMPLETED", 1050, [("Latte", 2, 1050)]),
    ("o2", YONGE, datetime(2025, 9, 19, 10, 30), "COMPLETED", 950,
     [("Brew Coffee", 1, 350), ("Latte - Matcha", 1, 600)]),
    ("o3", YONGE, datetime(2025, 9, 19, 11, 0), "CANCELED", 5000, [("Latte", 10, 5000)]),
    ("o4", HQ, datetime(2025, 9, 18, 8, 0), "COMPLETED", 700, [("Brew Coffee", 2, 700)]),
    ("o5", BLOOR, datetime(2025, 8, 15, 12, 0), "COMPLETED", 1300,
     [("Latte", 1, 525), ("Croissant - Ham & Cheese", 1, 775)]),
    ("o6", HQ, datetime(2024, 8, 10, 9, 0), "COMPLETED", 2000, [("Latte", 4, 2000)]),
    ("o7", HQ, datetime(2024, 9, 10, 9, 0), "COMPLETED", 3000, [("Latte - Matcha", 5, 3000)]),
    ("o8", YONGE, datetime(2024, 9, 20, 14, 0), "COMPLETED", 1000,
     [("Brew Coffee", 2, 700), ("L'Americano", 1, 300)]),
]

ITEM_IDS = {
    "Latte": "ITEM-LATTE",
    "Latte - Matcha": "ITEM-MATCHA",
    "Brew Coffee": "ITEM-BREW",
    "Croissant - Ham & Cheese": "ITEM-CROISSANT",
    "L'Americano": "ITEM-AMERICANO",
}


def populate(engine) -> None:
    metadata.create_all(engine)
    order_rows, line_rows = [], []
    for order_id, loc, ts, state, total, lines in ORDERS:
        order_rows.append({
            "id": order_id, "location_id": loc, "ordered_at": ts,
            "state": state, "total_amount": total, "currency": "CAD",
        })
        for name, qty, cents in lines:
            line_rows.append({
                "order_id": order_id, "item_id": ITEM_IDS[name], "name": name,
                "quantity": qty, "total_price": cents,
            })
    with engine.begin() as conn:
        conn.execute(insert(locations), LOCATION_ROWS)
        conn.execute(insert(orders), order_rows)
        conn.execute(insert(line_items), line_rows)


@pytest.fixture
def pos_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'pos.db'}")
    populate(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def empty_engine(tmp_path):
    """A store with no tables at all; every query fails."""
    engine = create_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def resolver():
    r = LocationResolver()
    r.initialize([LocationRecord(**row) for row in LOCATION_ROWS])
    return r


class ScriptedCompletions:
    """Returns canned replies in order and records every call."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[dict] = []

    def complete(self, system, user, history=()):
        self.calls.append({"system": system, "user": user, "history": list(history)})
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def scripted():
    return ScriptedCompletions
