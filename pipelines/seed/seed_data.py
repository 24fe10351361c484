"""
Seed data generator -- creates realistic coffee-shop POS data.

Generates:
  - 6 café locations (busier stores get proportionally more orders)
  - ~12 000 orders over the last 18 months, 1-4 line items each
  - ~5 % of orders in a non-counted state (CANCELED / OPEN)

Amounts are stored in integer cents.  Tables are created if missing.
Run:  python -m pipelines.seed.seed_data
"""
from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy import create_engine, delete, insert

from salesqa.core.config import get_settings
from salesqa.db.schema import line_items, locations, metadata, orders

fake = Faker()
Faker.seed(42)
random.seed(42)

# ── Tunables ─────────────────────────────────────────────
NUM_ORDERS = 12_000
MAX_ITEMS_PER_ORDER = 4
HISTORY_DAYS = 540
OPEN_HOUR, CLOSE_HOUR = 7, 19

LOCATIONS = [
    ("LZEVY2P88KZA8", "De Mello Coffee - HQ (Main)", 1.2),
    ("LAH170A0KK47P", "De Mello Coffee - Yonge", 1.1),
    ("LPSSMJYZX8X7P", "De Mello Coffee - Bloor", 1.0),
    ("LT8YK4FBNGH17", "De Mello Coffee - The Well", 0.9),
    ("LDPNNFWBTFB26", "De Mello Coffee - Broadway", 0.8),
    ("LYJ3TVBQ23F5V", "De Mello Coffee - Kingston", 0.7),
]

# (name, base price in cents, popularity weight)
MENU = [
    ("Brew Coffee", 350, 25),
    ("Latte", 525, 20),
    ("Latte - Matcha", 650, 15),
    ("Latte - Chai", 575, 12),
    ("L'Americano", 425, 10),
    ("Dancing Goats", 595, 8),
    ("Croissant - Ham & Cheese", 750, 6),
    ("Spinach Feta Danish", 625, 4),
]

STATES = ["COMPLETED", "CANCELED", "OPEN"]
STATE_WEIGHTS = [0.95, 0.03, 0.02]


def _rand_ts(now: datetime) -> datetime:
    day = now - timedelta(days=random.randint(0, HISTORY_DAYS))
    return day.replace(
        hour=random.randint(OPEN_HOUR, CLOSE_HOUR - 1),
        minute=random.randint(0, 59),
        second=random.randint(0, 59),
        microsecond=0,
    )


# ── Generators ───────────────────────────────────────────

def gen_locations() -> list[dict]:
    return [{"id": loc_id, "name": name} for loc_id, name, _ in LOCATIONS]


def gen_orders(now: datetime) -> tuple[list[dict], list[dict]]:
    """Returns (orders, line_items)."""
    loc_ids = [loc_id for loc_id, _, _ in LOCATIONS]
    loc_weights = [weight for _, _, weight in LOCATIONS]
    menu_weights = [weight for _, _, weight in MENU]
    item_ids = {name: fake.unique.bothify("ITEM-????####").upper() for name, _, _ in MENU}

    order_rows: list[dict] = []
    item_rows: list[dict] = []

    for _ in range(NUM_ORDERS):
        order_id = fake.unique.bothify("ORD-##########")
        lines = []
        for _ in range(random.randint(1, MAX_ITEMS_PER_ORDER)):
            name, base_price, _w = random.choices(MENU, weights=menu_weights, k=1)[0]
            quantity = random.choices([1, 2, 3], weights=[0.8, 0.15, 0.05], k=1)[0]
            total = round(base_price * random.uniform(0.9, 1.1)) * quantity
            lines.append({
                "order_id": order_id,
                "item_id": item_ids[name],
                "name": name,
                "quantity": quantity,
                "total_price": total,
            })

        order_rows.append({
            "id": order_id,
            "location_id": random.choices(loc_ids, weights=loc_weights, k=1)[0],
            "ordered_at": _rand_ts(now),
            "state": random.choices(STATES, weights=STATE_WEIGHTS, k=1)[0],
            "total_amount": sum(line["total_price"] for line in lines),
            "currency": "CAD",
        })
        item_rows.extend(lines)

    return order_rows, item_rows


# ── Bulk insert helper ───────────────────────────────────

def _bulk_insert(engine, table, rows: list[dict], batch_size: int = 2000):
    """Insert rows into *table* in batches (executemany)."""
    if not rows:
        return
    with engine.begin() as conn:
        for i in range(0, len(rows), batch_size):
            conn.execute(insert(table), rows[i : i + batch_size])
    print(f"  ✓ {table.name}: {len(rows):,} rows")


# ── Main ─────────────────────────────────────────────────

def main():
    print("═══ POS Seed Data Generator ═══")
    engine = create_engine(get_settings().database_url, echo=False)
    metadata.create_all(engine)

    # Clear existing data for idempotency
    print("Clearing POS tables …")
    with engine.begin() as conn:
        for table in (line_items, orders, locations):
            conn.execute(delete(table))

    print("Generating data …")
    location_rows = gen_locations()
    order_rows, item_rows = gen_orders(datetime.now())

    print("Inserting …")
    _bulk_insert(engine, locations, location_rows)
    _bulk_insert(engine, orders, order_rows)
    _bulk_insert(engine, line_items, item_rows)

    print(f"\nDone -- seeded {len(location_rows)} locations, {len(order_rows):,} orders, "
          f"{len(item_rows):,} line items.")


if __name__ == "__main__":
    main()
