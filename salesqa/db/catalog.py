"""Reference data read from the store: locations and sold item names."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.engine import Engine

from salesqa.copilot.locations import LocationRecord
from salesqa.db.connection import readonly_connection
from salesqa.db.schema import line_items, locations
from salesqa.core.logging import get_logger, kv

logger = get_logger(__name__)


def load_location_records(engine: Engine | None = None) -> list[LocationRecord]:
    with readonly_connection(engine) as conn:
        rows = conn.execute(select(locations.c.id, locations.c.name).order_by(locations.c.id)).all()
    logger.info("Loaded locations | %s", kv(count=len(rows)))
    return [LocationRecord(id=row.id, name=row.name) for row in rows]


def load_item_names(engine: Engine | None = None) -> list[str]:
    """Distinct item names that appear on at least one line item."""
    stmt = select(line_items.c.name).distinct().order_by(line_items.c.name)
    with readonly_connection(engine) as conn:
        names = [row.name for row in conn.execute(stmt) if row.name]
    logger.info("Loaded item catalog | %s", kv(count=len(names)))
    return names
