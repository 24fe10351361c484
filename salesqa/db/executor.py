"""
Read-only aggregation executor.

Turns validated QueryParameters into SQLAlchemy Core aggregate queries over
``orders`` / ``line_items`` and merges the results into ResultRows.

  1. Every query runs on a read-only connection (Postgres-enforced, with a
     statement timeout)
  2. Filters are bound parameters; nothing is interpolated into SQL text
  3. Money is summed in minor units and converted to major units once, when
     the rows are built
  4. Comparison periods run concurrently on a bounded thread pool; any
     failure fails the whole result
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any

from sqlalchemy import distinct, func, literal_column, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from salesqa.copilot.locations import LocationResolver
from salesqa.copilot.spec import QueryParameters, QueryResult, ResultRow, TimeWindow
from salesqa.db.connection import get_engine, readonly_connection
from salesqa.db.schema import line_items, orders
from salesqa.core.config import get_settings
from salesqa.core.logging import get_logger, kv
from salesqa.core.utils import minor_to_major, safe_ratio, timer

logger = get_logger(__name__)

_LINE_METRICS = frozenset({"quantity", "average_item_price"})


@dataclass
class _Totals:
    revenue_minor: int = 0
    order_count: int = 0
    quantity: int = 0
    line_total_minor: int = 0
    item_id: str | None = None


# ── Plan description ─────────────────────────────────────

def describe_plan(params: QueryParameters, locations: LocationResolver | None = None) -> str:
    """One-line human-readable description of what will be aggregated."""
    parts = [", ".join(params.metrics)]
    if params.group_by:
        parts[0] += " by " + ", ".join(params.group_by)
    if params.is_comparison:
        parts.append("periods: " + "; ".join(
            f"{w.label or 'period'} ({w.describe()})" for w in params.comparison_ranges
        ))
    elif params.date_range:
        parts.append(params.date_range.describe())
    else:
        parts.append("all time")
    if params.location_ids:
        names = [locations.display_name(i) if locations else i for i in params.location_ids]
        parts.append("locations: " + ", ".join(names))
    if params.item_names:
        parts.append("items: " + ", ".join(params.item_names))
    if params.sort_by:
        parts.append(f"sort {params.sort_by} {params.sort_direction}")
    if params.limit:
        parts.append(f"limit {params.limit}")
    return " | ".join(parts)


# ── Sorting ──────────────────────────────────────────────

def _label_key(row: ResultRow) -> tuple:
    return tuple(v or "" for v in (row.location, row.item, row.month, row.date))


def sort_rows(rows: list[ResultRow], params: QueryParameters) -> list[ResultRow]:
    """Order rows by ``sort_by``; ties fall back to dimension labels ascending."""
    ordered = sorted(rows, key=_label_key)
    if params.sort_by:
        field = params.sort_by
        ordered.sort(
            key=lambda r: getattr(r, field, None) if getattr(r, field, None) is not None else 0,
            reverse=params.sort_direction == "desc",
        )
    if params.limit:
        ordered = ordered[: params.limit]
    return ordered


# ── Executor ─────────────────────────────────────────────

class QueryExecutor:
    """Run QueryParameters against the POS store.

    Parameters
    ----------
    engine : Engine, optional
        Defaults to the shared application engine.
    locations : LocationResolver, optional
        Supplies location display names for result rows.
    """

    def __init__(self, engine: Engine | None = None, locations: LocationResolver | None = None):
        self._engine = engine
        self._locations = locations

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    # ── Public API ──────────────────────────────────────

    def execute(self, params: QueryParameters) -> QueryResult:
        plan = describe_plan(params, self._locations)
        logger.info("Executing aggregation | %s", kv(plan=plan))

        error: str | None = None
        rows: list[ResultRow] = []
        with timer() as t:
            try:
                if params.is_comparison:
                    rows = self._run_comparison(params)
                else:
                    rows = sort_rows(self._run_window(params, params.date_range), params)
            except (SQLAlchemyError, FuturesTimeoutError) as exc:
                logger.exception("Aggregation failed | %s", kv(plan=plan))
                error = f"{type(exc).__name__}: {exc}"

        if error is not None:
            return QueryResult(
                success=False,
                parameters=params,
                query_plan=plan,
                error=error,
                elapsed_ms=t["elapsed_ms"],
            )

        logger.info("Aggregation finished | %s", kv(rows=len(rows), elapsed_ms=t["elapsed_ms"]))
        return QueryResult(
            success=True,
            rows=rows,
            record_count=len(rows),
            query_plan=plan,
            parameters=params,
            elapsed_ms=t["elapsed_ms"],
        )

    # ── Comparison periods ──────────────────────────────

    def _run_comparison(self, params: QueryParameters) -> list[ResultRow]:
        settings = get_settings()
        windows = params.comparison_ranges
        workers = max(1, min(settings.parallel_query_limit, len(windows)))
        timeout = settings.query_timeout_ms / 1000

        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="period-query")
        try:
            futures = [pool.submit(self._run_window, params, w) for w in windows]
            per_period = [f.result(timeout=timeout) for f in futures]
        except Exception:
            # Do not wait on periods still running; the request fails now.
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        pool.shutdown()

        rows: list[ResultRow] = []
        for index, (window, period_rows) in enumerate(zip(windows, per_period), start=1):
            label = window.label or f"period_{index}"
            for row in sort_rows(period_rows, params):
                row.period = label
                rows.append(row)
        return rows

    # ── Single window ───────────────────────────────────

    def _run_window(self, params: QueryParameters, window: TimeWindow | None) -> list[ResultRow]:
        line_scope = "item" in params.group_by or bool(params.item_names)
        with readonly_connection(self.engine) as conn:
            dialect = conn.dialect.name
            if line_scope:
                totals = self._fetch(conn, self._line_scope_query(params, window, dialect))
            else:
                totals = self._fetch(conn, self._order_query(params, window, dialect))
                if _LINE_METRICS & set(params.metrics):
                    line_totals = self._fetch(conn, self._line_query(params, window, dialect))
                    for key, extra in line_totals.items():
                        acc = totals.setdefault(key, _Totals())
                        acc.quantity = extra.quantity
                        acc.line_total_minor = extra.line_total_minor
        return [self._build_row(params, key, acc) for key, acc in totals.items()]

    def _group_columns(self, params: QueryParameters, dialect: str) -> list[Any]:
        columns = []
        for dim in params.group_by:
            if dim == "location":
                columns.append(orders.c.location_id.label("location"))
            elif dim == "item":
                columns.append(line_items.c.name.label("item"))
            else:
                columns.append(_time_label(dim, dialect).label(dim))
        return columns

    def _filters(self, params: QueryParameters, window: TimeWindow | None, line_scope: bool) -> list[Any]:
        conditions = [orders.c.state.in_(get_settings().counted_order_states)]
        if window is not None:
            conditions.append(orders.c.ordered_at >= window.start)
            conditions.append(orders.c.ordered_at < window.end)
        if params.location_ids:
            conditions.append(orders.c.location_id.in_(params.location_ids))
        if line_scope and params.item_names:
            conditions.append(line_items.c.name.in_(params.item_names))
        return conditions

    def _order_query(self, params: QueryParameters, window: TimeWindow | None, dialect: str):
        keys = self._group_columns(params, dialect)
        stmt = select(
            *keys,
            func.coalesce(func.sum(orders.c.total_amount), 0).label("revenue_minor"),
            func.count(orders.c.id).label("order_count"),
        ).where(*self._filters(params, window, line_scope=False))
        return stmt.group_by(*keys) if keys else stmt

    def _line_query(self, params: QueryParameters, window: TimeWindow | None, dialect: str):
        keys = self._group_columns(params, dialect)
        stmt = (
            select(
                *keys,
                func.coalesce(func.sum(line_items.c.quantity), 0).label("quantity"),
                func.coalesce(func.sum(line_items.c.total_price), 0).label("line_total_minor"),
            )
            .select_from(line_items.join(orders, line_items.c.order_id == orders.c.id))
            .where(*self._filters(params, window, line_scope=False))
        )
        return stmt.group_by(*keys) if keys else stmt

    def _line_scope_query(self, params: QueryParameters, window: TimeWindow | None, dialect: str):
        keys = self._group_columns(params, dialect)
        extra = [func.max(line_items.c.item_id).label("item_id")] if "item" in params.group_by else []
        stmt = (
            select(
                *keys,
                *extra,
                func.coalesce(func.sum(line_items.c.total_price), 0).label("revenue_minor"),
                func.count(distinct(orders.c.id)).label("order_count"),
                func.coalesce(func.sum(line_items.c.quantity), 0).label("quantity"),
                func.coalesce(func.sum(line_items.c.total_price), 0).label("line_total_minor"),
            )
            .select_from(line_items.join(orders, line_items.c.order_id == orders.c.id))
            .where(*self._filters(params, window, line_scope=True))
        )
        return stmt.group_by(*keys) if keys else stmt

    @staticmethod
    def _fetch(conn, stmt) -> dict[tuple, _Totals]:
        result = conn.execute(stmt)
        columns = list(result.keys())
        key_columns = [c for c in columns if c in ("location", "item", "month", "date")]
        out: dict[tuple, _Totals] = {}
        for row in result.mappings():
            key = tuple((c, row[c]) for c in key_columns)
            out[key] = _Totals(
                revenue_minor=int(row.get("revenue_minor") or 0),
                order_count=int(row.get("order_count") or 0),
                quantity=int(row.get("quantity") or 0),
                line_total_minor=int(row.get("line_total_minor") or 0),
                item_id=row.get("item_id"),
            )
        return out

    def _build_row(self, params: QueryParameters, key: tuple, acc: _Totals) -> ResultRow:
        values: dict[str, Any] = {}
        for dim, value in key:
            if dim == "location":
                values["location_id"] = value
                values["location"] = self._locations.display_name(value) if self._locations else value
            elif dim == "item":
                values["item"] = value
                values["item_id"] = acc.item_id
            else:
                values[dim] = str(value)

        for metric in params.metrics:
            if metric == "revenue":
                values["revenue"] = minor_to_major(acc.revenue_minor)
            elif metric == "count":
                values["count"] = acc.order_count
            elif metric == "quantity":
                values["quantity"] = acc.quantity
            elif metric == "average_transaction":
                values["average_transaction"] = minor_to_major(safe_ratio(acc.revenue_minor, acc.order_count))
            elif metric == "average_item_price":
                values["average_item_price"] = minor_to_major(safe_ratio(acc.line_total_minor, acc.quantity))
        return ResultRow(**values)


def _time_label(dim: str, dialect: str):
    """``YYYY-MM`` / ``YYYY-MM-DD`` bucket label for ``orders.ordered_at``.

    The format is inlined so SELECT and GROUP BY render the same expression.
    """
    if dialect == "sqlite":
        fmt = "'%Y-%m'" if dim == "month" else "'%Y-%m-%d'"
        return func.strftime(literal_column(fmt), orders.c.ordered_at)
    fmt = "'YYYY-MM'" if dim == "month" else "'YYYY-MM-DD'"
    return func.to_char(orders.c.ordered_at, literal_column(fmt))
