"""
Response formatter -- turns an executed QueryResult into a natural-language
summary.

Works in both model mode (a second LLM call constrained to the rendered rows)
and template mode (no model configured, or the model call failed).  The rows
are always rendered deterministically here; the model only phrases them.
"""
from __future__ import annotations

from salesqa.copilot.llm_client import Completions, LLMError
from salesqa.copilot.locations import LocationResolver
from salesqa.copilot.spec import MONEY_METRICS, QueryParameters, QueryResult, ResultRow
from salesqa.core.logging import get_logger, kv
from salesqa.core.utils import format_currency, timer

logger = get_logger(__name__)

NO_DATA_MESSAGE = "No data found matching your criteria. Please try adjusting your search parameters."

_METRIC_LABELS: dict[str, str] = {
    "revenue": "Revenue",
    "count": "Transactions",
    "quantity": "Quantity",
    "average_transaction": "Avg Transaction",
    "average_item_price": "Avg Item Price",
}

_SYSTEM_PROMPT = """\
You are a sales analytics assistant. Write clear, accurate summaries of sales \
query results for a business owner.

CRITICAL RULES:
- Use ONLY the numbers in the "Query Results" section.
- NEVER invent numbers, percentages, trends or comparisons that are not in the data.
- Do not mention previous periods unless their rows are provided.
- If values are zero, say so plainly.
- Keep monetary amounts exactly as written (e.g. $1,234.56).

STYLE:
- Conversational and concise; answer the question that was asked.
- For grouped results, highlight the breakdown, using bullet points when helpful.
- If several metrics were requested, address each one."""


# ── Deterministic rendering ──────────────────────────────

def format_metric(metric: str, value: float | int | None) -> str:
    if value is None:
        return "n/a"
    if metric in MONEY_METRICS:
        return format_currency(float(value))
    return f"{int(value):,}"


def _metric_parts(row: ResultRow, metrics: list[str]) -> list[str]:
    return [
        f"{_METRIC_LABELS[m]}: {format_metric(m, getattr(row, m))}"
        for m in metrics
        if getattr(row, m) is not None
    ]


def _dimension_parts(row: ResultRow) -> list[str]:
    parts = []
    if row.period:
        parts.append(f"Period: {row.period}")
    if row.location:
        parts.append(f"Location: {row.location}")
    if row.item:
        parts.append(f"Item: {row.item}")
    if row.month:
        parts.append(f"Month: {row.month}")
    if row.date:
        parts.append(f"Date: {row.date}")
    return parts


def render_rows(rows: list[ResultRow], params: QueryParameters) -> str:
    """Every row as plain text, exactly as the numbers will be quoted."""
    lines = [f"Total records: {len(rows)}"]
    grouped = bool(params.group_by) or params.is_comparison
    if grouped:
        lines.append("")
        lines.append("Breakdown:")
        for i, row in enumerate(rows, 1):
            dims = ", ".join(_dimension_parts(row))
            metrics = ", ".join(_metric_parts(row, params.metrics))
            lines.append(f"  {i}. {dims} -> {metrics}")
    else:
        lines.append("")
        lines.append("Aggregate results:")
        for part in _metric_parts(rows[0], params.metrics):
            lines.append(f"  {part}")
    return "\n".join(lines)


def _describe_dates(params: QueryParameters) -> str:
    if params.is_comparison:
        return "; ".join(f"{w.label}: {w.describe()}" for w in params.comparison_ranges)
    if params.date_range:
        return params.date_range.describe()
    return "All available data"


def build_user_prompt(
    question: str,
    result: QueryResult,
    locations: LocationResolver | None = None,
) -> str:
    params = result.parameters
    if params.location_ids:
        where = ", ".join(locations.display_name(i) if locations else i for i in params.location_ids)
    else:
        where = "All locations"
    return (
        f'User asked: "{question}"\n\n'
        "Query details:\n"
        f"- Grouped by: {', '.join(params.group_by) or 'No grouping (aggregate summary)'}\n"
        f"- Metrics calculated: {', '.join(params.metrics)}\n"
        f"- Date range: {_describe_dates(params)}\n"
        f"- Locations: {where}\n"
        f"- Items: {', '.join(params.item_names) or 'All items'}\n\n"
        "Query Results:\n"
        f"{render_rows(result.rows, params)}\n\n"
        "Answer the question using ONLY the data shown above. "
        "Do not add information that is not present in the query results."
    )


def fallback_summary(result: QueryResult) -> str:
    """Terse template summary built only from the rows themselves."""
    rows = result.rows
    if not rows:
        return NO_DATA_MESSAGE
    params = result.parameters
    count = len(rows)
    noun = "result" if count == 1 else "results"

    if params.is_comparison:
        parts = [f"Found {count} {noun} across {len(params.comparison_ranges)} periods."]
        if not params.group_by:
            for row in rows:
                metrics = ", ".join(_metric_parts(row, params.metrics))
                parts.append(f"{row.period}: {metrics}.")
        return " ".join(parts)

    if params.group_by:
        return f"Found {count} {noun} grouped by {' and '.join(params.group_by)}."

    parts = [f"Found {count} {noun}."]
    if count == 1:
        metrics = ", ".join(_metric_parts(rows[0], params.metrics))
        if metrics:
            parts.append(metrics)
    return " ".join(parts)


# ── Formatter ────────────────────────────────────────────

class ResponseFormatter:
    """Populate ``QueryResult.summary``.

    ``completions=None`` (mock provider) always uses the template summary.
    """

    def __init__(self, completions: Completions | None = None, locations: LocationResolver | None = None):
        self._completions = completions
        self._locations = locations

    def format(self, question: str, result: QueryResult) -> QueryResult:
        if not result.rows:
            return result.model_copy(update={"summary": NO_DATA_MESSAGE})

        if self._completions is None:
            return result.model_copy(update={"summary": fallback_summary(result)})

        with timer() as t:
            try:
                text = self._completions.complete(
                    system=_SYSTEM_PROMPT,
                    user=build_user_prompt(question, result, self._locations),
                ).strip()
            except LLMError as exc:
                logger.warning("Summary generation failed, using template | %s", kv(error=exc))
                text = ""
            except Exception:
                logger.exception("Summary generation raised, using template")
                text = ""

        if not text:
            return result.model_copy(update={"summary": fallback_summary(result)})

        logger.info("Summary generated | %s", kv(rows=len(result.rows), chars=len(text), elapsed_ms=t["elapsed_ms"]))
        return result.model_copy(update={"summary": text})
