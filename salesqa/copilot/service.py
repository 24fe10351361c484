"""
Copilot service -- orchestrates extract -> execute -> format.

Full end-to-end pipeline for one question.  The location keyword table and
the item catalog are loaded from the store on first use and shared by every
later request.  ``answer_question`` never raises: every failure becomes a
well-formed answer with ``success=False`` and a user-facing message.
"""
from __future__ import annotations

import threading
from functools import lru_cache
from typing import Any, Callable, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from salesqa.copilot.extractor import ParameterExtractor
from salesqa.copilot.formatter import ResponseFormatter
from salesqa.copilot.llm_client import Completions, build_completions
from salesqa.copilot.locations import LocationResolver
from salesqa.copilot.spec import ChatMessage, QueryParameters
from salesqa.db.catalog import load_item_names, load_location_records
from salesqa.db.connection import get_engine
from salesqa.db.executor import QueryExecutor
from salesqa.core.logging import get_logger, kv
from salesqa.core.utils import now_local, timer

logger = get_logger(__name__)

EXTRACTION_FAILED_MESSAGE = (
    "I had trouble understanding your request. Could you please be more specific "
    "about what sales data you would like to see?"
)
EXECUTION_FAILED_MESSAGE = "I encountered an error while retrieving your data. Please try again."
UNEXPECTED_ERROR_MESSAGE = (
    "I encountered an unexpected error while processing your query. Please try again."
)


class CopilotAnswer:
    def __init__(
        self,
        success: bool,
        summary: str,
        rows: list[dict[str, Any]] | None = None,
        record_count: int = 0,
        query_plan: str = "",
        error: str | None = None,
        parameters: QueryParameters | None = None,
        confidence: float = 0.0,
        elapsed_ms: int = 0,
    ):
        self.success = success
        self.summary = summary
        self.rows = rows or []
        self.record_count = record_count
        self.query_plan = query_plan
        self.error = error
        self.parameters = parameters
        self.confidence = confidence
        self.elapsed_ms = elapsed_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "summary": self.summary,
            "rows": self.rows,
            "record_count": self.record_count,
            "query_plan": self.query_plan,
            "error": self.error,
            "parameters": self.parameters.model_dump(mode="json") if self.parameters else None,
            "confidence": self.confidence,
            "elapsed_ms": self.elapsed_ms,
        }


class CopilotService:
    """Question -> answer pipeline bound to one store and one model backend.

    Parameters
    ----------
    engine : Engine, optional
        Store to aggregate over.  Defaults to the shared application engine.
    completions : Completions, optional
        Language-model backend for extraction and summaries.  ``None`` runs
        both stages in keyword / template mode.
    locations : LocationResolver, optional
        Shared resolver; initialised from the ``locations`` table on first use.
    clock : callable, optional
        Reference "now" for relative dates.
    """

    def __init__(
        self,
        engine: Engine | None = None,
        completions: Completions | None = None,
        locations: LocationResolver | None = None,
        clock: Callable[[], Any] = now_local,
    ):
        self._engine = engine
        self._completions = completions
        self._locations = locations or LocationResolver()
        self._clock = clock
        self._lock = threading.Lock()
        self._extractor: ParameterExtractor | None = None
        self._executor = QueryExecutor(engine, self._locations)
        self._formatter = ResponseFormatter(completions, self._locations)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    @property
    def locations(self) -> LocationResolver:
        return self._locations

    # ── Lazy reference data ─────────────────────────────

    def _ensure_ready(self) -> ParameterExtractor:
        self._locations.ensure_initialized(lambda: load_location_records(self.engine))
        if self._extractor is None:
            with self._lock:
                if self._extractor is None:
                    self._extractor = ParameterExtractor(
                        self._locations,
                        completions=self._completions,
                        item_names=load_item_names(self.engine),
                        clock=self._clock,
                    )
        return self._extractor

    # ── Public API ──────────────────────────────────────

    def answer_question(
        self,
        question: str,
        history: Sequence[ChatMessage] = (),
    ) -> CopilotAnswer:
        logger.info("Copilot.answer_question | %s", kv(question=question[:100], history=len(history)))
        with timer() as t:
            try:
                answer = self._answer(question, list(history))
            except Exception as exc:
                logger.exception("Copilot pipeline failed unexpectedly")
                answer = CopilotAnswer(success=False, summary=UNEXPECTED_ERROR_MESSAGE, error=str(exc))
        answer.elapsed_ms = t["elapsed_ms"]
        logger.info(
            "Copilot.answer_question finished | %s",
            kv(success=answer.success, rows=answer.record_count, elapsed_ms=answer.elapsed_ms),
        )
        return answer

    def _answer(self, question: str, history: list[ChatMessage]) -> CopilotAnswer:
        try:
            extractor = self._ensure_ready()
        except SQLAlchemyError as exc:
            logger.warning("Could not load reference data | %s", kv(error=exc))
            return CopilotAnswer(success=False, summary=EXECUTION_FAILED_MESSAGE, error=str(exc))

        # 1. Extract: question -> QueryParameters
        extraction = extractor.extract(question, history)
        if not extraction.success:
            return CopilotAnswer(
                success=False,
                summary=EXTRACTION_FAILED_MESSAGE,
                error=extraction.error,
                parameters=extraction.parameters,
            )

        # 2. Execute the read-only aggregation
        result = self._executor.execute(extraction.parameters)
        if not result.success:
            return CopilotAnswer(
                success=False,
                summary=EXECUTION_FAILED_MESSAGE,
                query_plan=result.query_plan,
                error=result.error,
                parameters=extraction.parameters,
                confidence=extraction.confidence,
            )

        # 3. Summarise (never fails; falls back to a template)
        formatted = self._formatter.format(question, result)
        return CopilotAnswer(
            success=True,
            summary=formatted.summary,
            rows=[row.to_dict() for row in formatted.rows],
            record_count=formatted.record_count,
            query_plan=formatted.query_plan,
            parameters=extraction.parameters,
            confidence=extraction.confidence,
        )


@lru_cache
def get_service() -> CopilotService:
    """Process-wide service built from settings."""
    return CopilotService(engine=get_engine(), completions=build_completions())


def answer_question(question: str, history: Sequence[ChatMessage] = ()) -> CopilotAnswer:
    return get_service().answer_question(question, history)
