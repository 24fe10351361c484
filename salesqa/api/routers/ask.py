"""POST /ask -- main copilot endpoint."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, Field

from salesqa.copilot.service import get_service
from salesqa.copilot.spec import ChatMessage
from salesqa.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class AskRequest(BaseModel):
    question: str = Field(..., min_length=2, max_length=500, description="Natural-language sales question")
    history: list[ChatMessage] = Field(default_factory=list, description="Prior conversation turns, oldest first")


class AskResponse(BaseModel):
    question: str
    success: bool
    summary: str
    rows: list[dict[str, Any]]
    record_count: int
    query_plan: str
    error: str | None = None
    parameters: dict[str, Any] | None = None
    confidence: float = 0.0
    elapsed_ms: int = 0


@router.post("", response_model=AskResponse)
def ask_endpoint(req: AskRequest):
    """Full pipeline: question -> parameters -> aggregation -> summary.

    Always answers 200; failures are reported in the envelope.
    """
    answer = get_service().answer_question(req.question, req.history)
    return AskResponse(question=req.question, **answer.to_dict())
