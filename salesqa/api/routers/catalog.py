"""
GET /locations, GET /metrics -- metadata endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from salesqa.copilot.service import get_service
from salesqa.copilot.spec import GROUP_BY_DIMENSIONS, METRICS, MONEY_METRICS
from salesqa.db.catalog import load_location_records
from salesqa.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class LocationItem(BaseModel):
    id: str
    display_name: str
    keywords: list[str]


class MetricItem(BaseModel):
    name: str
    is_money: bool


class CatalogResponse(BaseModel):
    metrics: list[MetricItem]
    group_by: list[str]


@router.get("/locations", response_model=list[LocationItem])
def list_locations() -> list[LocationItem]:
    """Return every known location with the keywords that resolve to it."""
    service = get_service()
    try:
        service.locations.ensure_initialized(lambda: load_location_records(service.engine))
    except SQLAlchemyError as exc:
        logger.exception("Could not load locations")
        raise HTTPException(status_code=503, detail="Location data is unavailable") from exc
    return [LocationItem(**m.to_dict()) for m in service.locations.mappings()]


@router.get("/metrics", response_model=CatalogResponse)
def list_metrics() -> CatalogResponse:
    """Return the metric and grouping enumerations questions can use."""
    return CatalogResponse(
        metrics=[MetricItem(name=m, is_money=m in MONEY_METRICS) for m in METRICS],
        group_by=list(GROUP_BY_DIMENSIONS),
    )
