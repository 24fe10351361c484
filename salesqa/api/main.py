"""
FastAPI application entry-point.

``POST /ask`` always answers 200 with the copilot envelope; failures are
reported through ``success=false`` and a user-facing ``summary``.  The
catalog routes expose the locations and the metric/dimension vocabulary the
extractor accepts.
"""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from salesqa.api.routers import ask, catalog

app = FastAPI(
    title="Sales Q&A Copilot",
    version="0.1.0",
    description=(
        "Ask questions about point-of-sale history in plain language. Each question "
        "is turned into validated query parameters, aggregated read-only over orders "
        "and line items, and summarised using only the returned rows."
    ),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ask.router, prefix="/ask", tags=["Copilot"])
app.include_router(catalog.router, tags=["Catalog"])


@app.get("/health")
def health():
    return {"status": "ok", "service": app.title}
