"""
Location resolver -- maps natural-language location references ("hq",
"yonge street", "the main location") to canonical location ids.

The keyword table is the union of a static bootstrap table
(``semantic_layer/locations.yml``) and the location names persisted in the
store.  It is built once, under a lock, and only read afterwards, so
concurrent requests share it without further locking.
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import yaml

from salesqa.core.logging import get_logger, kv

logger = get_logger(__name__)

_BOOTSTRAP_PATH = Path(__file__).resolve().parents[2] / "semantic_layer" / "locations.yml"


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class LocationRecord:
    """A persisted location row."""

    id: str
    name: str | None = None


@dataclass(frozen=True)
class LocationMapping:
    id: str
    display_name: str
    keywords: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name, "keywords": list(self.keywords)}


# ── Bootstrap table ──────────────────────────────────────

def _parse_mapping(raw: dict[str, Any]) -> LocationMapping:
    return LocationMapping(
        id=str(raw["id"]),
        display_name=raw.get("name") or str(raw["id"]),
        keywords=tuple(k.lower().strip() for k in raw.get("keywords") or [] if k and k.strip()),
    )


def parse_bootstrap(raw_yaml: dict[str, Any]) -> list[LocationMapping]:
    return [_parse_mapping(m) for m in raw_yaml.get("locations", [])]


@lru_cache
def load_bootstrap_mappings(path: Path = _BOOTSTRAP_PATH) -> tuple[LocationMapping, ...]:
    """Load and cache the static keyword table from YAML."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return tuple(parse_bootstrap(raw))


# ── Resolver ─────────────────────────────────────────────

def _keyword_pattern(keyword: str) -> re.Pattern:
    # Keywords must not be glued to other letters/digits ("hq" never matches "hqx").
    return re.compile(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])")


class LocationResolver:
    """Keyword-based location lookup.

    Parameters
    ----------
    bootstrap : sequence of LocationMapping, optional
        Static nickname table.  Defaults to ``semantic_layer/locations.yml``.
    """

    def __init__(self, bootstrap: Sequence[LocationMapping] | None = None):
        self._bootstrap = tuple(bootstrap) if bootstrap is not None else load_bootstrap_mappings()
        self._lock = threading.Lock()
        self._initialized = False
        self._mappings: dict[str, LocationMapping] = {}
        self._patterns: tuple[tuple[str, re.Pattern, str], ...] = ()

    # ── Initialisation ──────────────────────────────────

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self, records: Iterable[LocationRecord], force: bool = False) -> None:
        """Build the keyword table from persisted *records* (idempotent).

        Only the first call does any work unless *force* is set.
        """
        if self._initialized and not force:
            return
        with self._lock:
            if self._initialized and not force:
                return
            self._build(list(records))

    def ensure_initialized(self, loader: Callable[[], Iterable[LocationRecord]]) -> None:
        """Initialise from *loader* on first use.

        Concurrent first callers are serialised on the lock, so *loader* runs
        once.  If it raises, the resolver stays uninitialised and the next
        call tries again.
        """
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            self._build(list(loader()))

    def _build(self, records: list[LocationRecord]) -> None:
        mappings = self._merge(records)
        self._patterns = tuple(
            (kw, _keyword_pattern(kw), m.id) for m in mappings.values() for kw in m.keywords
        )
        self._mappings = mappings
        self._initialized = True
        logger.info(
            "Location resolver initialized | %s",
            kv(locations=len(self._mappings), keywords=len(self._patterns)),
        )

    def _merge(self, records: list[LocationRecord]) -> dict[str, LocationMapping]:
        merged: dict[str, LocationMapping] = {m.id: m for m in self._bootstrap}
        for rec in records:
            base = merged.get(rec.id)
            name = (rec.name or "").strip()
            keywords = list(base.keywords) if base else []
            if name and name.lower() not in keywords:
                keywords.append(name.lower())
            display = name or (base.display_name if base else rec.id)
            merged[rec.id] = LocationMapping(id=rec.id, display_name=display, keywords=tuple(keywords))
        return merged

    # ── Look-ups ────────────────────────────────────────

    def resolve_locations(self, utterance: str) -> set[str]:
        """Return the ids of every location whose keyword occurs in *utterance*."""
        text = utterance.lower()
        resolved = {loc_id for _, pattern, loc_id in self._patterns if pattern.search(text)}
        logger.debug(
            "Location resolution | %s",
            kv(input=utterance[:100], resolved=sorted(resolved)),
        )
        return resolved

    def has_location_filter(self, utterance: str) -> bool:
        text = utterance.lower()
        return any(pattern.search(text) for _, pattern, _ in self._patterns)

    def display_name(self, location_id: str) -> str:
        mapping = self._mappings.get(location_id)
        return mapping.display_name if mapping else location_id

    def mappings(self) -> list[LocationMapping]:
        return list(self._mappings.values())

    def all_location_ids(self) -> list[str]:
        return list(self._mappings.keys())
