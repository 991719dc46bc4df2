"""
Loader for the curated list of popular cache keys warmed at startup.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from shared.logging import get_logger
from .keys import DEFAULT_PAGE_LIMIT, category_products_key

DEFAULT_DATA_FILE = Path(__file__).resolve().parent / "data" / "popular_keys.json"


@dataclass(frozen=True)
class WarmEntry:
    """A cache key to warm, with optional TTL override and ranking weight."""

    key: str
    ttl_seconds: Optional[int] = None
    weight: float = 0.0
    raw: Dict[str, Any] = field(default_factory=dict)


class WarmPlanLoader:
    """
    Loads and ranks the popular keys used for cache warming.

    The data file is JSON with an ``entries`` list; each row names either a
    ``key`` or a ``category_id`` (plus optional ``limit``/``offset``). When
    the file is missing, malformed or empty, the plan falls back to the first
    page of each popular category.
    """

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        *,
        popular_category_ids: Sequence[int] = (1, 2, 3, 4, 5),
    ):
        self._path = Path(config_path) if config_path else DEFAULT_DATA_FILE
        self.popular_category_ids = list(popular_category_ids)
        self.logger = get_logger("catalog.warm_plan")
        self._lock = threading.Lock()
        self._data = self._load()

    @property
    def path(self) -> Path:
        """Return the resolved path to the data file."""
        return self._path

    def refresh(self) -> None:
        """Reload the plan from disk."""
        with self._lock:
            self._data = self._load()

    def entries(self, *, limit: Optional[int] = None) -> List[WarmEntry]:
        """Return warm entries ordered by descending weight."""
        rows: Iterable[Dict[str, Any]] = self._data.get("entries", [])
        resolved_limit = limit or self._parse_number(self._data.get("max_entries"), int)

        planned: List[WarmEntry] = []
        seen = set()
        for row in rows:
            key = self._resolve_key(row)
            if not key or key in seen:
                continue
            weight = 0.0 if row.get("weight") is None else self._parse_number(row["weight"], float)
            if weight is None:
                self.logger.warning("Skipping warm entry with invalid weight", key=key, weight=row.get("weight"))
                continue
            seen.add(key)
            planned.append(
                WarmEntry(
                    key=key,
                    ttl_seconds=self._parse_number(row.get("ttl_seconds") or self._data.get("ttl_seconds"), int),
                    weight=weight,
                    raw=row,
                )
            )

        if not planned:
            planned = self.category_entries(self.popular_category_ids)

        planned.sort(key=lambda item: item.weight, reverse=True)
        if resolved_limit and resolved_limit > 0:
            planned = planned[:resolved_limit]
        return planned

    @staticmethod
    def category_entries(category_ids: Iterable[int]) -> List[WarmEntry]:
        """First-page category product entries, earlier ids ranked higher."""
        ids = list(category_ids)
        return [
            WarmEntry(
                key=category_products_key(category_id),
                weight=float(len(ids) - position),
                raw={"category_id": category_id},
            )
            for position, category_id in enumerate(ids)
        ]

    def _load(self) -> Dict[str, Any]:
        """Read the JSON payload. Returns an empty plan on failure."""
        if not self._path.exists():
            self.logger.info("No warm plan file found, using popular categories", path=str(self._path))
            return {"entries": []}

        try:
            with self._path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (ValueError, OSError) as exc:
            self.logger.warning("Failed to parse warm plan file", path=str(self._path), error=str(exc))
            return {"entries": []}

        if not isinstance(payload, dict) or not isinstance(payload.get("entries", []), list):
            self.logger.warning("Warm plan file has unexpected shape", path=str(self._path))
            return {"entries": []}
        return payload

    @staticmethod
    def _parse_number(value: Any, kind: type) -> Optional[Any]:
        """Coerce ``value`` with ``kind``; ``None`` when absent or unparseable."""
        if value is None or isinstance(value, bool):
            return None
        try:
            return kind(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _resolve_key(row: Dict[str, Any]) -> Optional[str]:
        if not isinstance(row, dict):
            return None
        if row.get("key"):
            return str(row["key"])
        if row.get("category_id") is not None:
            try:
                return category_products_key(
                    int(row["category_id"]),
                    int(row.get("limit", DEFAULT_PAGE_LIMIT)),
                    int(row.get("offset", 0)),
                )
            except (TypeError, ValueError):
                return None
        return None
