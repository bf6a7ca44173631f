"""Append-only NDJSON audit log."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class JsonlAuditLog:
    """One JSON object per line with a ``ts`` and ``event`` field. Never raises."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = asyncio.Lock()

    async def log(self, event: str, data: dict[str, Any]) -> None:
        entry = {"ts": datetime.now(tz=UTC).isoformat(), "event": event, **data}
        line = json.dumps(entry, ensure_ascii=False, default=str) + "\n"
        async with self._lock:
            try:
                await asyncio.to_thread(self._append, line)
            except OSError as error:
                logger.warning("Audit write failed for %s: %s", event, error)

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line)


class MemoryAuditLog:
    """Keeps entries in memory."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []

    async def log(self, event: str, data: dict[str, Any]) -> None:
        self.entries.append({"event": event, **data})

    def events(self) -> list[str]:
        return [entry["event"] for entry in self.entries]
