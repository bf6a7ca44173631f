"""Task tracker backed by a local JSON file."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from labelflow.errors import NotFoundError, PreconditionError
from labelflow.orchestrator.contracts import Task, TaskComment, TaskState

logger = logging.getLogger(__name__)


class LocalTaskTracker:
    """Tasks in creation order under ``{"tasks": [...], "labels": {...}}``.

    Each task may also carry ``comments`` and an ``artifactUrl``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = asyncio.Lock()

    async def list_by_label(self, label: str) -> list[Task]:
        document = await asyncio.to_thread(self._read)
        return [
            _to_task(raw)
            for raw in document["tasks"]
            if label in raw.get("labels", []) and raw.get("state", "open") == TaskState.OPEN.value
        ]

    async def get(self, task_id: str) -> Task:
        document = await asyncio.to_thread(self._read)
        return _to_task(_find(document, task_id))

    async def list_comments(self, task_id: str) -> list[TaskComment]:
        document = await asyncio.to_thread(self._read)
        return [
            TaskComment(
                author=str(comment.get("author", "")),
                body=str(comment.get("body", "")),
                created_at=str(comment.get("created_at", "")),
            )
            for comment in _find(document, task_id).get("comments", [])
        ]

    async def transition_label(self, task_id: str, from_label: str, to_label: str) -> None:
        def apply(raw: dict[str, Any]) -> None:
            labels = list(raw.get("labels", []))
            if from_label not in labels:
                raise PreconditionError(
                    f"Task #{task_id} does not carry label {from_label!r} "
                    f"(labels: {', '.join(labels) or '-'})",
                )
            raw["labels"] = [to_label if label == from_label else label for label in labels]

        await self._mutate(task_id, apply)
        logger.debug("Task #%s: %s -> %s", task_id, from_label, to_label)

    async def close(self, task_id: str) -> None:
        await self._mutate(task_id, lambda raw: raw.__setitem__("state", TaskState.CLOSED.value))

    async def reopen(self, task_id: str) -> None:
        await self._mutate(task_id, lambda raw: raw.__setitem__("state", TaskState.OPEN.value))

    async def ensure_label(self, name: str, color: str) -> None:
        async with self._lock:
            document = await asyncio.to_thread(self._read)
            if name in document["labels"]:
                return
            document["labels"][name] = color
            await asyncio.to_thread(self._write, document)

    async def find_artifact_url(self, task_id: str) -> str | None:
        document = await asyncio.to_thread(self._read)
        return _find(document, task_id).get("artifactUrl") or None

    async def add_task(
        self,
        title: str,
        *,
        label: str,
        description: str = "",
        url: str = "",
    ) -> Task:
        async with self._lock:
            document = await asyncio.to_thread(self._read)
            numeric_ids = [int(raw["id"]) for raw in document["tasks"] if str(raw["id"]).isdigit()]
            next_id = max(numeric_ids, default=0) + 1
            raw = {
                "id": str(next_id),
                "title": title,
                "description": description,
                "labels": [label],
                "state": TaskState.OPEN.value,
                "url": url,
            }
            document["tasks"].append(raw)
            await asyncio.to_thread(self._write, document)
        return _to_task(raw)

    async def _mutate(self, task_id: str, apply: Callable[[dict[str, Any]], None]) -> None:
        async with self._lock:
            document = await asyncio.to_thread(self._read)
            apply(_find(document, task_id))
            await asyncio.to_thread(self._write, document)

    def _read(self) -> dict[str, Any]:
        try:
            document = json.loads(self.path.read_text("utf-8"))
        except FileNotFoundError:
            document = {}
        document.setdefault("tasks", [])
        document.setdefault("labels", {})
        return document

    def _write(self, document: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(document, ensure_ascii=False, indent=2) + "\n", "utf-8")
        os.replace(tmp_path, self.path)


def _find(document: dict[str, Any], task_id: str) -> dict[str, Any]:
    for raw in document["tasks"]:
        if str(raw.get("id")) == str(task_id):
            return raw
    raise NotFoundError(f"Task not found: #{task_id}")


def _to_task(raw: dict[str, Any]) -> Task:
    return Task(
        id=str(raw["id"]),
        title=str(raw.get("title", "")),
        description=str(raw.get("description", "")),
        labels=list(raw.get("labels", [])),
        state=TaskState(raw.get("state", TaskState.OPEN.value)),
        url=str(raw.get("url", "")),
    )
