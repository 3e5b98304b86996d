"""
Process-local ``StoryStore`` used by scripts and tests.
"""

from __future__ import annotations

import copy
import threading
import time
import uuid
from typing import Any, Mapping, Sequence

_UPDATABLE_FIELDS = frozenset({"title", "prose", "panels"})
SUMMARY_LENGTH = 200


class InMemoryStoryStore:
    """
    Keeps chapter records in a dict. Records are copied in and out so callers
    cannot mutate stored state by accident.
    """

    def __init__(self) -> None:
        self._chapters: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create_chapter(
        self,
        story_id: str,
        chapter_number: int,
        title: str,
        prose: str,
        panels: Sequence[Mapping[str, Any]],
    ) -> str:
        if chapter_number < 1:
            raise ValueError("chapter_number must be at least 1.")

        chapter_id = uuid.uuid4().hex
        now = time.time()
        record = {
            "id": chapter_id,
            "story_id": story_id,
            "chapter_number": chapter_number,
            "title": title,
            "prose": prose,
            "summary": _summarize(prose),
            "panels": [dict(panel) for panel in panels],
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            for existing in self._chapters.values():
                if (
                    existing["story_id"] == story_id
                    and existing["chapter_number"] == chapter_number
                ):
                    raise ValueError(
                        f"Story {story_id} already has a chapter {chapter_number}."
                    )
            self._chapters[chapter_id] = record
        return chapter_id

    def update_chapter(self, chapter_id: str, **fields: Any) -> None:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update chapter fields: {', '.join(sorted(unknown))}")

        with self._lock:
            record = self._chapters.get(chapter_id)
            if record is None:
                raise KeyError(f"Unknown chapter id {chapter_id!r}")
            for key, value in fields.items():
                if value is None:
                    continue
                record[key] = [dict(panel) for panel in value] if key == "panels" else value
            if fields.get("prose") is not None:
                record["summary"] = _summarize(record["prose"])
            record["updated_at"] = time.time()

    def get_chapters(self, story_id: str) -> list[dict[str, Any]]:
        with self._lock:
            records = [
                copy.deepcopy(record)
                for record in self._chapters.values()
                if record["story_id"] == story_id
            ]
        return sorted(records, key=lambda record: record["chapter_number"])

    def get_chapter(self, chapter_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._chapters.get(chapter_id)
            return copy.deepcopy(record) if record is not None else None


def _summarize(prose: str) -> str:
    if len(prose) <= SUMMARY_LENGTH:
        return prose
    return prose[:SUMMARY_LENGTH] + "..."
