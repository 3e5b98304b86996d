"""
Utilities for splitting chapter prose into illustrated panel briefs.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping, Sequence

from mangaforge.common.errors import PlanValidationError
from mangaforge.common.interfaces import TextGenerationService
from mangaforge.common.structured import fenced_blocks, parse_structured_response

from .models import ChapterText, DialogueLine, PanelBrief
from .prompting import build_panel_breakdown_prompt

logger = logging.getLogger(__name__)

PANEL_TEMPERATURE = 0.7


class PanelPlanner:
    """
    Splits a chapter into ordered panel briefs suitable for illustration.
    """

    def __init__(
        self,
        text_service: TextGenerationService,
        *,
        temperature: float = PANEL_TEMPERATURE,
    ) -> None:
        self._text_service = text_service
        self._temperature = temperature

    def plan_panels(
        self,
        chapter: ChapterText,
        *,
        panel_count: int,
        character_names: Sequence[str] = (),
        location_names: Sequence[str] = (),
    ) -> list[PanelBrief]:
        """
        Ask the model for ``panel_count`` panels; extras are dropped, shortfalls rejected.
        """
        if panel_count < 1:
            raise ValueError(f"panel_count must be at least 1, received {panel_count}.")
        if not chapter.prose.strip():
            raise ValueError("Chapter prose must be a non-empty string.")

        prompt = build_panel_breakdown_prompt(
            chapter,
            panel_count=panel_count,
            character_names=character_names,
            location_names=location_names,
        )
        raw_text = self._text_service.complete(prompt.system, prompt.user, self._temperature)

        payload = parse_structured_response(_wrap_bare_list(raw_text))
        entries = _extract_panel_entries(payload)
        briefs = self._convert_to_briefs(entries)

        if len(briefs) > panel_count:
            logger.debug(
                "Chapter %d: trimming %d extra panels",
                chapter.chapter_number,
                len(briefs) - panel_count,
            )
            briefs = briefs[:panel_count]

        if len(briefs) < panel_count:
            raise PlanValidationError(
                f"Expected {panel_count} panels for chapter {chapter.chapter_number}, "
                f"received {len(briefs)}.",
                payload=payload,
            )
        return briefs

    def _convert_to_briefs(self, entries: Iterable[Any]) -> list[PanelBrief]:
        briefs: list[PanelBrief] = []
        for item in entries:
            if not isinstance(item, Mapping):
                continue

            description = _clean(item.get("description")) or _clean(item.get("text"))
            if not description:
                raise PlanValidationError(
                    f"Panel {len(briefs) + 1} is missing a description.", payload=item
                )

            briefs.append(
                PanelBrief(
                    order=len(briefs) + 1,
                    description=description,
                    dialogue=_normalize_dialogue(item.get("dialogue")),
                )
            )
        return briefs


def _wrap_bare_list(raw_text: str) -> str:
    """Wrap a top-level panel list, bare or fenced, as ``{"panels": [...]}``."""
    stripped = (raw_text or "").strip()
    for candidate in (stripped, *fenced_blocks(stripped)):
        if not candidate.startswith("["):
            continue
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, list):
            return json.dumps({"panels": parsed})
    return raw_text


def _extract_panel_entries(payload: Mapping[str, Any]) -> list[Any]:
    panels = payload.get("panels")
    if isinstance(panels, list):
        return panels
    if isinstance(panels, Mapping):
        return list(panels.values())
    raise PlanValidationError("Panel JSON must contain a 'panels' list.", payload=payload)


def _normalize_dialogue(value: Any) -> tuple[DialogueLine, ...]:
    if value is None:
        return ()

    if isinstance(value, str):
        text = value.strip()
        return (DialogueLine(text=text),) if text else ()

    lines: list[DialogueLine] = []
    if isinstance(value, Sequence):
        for bubble in value:
            if isinstance(bubble, str):
                text = bubble.strip()
                if text:
                    lines.append(DialogueLine(text=text))
            elif isinstance(bubble, Mapping):
                text = _clean(bubble.get("text"))
                if text:
                    lines.append(DialogueLine(text=text, character=_clean(bubble.get("character"))))
    return tuple(lines)


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None
