"""
Reference extraction: narrative text to character sheets, location sheets, and notes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from mangaforge.common.interfaces import TextGenerationService
from mangaforge.common.structured import parse_structured_response
from mangaforge.story_generation.prompting import build_extraction_prompt

from .continuity import CharacterReference, ConsistencyState, LocationReference
from .continuity_builder import normalize_character_declarations

logger = logging.getLogger(__name__)

EXTRACTION_TEMPERATURE = 0.3


@dataclass(frozen=True)
class ExtractedReferences:
    """Result of one extraction call, before it is merged into a ledger."""

    characters: tuple[CharacterReference, ...] = ()
    locations: tuple[LocationReference, ...] = ()
    continuity_notes: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ExtractedReferences":
        characters = tuple(
            CharacterReference.from_mapping(item)
            for item in _iter_named_entries(payload.get("characters"))
        )
        locations = tuple(
            LocationReference.from_mapping(item)
            for item in _iter_named_entries(payload.get("locations"))
        )
        return cls(
            characters=characters,
            locations=locations,
            continuity_notes=_join_notes(
                payload.get("continuityNotes", payload.get("continuity_notes"))
            ),
        )


class ReferenceExtractor:
    """
    Extracts visual references from narrative text and merges them into a ledger.

    Merging matches names case-insensitively and supplements stored descriptions
    instead of replacing them (see :func:`mangaforge.pipeline.continuity.merge_text`).
    """

    def __init__(
        self,
        text_service: TextGenerationService,
        *,
        temperature: float = EXTRACTION_TEMPERATURE,
    ) -> None:
        self._text_service = text_service
        self._temperature = temperature

    def extract(
        self,
        narrative: str,
        *,
        user_characters: Any = None,
    ) -> ExtractedReferences:
        """
        Run one extraction call over ``narrative`` without touching any ledger.
        """
        if not narrative or not narrative.strip():
            raise ValueError("narrative must be a non-empty string.")

        declared = [
            (reference.name, reference.description)
            for reference in normalize_character_declarations(user_characters)
        ]
        prompt = build_extraction_prompt(narrative.strip(), declared)
        raw_text = self._text_service.complete(prompt.system, prompt.user, self._temperature)

        payload = parse_structured_response(raw_text)
        extracted = ExtractedReferences.from_payload(payload)
        logger.info(
            "Extracted %d characters and %d locations",
            len(extracted.characters),
            len(extracted.locations),
        )
        return extracted

    def extract_into(
        self,
        state: ConsistencyState,
        narrative: str,
        *,
        user_characters: Any = None,
    ) -> ExtractedReferences:
        """
        Extract references and merge them into ``state``. Declared characters merge first.
        """
        extracted = self.extract(narrative, user_characters=user_characters)
        for reference in normalize_character_declarations(user_characters):
            state.upsert_character(reference)
        merge_references(state, extracted)
        return extracted


def merge_references(state: ConsistencyState, extracted: ExtractedReferences) -> None:
    for character in extracted.characters:
        state.upsert_character(character)
    for location in extracted.locations:
        state.upsert_location(location)
    state.append_continuity_notes(extracted.continuity_notes)


def _iter_named_entries(value: Any) -> list[Mapping[str, Any]]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        return []
    entries: list[Mapping[str, Any]] = []
    for item in value:
        if isinstance(item, Mapping) and str(item.get("name") or "").strip():
            entries.append(item)
        else:
            logger.debug("Skipping unnamed reference entry: %r", item)
    return entries


def _join_notes(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Sequence):
        return "\n".join(str(item).strip() for item in value if str(item).strip())
    return str(value).strip()
