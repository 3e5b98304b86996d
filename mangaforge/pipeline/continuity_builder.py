"""
Helpers for seeding a consistency ledger from user-declared characters and notes.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from .continuity import CharacterReference, ConsistencyState, LocationReference

logger = logging.getLogger(__name__)


def normalize_character_declarations(value: Any) -> list[CharacterReference]:
    """
    Accept the shapes users declare characters in and return character sheets.

    Supported inputs: a ``{name: description}`` mapping (values may themselves be
    mappings with ``description``/``personality``/``role``), a sequence of such
    mappings or ``(name, description)`` pairs or ``"Name: description"`` strings,
    or a newline-separated ``"Name: description"`` block.
    """
    if value is None:
        return []

    references: list[CharacterReference] = []

    def _add_entry(name: Any, details: Any) -> None:
        name_text = str(name).strip() if name is not None else ""
        if not name_text:
            return
        if isinstance(details, Mapping):
            reference = CharacterReference.from_mapping({**details, "name": name_text})
        else:
            reference = CharacterReference(
                name=name_text,
                description=str(details).strip() if details is not None else "",
            )
        if reference.description:
            references.append(reference)

    if isinstance(value, Mapping):
        for name, details in value.items():
            _add_entry(name, details)
        return references

    if isinstance(value, str):
        for line in value.replace("\r", "\n").split("\n"):
            if ":" in line:
                name, description = line.split(":", 1)
                _add_entry(name, description)
        return references

    if isinstance(value, Sequence):
        for item in value:
            if isinstance(item, CharacterReference):
                references.append(item)
            elif isinstance(item, Mapping):
                _add_entry(item.get("name"), item)
            elif isinstance(item, str):
                if ":" in item:
                    name, description = item.split(":", 1)
                    _add_entry(name, description)
            elif isinstance(item, Sequence) and len(item) >= 2:
                _add_entry(item[0], item[1])
        return references

    raise TypeError("characters must be a mapping, sequence, or colon-delimited string.")


def build_consistency_state(
    *,
    characters: Any = None,
    locations: Mapping[str, str] | None = None,
    continuity_notes: Sequence[str] | str | None = None,
    seeds: Mapping[str, int] | None = None,
) -> ConsistencyState:
    """
    Create a ledger pre-populated with declared characters, locations, notes, and seeds.
    """
    state = ConsistencyState()

    for reference in normalize_character_declarations(characters):
        state.upsert_character(reference)

    for name, description in (locations or {}).items():
        name_text = str(name).strip()
        description_text = str(description).strip()
        if name_text and description_text:
            state.upsert_location(LocationReference(name=name_text, description=description_text))

    for note in _collect_note_lines(continuity_notes):
        state.append_continuity_notes(note)

    for group, seed in (seeds or {}).items():
        state.capture_seed(str(group), int(seed))

    logger.debug(
        "Seeded ledger with %d characters, %d locations",
        len(state.characters),
        len(state.locations),
    )
    return state


def _collect_note_lines(value: Sequence[str] | str | None) -> list[str]:
    if value is None:
        return []

    if isinstance(value, str):
        source = value
    else:
        source = "\n".join(str(item) for item in value if item is not None)

    lines: list[str] = []
    for raw in source.replace("\r", "\n").split("\n"):
        cleaned = raw.strip(" \t-•")
        if cleaned:
            lines.append(cleaned)
    return _deduplicate(lines)


def _deduplicate(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for item in items:
        key = item.lower()
        if key not in seen:
            ordered.append(item)
            seen.add(key)
    return ordered
