"""
Continuity ledger that keeps MangaForge panels consistent across independent renders.
"""

from __future__ import annotations

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Iterator, Mapping, Sequence

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "story"
CHARACTER_GROUP_PREFIX = "character:"
NOTES_SEPARATOR = "\n"
DESCRIPTION_SEPARATOR = "; "


def reference_key(name: str) -> str:
    """Ledger key for a character or location name (case-insensitive)."""
    return " ".join(name.split()).casefold()


def character_group(name: str) -> str:
    """Consistency group whose seed is shared by one character's reference images."""
    return f"{CHARACTER_GROUP_PREFIX}{reference_key(name)}"


def mentions(name: str, text: str) -> bool:
    """True when ``name`` appears in ``text`` as a whole word, ignoring case."""
    words = name.split()
    if not words:
        return False
    pattern = r"\s+".join(re.escape(word) for word in words)
    return re.search(rf"(?<!\w){pattern}(?!\w)", text, re.IGNORECASE) is not None


def merge_text(stored: str | None, incoming: str | None) -> str | None:
    """
    Deterministic description merge.

    Empty incoming text keeps the stored value, empty stored text takes the
    incoming value, text already contained in the stored value is dropped, and
    anything else is appended after ``"; "``. Nothing stored is ever lost.
    """
    stored_text = (stored or "").strip()
    incoming_text = (incoming or "").strip()
    if not incoming_text:
        return stored_text or None
    if not stored_text:
        return incoming_text
    if incoming_text.casefold() in stored_text.casefold():
        return stored_text
    return f"{stored_text}{DESCRIPTION_SEPARATOR}{incoming_text}"


@dataclass(frozen=True)
class CharacterReference:
    """
    Visual character sheet. ``description`` is the appearance every panel must honor.
    """

    name: str
    description: str
    personality: str | None = None
    role: str | None = None
    reference_images: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return reference_key(self.name)

    def merged_with(self, incoming: "CharacterReference") -> "CharacterReference":
        return replace(
            self,
            description=merge_text(self.description, incoming.description) or "",
            personality=merge_text(self.personality, incoming.personality),
            role=(incoming.role or "").strip() or self.role,
            reference_images=_merge_images(self.reference_images, incoming.reference_images),
        )

    def prompt_line(self) -> str:
        return f"{self.name}: {self.description}"

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "personality": self.personality,
            "role": self.role,
            "reference_images": list(self.reference_images),
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CharacterReference":
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValueError(f"Character reference requires a name: {data!r}")
        return cls(
            name=name,
            description=str(data.get("description") or "").strip(),
            personality=_optional_text(data.get("personality")),
            role=_optional_text(data.get("role")),
            reference_images=tuple(
                str(url).strip() for url in data.get("reference_images") or () if str(url).strip()
            ),
        )


@dataclass(frozen=True)
class LocationReference:
    """Environment sheet for a recurring location."""

    name: str
    description: str

    @property
    def key(self) -> str:
        return reference_key(self.name)

    def merged_with(self, incoming: "LocationReference") -> "LocationReference":
        return replace(
            self,
            description=merge_text(self.description, incoming.description) or "",
        )

    def prompt_line(self) -> str:
        return f"{self.name}: {self.description}"

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LocationReference":
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValueError(f"Location reference requires a name: {data!r}")
        return cls(name=name, description=str(data.get("description") or "").strip())


class ConsistencyState:
    """
    Mutable per-story ledger: character and location sheets, continuity notes,
    and the active seed for each consistency group.

    Ledger writes share one re-entrant lock. Each consistency group has its own
    lock so the first render of a group can hold it while it establishes the seed.
    """

    def __init__(
        self,
        *,
        characters: Mapping[str, CharacterReference] | None = None,
        locations: Mapping[str, LocationReference] | None = None,
        continuity_notes: str = "",
        seeds: Mapping[str, int] | None = None,
    ) -> None:
        self._characters: dict[str, CharacterReference] = dict(characters or {})
        self._locations: dict[str, LocationReference] = dict(locations or {})
        self._continuity_notes = continuity_notes
        self._seeds: dict[str, int] = dict(seeds or {})
        self._ledger_lock = threading.RLock()
        self._registry_lock = threading.Lock()
        self._group_locks: dict[str, threading.Lock] = {}

    # ------------------------------------------------------------------ ledger

    @property
    def characters(self) -> tuple[CharacterReference, ...]:
        with self._ledger_lock:
            return tuple(self._characters[key] for key in sorted(self._characters))

    @property
    def locations(self) -> tuple[LocationReference, ...]:
        with self._ledger_lock:
            return tuple(self._locations[key] for key in sorted(self._locations))

    @property
    def continuity_notes(self) -> str:
        with self._ledger_lock:
            return self._continuity_notes

    def get_character(self, name: str) -> CharacterReference | None:
        with self._ledger_lock:
            return self._characters.get(reference_key(name))

    def get_location(self, name: str) -> LocationReference | None:
        with self._ledger_lock:
            return self._locations.get(reference_key(name))

    def upsert_character(self, reference: CharacterReference) -> CharacterReference:
        with self._ledger_lock:
            existing = self._characters.get(reference.key)
            merged = existing.merged_with(reference) if existing else reference
            self._characters[reference.key] = merged
            return merged

    def upsert_location(self, reference: LocationReference) -> LocationReference:
        with self._ledger_lock:
            existing = self._locations.get(reference.key)
            merged = existing.merged_with(reference) if existing else reference
            self._locations[reference.key] = merged
            return merged

    def add_reference_images(self, name: str, images: Sequence[str]) -> CharacterReference:
        """Attach rendered reference images to an existing character sheet."""
        with self._ledger_lock:
            key = reference_key(name)
            existing = self._characters.get(key)
            if existing is None:
                raise KeyError(f"No character named {name!r} in the ledger.")
            updated = replace(
                existing,
                reference_images=_merge_images(existing.reference_images, tuple(images)),
            )
            self._characters[key] = updated
            return updated

    def append_continuity_notes(self, notes: str | None) -> None:
        text = (notes or "").strip()
        if not text:
            return
        with self._ledger_lock:
            if self._continuity_notes:
                self._continuity_notes = f"{self._continuity_notes}{NOTES_SEPARATOR}{text}"
            else:
                self._continuity_notes = text

    def relevant_references(
        self,
        description: str,
    ) -> tuple[tuple[CharacterReference, ...], tuple[LocationReference, ...]]:
        """
        References whose names appear in ``description``; every reference when none do.
        """
        characters = self.characters
        locations = self.locations
        matched_characters = tuple(c for c in characters if mentions(c.name, description))
        matched_locations = tuple(loc for loc in locations if mentions(loc.name, description))
        return (matched_characters or characters, matched_locations or locations)

    # ------------------------------------------------------------------ seeds

    def seed_for(self, group: str = DEFAULT_GROUP) -> int | None:
        with self._registry_lock:
            return self._seeds.get(group)

    def capture_seed(self, group: str, seed: int) -> int:
        """
        Record ``seed`` for ``group`` unless one is already set; return the active seed.
        """
        with self._registry_lock:
            active = self._seeds.setdefault(group, int(seed))
        if active == seed:
            logger.debug("Captured seed %s for group %r", seed, group)
        return active

    def replace_seed(self, group: str, seed: int) -> None:
        """Overwrite the group's seed. Only for an explicit fresh-seed request."""
        with self._registry_lock:
            previous = self._seeds.get(group)
            self._seeds[group] = int(seed)
        logger.info("Seed for group %r replaced (%s -> %s)", group, previous, seed)

    @property
    def seeds(self) -> dict[str, int]:
        with self._registry_lock:
            return dict(self._seeds)

    @contextmanager
    def seed_lock(self, group: str) -> Iterator[None]:
        """
        Exclusive region for the check-then-act establishment of a group's seed.
        """
        with self._registry_lock:
            lock = self._group_locks.setdefault(group, threading.Lock())
        with lock:
            yield

    # ------------------------------------------------------------------ serialization

    def to_dict(self) -> dict[str, Any]:
        return {
            "characters": [ref.as_dict() for ref in self.characters],
            "locations": [ref.as_dict() for ref in self.locations],
            "continuity_notes": self.continuity_notes,
            "seeds": dict(sorted(self.seeds.items())),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ConsistencyState":
        state = cls()
        for entry in payload.get("characters") or ():
            state.upsert_character(CharacterReference.from_mapping(entry))
        for entry in payload.get("locations") or ():
            state.upsert_location(LocationReference.from_mapping(entry))
        state.append_continuity_notes(payload.get("continuity_notes"))
        for group, seed in (payload.get("seeds") or {}).items():
            state.capture_seed(str(group), int(seed))
        return state


def _merge_images(stored: tuple[str, ...], incoming: tuple[str, ...]) -> tuple[str, ...]:
    merged = list(stored)
    for url in incoming:
        if url and url not in merged:
            merged.append(url)
    return tuple(merged)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
