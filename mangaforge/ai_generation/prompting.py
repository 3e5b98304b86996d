"""
Prompt construction utilities for MangaForge panel image generation.
"""

from __future__ import annotations

import enum
import logging
import re
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)

DEFAULT_STYLE = "manga"

QUALITY_SUFFIX = "High quality, detailed artwork, professional manga illustration."

CONSISTENCY_DIRECTIVE = (
    "Honor every reference above exactly: faces, hair, outfits, and locations must "
    "match the established designs from earlier panels."
)

CONSISTENCY_HEADER = "IMPORTANT FOR CONSISTENCY:"
EDIT_HEADER = "EDIT REQUEST:"

ANGLE_VIEWS: tuple[str, ...] = (
    "full body portrait, front view, standing pose, same character design",
    "close-up portrait, three-quarter view, confident expression, identical character features",
    "action pose, dynamic angle, showing personality, consistent character appearance",
    "profile view, side angle, detailed character design, same character as reference",
    "back view, showing character silhouette, consistent design",
    "seated pose, relaxed angle, character study, same character features",
)

_STYLE_PREFIX_PATTERN = re.compile(r"^[^\n:.]{1,60}? style:[ \t]*", re.IGNORECASE)
_REFINEMENT_SECTION_PATTERN = re.compile(
    rf"\s*(?:{re.escape(CONSISTENCY_HEADER)}|{re.escape(EDIT_HEADER)})"
)


class AspectRatio(str, enum.Enum):
    """Supported panel shapes and the pixel size each one renders at."""

    SQUARE = "square"
    WIDESCREEN = "widescreen"
    PORTRAIT = "portrait"

    @property
    def dimensions(self) -> tuple[int, int]:
        return _DIMENSIONS[self]


_DIMENSIONS: Mapping[AspectRatio, tuple[int, int]] = {
    AspectRatio.SQUARE: (2048, 2048),
    AspectRatio.WIDESCREEN: (2048, 1152),
    AspectRatio.PORTRAIT: (1536, 2048),
}

_ALIASES: Mapping[str, AspectRatio] = {
    "1:1": AspectRatio.SQUARE,
    "16:9": AspectRatio.WIDESCREEN,
    "3:4": AspectRatio.PORTRAIT,
}


def resolve_aspect_ratio(value: str | AspectRatio | None) -> AspectRatio:
    """
    Map a user value onto ``AspectRatio``; anything unrecognised renders square.
    """
    if isinstance(value, AspectRatio):
        return value

    key = (value or "").strip().lower()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return AspectRatio(key)
    except ValueError:
        if key:
            logger.warning("Unknown aspect ratio %r; falling back to square.", value)
        return AspectRatio.SQUARE


def style_prefix(style: str | None) -> str:
    return f"{(style or DEFAULT_STYLE).strip()} style: "


def build_panel_prompt(
    description: str,
    *,
    style: str | None = None,
    character_notes: Sequence[str] | Mapping[str, str] | None = None,
    location_notes: Sequence[str] | Mapping[str, str] | None = None,
    continuity_notes: str | Sequence[str] | None = None,
) -> str:
    """
    Build the image prompt for a single panel.

    Parameters
    ----------
    description:
        Visual description of the panel.
    style:
        Art-style label prefixed to the prompt (e.g. "manga", "watercolor").
    character_notes:
        Reference descriptions for characters that must look the same as before.
    location_notes:
        Reference descriptions for recurring environments.
    continuity_notes:
        Running continuity log (lighting, props, weather).
    """
    if not description or not description.strip():
        raise ValueError("description must be a non-empty string.")

    prompt = f"{style_prefix(style)}{description.strip().rstrip('.')}. {QUALITY_SUFFIX}"

    sections: list[str] = []
    character_lines = _normalize_note_input(character_notes)
    if character_lines:
        sections.append(_format_bullet_section("CHARACTER REFERENCES", character_lines))

    location_lines = _normalize_note_input(location_notes)
    if location_lines:
        sections.append(_format_bullet_section("LOCATION REFERENCES", location_lines))

    continuity_lines = _normalize_note_input(continuity_notes)
    if continuity_lines:
        sections.append(_format_bullet_section("CONTINUITY NOTES", continuity_lines))

    if sections:
        sections.append(CONSISTENCY_DIRECTIVE)
        prompt = prompt + "\n\n" + "\n\n".join(sections)

    return prompt


def build_refined_prompt(
    base_prompt: str,
    *,
    style: str | None = None,
    suggestions: Sequence[str] = (),
    instructions: str | None = None,
) -> str:
    """
    Rebuild a panel prompt with the current consistency suggestions and edit request.

    Sections appended by an earlier refinement are dropped and an existing style
    prefix is swapped for ``style``, so repeated refinements never accumulate.
    """
    if not base_prompt or not base_prompt.strip():
        raise ValueError("base_prompt must be a non-empty string.")

    base = _STYLE_PREFIX_PATTERN.sub("", strip_refinement_sections(base_prompt), count=1)
    base = style_prefix(style) + base

    parts = [base.rstrip(".") + "."]
    cleaned = [item.strip().rstrip(".") for item in suggestions if item and item.strip()]
    if cleaned:
        parts.append(f"{CONSISTENCY_HEADER} {'. '.join(cleaned)}.")
    if instructions and instructions.strip():
        parts.append(f"{EDIT_HEADER} {instructions.strip()}")
    return "\n\n".join(parts)


def strip_refinement_sections(prompt: str) -> str:
    """Cut ``prompt`` at the first consistency or edit section a refinement appended."""
    match = _REFINEMENT_SECTION_PATTERN.search(prompt)
    text = prompt[: match.start()] if match else prompt
    return text.strip()


def build_character_sheet_prompt(
    name: str,
    description: str,
    *,
    style: str | None = None,
) -> str:
    """
    Prompt for the full-body reference sheet that anchors a character's design.
    """
    if not description or not description.strip():
        raise ValueError("description must be a non-empty string.")

    subject = description.strip().rstrip(".")
    if name and name.strip():
        subject = f"{name.strip()}, {subject}"
    return (
        f"{(style or DEFAULT_STYLE).strip()} style character design: {subject}. "
        "Full body character reference sheet, clean linework, white background, "
        "detailed character design, consistent proportions, professional manga illustration."
    )


def build_angle_prompt(
    name: str,
    description: str,
    view: str,
    *,
    style: str | None = None,
) -> str:
    return (
        f"{style_prefix(style)}{description.strip().rstrip('.')}. {QUALITY_SUFFIX} "
        "Maintain consistent character design, same facial features, hair, and clothing. "
        f"{name.strip()} {view}."
    )


def _normalize_note_input(
    value: str | Sequence[str] | Mapping[str, str] | None,
) -> list[str]:
    if value is None:
        return []

    if isinstance(value, Mapping):
        items = [f"{key}: {details}" for key, details in value.items()]
    elif isinstance(value, str):
        items = [value]
    else:
        items = [str(item) for item in value]

    lines: list[str] = []
    for item in items:
        for raw in item.replace("\r", "\n").split("\n"):
            cleaned = raw.strip(" \t-•")
            if cleaned:
                lines.append(cleaned)
    return lines


def _format_bullet_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"
