"""
Character reference sheets: a portrait design per character plus optional extra angles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mangaforge.ai_generation.prompting import (
    ANGLE_VIEWS,
    DEFAULT_STYLE,
    AspectRatio,
    build_angle_prompt,
    build_character_sheet_prompt,
)

from .continuity import CharacterReference, ConsistencyState, character_group
from .renderer import PanelRenderer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CharacterSheet:
    name: str
    group: str
    seed: int
    images: tuple[str, ...]


class CharacterSheetRenderer:
    """
    Renders reference images for characters in the ledger.

    Each character owns the consistency group ``character:<name>``; the portrait
    sheet establishes that group's seed and every extra angle reuses it. The
    images are attached to the character's ledger entry so consistency checks
    can compare panels against them.
    """

    def __init__(self, renderer: PanelRenderer, *, style: str = DEFAULT_STYLE) -> None:
        self._renderer = renderer
        self._style = style

    def render_sheet(
        self,
        character: CharacterReference,
        *,
        state: ConsistencyState,
        angles: int = 0,
    ) -> CharacterSheet:
        if not character.description:
            raise ValueError(f"Character {character.name!r} has no description to draw from.")
        if not 0 <= angles <= len(ANGLE_VIEWS):
            raise ValueError(f"angles must be between 0 and {len(ANGLE_VIEWS)}, received {angles}.")

        group = character_group(character.name)
        portrait = self._renderer.render_in_group(
            build_character_sheet_prompt(character.name, character.description, style=self._style),
            state=state,
            group=group,
            aspect_ratio=AspectRatio.PORTRAIT,
        )
        images = [portrait.image_ref]

        for view in ANGLE_VIEWS[:angles]:
            rendered = self._renderer.render_in_group(
                build_angle_prompt(character.name, character.description, view, style=self._style),
                state=state,
                group=group,
                aspect_ratio=AspectRatio.SQUARE,
            )
            images.append(rendered.image_ref)

        state.add_reference_images(character.name, images)
        logger.info(
            "Rendered %d reference image(s) for %s (group=%r, seed=%s)",
            len(images),
            character.name,
            group,
            portrait.seed,
        )
        return CharacterSheet(
            name=character.name,
            group=group,
            seed=portrait.seed,
            images=tuple(images),
        )

    def render_missing(
        self,
        state: ConsistencyState,
        *,
        angles: int = 0,
    ) -> list[CharacterSheet]:
        """Render sheets for every described character that has no reference image yet."""
        return [
            self.render_sheet(character, state=state, angles=angles)
            for character in state.characters
            if character.description and not character.reference_images
        ]
