"""
Panel rendering with seed capture and reuse per consistency group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from mangaforge.ai_generation.prompting import (
    AspectRatio,
    build_panel_prompt,
    resolve_aspect_ratio,
)
from mangaforge.common.errors import GenerationServiceError
from mangaforge.common.interfaces import ImageGenerationService, RenderedImage

from .continuity import DEFAULT_GROUP, ConsistencyState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Panel:
    """
    One rendered image in a chapter, with the exact prompt and seed that produced it.
    """

    order: int
    image_ref: str
    prompt_used: str
    seed_used: int
    description: str = ""
    caption: str | None = None
    chapter_number: int | None = None
    story_id: str | None = None
    consistency_group: str = DEFAULT_GROUP

    def as_dict(self) -> dict[str, Any]:
        return {
            "story_id": self.story_id,
            "chapter_number": self.chapter_number,
            "order": self.order,
            "image_ref": self.image_ref,
            "caption": self.caption,
            "description": self.description,
            "prompt_used": self.prompt_used,
            "seed_used": self.seed_used,
            "consistency_group": self.consistency_group,
        }

    def as_store_record(self) -> dict[str, Any]:
        return {"image_ref": self.image_ref, "text": self.caption, "order": self.order}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Panel":
        try:
            order = int(data["order"])
            image_ref = str(data["image_ref"])
            prompt_used = str(data["prompt_used"])
            seed_used = int(data["seed_used"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid panel entry: {data}") from exc

        chapter_number = data.get("chapter_number")
        return cls(
            order=order,
            image_ref=image_ref,
            prompt_used=prompt_used,
            seed_used=seed_used,
            description=str(data.get("description") or ""),
            caption=data.get("caption") or None,
            chapter_number=int(chapter_number) if chapter_number is not None else None,
            story_id=data.get("story_id") or None,
            consistency_group=str(data.get("consistency_group") or DEFAULT_GROUP),
        )


class PanelRenderer:
    """
    Renders panel descriptions against the current reference ledger.

    The first render of a consistency group runs inside the group's seed lock and
    commits the seed the image service chose; every later render of that group
    reuses it. Failures are never retried with a different prompt.
    """

    def __init__(self, image_service: ImageGenerationService) -> None:
        self._image_service = image_service

    def render(
        self,
        description: str,
        *,
        state: ConsistencyState,
        style: str,
        aspect_ratio: str | AspectRatio = AspectRatio.SQUARE,
        group: str = DEFAULT_GROUP,
        order: int = 1,
        chapter_number: int | None = None,
        story_id: str | None = None,
        caption: str | None = None,
        seed: int | None = None,
    ) -> Panel:
        characters, locations = state.relevant_references(description)
        prompt = build_panel_prompt(
            description,
            style=style,
            character_notes=[reference.prompt_line() for reference in characters],
            location_notes=[reference.prompt_line() for reference in locations],
            continuity_notes=state.continuity_notes,
        )
        ratio = resolve_aspect_ratio(aspect_ratio)

        if seed is not None:
            rendered = self.render_prompt(prompt, aspect_ratio=ratio, seed=seed)
        else:
            rendered = self.render_in_group(prompt, state=state, group=group, aspect_ratio=ratio)

        logger.info(
            "Rendered panel %s of chapter %s (group=%r, seed=%s)",
            order,
            chapter_number,
            group,
            rendered.seed,
        )
        return Panel(
            order=order,
            image_ref=rendered.image_ref,
            prompt_used=prompt,
            seed_used=rendered.seed,
            description=description,
            caption=caption,
            chapter_number=chapter_number,
            story_id=story_id,
            consistency_group=group,
        )

    def render_prompt(
        self,
        prompt: str,
        *,
        aspect_ratio: str | AspectRatio = AspectRatio.SQUARE,
        seed: int | None = None,
    ) -> RenderedImage:
        """
        Raw image call with an already-built prompt. No ledger access.
        """
        width, height = resolve_aspect_ratio(aspect_ratio).dimensions
        logger.debug("Image prompt (%dx%d, seed=%s):\n%s", width, height, seed, prompt)
        rendered = self._image_service.render(prompt, width, height, seed)
        if rendered is None or not rendered.image_ref:
            raise GenerationServiceError(
                "Image service returned no image reference.",
                stage="panel",
            )
        if seed is not None and rendered.seed != seed:
            logger.warning("Image service reported seed %s for requested seed %s", rendered.seed, seed)
            rendered = RenderedImage(image_ref=rendered.image_ref, seed=seed)
        return rendered

    def render_in_group(
        self,
        prompt: str,
        *,
        state: ConsistencyState,
        group: str,
        aspect_ratio: str | AspectRatio = AspectRatio.SQUARE,
    ) -> RenderedImage:
        """
        Render ``prompt`` with the seed of ``group``, establishing it on first use.
        """
        ratio = resolve_aspect_ratio(aspect_ratio)
        active_seed = state.seed_for(group)
        if active_seed is None:
            with state.seed_lock(group):
                active_seed = state.seed_for(group)
                if active_seed is None:
                    rendered = self.render_prompt(prompt, aspect_ratio=ratio, seed=None)
                    state.capture_seed(group, rendered.seed)
                    return rendered
        return self.render_prompt(prompt, aspect_ratio=ratio, seed=active_seed)
