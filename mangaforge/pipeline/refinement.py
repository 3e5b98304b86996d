"""
Targeted regeneration of a rendered panel or a chapter's prose.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Sequence, Union

from mangaforge.ai_generation.prompting import (
    AspectRatio,
    DEFAULT_STYLE,
    build_refined_prompt,
)
from mangaforge.common.errors import GenerationServiceError
from mangaforge.common.interfaces import TextGenerationService
from mangaforge.story_generation.models import ChapterText
from mangaforge.story_generation.prompting import build_rewrite_prompt

from .continuity import ConsistencyState
from .renderer import Panel, PanelRenderer

logger = logging.getLogger(__name__)

REWRITE_TEMPERATURE = 0.5

RefinementTarget = Union[Panel, ChapterText]


@dataclass(frozen=True)
class RefinementRequest:
    """
    Edit request for one panel or one chapter.

    Attributes
    ----------
    target:
        The ``Panel`` or ``ChapterText`` being revised.
    instructions:
        Free-form edit request (required).
    suggestions:
        Ordered consistency hints, typically from ``ConsistencyChecker``.
    preserve_seed:
        Reuse the panel's ``seed_used``. Ignored for chapter targets.
    seed:
        Explicit seed to render with; wins over ``preserve_seed``.
    selection:
        Passage of the chapter the edit focuses on.
    genre:
        Genre hint for chapter rewrites.
    """

    target: RefinementTarget
    instructions: str
    suggestions: tuple[str, ...] = ()
    preserve_seed: bool = True
    seed: int | None = None
    selection: str | None = None
    genre: str | None = None

    def __post_init__(self) -> None:
        if not self.instructions or not self.instructions.strip():
            raise ValueError("instructions must be a non-empty string.")
        if not isinstance(self.target, (Panel, ChapterText)):
            raise TypeError("target must be a Panel or a ChapterText.")
        if not isinstance(self.suggestions, tuple):
            object.__setattr__(self, "suggestions", tuple(self.suggestions))


class RefinementLoop:
    """
    Re-renders panels from their recorded prompt and rewrites chapter prose.

    Panel refinement keeps the original seed unless the request opts out; a
    chapter rewrite replaces the prose but leaves any rendered panels untouched,
    so re-rendering them is the caller's job.
    """

    def __init__(
        self,
        *,
        renderer: PanelRenderer,
        text_service: TextGenerationService,
        rewrite_temperature: float = REWRITE_TEMPERATURE,
    ) -> None:
        self._renderer = renderer
        self._text_service = text_service
        self._rewrite_temperature = rewrite_temperature

    def refine(
        self,
        request: RefinementRequest,
        *,
        state: ConsistencyState | None = None,
        style: str = DEFAULT_STYLE,
        aspect_ratio: str | AspectRatio = AspectRatio.SQUARE,
    ) -> RefinementTarget:
        if isinstance(request.target, Panel):
            return self.refine_panel(
                request, state=state, style=style, aspect_ratio=aspect_ratio
            )
        return self.refine_chapter(request)

    def refine_panel(
        self,
        request: RefinementRequest,
        *,
        state: ConsistencyState | None = None,
        style: str = DEFAULT_STYLE,
        aspect_ratio: str | AspectRatio = AspectRatio.SQUARE,
    ) -> Panel:
        panel = request.target
        if not isinstance(panel, Panel):
            raise TypeError("refine_panel requires a Panel target.")

        prompt = build_refined_prompt(
            panel.prompt_used,
            style=style,
            suggestions=request.suggestions,
            instructions=request.instructions,
        )
        seed = _resolve_seed(request, panel)
        rendered = self._renderer.render_prompt(prompt, aspect_ratio=aspect_ratio, seed=seed)
        seed_used = seed if seed is not None else rendered.seed

        if state is not None and seed_used != panel.seed_used:
            state.replace_seed(panel.consistency_group, seed_used)

        logger.info(
            "Refined panel %s of chapter %s (seed %s -> %s)",
            panel.order,
            panel.chapter_number,
            panel.seed_used,
            seed_used,
        )
        return replace(
            panel,
            image_ref=rendered.image_ref,
            prompt_used=prompt,
            seed_used=seed_used,
        )

    def refine_chapter(self, request: RefinementRequest) -> ChapterText:
        chapter = request.target
        if not isinstance(chapter, ChapterText):
            raise TypeError("refine_chapter requires a ChapterText target.")

        prompt = build_rewrite_prompt(
            chapter.prose,
            instructions=request.instructions.strip(),
            selection=request.selection,
            genre=request.genre,
        )
        text = self._text_service.complete(prompt.system, prompt.user, self._rewrite_temperature)
        revised = (text or "").strip()
        if not revised:
            raise GenerationServiceError(
                f"Rewrite of chapter {chapter.chapter_number} returned empty text.",
                stage="rewrite",
            )

        logger.info("Rewrote chapter %d", chapter.chapter_number)
        return chapter.with_prose(revised)


def _resolve_seed(request: RefinementRequest, panel: Panel) -> int | None:
    if request.seed is not None:
        return request.seed
    if request.preserve_seed:
        return panel.seed_used
    return None


def suggestions_from(values: Sequence[str] | None) -> tuple[str, ...]:
    return tuple(item.strip() for item in values or () if item and item.strip())
