"""
Chapter prose generation from outlines or free-form prompts.
"""

from __future__ import annotations

import logging

from mangaforge.common.errors import GenerationServiceError
from mangaforge.common.interfaces import TextGenerationService

from .models import ChapterOutline, ChapterText, StoryPlan
from .prompting import (
    StoryPrompt,
    build_chapter_prompt,
    build_free_chapter_prompt,
)

logger = logging.getLogger(__name__)

CHAPTER_TEMPERATURE = 0.8


class ChapterWriter:
    """
    Writes one chapter per call. Stateless, so chapters can be written concurrently.
    """

    def __init__(
        self,
        text_service: TextGenerationService,
        *,
        temperature: float = CHAPTER_TEMPERATURE,
    ) -> None:
        self._text_service = text_service
        self._temperature = temperature

    def write_chapter(
        self,
        outline: ChapterOutline,
        *,
        genre: str,
        plan: StoryPlan | None = None,
        length: str | None = None,
    ) -> ChapterText:
        """
        Write the prose for a planned chapter.
        """
        prompt = build_chapter_prompt(outline, genre=genre, plan=plan, length=length)
        prose = self._generate(prompt, chapter_number=outline.chapter_number)
        return ChapterText(
            chapter_number=outline.chapter_number,
            prose=prose,
            source_outline=outline,
        )

    def write_from_prompt(
        self,
        prompt: str,
        *,
        genre: str,
        length: str | None = "medium",
        chapter_number: int = 1,
    ) -> ChapterText:
        """
        Write a standalone chapter from a free prompt and a ``short|medium|long`` hint.
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")
        if chapter_number < 1:
            raise ValueError("chapter_number must be at least 1.")

        story_prompt = build_free_chapter_prompt(prompt.strip(), genre=genre, length=length)
        prose = self._generate(story_prompt, chapter_number=chapter_number)
        return ChapterText(chapter_number=chapter_number, prose=prose)

    def _generate(self, prompt: StoryPrompt, *, chapter_number: int) -> str:
        text = self._text_service.complete(prompt.system, prompt.user, self._temperature)
        prose = (text or "").strip()
        if not prose:
            raise GenerationServiceError(
                f"Chapter {chapter_number} generation returned empty prose.",
                stage="chapter",
            )
        logger.info("Wrote chapter %d (%d words)", chapter_number, len(prose.split()))
        return prose
