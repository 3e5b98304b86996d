"""
Service layer for producing story plans via a text generation service.
"""

from __future__ import annotations

import logging

from mangaforge.common.errors import PlanValidationError
from mangaforge.common.interfaces import TextGenerationService
from mangaforge.common.structured import parse_structured_response

from .models import StoryPlan
from .prompting import StoryPrompt, build_plan_prompt

logger = logging.getLogger(__name__)

PLAN_TEMPERATURE = 0.7


class StoryPlanner:
    """
    Turns a premise and genre into a validated, immutable ``StoryPlan``.

    Incoherent plans (wrong chapter count, gaps or duplicates in numbering) are
    rejected with ``PlanValidationError``; they are never renumbered or padded.
    """

    def __init__(
        self,
        text_service: TextGenerationService,
        *,
        temperature: float = PLAN_TEMPERATURE,
    ) -> None:
        self._text_service = text_service
        self._temperature = temperature

    def plan(self, premise: str, genre: str) -> StoryPlan:
        if not premise or not premise.strip():
            raise ValueError("premise must be a non-empty string.")

        prompt: StoryPrompt = build_plan_prompt(premise.strip(), genre.strip())
        raw_text = self._text_service.complete(prompt.system, prompt.user, self._temperature)

        payload = parse_structured_response(raw_text)
        try:
            plan = StoryPlan.from_mapping(payload)
        except PlanValidationError:
            logger.error("Rejected story plan for premise %r", premise[:80])
            raise

        logger.info(
            "Planned '%s' with %d chapters (~%d panels each)",
            plan.title,
            plan.total_chapters,
            plan.estimated_panels_per_chapter,
        )
        return plan
