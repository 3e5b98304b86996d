"""
Vision-model check that a rendered panel still matches a character's reference sheet.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from mangaforge.common.config import ServiceConfig
from mangaforge.common.errors import GenerationServiceError
from mangaforge.common.llm import ChatResult, CompletionCallable, call_chat_completion
from mangaforge.common.structured import parse_structured_response

from .continuity import CharacterReference

logger = logging.getLogger(__name__)

DEFAULT_PASS_SCORE = 75


@dataclass(frozen=True)
class ConsistencyReport:
    is_consistent: bool
    confidence_score: int
    issues: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()

    def needs_refinement(self, threshold: int = DEFAULT_PASS_SCORE) -> bool:
        return not self.is_consistent or self.confidence_score < threshold

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ConsistencyReport":
        raw_score = payload.get("confidenceScore", payload.get("confidence_score", 0))
        try:
            score = int(round(float(raw_score)))
        except (TypeError, ValueError):
            score = 0
        score = max(0, min(score, 100))

        raw_flag = payload.get("isConsistent", payload.get("is_consistent", False))
        if isinstance(raw_flag, str):
            is_consistent = raw_flag.strip().lower() in {"true", "yes", "1"}
        else:
            is_consistent = bool(raw_flag)

        return cls(
            is_consistent=is_consistent,
            confidence_score=score,
            issues=_string_tuple(payload.get("issues")),
            suggestions=_string_tuple(payload.get("suggestions")),
        )


class ConsistencyChecker:
    """
    Asks a multimodal chat model whether an image matches a character reference.
    """

    def __init__(
        self,
        config: ServiceConfig,
        *,
        completion_fn: CompletionCallable | None = None,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> None:
        self._config = config
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._temperature = temperature
        self._max_tokens = max_tokens

    def check(
        self,
        image_ref: str,
        *,
        character: CharacterReference,
        reference_images: Sequence[str] = (),
    ) -> ConsistencyReport:
        if not image_ref:
            raise ValueError("image_ref must be a non-empty string.")

        user_content: list[dict[str, Any]] = []
        if reference_images:
            user_content.append(
                {
                    "type": "text",
                    "text": f"Reference images for {character.name}: {character.description}",
                }
            )
            user_content.extend(
                {"type": "image_url", "image_url": {"url": url}} for url in reference_images
            )
            user_content.append({"type": "text", "text": "New generated image:"})

        user_content.append({"type": "image_url", "image_url": {"url": image_ref}})
        comparison = (
            "Compare with the reference images above. Check for consistency in appearance, style, and design."
            if reference_images
            else "Evaluate if the image matches the description."
        )
        user_content.append(
            {
                "type": "text",
                "text": (
                    f'Analyze this image. Does it match the character "{character.name}" '
                    f'with description: "{character.description}"? {comparison}\n\n'
                    "Respond with JSON:\n"
                    "{\n"
                    '  "isConsistent": true/false,\n'
                    '  "confidenceScore": 0-100,\n'
                    '  "issues": ["list of any inconsistencies"],\n'
                    '  "suggestions": ["improvements to make it more consistent"]\n'
                    "}"
                ),
            }
        )

        messages: Sequence[dict[str, Any]] = [
            {
                "role": "system",
                "content": (
                    "You are an expert manga consistency checker. Analyze images and determine "
                    "if they maintain character/scene consistency with reference images."
                ),
            },
            {"role": "user", "content": user_content},
        ]

        result: ChatResult = self._completion_fn(
            model=self._config.vision_model,
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            api_key=self._config.resolved_vision_api_key,
            timeout=self._config.request_timeout,
        )
        if not result.text:
            raise GenerationServiceError(
                "Vision model returned no content.", stage="consistency-check"
            )

        report = ConsistencyReport.from_payload(parse_structured_response(result.text))
        logger.info(
            "Consistency check for %s: consistent=%s score=%d",
            character.name,
            report.is_consistent,
            report.confidence_score,
        )
        return report


def _string_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value.strip(),) if value.strip() else ()
    if isinstance(value, Sequence):
        return tuple(str(item).strip() for item in value if str(item).strip())
    return ()
