"""
Error taxonomy shared by every MangaForge pipeline stage.
"""

from __future__ import annotations

from typing import Any

_EXCERPT_LIMIT = 500


def excerpt(text: str | None, limit: int = _EXCERPT_LIMIT) -> str | None:
    """Trim raw model output so it can be attached to an error message."""
    if text is None:
        return None
    cleaned = str(text).strip()
    if len(cleaned) > limit:
        return cleaned[: limit - 3].rstrip() + "..."
    return cleaned


class MangaForgeError(Exception):
    """Base class for all pipeline failures."""


class GenerationServiceError(MangaForgeError):
    """
    Upstream text or image service failed, timed out, or returned no payload.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        raw_response: str | None = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.excerpt = excerpt(raw_response)

    def __str__(self) -> str:
        message = super().__str__()
        if self.stage:
            message = f"[{self.stage}] {message}"
        return message


class MalformedStructuredOutput(MangaForgeError):
    """
    A model response could not be parsed as a JSON object after every fallback.
    """

    def __init__(self, message: str, *, raw_text: str) -> None:
        super().__init__(message)
        self.raw_text = raw_text
        self.excerpt = excerpt(raw_text)


class PlanValidationError(MangaForgeError):
    """A parsed plan (story or panels) violates its count or numbering rules."""

    def __init__(self, message: str, *, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


class ConsistencyConflict(MangaForgeError):
    """
    Reserved for a strict merge policy that refuses contradictory descriptions.

    The default ledger merge concatenates descriptions and never raises this.
    """
