"""
Protocols for the external collaborators the pipeline talks to.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class RenderedImage:
    """Image reference plus the seed the image service actually used."""

    image_ref: str
    seed: int


@runtime_checkable
class TextGenerationService(Protocol):
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
    ) -> str:
        """Return non-empty text or raise ``GenerationServiceError``."""
        ...


@runtime_checkable
class ImageGenerationService(Protocol):
    def render(
        self,
        prompt: str,
        width: int,
        height: int,
        seed: int | None = None,
    ) -> RenderedImage:
        """Render one image; omit the seed upstream when ``seed`` is ``None``."""
        ...


class StoryStore(Protocol):
    """Persistence boundary for chapters. Durable storage lives outside this package."""

    def create_chapter(
        self,
        story_id: str,
        chapter_number: int,
        title: str,
        prose: str,
        panels: Sequence[Mapping[str, Any]],
    ) -> str:
        ...

    def update_chapter(self, chapter_id: str, **fields: Any) -> None:
        ...

    def get_chapters(self, story_id: str) -> list[dict[str, Any]]:
        ...

    def get_chapter(self, chapter_id: str) -> dict[str, Any] | None:
        ...


class IdentityProvider(Protocol):
    """
    Authentication boundary. ``update_username`` must reject a username that a
    different user already owns.
    """

    def current_user_id(self) -> str | None:
        ...

    def update_username(self, user_id: str, username: str) -> None:
        ...
