"""
Service configuration passed explicitly to every MangaForge client.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

DEFAULT_TEXT_MODEL = "anthropic/claude-3-5-sonnet-20241022"
DEFAULT_VISION_MODEL = "gpt-4o-mini"
DEFAULT_IMAGE_MODEL = "black-forest-labs/flux-schnell"
DEFAULT_REQUEST_TIMEOUT = 120.0


@dataclass(frozen=True)
class ServiceConfig:
    """
    Credentials, model identifiers, and timeouts for the generation services.

    Attributes
    ----------
    text_model:
        LiteLLM model string used for planning, writing, extraction, and rewrites.
    text_api_key:
        API key forwarded to LiteLLM. ``None`` lets LiteLLM read provider env vars.
    vision_model:
        Multimodal chat model used by the consistency checker.
    vision_api_key:
        Optional key for the vision model; falls back to ``text_api_key``.
    image_model:
        Replicate model identifier (``owner/model`` or ``owner/model:version``).
    image_api_token:
        Replicate API token.
    request_timeout:
        Upper bound, in seconds, for any single external call.
    poll_interval:
        Seconds between Replicate prediction status checks.
    """

    text_model: str = DEFAULT_TEXT_MODEL
    text_api_key: str | None = None
    vision_model: str = DEFAULT_VISION_MODEL
    vision_api_key: str | None = None
    image_model: str = DEFAULT_IMAGE_MODEL
    image_api_token: str | None = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    poll_interval: float = 1.0

    def __post_init__(self) -> None:
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be a positive number of seconds.")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be a positive number of seconds.")

    @property
    def resolved_vision_api_key(self) -> str | None:
        return self.vision_api_key or self.text_api_key

    @classmethod
    def from_env(cls, **overrides: Any) -> "ServiceConfig":
        """
        Build a config from environment variables; keyword overrides win when not ``None``.
        """
        timeout_text = os.getenv("MANGAFORGE_REQUEST_TIMEOUT")
        config = cls(
            text_model=(
                os.getenv("MANGAFORGE_TEXT_MODEL")
                or os.getenv("LITELLM_MODEL")
                or DEFAULT_TEXT_MODEL
            ),
            text_api_key=(
                os.getenv("MANGAFORGE_TEXT_API_KEY")
                or os.getenv("OPENROUTER_API_KEY")
                or os.getenv("OPENAI_API_KEY")
                or os.getenv("LITELLM_API_KEY")
            ),
            vision_model=(
                os.getenv("MANGAFORGE_VISION_MODEL")
                or os.getenv("OPENAI_VISION_MODEL")
                or DEFAULT_VISION_MODEL
            ),
            vision_api_key=os.getenv("MANGAFORGE_VISION_API_KEY"),
            image_model=os.getenv("REPLICATE_MODEL") or DEFAULT_IMAGE_MODEL,
            image_api_token=os.getenv("REPLICATE_API_TOKEN"),
            request_timeout=(
                float(timeout_text) if timeout_text else DEFAULT_REQUEST_TIMEOUT
            ),
        )
        return config.with_overrides(**overrides)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ServiceConfig":
        """
        Build a config from a parsed YAML/JSON mapping, ignoring unknown keys.
        """
        known = {item.name for item in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known or value is None:
                continue
            if key in {"request_timeout", "poll_interval"}:
                try:
                    value = float(value)
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"Expected a number for {key}, got {value!r}") from exc
            else:
                value = str(value).strip()
            kwargs[key] = value
        return cls(**kwargs)

    def with_overrides(self, **overrides: Any) -> "ServiceConfig":
        changes = {key: value for key, value in overrides.items() if value is not None}
        if not changes:
            return self
        return replace(self, **changes)
