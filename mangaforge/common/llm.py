"""
LiteLLM-powered chat completion helpers and the text generation service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, MutableMapping, Sequence

from litellm import completion

from .config import ServiceConfig
from .errors import GenerationServiceError

ChatMessage = Mapping[str, Any]

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    """
    Structured response returned from an LLM chat completion.
    """

    text: str
    raw: Any


CompletionCallable = Callable[..., ChatResult]


def call_chat_completion(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_key: str | None = None,
    timeout: float | None = None,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    Invoke LiteLLM's `completion` API and return the consolidated text.

    Any LiteLLM failure (including timeouts) surfaces as ``GenerationServiceError``.
    """
    payload: MutableMapping[str, Any] = {
        "model": model,
        "messages": list(messages),
    }

    if temperature is not None:
        payload["temperature"] = temperature

    if max_tokens is not None:
        payload["max_tokens"] = max_tokens

    if api_key is not None:
        payload["api_key"] = api_key

    if timeout is not None:
        payload["timeout"] = timeout

    payload.update(extra_kwargs)

    try:
        response = completion(**payload)
    except Exception as exc:
        raise GenerationServiceError(
            f"Chat completion with model '{model}' failed: {exc}",
            stage="text",
        ) from exc

    try:
        message = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise GenerationServiceError(
            "Unexpected LiteLLM response format.",
            stage="text",
            raw_response=str(response),
        ) from exc

    text = str(message).strip() if message is not None else ""
    return ChatResult(text=text, raw=response)


class LiteLLMTextService:
    """
    ``TextGenerationService`` backed by any LiteLLM-compatible chat model.
    """

    def __init__(
        self,
        config: ServiceConfig,
        *,
        completion_fn: CompletionCallable | None = None,
        max_tokens: int | None = 4000,
    ) -> None:
        self._config = config
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._max_tokens = max_tokens

    @property
    def model(self) -> str:
        """Return the model identifier in use."""
        return self._config.text_model

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
    ) -> str:
        logger.debug("Text completion via %s (temperature=%s)", self.model, temperature)
        result: ChatResult = self._completion_fn(
            model=self._config.text_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=self._max_tokens,
            api_key=self._config.text_api_key,
            timeout=self._config.request_timeout,
        )

        if not result.text:
            raise GenerationServiceError(
                "LLM response did not contain any text content.",
                stage="text",
            )

        return result.text
