"""
Common utilities shared across MangaForge modules.
"""

from .config import ServiceConfig
from .errors import (
    ConsistencyConflict,
    GenerationServiceError,
    MalformedStructuredOutput,
    MangaForgeError,
    PlanValidationError,
)
from .interfaces import (
    IdentityProvider,
    ImageGenerationService,
    RenderedImage,
    StoryStore,
    TextGenerationService,
)
from .llm import ChatResult, CompletionCallable, LiteLLMTextService, call_chat_completion
from .structured import parse_structured_response

__all__ = [
    "ChatResult",
    "CompletionCallable",
    "ConsistencyConflict",
    "GenerationServiceError",
    "IdentityProvider",
    "ImageGenerationService",
    "LiteLLMTextService",
    "MalformedStructuredOutput",
    "MangaForgeError",
    "PlanValidationError",
    "RenderedImage",
    "ServiceConfig",
    "StoryStore",
    "TextGenerationService",
    "call_chat_completion",
    "parse_structured_response",
]
