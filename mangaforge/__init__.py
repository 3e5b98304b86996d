"""
MangaForge package exposing story generation, the illustration pipeline, and PDF tooling.
"""

from .common import ServiceConfig
from .pdf_generation import StorybookPDFBuilder
from .pipeline import (
    ConsistencyState,
    InMemoryStoryStore,
    RefinementLoop,
    RefinementRequest,
    StoryOrchestrator,
    StoryPackage,
    build_consistency_state,
)

__all__ = [
    "ConsistencyState",
    "InMemoryStoryStore",
    "RefinementLoop",
    "RefinementRequest",
    "ServiceConfig",
    "StoryOrchestrator",
    "StoryPackage",
    "StorybookPDFBuilder",
    "build_consistency_state",
]
