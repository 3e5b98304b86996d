"""
Reference ledger, rendering, refinement, and end-to-end orchestration.
"""

from .character_sheets import CharacterSheet, CharacterSheetRenderer
from .consistency_check import ConsistencyChecker, ConsistencyReport
from .continuity import (
    DEFAULT_GROUP,
    CharacterReference,
    ConsistencyState,
    LocationReference,
    character_group,
    mentions,
    merge_text,
)
from .continuity_builder import build_consistency_state, normalize_character_declarations
from .pipeline import ChapterAsset, StoryOrchestrator, StoryPackage, load_mapping_file
from .references import ExtractedReferences, ReferenceExtractor, merge_references
from .refinement import RefinementLoop, RefinementRequest
from .renderer import Panel, PanelRenderer
from .store import InMemoryStoryStore

__all__ = [
    "DEFAULT_GROUP",
    "ChapterAsset",
    "CharacterReference",
    "CharacterSheet",
    "CharacterSheetRenderer",
    "ConsistencyChecker",
    "ConsistencyReport",
    "ConsistencyState",
    "ExtractedReferences",
    "InMemoryStoryStore",
    "LocationReference",
    "Panel",
    "PanelRenderer",
    "ReferenceExtractor",
    "RefinementLoop",
    "RefinementRequest",
    "StoryOrchestrator",
    "StoryPackage",
    "build_consistency_state",
    "character_group",
    "load_mapping_file",
    "mentions",
    "merge_references",
    "merge_text",
    "normalize_character_declarations",
]
