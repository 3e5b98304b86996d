"""
Story generation: planning, chapter writing, and panel breakdown.
"""

from .chapter_writer import ChapterWriter
from .models import (
    ChapterOutline,
    ChapterText,
    DialogueLine,
    PanelBrief,
    StoryPlan,
)
from .panel_planner import PanelPlanner
from .planner import StoryPlanner
from .prompting import LENGTH_GUIDANCE, StoryPrompt, resolve_length_guidance

__all__ = [
    "ChapterOutline",
    "ChapterText",
    "ChapterWriter",
    "DialogueLine",
    "LENGTH_GUIDANCE",
    "PanelBrief",
    "PanelPlanner",
    "StoryPlan",
    "StoryPlanner",
    "StoryPrompt",
    "resolve_length_guidance",
]
