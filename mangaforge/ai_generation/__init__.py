"""
AI image generation package for MangaForge.
"""

from .prompting import (
    ANGLE_VIEWS,
    AspectRatio,
    build_angle_prompt,
    build_character_sheet_prompt,
    build_panel_prompt,
    build_refined_prompt,
    resolve_aspect_ratio,
    strip_refinement_sections,
)
from .replicate_service import ReplicateImageService, normalize_image_outputs

__all__ = [
    "ANGLE_VIEWS",
    "AspectRatio",
    "ReplicateImageService",
    "build_angle_prompt",
    "build_character_sheet_prompt",
    "build_panel_prompt",
    "build_refined_prompt",
    "normalize_image_outputs",
    "resolve_aspect_ratio",
    "strip_refinement_sections",
]
