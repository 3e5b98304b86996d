"""
Prompt construction utilities for the MangaForge text generation stages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from .models import ChapterOutline, ChapterText, StoryPlan

LENGTH_GUIDANCE: Mapping[str, str] = {
    "short": "a brief 3-4 paragraph story",
    "medium": "a 6-8 paragraph story with good pacing",
    "long": "a detailed 10-12 paragraph story with rich character development",
}

DEFAULT_LENGTH = "medium"


@dataclass(frozen=True)
class StoryPrompt:
    """
    Container for the system and user prompts passed to the text model.
    """

    system: str
    user: str


def resolve_length_guidance(length: str | None) -> str:
    """Map a length hint to its paragraph instruction; unknown hints fall back to medium."""
    key = (length or "").strip().lower()
    return LENGTH_GUIDANCE.get(key, LENGTH_GUIDANCE[DEFAULT_LENGTH])


def build_plan_prompt(premise: str, genre: str) -> StoryPrompt:
    system_prompt = """You are a master manga story architect. Given a story idea, plan out:
1. A compelling title
2. An engaging synopsis (2-3 sentences)
3. Total number of chapters needed (realistic for manga serialization)
4. Brief description of what happens in each chapter
5. Estimated panels per chapter (typically 6-10 for web manga)

Respond ONLY with valid JSON in this exact format:
{
  "title": "Story Title",
  "synopsis": "Brief compelling synopsis",
  "totalChapters": 5,
  "estimatedPanelsPerChapter": 8,
  "chapterOutlines": [
    {
      "chapterNumber": 1,
      "title": "Chapter Title",
      "summary": "What happens in this chapter",
      "estimatedPanels": 8
    }
  ]
}

Number chapters consecutively starting at 1 and list exactly totalChapters outlines."""

    user_prompt = f"Plan a {genre} manga story based on this idea: {premise}"
    return StoryPrompt(system=system_prompt, user=user_prompt)


def _chapter_system_prompt(genre: str) -> str:
    return f"""You are an expert manga story writer. Generate engaging, appropriate stories in the {genre} genre.
Focus on interesting characters, compelling plots, and vivid descriptions suitable for manga panels.
Structure the story with clear scenes that could be visualized as manga panels.
Keep pacing, dramatic tension, and visual storytelling elements in mind.
Respond with the chapter prose only, without headings or commentary."""


def build_chapter_prompt(
    outline: ChapterOutline,
    *,
    genre: str,
    plan: StoryPlan | None = None,
    length: str | None = None,
) -> StoryPrompt:
    context = ""
    if plan is not None:
        context = f"Story context:\n{plan.summary_for_prompt()}\n\n"

    user_prompt = f"""{context}Write chapter {outline.chapter_number}: "{outline.title}".

Chapter summary:
{outline.summary}

Write {resolve_length_guidance(length)}. Plan for roughly {outline.estimated_panels} distinct visual moments."""
    return StoryPrompt(system=_chapter_system_prompt(genre), user=user_prompt)


def build_free_chapter_prompt(prompt: str, *, genre: str, length: str | None) -> StoryPrompt:
    user_prompt = f"Write {resolve_length_guidance(length)} based on: {prompt}"
    return StoryPrompt(system=_chapter_system_prompt(genre), user=user_prompt)


def build_extraction_prompt(
    narrative: str,
    user_characters: Sequence[tuple[str, str]] = (),
) -> StoryPrompt:
    system_prompt = """You are a character consistency specialist. Extract and establish definitive character references from the story narrative.

Your task:
1. Identify all characters mentioned in the story
2. Extract their physical appearance, clothing, and key traits
3. Create detailed character sheets for visual consistency
4. Note any environmental or location details that should remain consistent

Return a JSON object with this structure:
{
  "characters": [
    {
      "name": "Character Name",
      "description": "Detailed physical description including hair, eyes, clothing, accessories",
      "personality": "Key personality traits and mannerisms",
      "role": "Character's role in the story"
    }
  ],
  "locations": [
    {
      "name": "Location Name",
      "description": "Detailed environmental description including lighting, time, weather, key objects"
    }
  ],
  "continuityNotes": "Important details to maintain across all panels"
}"""

    declared = ", ".join(f"{name}: {description}" for name, description in user_characters)
    user_prompt = (
        "Extract character and location references from this story:\n\n"
        f"{narrative}\n\n"
        f"User-provided characters: {declared or 'None'}"
    )
    return StoryPrompt(system=system_prompt, user=user_prompt)


def build_panel_breakdown_prompt(
    chapter: ChapterText,
    *,
    panel_count: int,
    character_names: Sequence[str] = (),
    location_names: Sequence[str] = (),
) -> StoryPrompt:
    characters = ", ".join(character_names) or "various characters"
    locations = ", ".join(location_names) or "various locations"
    system_prompt = f"""You are an expert manga panel director and storyteller.
Break the narrative into exactly {panel_count} manga panels.

Guidelines:
- Each panel must focus on a single decisive moment or action.
- Describe only one scene per panel. Avoid "meanwhile" or split frames.
- Keep character appearances and backgrounds consistent with previous panels.

For each panel, provide:
1. A detailed visual description of what should be drawn (including characters: {characters}, and locations: {locations})
2. The dialogue or narration that appears in the panel

Return a JSON object with this structure:
{{
  "panels": [
    {{
      "description": "Detailed visual description of the panel scene, composition, character poses, background elements",
      "dialogue": [{{"character": "Name", "text": "Speech"}}]
    }}
  ]
}}"""

    user_prompt = (
        f"Break this narrative into {panel_count} manga panels:\n\n{chapter.prose}"
    )
    return StoryPrompt(system=system_prompt, user=user_prompt)


def build_rewrite_prompt(
    prose: str,
    *,
    instructions: str,
    selection: str | None = None,
    genre: str | None = None,
) -> StoryPrompt:
    system_prompt = " ".join(
        [
            "You are a senior manga story editor.",
            "Revise the given chapter to incorporate the user's edit request while keeping coherence, pacing, and continuity.",
            "Preserve the existing tone and genre unless the edit requests otherwise.",
            "Return ONLY the full revised chapter text, no preface or explanation.",
        ]
    )

    sections = [
        f"Genre: {genre}" if genre else "",
        f'Selected passage to adapt:\n"""{selection}"""' if selection else "",
        f"User edit request: {instructions}",
        "Original chapter:",
        prose,
    ]
    user_prompt = "\n\n".join(section for section in sections if section)
    return StoryPrompt(system=system_prompt, user=user_prompt)
