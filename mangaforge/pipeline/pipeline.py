"""
Orchestrates the full MangaForge pipeline from premise to illustrated chapters.
"""

from __future__ import annotations

import json
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import yaml

from mangaforge.ai_generation import ReplicateImageService
from mangaforge.ai_generation.prompting import AspectRatio, DEFAULT_STYLE, resolve_aspect_ratio
from mangaforge.common import LiteLLMTextService, ServiceConfig
from mangaforge.common.interfaces import (
    ImageGenerationService,
    StoryStore,
    TextGenerationService,
)
from mangaforge.story_generation import (
    ChapterText,
    ChapterWriter,
    PanelBrief,
    PanelPlanner,
    StoryPlan,
    StoryPlanner,
)

from .character_sheets import CharacterSheet, CharacterSheetRenderer
from .consistency_check import ConsistencyChecker
from .continuity import DEFAULT_GROUP, ConsistencyState, mentions
from .continuity_builder import build_consistency_state
from .references import ReferenceExtractor
from .refinement import RefinementLoop, RefinementRequest
from .renderer import Panel, PanelRenderer

ProgressCallback = Callable[[str, dict[str, Any]], None]

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class ChapterAsset:
    """Represents all data for a single chapter."""

    chapter: ChapterText
    briefs: list[PanelBrief]
    panels: list[Panel]
    chapter_id: str | None = None

    def panel(self, order: int) -> Panel:
        for candidate in self.panels:
            if candidate.order == order:
                return candidate
        raise KeyError(f"Chapter {self.chapter.chapter_number} has no panel {order}.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "chapter_id": self.chapter_id,
            "chapter": self.chapter.as_dict(),
            "briefs": [brief.as_dict() for brief in self.briefs],
            "panels": [panel.as_dict() for panel in self.panels],
        }


@dataclass
class StoryPackage:
    """Aggregated output of the MangaForge pipeline."""

    story_id: str
    premise: str
    genre: str
    style: str
    aspect_ratio: str
    plan: StoryPlan
    chapters: list[ChapterAsset]
    state: ConsistencyState = field(default_factory=ConsistencyState)

    def chapter(self, chapter_number: int) -> ChapterAsset:
        for asset in self.chapters:
            if asset.chapter.chapter_number == chapter_number:
                return asset
        raise KeyError(f"Story package has no chapter {chapter_number}.")

    def to_dict(self) -> dict[str, Any]:
        return {
            "story_id": self.story_id,
            "premise": self.premise,
            "genre": self.genre,
            "style": self.style,
            "aspect_ratio": self.aspect_ratio,
            "plan": self.plan.as_dict(),
            "chapters": [asset.to_dict() for asset in self.chapters],
            "consistency": self.state.to_dict(),
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StoryPackage":
        for key in ("story_id", "plan", "chapters"):
            if key not in payload:
                raise ValueError(f"Story package payload must include '{key}'.")

        plan = StoryPlan.from_mapping(payload["plan"])
        chapters: list[ChapterAsset] = []
        for entry in payload.get("chapters") or []:
            if not isinstance(entry, Mapping) or "chapter" not in entry:
                raise ValueError(f"Invalid chapter entry: {entry}")
            chapters.append(
                ChapterAsset(
                    chapter=ChapterText.from_mapping(entry["chapter"]),
                    briefs=[PanelBrief.from_mapping(item) for item in entry.get("briefs") or []],
                    panels=[Panel.from_mapping(item) for item in entry.get("panels") or []],
                    chapter_id=entry.get("chapter_id") or None,
                )
            )

        return cls(
            story_id=str(payload["story_id"]),
            premise=str(payload.get("premise", "")),
            genre=str(payload.get("genre", "")),
            style=str(payload.get("style") or DEFAULT_STYLE),
            aspect_ratio=str(payload.get("aspect_ratio") or AspectRatio.SQUARE.value),
            plan=plan,
            chapters=chapters,
            state=ConsistencyState.from_dict(payload.get("consistency") or {}),
        )

    @classmethod
    def from_yaml(cls, source: str | Path) -> "StoryPackage":
        path = Path(source)
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(data, Mapping):
            raise ValueError("Story package YAML must deserialize to a mapping.")
        return cls.from_dict(data)


class StoryOrchestrator:
    """
    High-level coordinator that chains planning, writing, extraction, and rendering.

    Chapters are written concurrently once the plan exists. Each chapter's
    references are extracted and merged before any of its panels render; its
    panels then render concurrently against the stable ledger.
    """

    def __init__(
        self,
        *,
        config: ServiceConfig | None = None,
        text_service: TextGenerationService | None = None,
        image_service: ImageGenerationService | None = None,
        consistency_checker: ConsistencyChecker | None = None,
        store: StoryStore | None = None,
    ) -> None:
        if text_service is None or image_service is None:
            config = config or ServiceConfig.from_env()
        self._text_service = text_service or LiteLLMTextService(config)
        self._image_service = image_service or ReplicateImageService(config)

        self._planner = StoryPlanner(self._text_service)
        self._chapter_writer = ChapterWriter(self._text_service)
        self._extractor = ReferenceExtractor(self._text_service)
        self._panel_planner = PanelPlanner(self._text_service)
        self._renderer = PanelRenderer(self._image_service)
        self._refinement = RefinementLoop(
            renderer=self._renderer,
            text_service=self._text_service,
        )
        self._consistency_checker = consistency_checker
        self._store = store

    @property
    def refinement(self) -> RefinementLoop:
        return self._refinement

    def run(
        self,
        premise: str,
        *,
        genre: str,
        style: str = DEFAULT_STYLE,
        aspect_ratio: str | AspectRatio = AspectRatio.SQUARE,
        user_characters: Any = None,
        panels_per_chapter: int | None = None,
        length: str | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        auto_refine_threshold: int | None = None,
        character_sheets: bool = False,
        state: ConsistencyState | None = None,
        story_id: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> StoryPackage:
        """
        Complete pipeline from premise to a packaged, illustrated story.

        Nothing is written to the store unless every stage succeeds. With
        ``character_sheets`` each newly described character gets a portrait
        reference rendered before the panels that follow its first extraction.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1.")

        story_id = story_id or uuid.uuid4().hex
        ratio = resolve_aspect_ratio(aspect_ratio)
        if state is None:
            state = build_consistency_state(characters=user_characters)

        self._notify(progress_callback, "plan:generating", premise=premise, genre=genre)
        plan = self._planner.plan(premise, genre)
        self._notify(
            progress_callback,
            "plan:ready",
            title=plan.title,
            total_chapters=plan.total_chapters,
        )

        chapters = self._write_chapters(
            plan,
            genre=genre,
            length=length,
            max_workers=max_workers,
            progress_callback=progress_callback,
        )

        assets: list[ChapterAsset] = []
        for chapter in chapters:
            assets.append(
                self._illustrate_chapter(
                    chapter,
                    plan=plan,
                    state=state,
                    story_id=story_id,
                    style=style,
                    ratio=ratio,
                    user_characters=user_characters,
                    panels_per_chapter=panels_per_chapter,
                    max_workers=max_workers,
                    auto_refine_threshold=auto_refine_threshold,
                    character_sheets=character_sheets,
                    progress_callback=progress_callback,
                )
            )

        package = StoryPackage(
            story_id=story_id,
            premise=premise,
            genre=genre,
            style=style,
            aspect_ratio=ratio.value,
            plan=plan,
            chapters=assets,
            state=state,
        )

        if self._store is not None:
            self._notify(progress_callback, "pipeline:persisting", total_chapters=len(assets))
            self._persist(package)

        self._notify(
            progress_callback,
            "pipeline:complete",
            story_id=story_id,
            total_chapters=len(assets),
            total_panels=sum(len(asset.panels) for asset in assets),
        )
        return package

    def refine_panel(
        self,
        package: StoryPackage,
        *,
        chapter_number: int,
        order: int,
        instructions: str,
        suggestions: Sequence[str] = (),
        preserve_seed: bool = True,
        seed: int | None = None,
    ) -> Panel:
        """
        Re-render one panel of ``package`` in place and return the new panel.
        """
        asset = package.chapter(chapter_number)
        original = asset.panel(order)
        request = RefinementRequest(
            target=original,
            instructions=instructions,
            suggestions=tuple(suggestions),
            preserve_seed=preserve_seed,
            seed=seed,
        )
        refined = self._refinement.refine_panel(
            request,
            state=package.state,
            style=package.style,
            aspect_ratio=package.aspect_ratio,
        )
        asset.panels = [refined if panel.order == order else panel for panel in asset.panels]
        if self._store is not None and asset.chapter_id:
            self._store.update_chapter(
                asset.chapter_id,
                panels=[panel.as_store_record() for panel in asset.panels],
            )
        return refined

    def rewrite_chapter(
        self,
        package: StoryPackage,
        *,
        chapter_number: int,
        instructions: str,
        selection: str | None = None,
    ) -> ChapterText:
        """
        Replace a chapter's prose. Its existing panels are left as they are.
        """
        asset = package.chapter(chapter_number)
        request = RefinementRequest(
            target=asset.chapter,
            instructions=instructions,
            selection=selection,
            genre=package.genre,
        )
        revised = self._refinement.refine_chapter(request)
        asset.chapter = revised
        if self._store is not None and asset.chapter_id:
            self._store.update_chapter(asset.chapter_id, prose=revised.prose)
        return revised

    def render_character_sheets(
        self,
        package: StoryPackage,
        *,
        angles: int = 0,
        redraw: bool = False,
    ) -> list[CharacterSheet]:
        """
        Render reference sheets for the characters of ``package``.

        Characters that already carry reference images are skipped unless ``redraw``.
        """
        sheet_renderer = CharacterSheetRenderer(self._renderer, style=package.style)
        if not redraw:
            return sheet_renderer.render_missing(package.state, angles=angles)
        return [
            sheet_renderer.render_sheet(character, state=package.state, angles=angles)
            for character in package.state.characters
            if character.description
        ]

    def _write_chapters(
        self,
        plan: StoryPlan,
        *,
        genre: str,
        length: str | None,
        max_workers: int,
        progress_callback: ProgressCallback | None,
    ) -> list[ChapterText]:
        self._notify(progress_callback, "chapters:writing", total_chapters=plan.total_chapters)
        workers = min(max_workers, plan.total_chapters)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chapter") as pool:
            futures = [
                pool.submit(
                    self._chapter_writer.write_chapter,
                    outline,
                    genre=genre,
                    plan=plan,
                    length=length,
                )
                for outline in plan.chapter_outlines
            ]
            chapters = [future.result() for future in futures]
        self._notify(progress_callback, "chapters:ready", total_chapters=len(chapters))
        return chapters

    def _illustrate_chapter(
        self,
        chapter: ChapterText,
        *,
        plan: StoryPlan,
        state: ConsistencyState,
        story_id: str,
        style: str,
        ratio: AspectRatio,
        user_characters: Any,
        panels_per_chapter: int | None,
        max_workers: int,
        auto_refine_threshold: int | None,
        character_sheets: bool,
        progress_callback: ProgressCallback | None,
    ) -> ChapterAsset:
        number = chapter.chapter_number
        self._notify(progress_callback, "chapter:extracting", chapter_number=number)
        self._extractor.extract_into(state, chapter.prose, user_characters=user_characters)

        if character_sheets:
            sheets = CharacterSheetRenderer(self._renderer, style=style).render_missing(state)
            self._notify(
                progress_callback,
                "chapter:sheets",
                chapter_number=number,
                characters=[sheet.name for sheet in sheets],
            )

        outline = chapter.source_outline
        panel_count = panels_per_chapter or (
            outline.estimated_panels if outline else plan.estimated_panels_per_chapter
        )
        self._notify(
            progress_callback,
            "chapter:panelizing",
            chapter_number=number,
            panel_count=panel_count,
        )
        briefs = self._panel_planner.plan_panels(
            chapter,
            panel_count=panel_count,
            character_names=[reference.name for reference in state.characters],
            location_names=[reference.name for reference in state.locations],
        )
        self._notify(
            progress_callback,
            "chapter:rendering",
            chapter_number=number,
            total_panels=len(briefs),
        )

        def _render(brief: PanelBrief) -> Panel:
            panel = self._renderer.render(
                brief.description,
                state=state,
                style=style,
                aspect_ratio=ratio,
                group=DEFAULT_GROUP,
                order=brief.order,
                chapter_number=number,
                story_id=story_id,
                caption=brief.caption,
            )
            if auto_refine_threshold is not None:
                panel = self._auto_refine(
                    panel, state=state, style=style, ratio=ratio, threshold=auto_refine_threshold
                )
            self._notify(
                progress_callback,
                "panel:done",
                chapter_number=number,
                order=panel.order,
                total_panels=len(briefs),
            )
            return panel

        workers = min(max_workers, len(briefs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="panel") as pool:
            panels = list(pool.map(_render, briefs))

        self._notify(progress_callback, "chapter:done", chapter_number=number)
        return ChapterAsset(chapter=chapter, briefs=briefs, panels=panels)

    def _auto_refine(
        self,
        panel: Panel,
        *,
        state: ConsistencyState,
        style: str,
        ratio: AspectRatio,
        threshold: int,
    ) -> Panel:
        if self._consistency_checker is None:
            return panel

        subjects = [c for c in state.characters if mentions(c.name, panel.description)]
        if not subjects:
            return panel

        report = self._consistency_checker.check(
            panel.image_ref,
            character=subjects[0],
            reference_images=subjects[0].reference_images,
        )
        if not report.needs_refinement(threshold):
            return panel

        logger.info(
            "Panel %s of chapter %s scored %d; refining once",
            panel.order,
            panel.chapter_number,
            report.confidence_score,
        )
        request = RefinementRequest(
            target=panel,
            instructions=f"Match the reference design of {subjects[0].name} exactly.",
            suggestions=report.suggestions,
        )
        return self._refinement.refine_panel(
            request, state=state, style=style, aspect_ratio=ratio
        )

    def _persist(self, package: StoryPackage) -> None:
        if self._store is None:
            raise RuntimeError("No story store configured.")
        for asset in package.chapters:
            asset.chapter_id = self._store.create_chapter(
                package.story_id,
                asset.chapter.chapter_number,
                asset.chapter.title,
                asset.chapter.prose,
                [panel.as_store_record() for panel in asset.panels],
            )

    @staticmethod
    def _notify(
        callback: ProgressCallback | None,
        stage: str,
        **payload: Any,
    ) -> None:
        logger.debug("Stage %s %s", stage, payload)
        if callback is not None:
            callback(stage, payload)


def load_mapping_file(path: Path | str) -> Mapping[str, Any]:
    """Load a YAML or JSON mapping (configs, character sheets)."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        raise ValueError("Unsupported file format. Use YAML or JSON.")
    if not isinstance(data, Mapping):
        raise ValueError(f"{path} must deserialize to a mapping.")
    return data
