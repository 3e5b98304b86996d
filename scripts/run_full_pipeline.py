"""
CLI to run the complete MangaForge pipeline end-to-end.

Usage:
    python scripts/run_full_pipeline.py \
        --premise "A stray cat becomes the guardian of a haunted lighthouse" \
        --genre fantasy \
        --character "Mochi=small grey stray cat with a torn left ear" \
        --output manga_package.yaml

Environment variables:
    OPENAI_API_KEY / OPENROUTER_API_KEY  - text model credentials
    REPLICATE_API_TOKEN                  - image model credentials
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mangaforge import InMemoryStoryStore, ServiceConfig, StoryOrchestrator  # noqa: E402
from mangaforge.ai_generation import AspectRatio  # noqa: E402
from mangaforge.common import MangaForgeError  # noqa: E402
from mangaforge.pipeline import ConsistencyChecker, load_mapping_file  # noqa: E402
from mangaforge.story_generation import LENGTH_GUIDANCE  # noqa: E402


class ProgressTracker:
    """
    Provides command-line progress updates for the MangaForge pipeline.
    """

    def __init__(self) -> None:
        self._panel_bar: tqdm | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        match stage:
            case "plan:generating":
                self._write(f"[1/4] Planning a {payload.get('genre', '')} story...")
            case "plan:ready":
                title = payload.get("title", "Untitled")
                total = payload.get("total_chapters", 0)
                self._write(f"[1/4] Plan ready: {title!r} in {total} chapters.")
            case "chapters:writing":
                self._write("[2/4] Writing chapter prose...")
            case "chapters:ready":
                self._write(f"[2/4] {payload.get('total_chapters', 0)} chapters written.")
            case "chapter:extracting":
                self.close()
                self._write(
                    f"[3/4] Chapter {payload.get('chapter_number')}: extracting character and location references..."
                )
            case "chapter:sheets":
                names = ", ".join(payload.get("characters") or []) or "none new"
                self._write(
                    f"[3/4] Chapter {payload.get('chapter_number')}: character sheets ({names})."
                )
            case "chapter:panelizing":
                self._write(
                    f"[3/4] Chapter {payload.get('chapter_number')}: "
                    f"breaking into {payload.get('panel_count')} panels..."
                )
            case "chapter:rendering":
                self._panel_bar = tqdm(
                    total=payload.get("total_panels", 0),
                    desc=f"Chapter {payload.get('chapter_number')} panels",
                    unit="panel",
                )
            case "panel:done":
                if self._panel_bar is not None:
                    self._panel_bar.update(1)
            case "chapter:done":
                self.close()
            case "pipeline:persisting":
                self._write("[4/4] Saving chapters...")
            case "pipeline:complete":
                self._write(
                    f"[4/4] Pipeline complete: {payload.get('total_panels', 0)} panels "
                    f"across {payload.get('total_chapters', 0)} chapters."
                )
                self.close()

    def close(self) -> None:
        if self._panel_bar is not None:
            self._panel_bar.close()
            self._panel_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the full MangaForge generation pipeline.")
    parser.add_argument("--premise", required=True, help="Short free-text story premise.")
    parser.add_argument("--genre", required=True, help="Story genre, e.g. fantasy or slice-of-life.")
    parser.add_argument(
        "--style",
        default="manga",
        help="Art style prefix for every panel prompt (default: manga).",
    )
    parser.add_argument(
        "--aspect-ratio",
        default=AspectRatio.SQUARE.value,
        help="Panel aspect ratio: square, widescreen, portrait (or 1:1, 16:9, 3:4).",
    )
    parser.add_argument(
        "--length",
        choices=sorted(LENGTH_GUIDANCE.keys()),
        default=None,
        help="Chapter length guidance (default: derived from the planned panel count).",
    )
    parser.add_argument(
        "--panels-per-chapter",
        type=int,
        default=None,
        help="Override the planner's panel count for every chapter.",
    )
    parser.add_argument(
        "--character",
        action="append",
        default=[],
        metavar="NAME=DESCRIPTION",
        help="Declare a character whose visual description must stay fixed (repeatable).",
    )
    parser.add_argument(
        "--characters-file",
        default=None,
        help="YAML/JSON mapping of character names to descriptions.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML/JSON file with service settings (models, keys, request_timeout).",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=4,
        help="Concurrent chapter and panel requests (default: 4).",
    )
    parser.add_argument(
        "--auto-refine-threshold",
        type=int,
        default=None,
        help="Check each panel with the vision model and refine once below this score.",
    )
    parser.add_argument(
        "--character-sheets",
        action="store_true",
        help="Render a portrait reference sheet for each character before its panels.",
    )
    parser.add_argument(
        "--output",
        default="manga_package.yaml",
        help="Output YAML file to store the plan, chapters, panels, and reference ledger.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )
    return parser.parse_args()


def parse_characters(pairs: list[str]) -> dict[str, str]:
    characters: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Invalid --character '{pair}', expected NAME=DESCRIPTION.")
        name, description = pair.split("=", 1)
        name = name.strip()
        description = description.strip()
        if not name or not description:
            raise ValueError(f"Character entries must include both name and description: '{pair}'.")
        characters[name] = description
    return characters


def load_config(path: str | None) -> ServiceConfig:
    if path is None:
        return ServiceConfig.from_env()
    mapping = load_mapping_file(path)
    parsed = asdict(ServiceConfig.from_mapping(mapping))
    return ServiceConfig.from_env(**{key: parsed[key] for key in mapping if key in parsed})


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    characters: dict[str, Any] = {}
    if args.characters_file:
        characters.update(load_mapping_file(args.characters_file))
    characters.update(parse_characters(args.character))

    config = load_config(args.config)
    checker = ConsistencyChecker(config) if args.auto_refine_threshold is not None else None
    orchestrator = StoryOrchestrator(
        config=config,
        consistency_checker=checker,
        store=InMemoryStoryStore(),
    )
    tracker = ProgressTracker()

    try:
        package = orchestrator.run(
            args.premise,
            genre=args.genre,
            style=args.style,
            aspect_ratio=args.aspect_ratio,
            user_characters=characters or None,
            panels_per_chapter=args.panels_per_chapter,
            length=args.length,
            max_workers=args.max_workers,
            auto_refine_threshold=args.auto_refine_threshold,
            character_sheets=args.character_sheets,
            progress_callback=tracker,
        )
    except MangaForgeError as exc:
        tqdm.write(f"Pipeline failed: {exc}")
        return 1
    finally:
        tracker.close()

    output_path = Path(args.output)
    output_path.write_text(package.to_yaml(), encoding="utf-8")
    _print_ledger_summary(package)
    print(f"Saved story package to {output_path}")
    return 0


def _print_ledger_summary(package) -> None:
    tqdm.write("Reference ledger:")
    for reference in package.state.characters:
        tqdm.write(f"  - {reference.prompt_line()}")
    for reference in package.state.locations:
        tqdm.write(f"  - {reference.prompt_line()}")
    if package.state.seeds:
        seeds = ", ".join(f"{group}={seed}" for group, seed in sorted(package.state.seeds.items()))
        tqdm.write(f"  Seeds: {seeds}")


if __name__ == "__main__":
    raise SystemExit(main())
