"""
Refine one panel, or rewrite one chapter, of a saved MangaForge story package.

Usage:
    python scripts/refine_panel.py \
        --package manga_package.yaml \
        --chapter 2 --panel 3 \
        --instructions "Make the lighthouse beam brighter" \
        --suggestion "Keep Mochi's torn left ear visible"

    python scripts/refine_panel.py \
        --package manga_package.yaml \
        --chapter 1 --rewrite \
        --instructions "Slow down the opening and add more dialogue"
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Ensure project root is on the Python path.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mangaforge import StoryOrchestrator, StoryPackage  # noqa: E402
from mangaforge.common import MangaForgeError  # noqa: E402
from mangaforge.pipeline.refinement import suggestions_from  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Regenerate a panel or rewrite a chapter of a MangaForge story package."
    )
    parser.add_argument("--package", required=True, help="Story package YAML to update.")
    parser.add_argument("--chapter", type=int, required=True, help="Chapter number.")
    parser.add_argument("--panel", type=int, default=None, help="Panel order within the chapter.")
    parser.add_argument(
        "--rewrite",
        action="store_true",
        help="Rewrite the chapter's prose instead of re-rendering a panel.",
    )
    parser.add_argument("--instructions", required=True, help="Free-form edit request.")
    parser.add_argument(
        "--suggestion",
        action="append",
        default=[],
        help="Consistency hint added to the refined prompt (repeatable).",
    )
    parser.add_argument(
        "--selection",
        default=None,
        help="Passage of the chapter the rewrite should focus on.",
    )
    parser.add_argument(
        "--new-seed",
        dest="preserve_seed",
        action="store_false",
        default=True,
        help="Render with a fresh seed instead of reusing the panel's seed.",
    )
    parser.add_argument("--seed", type=int, default=None, help="Explicit seed to render with.")
    parser.add_argument(
        "--output",
        default=None,
        help="Where to write the updated package (default: overwrite --package).",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING).",
    )
    args = parser.parse_args()
    if not args.rewrite and args.panel is None:
        parser.error("--panel is required unless --rewrite is given.")
    return args


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    package = StoryPackage.from_yaml(args.package)
    orchestrator = StoryOrchestrator()

    try:
        if args.rewrite:
            revised = orchestrator.rewrite_chapter(
                package,
                chapter_number=args.chapter,
                instructions=args.instructions,
                selection=args.selection,
            )
            print(f"Rewrote chapter {revised.chapter_number} ({len(revised.prose)} characters).")
            print("Existing panels were kept; re-render them if the scene changed.")
        else:
            panel = orchestrator.refine_panel(
                package,
                chapter_number=args.chapter,
                order=args.panel,
                instructions=args.instructions,
                suggestions=suggestions_from(args.suggestion),
                preserve_seed=args.preserve_seed,
                seed=args.seed,
            )
            print(f"Refined panel {panel.order} with seed {panel.seed_used}: {panel.image_ref}")
    except (KeyError, MangaForgeError) as exc:
        print(f"Refinement failed: {exc}", file=sys.stderr)
        return 1

    output_path = Path(args.output or args.package)
    output_path.write_text(package.to_yaml(), encoding="utf-8")
    print(f"Saved story package to {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
