"""
Structured representations of story plans, chapter outlines, and chapter prose.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from mangaforge.common.errors import PlanValidationError

SUMMARY_LENGTH = 200


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


def _coerce_positive_int(value: Any, field_name: str, payload: Any) -> int:
    if isinstance(value, bool):
        raise PlanValidationError(
            f"Expected an integer for {field_name}, got {value!r}", payload=payload
        )
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise PlanValidationError(
            f"Expected an integer for {field_name}, got {value!r}", payload=payload
        ) from exc
    if number < 1:
        raise PlanValidationError(
            f"{field_name} must be at least 1, received {number}.", payload=payload
        )
    return number


def _first_present(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


@dataclass(frozen=True)
class ChapterOutline:
    """
    One planned chapter: its position, title, summary, and panel estimate.
    """

    chapter_number: int
    title: str
    summary: str
    estimated_panels: int

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ChapterOutline":
        if not isinstance(data, Mapping):
            raise PlanValidationError(f"Invalid chapter outline entry: {data!r}", payload=data)

        number = _coerce_positive_int(
            _first_present(data, "chapterNumber", "chapter_number"),
            "chapterNumber",
            data,
        )
        title = _coerce_optional_str(data.get("title"))
        summary = _coerce_optional_str(data.get("summary"))
        if not title or not summary:
            raise PlanValidationError(
                f"Chapter {number} is missing title or summary content.", payload=data
            )
        estimated = _coerce_positive_int(
            _first_present(data, "estimatedPanels", "estimated_panels"),
            f"estimatedPanels of chapter {number}",
            data,
        )
        return cls(
            chapter_number=number,
            title=title,
            summary=summary,
            estimated_panels=estimated,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "chapter_number": self.chapter_number,
            "title": self.title,
            "summary": self.summary,
            "estimated_panels": self.estimated_panels,
        }


@dataclass(frozen=True)
class StoryPlan:
    """
    Canonical story plan. Immutable: replanning produces a new instance.

    Attributes
    ----------
    title:
        Story title.
    synopsis:
        Two or three sentence pitch.
    total_chapters:
        Number of chapters; always equals ``len(chapter_outlines)``.
    estimated_panels_per_chapter:
        Planner's default panel budget per chapter.
    chapter_outlines:
        Outlines numbered exactly ``1..total_chapters`` in order.
    """

    title: str
    synopsis: str
    total_chapters: int
    estimated_panels_per_chapter: int
    chapter_outlines: tuple[ChapterOutline, ...]

    def __post_init__(self) -> None:
        validate_chapter_sequence(self.total_chapters, self.chapter_outlines)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoryPlan":
        """
        Build a plan from a parsed model response, validating counts and numbering.
        """
        title = _coerce_optional_str(data.get("title"))
        if not title:
            raise PlanValidationError("Story plan must include a non-empty 'title'.", payload=data)
        synopsis = _coerce_optional_str(data.get("synopsis")) or ""

        total = _coerce_positive_int(
            _first_present(data, "totalChapters", "total_chapters"),
            "totalChapters",
            data,
        )
        per_chapter = _coerce_positive_int(
            _first_present(data, "estimatedPanelsPerChapter", "estimated_panels_per_chapter"),
            "estimatedPanelsPerChapter",
            data,
        )

        raw_outlines = _first_present(data, "chapterOutlines", "chapter_outlines")
        if not isinstance(raw_outlines, Sequence) or isinstance(raw_outlines, (str, bytes)):
            raise PlanValidationError(
                "Story plan JSON must contain a 'chapterOutlines' list.", payload=data
            )

        outlines = tuple(ChapterOutline.from_mapping(item) for item in raw_outlines)
        try:
            return cls(
                title=title,
                synopsis=synopsis,
                total_chapters=total,
                estimated_panels_per_chapter=per_chapter,
                chapter_outlines=outlines,
            )
        except PlanValidationError as exc:
            raise PlanValidationError(str(exc), payload=data) from exc

    def summary_for_prompt(self) -> str:
        lines = [f"- Title: {self.title}"]
        if self.synopsis:
            lines.append(f"- Synopsis: {self.synopsis}")
        for outline in self.chapter_outlines:
            lines.append(f"- Chapter {outline.chapter_number}: {outline.title}")
        return "\n".join(lines)

    def as_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "synopsis": self.synopsis,
            "total_chapters": self.total_chapters,
            "estimated_panels_per_chapter": self.estimated_panels_per_chapter,
            "chapter_outlines": [outline.as_dict() for outline in self.chapter_outlines],
        }


def validate_chapter_sequence(total: int, outlines: Sequence[ChapterOutline]) -> None:
    if total < 1:
        raise PlanValidationError(f"totalChapters must be at least 1, received {total}.")

    if len(outlines) != total:
        raise PlanValidationError(
            f"Plan declares {total} chapters but lists {len(outlines)} outlines."
        )

    for expected, outline in enumerate(outlines, start=1):
        if outline.chapter_number != expected:
            raise PlanValidationError(
                "Chapter numbers must be sequential starting from 1 "
                f"(expected {expected}, found {outline.chapter_number})."
            )


@dataclass(frozen=True)
class ChapterText:
    """
    Generated prose for one chapter.

    ``source_outline`` is a back-reference only; rewrites keep ``chapter_number``.
    """

    chapter_number: int
    prose: str
    source_outline: ChapterOutline | None = None

    @property
    def title(self) -> str:
        if self.source_outline is not None:
            return self.source_outline.title
        return f"Chapter {self.chapter_number}"

    @property
    def summary(self) -> str:
        if len(self.prose) <= SUMMARY_LENGTH:
            return self.prose
        return self.prose[:SUMMARY_LENGTH] + "..."

    def with_prose(self, prose: str) -> "ChapterText":
        return ChapterText(
            chapter_number=self.chapter_number,
            prose=prose,
            source_outline=self.source_outline,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "chapter_number": self.chapter_number,
            "title": self.title,
            "prose": self.prose,
            "source_outline": (
                self.source_outline.as_dict() if self.source_outline is not None else None
            ),
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ChapterText":
        try:
            number = int(data["chapter_number"])
            prose = str(data["prose"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid chapter entry: {data}") from exc

        outline_data = data.get("source_outline")
        outline = ChapterOutline.from_mapping(outline_data) if outline_data else None
        return cls(chapter_number=number, prose=prose, source_outline=outline)


@dataclass(frozen=True)
class DialogueLine:
    text: str
    character: str | None = None

    def render(self) -> str:
        if self.character:
            return f"{self.character}: {self.text}"
        return self.text


@dataclass(frozen=True)
class PanelBrief:
    """
    Planned content of one panel before it is rendered.
    """

    order: int
    description: str
    dialogue: tuple[DialogueLine, ...] = ()

    @property
    def caption(self) -> str | None:
        if not self.dialogue:
            return None
        return " | ".join(line.render() for line in self.dialogue)

    def as_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "description": self.description,
            "dialogue": [
                {"character": line.character, "text": line.text} for line in self.dialogue
            ],
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PanelBrief":
        try:
            order = int(data["order"])
            description = str(data["description"]).strip()
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid panel brief entry: {data}") from exc
        dialogue = tuple(
            DialogueLine(
                text=str(item.get("text", "")).strip(),
                character=_coerce_optional_str(item.get("character")),
            )
            for item in data.get("dialogue") or ()
            if isinstance(item, Mapping) and str(item.get("text", "")).strip()
        )
        return cls(order=order, description=description, dialogue=dialogue)
