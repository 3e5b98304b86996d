"""
Pytest Configuration and Fixtures

Shared fakes for the text and image services plus canned model replies.
"""

import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from mangaforge.common.interfaces import RenderedImage

# Substrings of each stage's system prompt, used to route fake replies.
STAGE_MARKERS = {
    "plan": "story architect",
    "chapter": "expert manga story writer",
    "extract": "character consistency specialist",
    "panels": "panel director",
    "rewrite": "story editor",
}

Reply = Union[str, List[str], Callable[[str], str]]


class FakeTextService:
    """
    Text service that answers by pipeline stage.

    Each stage maps to a fixed string, a list consumed in order, or a callable
    receiving the user prompt.
    """

    def __init__(self, replies: Optional[Dict[str, Reply]] = None):
        self.replies: Dict[str, Reply] = dict(replies or {})
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def complete(self, system_prompt: str, user_prompt: str, temperature: float) -> str:
        stage = self._stage_for(system_prompt)
        with self._lock:
            self.calls.append(
                {
                    "stage": stage,
                    "system": system_prompt,
                    "user": user_prompt,
                    "temperature": temperature,
                }
            )
            reply = self.replies.get(stage)
            if isinstance(reply, list):
                if not reply:
                    raise AssertionError(f"No replies left for stage {stage!r}")
                return reply.pop(0)
        if reply is None:
            raise AssertionError(f"No reply configured for stage {stage!r}")
        if callable(reply):
            return reply(user_prompt)
        return reply

    def calls_for(self, stage: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["stage"] == stage]

    @staticmethod
    def _stage_for(system_prompt: str) -> str:
        lowered = system_prompt.lower()
        for stage, marker in STAGE_MARKERS.items():
            if marker in lowered:
                return stage
        raise AssertionError(f"Unrecognised system prompt: {system_prompt[:80]!r}")


class FakeImageService:
    """
    Image service that assigns increasing seeds when none is supplied and echoes
    the requested seed otherwise.
    """

    def __init__(self, *, first_seed: int = 4242, delay: float = 0.0):
        self.calls: List[Dict[str, Any]] = []
        self._next_seed = first_seed
        self._delay = delay
        self._lock = threading.Lock()

    def render(self, prompt: str, width: int, height: int, seed: Optional[int] = None) -> RenderedImage:
        if self._delay:
            time.sleep(self._delay)
        with self._lock:
            index = len(self.calls) + 1
            if seed is None:
                realized = self._next_seed
                self._next_seed += 1
            else:
                realized = seed
            self.calls.append(
                {"prompt": prompt, "width": width, "height": height, "seed": seed}
            )
        return RenderedImage(image_ref=f"https://images.test/panel-{index}.png", seed=realized)

    @property
    def requested_seeds(self) -> List[Optional[int]]:
        return [call["seed"] for call in self.calls]


def plan_reply(total: int = 2, panels: int = 3, title: str = "The Lighthouse Cat") -> str:
    return json.dumps(
        {
            "title": title,
            "synopsis": "A stray cat guards a haunted lighthouse.",
            "totalChapters": total,
            "estimatedPanelsPerChapter": panels,
            "chapterOutlines": [
                {
                    "chapterNumber": number,
                    "title": f"Chapter title {number}",
                    "summary": f"Events of chapter {number}",
                    "estimatedPanels": panels,
                }
                for number in range(1, total + 1)
            ],
        }
    )


def panels_reply(descriptions: List[str]) -> str:
    return json.dumps(
        {
            "panels": [
                {
                    "description": description,
                    "dialogue": [{"character": "Narrator", "text": f"Line {index}"}],
                }
                for index, description in enumerate(descriptions, start=1)
            ]
        }
    )


def extraction_reply(
    characters: Optional[List[Dict[str, str]]] = None,
    locations: Optional[List[Dict[str, str]]] = None,
    notes: str = "",
) -> str:
    return json.dumps(
        {
            "characters": characters or [],
            "locations": locations or [],
            "continuityNotes": notes,
        }
    )


@pytest.fixture
def fake_text_service() -> FakeTextService:
    return FakeTextService()


@pytest.fixture
def fake_image_service() -> FakeImageService:
    return FakeImageService()


@pytest.fixture
def stray_cat_text_service() -> FakeTextService:
    """Replies for a one-chapter, three-panel story about a stray cat."""
    return FakeTextService(
        {
            "plan": plan_reply(total=1, panels=3),
            "chapter": "Mochi, a grey stray cat, climbed the lighthouse stairs at dusk.",
            "extract": extraction_reply(
                characters=[
                    {
                        "name": "Mochi",
                        "description": "small grey stray cat with a torn left ear",
                        "role": "protagonist",
                    }
                ],
                locations=[
                    {"name": "Lighthouse", "description": "white tower with a red lamp room"}
                ],
                notes="Always dusk with orange light",
            ),
            "panels": panels_reply(
                [
                    "Mochi stares up at the Lighthouse",
                    "Mochi climbs the spiral stairs",
                    "Mochi sits beside the glowing lamp",
                ]
            ),
        }
    )
