"""
Tests for panel refinement and chapter rewrites.
"""

import pytest

from conftest import FakeTextService
from mangaforge.ai_generation import build_refined_prompt
from mangaforge.common.errors import GenerationServiceError
from mangaforge.pipeline import (
    PanelRenderer,
    RefinementLoop,
    RefinementRequest,
    build_consistency_state,
)
from mangaforge.pipeline.refinement import suggestions_from
from mangaforge.story_generation import ChapterText


@pytest.fixture
def state():
    return build_consistency_state(characters={"Mochi": "grey cat with a torn left ear"})


@pytest.fixture
def rendered(state, fake_image_service):
    renderer = PanelRenderer(fake_image_service)
    return renderer.render("Mochi on the rocks", state=state, style="manga", chapter_number=1)


def _loop(image_service, text_service=None):
    return RefinementLoop(
        renderer=PanelRenderer(image_service),
        text_service=text_service or FakeTextService(),
    )


def test_preserve_seed_reuses_original_seed(state, rendered, fake_image_service):
    request = RefinementRequest(
        target=rendered,
        instructions="Make the waves bigger",
        suggestions=("Keep the torn left ear visible", "Fur must stay grey"),
    )
    refined = _loop(fake_image_service).refine(request, state=state)

    assert refined.seed_used == rendered.seed_used
    assert fake_image_service.requested_seeds[-1] == rendered.seed_used
    assert refined.order == rendered.order
    assert refined.chapter_number == 1
    assert "IMPORTANT FOR CONSISTENCY: Keep the torn left ear visible. Fur must stay grey." in refined.prompt_used
    assert "EDIT REQUEST: Make the waves bigger" in refined.prompt_used
    assert refined.prompt_used.startswith(rendered.prompt_used.rstrip("."))
    assert state.seed_for("story") == rendered.seed_used


def test_fresh_seed_replaces_group_seed(state, rendered, fake_image_service):
    request = RefinementRequest(target=rendered, instructions="New look", preserve_seed=False)
    refined = _loop(fake_image_service).refine(request, state=state)

    assert fake_image_service.requested_seeds[-1] is None
    assert refined.seed_used != rendered.seed_used
    assert state.seed_for("story") == refined.seed_used


def test_explicit_seed_wins(state, rendered, fake_image_service):
    request = RefinementRequest(target=rendered, instructions="Retry", seed=77)
    refined = _loop(fake_image_service).refine(request, state=state)
    assert refined.seed_used == 77
    assert state.seed_for("story") == 77


def test_new_style_replaces_previous_prefix(rendered, fake_image_service):
    request = RefinementRequest(target=rendered, instructions="Ink it")
    refined = _loop(fake_image_service).refine_panel(request, style="noir")

    assert refined.prompt_used.startswith("noir style: Mochi on the rocks. ")
    assert "manga style:" not in refined.prompt_used


def test_second_refinement_replaces_earlier_edits(state, rendered, fake_image_service):
    loop = _loop(fake_image_service)
    night = loop.refine(
        RefinementRequest(
            target=rendered,
            instructions="Make it night",
            suggestions=("Keep the torn left ear visible",),
        ),
        state=state,
    )
    day = loop.refine(RefinementRequest(target=night, instructions="Make it day"), state=state)

    assert day.prompt_used.endswith("EDIT REQUEST: Make it day")
    assert "Make it night" not in day.prompt_used
    assert "IMPORTANT FOR CONSISTENCY" not in day.prompt_used
    assert day.prompt_used.count("manga style:") == 1
    assert day.prompt_used.startswith(rendered.prompt_used.rstrip("."))
    assert day.seed_used == rendered.seed_used


def test_chapter_rewrite_replaces_prose_only(fake_image_service):
    text_service = FakeTextService({"rewrite": "  Revised chapter text.  "})
    chapter = ChapterText(chapter_number=3, prose="Original text about Mochi.")
    request = RefinementRequest(
        target=chapter,
        instructions="Add more rain",
        selection="about Mochi",
        genre="fantasy",
    )

    revised = _loop(fake_image_service, text_service).refine(request)

    assert revised.chapter_number == 3
    assert revised.prose == "Revised chapter text."
    assert fake_image_service.calls == []
    call = text_service.calls[0]
    assert call["temperature"] == pytest.approx(0.5)
    assert "Return ONLY" in call["system"]
    assert "Add more rain" in call["user"]
    assert '"""about Mochi"""' in call["user"]
    assert "Genre: fantasy" in call["user"]


def test_empty_rewrite_is_an_error(fake_image_service):
    text_service = FakeTextService({"rewrite": "   "})
    request = RefinementRequest(target=ChapterText(1, "Prose."), instructions="Shorter")
    with pytest.raises(GenerationServiceError):
        _loop(fake_image_service, text_service).refine(request)


def test_request_validation(rendered):
    with pytest.raises(ValueError):
        RefinementRequest(target=rendered, instructions="  ")
    with pytest.raises(TypeError):
        RefinementRequest(target="panel", instructions="x")


def test_suggestions_from_strips_blanks():
    assert suggestions_from([" a ", "", "  ", "b"]) == ("a", "b")
    assert suggestions_from(None) == ()


def test_refined_prompt_from_plain_prompt():
    prompt = build_refined_prompt(
        "A cat on a roof\n\nEDIT REQUEST: Older edit",
        style="watercolor",
        suggestions=(" Grey fur. ", ""),
        instructions="Add stars",
    )
    assert prompt == (
        "watercolor style: A cat on a roof.\n\n"
        "IMPORTANT FOR CONSISTENCY: Grey fur.\n\n"
        "EDIT REQUEST: Add stars"
    )
