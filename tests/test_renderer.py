"""
Tests for panel rendering and seed propagation.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import FakeImageService
from mangaforge.ai_generation import AspectRatio
from mangaforge.common.errors import GenerationServiceError
from mangaforge.common.interfaces import RenderedImage
from mangaforge.pipeline import ConsistencyState, PanelRenderer, build_consistency_state


@pytest.fixture
def state():
    return build_consistency_state(
        characters={"Mochi": "small grey cat with a torn left ear", "Hana": "elderly keeper"},
        locations={"Lighthouse": "white tower with a red lamp room"},
        continuity_notes="Always dusk",
    )


def test_first_render_captures_seed_and_later_renders_reuse_it(state, fake_image_service):
    renderer = PanelRenderer(fake_image_service)

    first = renderer.render("Mochi at the Lighthouse", state=state, style="manga", order=1)
    second = renderer.render("Mochi sleeps", state=state, style="manga", order=2)

    assert fake_image_service.requested_seeds == [None, first.seed_used]
    assert second.seed_used == first.seed_used
    assert state.seed_for("story") == first.seed_used


def test_prompt_carries_style_and_relevant_references(state, fake_image_service):
    panel = PanelRenderer(fake_image_service).render(
        "Mochi at the Lighthouse", state=state, style="watercolor"
    )

    assert panel.prompt_used.startswith("watercolor style: Mochi at the Lighthouse")
    assert "Mochi: small grey cat with a torn left ear" in panel.prompt_used
    assert "Hana" not in panel.prompt_used
    assert "Lighthouse: white tower with a red lamp room" in panel.prompt_used
    assert "CONTINUITY NOTES\n- Always dusk" in panel.prompt_used


@pytest.mark.parametrize(
    "ratio, size",
    [
        ("square", (2048, 2048)),
        ("16:9", (2048, 1152)),
        (AspectRatio.PORTRAIT, (1536, 2048)),
        ("cinemascope", (2048, 2048)),
    ],
)
def test_aspect_ratio_dimensions(state, fake_image_service, ratio, size):
    PanelRenderer(fake_image_service).render("Mochi", state=state, style="manga", aspect_ratio=ratio)
    call = fake_image_service.calls[0]
    assert (call["width"], call["height"]) == size


def test_concurrent_first_renders_share_one_seed(state):
    service = FakeImageService(delay=0.01)
    renderer = PanelRenderer(service)

    with ThreadPoolExecutor(max_workers=6) as pool:
        panels = list(
            pool.map(
                lambda order: renderer.render(
                    f"Mochi pose {order}", state=state, style="manga", order=order
                ),
                range(1, 7),
            )
        )

    assert service.requested_seeds.count(None) == 1
    assert len({panel.seed_used for panel in panels}) == 1


def test_groups_keep_separate_seeds(state, fake_image_service):
    renderer = PanelRenderer(fake_image_service)
    a = renderer.render("Mochi", state=state, style="manga", group="chapter-1")
    b = renderer.render("Mochi", state=state, style="manga", group="chapter-2")
    assert a.seed_used != b.seed_used
    assert state.seeds == {"chapter-1": a.seed_used, "chapter-2": b.seed_used}


def test_explicit_seed_bypasses_group(state, fake_image_service):
    panel = PanelRenderer(fake_image_service).render("Mochi", state=state, style="manga", seed=5)
    assert panel.seed_used == 5
    assert state.seed_for("story") is None


class _BrokenImageService:
    def render(self, prompt, width, height, seed=None):
        return RenderedImage(image_ref="", seed=1)


class _FailingImageService:
    def render(self, prompt, width, height, seed=None):
        raise GenerationServiceError("upstream down", stage="image")


def test_missing_image_ref_is_an_error(state):
    with pytest.raises(GenerationServiceError):
        PanelRenderer(_BrokenImageService()).render("Mochi", state=state, style="manga")
    assert state.seed_for("story") is None


def test_failed_first_render_captures_nothing():
    state = ConsistencyState()
    with pytest.raises(GenerationServiceError):
        PanelRenderer(_FailingImageService()).render("Mochi", state=state, style="manga")
    assert state.seeds == {}
