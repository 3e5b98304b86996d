"""
End-to-end scenarios through the orchestrator with faked text and image services.
"""

import re

import pytest

from conftest import FakeImageService, FakeTextService, extraction_reply, panels_reply, plan_reply
from mangaforge import InMemoryStoryStore, StoryOrchestrator, StoryPackage, StorybookPDFBuilder
from mangaforge.common import ChatResult, ServiceConfig
from mangaforge.common.errors import MalformedStructuredOutput, PlanValidationError
from mangaforge.pipeline import ConsistencyChecker, ConsistencyState, PanelRenderer, ReferenceExtractor
from mangaforge.pipeline.references import merge_references
from mangaforge.story_generation import ChapterWriter, StoryPlanner


def test_stray_cat_components(stray_cat_text_service, fake_image_service):
    """A hero finds a stray cat: plan, chapter, references, one panel."""
    plan = StoryPlanner(stray_cat_text_service).plan("a hero finds a stray cat", "slice of life")
    assert plan.total_chapters == 1

    chapter = ChapterWriter(stray_cat_text_service).write_chapter(
        plan.chapter_outlines[0], genre="slice of life", plan=plan
    )
    assert chapter.prose

    extracted = ReferenceExtractor(stray_cat_text_service).extract(chapter.prose)
    assert extracted.characters
    assert extracted.characters[0].description

    state = ConsistencyState()
    merge_references(state, extracted)
    panel = PanelRenderer(fake_image_service).render(
        "Mochi meets the hero", state=state, style="manga", order=1
    )
    assert panel.image_ref
    assert panel.seed_used is not None


class TestStoryOrchestrator:
    """Tests for the full pipeline run."""

    @pytest.fixture
    def two_chapter_text_service(self):
        return FakeTextService(
            {
                "plan": plan_reply(total=2, panels=3),
                "chapter": lambda user: "Aria walks the tower." if "chapter 1" in user else "aria returns.",
                "extract": [
                    extraction_reply(
                        characters=[{"name": "Aria", "description": "silver hair"}],
                        notes="Full moon",
                    ),
                    extraction_reply(
                        characters=[{"name": "aria", "description": "scar over left eye"}],
                    ),
                ],
                "panels": panels_reply(["Aria at the gate", "Aria climbs", "Aria looks at the moon"]),
            }
        )

    def test_run_builds_package(self, two_chapter_text_service):
        image_service = FakeImageService()
        store = InMemoryStoryStore()
        stages = []
        orchestrator = StoryOrchestrator(
            text_service=two_chapter_text_service,
            image_service=image_service,
            store=store,
        )

        package = orchestrator.run(
            "An apprentice mage guards a tower",
            genre="fantasy",
            aspect_ratio="widescreen",
            story_id="story-1",
            max_workers=3,
            progress_callback=lambda stage, payload: stages.append(stage),
        )

        assert [asset.chapter.chapter_number for asset in package.chapters] == [1, 2]
        for asset in package.chapters:
            assert [panel.order for panel in asset.panels] == [1, 2, 3]
            assert all(panel.story_id == "story-1" for panel in asset.panels)

        seeds = {panel.seed_used for asset in package.chapters for panel in asset.panels}
        assert len(seeds) == 1
        assert image_service.requested_seeds.count(None) == 1
        assert package.state.seeds == {"story": seeds.pop()}
        assert {(c["width"], c["height"]) for c in image_service.calls} == {(2048, 1152)}

        assert len(package.state.characters) == 1
        assert package.state.get_character("ARIA").description == "silver hair; scar over left eye"

        records = store.get_chapters("story-1")
        assert [record["chapter_number"] for record in records] == [1, 2]
        assert records[0]["id"] == package.chapters[0].chapter_id
        assert len(records[1]["panels"]) == 3

        assert stages[0] == "plan:generating"
        assert stages[-1] == "pipeline:complete"
        assert stages.count("panel:done") == 6

    def test_chapter_two_panels_see_merged_reference(self, two_chapter_text_service):
        image_service = FakeImageService()
        package = StoryOrchestrator(
            text_service=two_chapter_text_service, image_service=image_service
        ).run("premise", genre="fantasy", max_workers=1)

        chapter_two_prompts = [panel.prompt_used for panel in package.chapter(2).panels]
        assert all("scar over left eye" in prompt for prompt in chapter_two_prompts)
        assert all("scar over left eye" not in p.prompt_used for p in package.chapter(1).panels)

    def test_failed_stage_persists_nothing(self):
        text_service = FakeTextService(
            {
                "plan": plan_reply(total=1, panels=2),
                "chapter": "Prose.",
                "extract": extraction_reply(),
                "panels": "sorry, no panels today",
            }
        )
        store = InMemoryStoryStore()
        orchestrator = StoryOrchestrator(
            text_service=text_service, image_service=FakeImageService(), store=store
        )

        with pytest.raises(MalformedStructuredOutput):
            orchestrator.run("premise", genre="drama", story_id="broken")
        assert store.get_chapters("broken") == []

    def test_invalid_plan_stops_before_writing(self):
        text_service = FakeTextService({"plan": plan_reply(total=0)})
        with pytest.raises(PlanValidationError):
            StoryOrchestrator(text_service=text_service, image_service=FakeImageService()).run(
                "premise", genre="drama"
            )
        assert text_service.calls_for("chapter") == []

    def test_panels_per_chapter_override(self, stray_cat_text_service):
        package = StoryOrchestrator(
            text_service=stray_cat_text_service, image_service=FakeImageService()
        ).run("a hero finds a stray cat", genre="slice of life", panels_per_chapter=2)

        assert len(package.chapters[0].panels) == 2
        assert "exactly 2 manga panels" in stray_cat_text_service.calls_for("panels")[0]["system"]

    def test_auto_refine_below_threshold(self, stray_cat_text_service):
        image_service = FakeImageService()
        replies = iter(
            [
                '{"isConsistent": false, "confidenceScore": 40, "issues": [], "suggestions": ["Torn ear"]}',
                '{"isConsistent": true, "confidenceScore": 95}',
                '{"isConsistent": true, "confidenceScore": 90}',
            ]
        )
        checker = ConsistencyChecker(
            ServiceConfig(),
            completion_fn=lambda **_: ChatResult(text=next(replies), raw=None),
        )

        package = StoryOrchestrator(
            text_service=stray_cat_text_service,
            image_service=image_service,
            consistency_checker=checker,
        ).run(
            "a hero finds a stray cat",
            genre="slice of life",
            max_workers=1,
            auto_refine_threshold=75,
        )

        panels = package.chapters[0].panels
        refined = [panel for panel in panels if "IMPORTANT FOR CONSISTENCY: Torn ear." in panel.prompt_used]
        assert len(refined) == 1
        assert len(image_service.calls) == 4
        assert len({panel.seed_used for panel in panels}) == 1


    def test_character_sheets_feed_consistency_check(self, stray_cat_text_service):
        image_service = FakeImageService()
        checked = []

        def completion(**kwargs):
            checked.append(kwargs["messages"][1]["content"])
            return ChatResult(text='{"isConsistent": true, "confidenceScore": 95}', raw=None)

        stages = []
        package = StoryOrchestrator(
            text_service=stray_cat_text_service,
            image_service=image_service,
            consistency_checker=ConsistencyChecker(ServiceConfig(), completion_fn=completion),
        ).run(
            "a hero finds a stray cat",
            genre="slice of life",
            max_workers=1,
            auto_refine_threshold=75,
            character_sheets=True,
            progress_callback=lambda stage, payload: stages.append(stage),
        )

        mochi = package.state.get_character("Mochi")
        assert len(mochi.reference_images) == 1
        assert image_service.calls[0]["prompt"].startswith("manga style character design: Mochi")
        assert len(image_service.calls) == 4
        assert package.state.seed_for("character:mochi") != package.state.seed_for("story")
        assert stages.index("chapter:sheets") < stages.index("chapter:rendering")

        assert len(checked) == 3
        urls = [part["image_url"]["url"] for part in checked[0] if part["type"] == "image_url"]
        assert urls == [mochi.reference_images[0], package.chapters[0].panels[0].image_ref]

    def test_persist_requires_store(self, stray_cat_text_service):
        orchestrator = StoryOrchestrator(
            text_service=stray_cat_text_service, image_service=FakeImageService()
        )
        package = orchestrator.run("a hero finds a stray cat", genre="slice of life")
        with pytest.raises(RuntimeError):
            orchestrator._persist(package)

class TestStoryPackage:
    """Serialization, refinement on a package, and PDF export."""

    @pytest.fixture
    def package(self, stray_cat_text_service):
        return StoryOrchestrator(
            text_service=stray_cat_text_service, image_service=FakeImageService()
        ).run("a hero finds a stray cat", genre="slice of life", story_id="cat")

    def test_yaml_round_trip(self, package, tmp_path):
        path = tmp_path / "package.yaml"
        path.write_text(package.to_yaml(), encoding="utf-8")

        restored = StoryPackage.from_yaml(path)

        assert restored.to_dict() == package.to_dict()
        assert restored.state.seed_for("story") == package.state.seed_for("story")
        assert restored.chapters[0].briefs[0].caption == "Narrator: Line 1"

    def test_refine_panel_in_package(self, package):
        image_service = FakeImageService(first_seed=9000)
        store = InMemoryStoryStore()
        orchestrator = StoryOrchestrator(
            text_service=FakeTextService(), image_service=image_service, store=store
        )
        original = package.chapter(1).panel(2)

        refined = orchestrator.refine_panel(
            package, chapter_number=1, order=2, instructions="Add rain"
        )

        assert refined.seed_used == original.seed_used
        assert package.chapter(1).panel(2) is refined
        assert image_service.requested_seeds == [original.seed_used]

    def test_rewrite_chapter_keeps_panels(self, package):
        orchestrator = StoryOrchestrator(
            text_service=FakeTextService({"rewrite": "A rainy new draft."}),
            image_service=FakeImageService(),
        )
        panels_before = list(package.chapter(1).panels)

        revised = orchestrator.rewrite_chapter(package, chapter_number=1, instructions="Rain")

        assert revised.prose == "A rainy new draft."
        assert package.chapter(1).chapter.prose == "A rainy new draft."
        assert package.chapter(1).panels == panels_before

    def test_unknown_chapter_or_panel(self, package):
        with pytest.raises(KeyError):
            package.chapter(9)
        with pytest.raises(KeyError):
            package.chapter(1).panel(9)

    def test_pdf_export_without_reachable_images(self, package, tmp_path):
        output = tmp_path / "out" / "story.pdf"
        local_package = StoryPackage.from_dict(
            {
                **package.to_dict(),
                "chapters": [
                    {
                        **asset.to_dict(),
                        "panels": [
                            {**panel.as_dict(), "image_ref": str(tmp_path / "missing.png")}
                            for panel in asset.panels
                        ],
                    }
                    for asset in package.chapters
                ],
            }
        )

        StorybookPDFBuilder().build(local_package, output)

        assert output.read_bytes().startswith(b"%PDF")

    def test_pdf_export_splits_long_prose_and_skips_unreadable_images(self, package, tmp_path):
        bogus = tmp_path / "not-an-image.png"
        bogus.write_bytes(b"definitely not a png")
        payload = package.to_dict()
        chapter = payload["chapters"][0]
        chapter["chapter"]["prose"] = " ".join(["Mochi keeps watch over the sea."] * 2000)
        chapter["panels"] = [{**panel, "image_ref": str(bogus)} for panel in chapter["panels"]]
        output = tmp_path / "long.pdf"

        StorybookPDFBuilder().build(StoryPackage.from_dict(payload), output)

        pages = re.findall(rb"/Type /Page\b", output.read_bytes())
        # cover, several prose pages, three panel pages
        assert len(pages) > 6

    def test_render_character_sheets_for_package(self, package):
        image_service = FakeImageService(first_seed=500)
        orchestrator = StoryOrchestrator(text_service=FakeTextService(), image_service=image_service)

        sheets = orchestrator.render_character_sheets(package, angles=1)

        assert [sheet.name for sheet in sheets] == ["Mochi"]
        assert package.state.get_character("Mochi").reference_images == sheets[0].images
        assert orchestrator.render_character_sheets(package) == []
        assert len(image_service.calls) == 2
