"""
Tests for the LiteLLM and Replicate service adapters, with the network faked out.
"""

from types import SimpleNamespace

import pytest

from mangaforge.ai_generation import ReplicateImageService, normalize_image_outputs
from mangaforge.common import ChatResult, LiteLLMTextService, ServiceConfig
from mangaforge.common import llm as llm_module
from mangaforge.common.errors import GenerationServiceError


class TestLiteLLMTextService:
    """Tests for the text service and completion helper."""

    def test_complete_passes_prompts_and_timeout(self):
        captured = {}

        def completion_fn(**kwargs):
            captured.update(kwargs)
            return ChatResult(text="hello", raw=None)

        config = ServiceConfig(text_model="openai/gpt-4o", text_api_key="sk", request_timeout=12)
        service = LiteLLMTextService(config, completion_fn=completion_fn)

        assert service.complete("system text", "user text", 0.4) == "hello"
        assert captured["model"] == "openai/gpt-4o"
        assert captured["messages"] == [
            {"role": "system", "content": "system text"},
            {"role": "user", "content": "user text"},
        ]
        assert captured["temperature"] == 0.4
        assert captured["timeout"] == 12

    def test_empty_text_is_an_error(self):
        service = LiteLLMTextService(
            ServiceConfig(), completion_fn=lambda **_: ChatResult(text="", raw=None)
        )
        with pytest.raises(GenerationServiceError):
            service.complete("s", "u", 0.1)

    def test_litellm_failure_is_wrapped(self, monkeypatch):
        def boom(**_):
            raise TimeoutError("timed out")

        monkeypatch.setattr(llm_module, "completion", boom)
        with pytest.raises(GenerationServiceError) as excinfo:
            llm_module.call_chat_completion(model="m", messages=[], timeout=1)
        assert excinfo.value.stage == "text"
        assert isinstance(excinfo.value.__cause__, TimeoutError)

    def test_unexpected_response_shape(self, monkeypatch):
        monkeypatch.setattr(llm_module, "completion", lambda **_: {"choices": []})
        with pytest.raises(GenerationServiceError):
            llm_module.call_chat_completion(model="m", messages=[])

    def test_response_text_is_stripped(self, monkeypatch):
        response = {"choices": [{"message": {"content": "  done \n"}}]}
        monkeypatch.setattr(llm_module, "completion", lambda **_: response)
        assert llm_module.call_chat_completion(model="m", messages=[]).text == "done"


class FakePrediction:
    def __init__(self, statuses, output=None, logs="", error=None):
        self._statuses = list(statuses)
        self.status = self._statuses.pop(0)
        self.output = output
        self.logs = logs
        self.error = error
        self.id = "pred-1"
        self.canceled = False

    def reload(self):
        if self._statuses:
            self.status = self._statuses.pop(0)

    def cancel(self):
        self.canceled = True


class FakeClient:
    def __init__(self, prediction):
        self.prediction = prediction
        self.create_kwargs = None
        self.predictions = SimpleNamespace(create=self._create)

    def _create(self, **kwargs):
        self.create_kwargs = kwargs
        return self.prediction


def _service(prediction, **config_kwargs):
    config = ServiceConfig(image_api_token="r8", poll_interval=0.01, **config_kwargs)
    client = FakeClient(prediction)
    return ReplicateImageService(config, client=client, sleep=lambda _: None), client


class TestReplicateImageService:
    """Tests for seed handling and polling."""

    def test_seed_read_from_logs_when_none_requested(self):
        prediction = FakePrediction(
            ["starting", "processing", "succeeded"],
            output=["https://replicate.test/out-0.png"],
            logs="Using seed: 918273\nRunning inference",
        )
        service, client = _service(prediction)

        rendered = service.render("manga style: a cat", 2048, 1152)

        assert rendered.image_ref == "https://replicate.test/out-0.png"
        assert rendered.seed == 918273
        assert client.create_kwargs["model"] == "black-forest-labs/flux-schnell"
        assert "seed" not in client.create_kwargs["input"]
        assert client.create_kwargs["input"]["aspect_ratio"] == "16:9"

    def test_requested_seed_is_sent_and_returned(self):
        prediction = FakePrediction(["succeeded"], output="https://replicate.test/x.png")
        service, client = _service(prediction)

        rendered = service.render("prompt", 2048, 2048, seed=42)

        assert client.create_kwargs["input"]["seed"] == 42
        assert rendered.seed == 42

    def test_versioned_seedream_payload(self):
        prediction = FakePrediction(
            ["succeeded"], output={"images": ["https://replicate.test/s.png"], "seed": 7}
        )
        service, client = _service(prediction, image_model="bytedance/seedream-4:abc123")

        rendered = service.render("prompt", 1536, 2048)

        assert client.create_kwargs["version"] == "abc123"
        assert client.create_kwargs["input"]["width"] == 1536
        assert client.create_kwargs["input"]["size"] == "custom"
        assert rendered.seed == 7

    def test_unreported_seed_is_an_error(self):
        prediction = FakePrediction(["succeeded"], output="https://replicate.test/x.png")
        service, _ = _service(prediction)
        with pytest.raises(GenerationServiceError):
            service.render("prompt", 2048, 2048)

    def test_failed_prediction(self):
        prediction = FakePrediction(["failed"], error="NSFW content detected")
        service, _ = _service(prediction)
        with pytest.raises(GenerationServiceError, match="NSFW"):
            service.render("prompt", 2048, 2048, seed=1)

    def test_timeout_cancels_prediction(self):
        prediction = FakePrediction(["processing"] * 1000)
        service, _ = _service(prediction, request_timeout=0.0001)
        with pytest.raises(GenerationServiceError, match="timed out"):
            service.render("prompt", 2048, 2048, seed=1)
        assert prediction.canceled

    def test_unknown_model_rejected(self):
        prediction = FakePrediction(["succeeded"], output="https://replicate.test/x.png")
        service, _ = _service(prediction, image_model="someone/unknown-model")
        with pytest.raises(ValueError):
            service.render("prompt", 2048, 2048, seed=1)

    def test_token_required_without_client(self):
        with pytest.raises(ValueError):
            ReplicateImageService(ServiceConfig())


def test_normalize_image_outputs_shapes():
    file_output = SimpleNamespace(url="https://replicate.test/file.png")
    assert normalize_image_outputs(None) == []
    assert normalize_image_outputs("https://a.png") == ["https://a.png"]
    assert normalize_image_outputs(["https://a.png", {"url": "https://b.png"}]) == [
        "https://a.png",
        "https://b.png",
    ]
    assert normalize_image_outputs(file_output) == ["https://replicate.test/file.png"]
    assert normalize_image_outputs([file_output]) == ["https://replicate.test/file.png"]
