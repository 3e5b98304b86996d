"""
Integration with Replicate for seeded manga panel generation.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterable as IterableABC
from typing import Any, Callable, Mapping

import replicate

from mangaforge.common.config import ServiceConfig
from mangaforge.common.errors import GenerationServiceError
from mangaforge.common.interfaces import RenderedImage

logger = logging.getLogger(__name__)

_TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled"})
_SEED_LOG_PATTERN = re.compile(r"\bseed\b\s*[:=]?\s*(-?\d+)", re.IGNORECASE)

_ASPECT_RATIO_LABELS: tuple[tuple[float, str], ...] = (
    (1.0, "1:1"),
    (16 / 9, "16:9"),
    (3 / 4, "3:4"),
    (4 / 3, "4:3"),
    (9 / 16, "9:16"),
)


def _closest_aspect_label(width: int, height: int) -> str:
    ratio = width / height
    return min(_ASPECT_RATIO_LABELS, key=lambda item: abs(item[0] - ratio))[1]


def _build_flux_input(*, prompt: str, width: int, height: int) -> dict[str, Any]:
    return {
        "prompt": prompt,
        "aspect_ratio": _closest_aspect_label(width, height),
        "num_outputs": 1,
        "output_format": "png",
    }


def _build_seedream_input(*, prompt: str, width: int, height: int) -> dict[str, Any]:
    return {
        "prompt": prompt,
        "size": "custom",
        "width": width,
        "height": height,
        "max_images": 1,
    }


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "black-forest-labs/flux-schnell": _build_flux_input,
    "black-forest-labs/flux-dev": _build_flux_input,
    "bytedance/seedream-4": _build_seedream_input,
}


def _build_replicate_input_payload(
    *,
    model_identifier: str,
    prompt: str,
    width: int,
    height: int,
) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(_MODEL_INPUT_BUILDERS))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )

    return builder(prompt=prompt, width=width, height=height)


class ReplicateImageService:
    """
    ``ImageGenerationService`` backed by a Replicate text-to-image model.

    Parameters
    ----------
    config:
        Service configuration. ``image_api_token`` and ``image_model`` are required
        unless a pre-built ``client`` is supplied.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    sleep:
        Sleep function used between status polls (injectable for tests).
    """

    def __init__(
        self,
        config: ServiceConfig,
        *,
        client: replicate.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not config.image_api_token and client is None:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass image_api_token."
            )
        if not config.image_model:
            raise ValueError(
                "Replicate model identifier is required. "
                "Set REPLICATE_MODEL or pass image_model in the form 'owner/model[:version]'."
            )

        self._config = config
        self._model_identifier = config.image_model
        self._client = client or replicate.Client(
            api_token=config.image_api_token,
            timeout=config.request_timeout,
        )
        self._sleep = sleep

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    def render(
        self,
        prompt: str,
        width: int,
        height: int,
        seed: int | None = None,
    ) -> RenderedImage:
        """
        Render one image. The ``seed`` input is omitted entirely when ``seed`` is None so
        the model picks one; the realized seed is read back from the prediction.
        """
        replicate_input = _build_replicate_input_payload(
            model_identifier=self._model_identifier,
            prompt=prompt,
            width=width,
            height=height,
        )
        if seed is not None:
            replicate_input["seed"] = int(seed)

        prediction = self._run_prediction(replicate_input)

        image_refs = normalize_image_outputs(_image_payload(prediction.output))
        if not image_refs:
            raise GenerationServiceError(
                "Image service returned no image reference.",
                stage="image",
                raw_response=str(prediction.output),
            )

        realized_seed = _realized_seed(prediction.output, prediction.logs)
        if realized_seed is None:
            realized_seed = seed
        if realized_seed is None:
            raise GenerationServiceError(
                "Image service did not report the seed it used.",
                stage="image",
                raw_response=prediction.logs,
            )

        logger.info("Rendered %dx%d image with seed %s", width, height, realized_seed)
        return RenderedImage(image_ref=image_refs[0], seed=int(realized_seed))

    def _run_prediction(self, replicate_input: Mapping[str, Any]) -> Any:
        create_kwargs: dict[str, Any] = {"input": dict(replicate_input)}
        if ":" in self._model_identifier:
            create_kwargs["version"] = self._model_identifier.split(":", maxsplit=1)[1]
        else:
            create_kwargs["model"] = self._model_identifier

        deadline = time.monotonic() + self._config.request_timeout
        try:
            prediction = self._client.predictions.create(**create_kwargs)
            while prediction.status not in _TERMINAL_STATUSES:
                if time.monotonic() >= deadline:
                    prediction.cancel()
                    raise GenerationServiceError(
                        f"Prediction {prediction.id} timed out after "
                        f"{self._config.request_timeout:.0f}s.",
                        stage="image",
                    )
                self._sleep(self._config.poll_interval)
                prediction.reload()
        except GenerationServiceError:
            raise
        except Exception as exc:
            raise GenerationServiceError(
                f"Replicate prediction for '{self._model_identifier}' failed: {exc}",
                stage="image",
            ) from exc

        if prediction.status != "succeeded":
            raise GenerationServiceError(
                f"Prediction {prediction.id} ended with status '{prediction.status}': "
                f"{prediction.error or 'no error message'}",
                stage="image",
                raw_response=prediction.logs,
            )
        return prediction


def _image_payload(output: Any) -> Any:
    if isinstance(output, Mapping):
        for key in ("images", "image", "output", "url"):
            if output.get(key):
                return output[key]
        return None
    return output


def _realized_seed(output: Any, logs: str | None) -> int | None:
    if isinstance(output, Mapping) and output.get("seed") is not None:
        try:
            return int(output["seed"])
        except (TypeError, ValueError):
            pass
    if logs:
        match = _SEED_LOG_PATTERN.search(logs)
        if match:
            return int(match.group(1))
    return None


def normalize_image_outputs(raw: Any) -> list[str]:
    """
    Normalize the image outputs returned by Replicate into a list of URL strings.
    """

    if raw is None:
        return []

    # replicate.helpers.FileOutput exposes the hosted URL and iterates over bytes.
    file_url = getattr(raw, "url", None)
    if isinstance(file_url, str) and not isinstance(raw, Mapping):
        return [file_url]

    if isinstance(raw, str):
        return [raw] if raw.strip() else []

    if isinstance(raw, bytes):
        return [raw.decode("utf-8", errors="ignore")]

    if isinstance(raw, Mapping):
        url = raw.get("url")
        return [str(url)] if url else []

    if isinstance(raw, IterableABC):
        collected = list(raw)
        if not collected:
            return []

        if all(isinstance(item, str) and len(item) == 1 for item in collected):
            return ["".join(collected)]

        normalized: list[str] = []
        for item in collected:
            if isinstance(item, str):
                if item.strip():
                    normalized.append(item)
            elif isinstance(item, bytes):
                normalized.append(item.decode("utf-8", errors="ignore"))
            elif item is not None:
                normalized.extend(normalize_image_outputs(item))
        return normalized

    return [str(raw)]
