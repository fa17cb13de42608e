"""Image generation on HuggingFace Spaces over the Gradio queue protocol.

Each supported model maps to a Space endpoint and a positional argument list.
Calls go through :meth:`QueueClient.call_with_failover` so a Space that is
gone (HTTP 404) falls back to its mirrors.
"""

import random
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin

import structlog
from opentelemetry import trace

from gengateway.providers.errors import (
    GenerationFailedError,
    InvalidParamsError,
    classify_upstream_error,
)
from gengateway.providers.models import MAX_SEED, ImageRequest, ImageResult
from gengateway.providers.queue_client import QueueClient

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

PROVIDER_NAME = "HuggingFace"
DEFAULT_MODEL = "z-image-turbo"

_SEED_RE = re.compile(r"Seed used for generation:\s*(\d+)")
_STATUS_FAILURE_RE = re.compile(r"\brate limit\b|\berror\b", re.IGNORECASE)
_IMG_SRC_RE = re.compile(r"""<img[^>]+src=["']([^"']+)["']""", re.IGNORECASE)
_IMAGE_URL_RE = re.compile(
    r"""https?://[^\s"'<>]+\.(?:jpg|jpeg|png|webp|gif)(?:\?[^\s"'<>]*)?""", re.IGNORECASE
)


@dataclass(frozen=True)
class SpaceModel:
    """How one model is invoked on its Space.

    Attributes:
        endpoint: Gradio API endpoint name.
        build_args: Builds the positional argument list from the request,
            the effective seed and the uploaded source file (if any).
        returns_html: The Space answers with an HTML fragment holding the
            image instead of a file object.
        needs_source_image: The model edits an existing image.
    """

    endpoint: str
    build_args: Callable[[ImageRequest, int, dict[str, Any] | None], list[Any]]
    returns_html: bool = False
    needs_source_image: bool = False


def size_to_aspect_ratio(width: int, height: int) -> str:
    ratio = width / height
    for label, value in (("16:9", 16 / 9), ("9:16", 9 / 16), ("4:3", 4 / 3), ("3:4", 3 / 4)):
        if abs(ratio - value) < 0.1:
            return label
    return "1:1"


def extract_image_url_from_html(html: str) -> str | None:
    match = _IMG_SRC_RE.search(html) or _IMAGE_URL_RE.search(html)
    if match is None:
        return None
    return match.group(1) if match.re is _IMG_SRC_RE else match.group(0)


def parse_seed(model: str, data: Sequence[Any], fallback: int) -> int:
    """Seed reported by the Space, or *fallback* when it reports none."""
    second = data[1] if len(data) > 1 else None
    if model == "qwen-image-fast" and isinstance(second, str):
        match = _SEED_RE.search(second)
        if match:
            return int(match.group(1))
    if isinstance(second, int | float) and not isinstance(second, bool):
        return int(second)
    return fallback


MODELS: dict[str, SpaceModel] = {
    "z-image-turbo": SpaceModel(
        endpoint="generate_image",
        build_args=lambda r, seed, _: [r.prompt, r.height, r.width, r.steps or 9, seed, False],
    ),
    "qwen-image-fast": SpaceModel(
        endpoint="generate_image",
        build_args=lambda r, seed, _: [
            r.prompt,
            seed,
            True,
            r.aspect_ratio or size_to_aspect_ratio(r.width, r.height),
            3,
            r.steps or 8,
        ],
    ),
    "ovis-image": SpaceModel(
        endpoint="generate",
        build_args=lambda r, seed, _: [r.prompt, r.height, r.width, seed, r.steps or 24, 4],
    ),
    "flux-1-schnell": SpaceModel(
        endpoint="infer",
        build_args=lambda r, seed, _: [r.prompt, seed, False, r.width, r.height, r.steps or 8],
    ),
    "z-image": SpaceModel(
        endpoint="generate_image",
        build_args=lambda r, seed, _: [
            r.prompt,
            r.negative_prompt or "",
            r.height,
            r.width,
            r.steps or 28,
            r.guidance_scale if r.guidance_scale is not None else 4.0,
            seed,
            False,
        ],
    ),
    "omni-image": SpaceModel(
        endpoint="text_to_image_interface",
        build_args=lambda r, _seed, _file: [
            r.prompt,
            r.aspect_ratio or size_to_aspect_ratio(r.width, r.height),
        ],
        returns_html=True,
    ),
    "omni-edit": SpaceModel(
        endpoint="edit_image_interface",
        build_args=lambda r, _seed, file: [file, r.prompt],
        returns_html=True,
        needs_source_image=True,
    ),
    "omni-upscale": SpaceModel(
        endpoint="image_upscale_interface",
        build_args=lambda _r, _seed, file: [file],
        returns_html=True,
        needs_source_image=True,
    ),
    "omni-dewatermark": SpaceModel(
        endpoint="watermark_removal_interface",
        build_args=lambda _r, _seed, file: [file, False],
        returns_html=True,
        needs_source_image=True,
    ),
}

EDIT_MODELS: frozenset[str] = frozenset(
    model_id for model_id, space in MODELS.items() if space.needs_source_image
)


class HuggingFaceImageCapability:
    """Image capability backed by Gradio Spaces.

    Args:
        spaces: Primary Space base URL per model id (all ``omni-*`` models
            share the ``"omni-image"`` Space).
        fallbacks: Mirror base URLs per model id, tried after the primary.
        queue: Queue protocol client.
        rng: Entropy source for default seeds.
    """

    def __init__(
        self,
        spaces: Mapping[str, str],
        fallbacks: Mapping[str, Sequence[str]] | None = None,
        *,
        queue: QueueClient | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._spaces = dict(spaces)
        self._fallbacks = {k: tuple(v) for k, v in (fallbacks or {}).items()}
        self._queue = queue or QueueClient(PROVIDER_NAME)
        self._rng = rng or random.SystemRandom()

    def candidate_base_urls(self, model: str) -> list[str]:
        space_key = "omni-image" if model.startswith("omni-") else model
        primary = self._spaces.get(space_key) or self._spaces[DEFAULT_MODEL]
        return [url for url in (primary, *self._fallbacks.get(model, ())) if url]

    async def generate(self, request: ImageRequest, credential: str | None = None) -> ImageResult:
        """Generate (or edit) an image on the model's Space.

        Raises:
            InvalidParamsError: Editing model without a source image.
            GenerationFailedError: The Space returned no image.
            ApiError: Upstream failures raised by the queue client.
        """
        model = request.model or DEFAULT_MODEL
        space = MODELS.get(model)
        if space is None:
            _log.info("hf_unknown_model_fallback", requested=model, model=DEFAULT_MODEL)
            model, space = DEFAULT_MODEL, MODELS[DEFAULT_MODEL]

        if space.needs_source_image and not request.source_image:
            raise InvalidParamsError(
                "image",
                "Source image is required for image editing. "
                'Use --image <url> in chat or the "image" field in the API.',
                provider=PROVIDER_NAME,
            )

        seed = request.seed if request.seed is not None else self._rng.randrange(MAX_SEED)
        candidates = self.candidate_base_urls(model)

        with _tracer.start_as_current_span("image.generate") as span:
            span.set_attribute("gen_ai.system", PROVIDER_NAME)
            span.set_attribute("gen_ai.request.model", model)

            file_data = None
            if space.needs_source_image and request.source_image:
                file_data = await self._upload_source(
                    candidates[0], request.source_image, credential
                )

            base_url, data = await self._queue.call_with_failover(
                candidates, space.endpoint, space.build_args(request, seed, file_data), credential
            )

        image_url = self._extract_image_url(space, base_url, data)
        if not image_url:
            raise GenerationFailedError("No image returned", provider=PROVIDER_NAME)

        return ImageResult(url=image_url, seed=parse_seed(model, data, seed), model=model)

    async def _upload_source(
        self, base_url: str, source: str, credential: str | None
    ) -> dict[str, Any]:
        path = await self._queue.upload(base_url, source, credential)
        return {"path": path, "meta": {"_type": "gradio.FileData"}}

    def _extract_image_url(self, space: SpaceModel, base_url: str, data: list[Any]) -> str | None:
        if not data:
            return None
        first = data[0]

        if space.returns_html:
            status = data[1] if len(data) > 1 and isinstance(data[1], str) else ""
            if _STATUS_FAILURE_RE.search(status):
                raise classify_upstream_error(PROVIDER_NAME, status)
            return extract_image_url_from_html(first) if isinstance(first, str) else None

        if isinstance(first, str):
            raw = first
        elif isinstance(first, dict):
            raw = first.get("url")
            if not raw and first.get("path"):
                raw = f"/gradio_api/file={first['path']}"
        else:
            raw = None
        return urljoin(f"{base_url}/", raw) if raw else None
