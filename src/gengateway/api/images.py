"""OpenAI-compatible POST /v1/images/generations endpoint."""

import time
import uuid

import structlog
from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.trace import StatusCode
from pydantic import AliasChoices, BaseModel, Field

from gengateway.api.deps import get_service
from gengateway.providers.errors import ApiError
from gengateway.providers.models import ImageRequest, parse_size
from gengateway.service import GatewayService

router = APIRouter(prefix="/v1", tags=["images"])

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)


class ImageGenerationRequest(BaseModel):
    """OpenAI image request body plus the extra knobs open-weight models take."""

    prompt: str
    model: str | None = None
    n: int = Field(default=1, ge=1, le=1)
    size: str | None = None
    response_format: str = "url"
    negative_prompt: str | None = None
    image: str | None = None
    seed: int | None = None
    aspect_ratio: str | None = None
    steps: int | None = Field(
        default=None, validation_alias=AliasChoices("steps", "num_inference_steps")
    )
    guidance_scale: float | None = Field(
        default=None, validation_alias=AliasChoices("guidance_scale", "cfg_scale")
    )


@router.post("/images/generations", response_model=None)
async def image_generations(
    body: ImageGenerationRequest,
    authorization: str | None = Header(default=None),
    service: GatewayService = Depends(get_service),
) -> JSONResponse:
    """Generate one image.

    ``model`` follows the routing grammar (``gitee/qwen-image``,
    ``custom/<channel>/<model>``...); an empty model uses the default image
    model anonymously.  The response carries the seed actually used.
    """
    request_id = str(uuid.uuid4())
    start_time = time.monotonic()
    log = _log.bind(request_id=request_id, model=body.model)

    with _tracer.start_as_current_span("gateway.images") as span:
        span.set_attribute("gen_ai.request.model", body.model or "")
        try:
            width, height = parse_size(body.size)
            image_request = ImageRequest(
                prompt=body.prompt,
                width=width,
                height=height,
                negative_prompt=body.negative_prompt,
                seed=body.seed,
                source_image=body.image,
                aspect_ratio=body.aspect_ratio,
                steps=body.steps,
                guidance_scale=body.guidance_scale,
            )
            result = await service.generate_image(body.model, image_request, authorization)
        except ApiError as exc:
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, exc.message)
            log.error("image_request_error", error_code=exc.code.value, error=exc.message)
            raise

        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        log.info("image_request_complete", duration_ms=duration_ms, seed=result.seed)

        return JSONResponse(
            content={
                "created": int(time.time()),
                "model": result.model,
                "data": [{"url": result.url, "seed": result.seed}],
            },
            headers={"X-Request-ID": request_id},
        )
