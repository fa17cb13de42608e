"""OpenAI-compatible POST /v1/chat/completions endpoint.

Serves two kinds of request behind one wire format:

* **Text chat**: the model string is resolved with the chat grammar and the
  flattened conversation goes to the channel's text capability.
* **Image via chat**: when the model names an image model (explicit
  ``image/`` prefix, or a known image model), the last user message is the
  prompt and the reply is a markdown message embedding the image.  The
  prompt may carry ``--size WxH``, ``--negative <text>`` and
  ``--image <url>`` flags; a multimodal ``image_url`` part wins over
  ``--image``.

Both reply with a single assistant message, streamed as SSE when
``stream=true``.
"""

import json
import re
import time
import uuid
from collections.abc import AsyncGenerator
from typing import Any, Literal

import structlog
from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse, StreamingResponse
from opentelemetry import trace
from opentelemetry.trace import StatusCode
from pydantic import BaseModel, Field

from gengateway.api.deps import get_service
from gengateway.providers.errors import ApiError, InvalidParamsError, InvalidPromptError
from gengateway.providers.huggingface import EDIT_MODELS
from gengateway.providers.models import CompletionRequest, ImageRequest, parse_size
from gengateway.routing import ResolvedModel
from gengateway.service import GatewayService

router = APIRouter(prefix="/v1", tags=["chat"])

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

_SIZE_FLAG = re.compile(r"--size\s+(\d+x\d+)", re.IGNORECASE)
_NEGATIVE_QUOTED_FLAG = re.compile(r'--negative\s+"([^"]+)"', re.IGNORECASE)
_NEGATIVE_FLAG = re.compile(r"--negative\s+(\S+)", re.IGNORECASE)
_IMAGE_FLAG = re.compile(r"--image\s+(\S+)", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Request models (OpenAI wire format)
# ---------------------------------------------------------------------------


class _ImageUrl(BaseModel):
    url: str


class _ContentPart(BaseModel):
    type: str
    text: str | None = None
    image_url: _ImageUrl | None = None


class _Message(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str | list[_ContentPart] | None = None


class ChatCompletionRequest(BaseModel):
    """OpenAI-compatible chat completion request body."""

    model: str = Field(min_length=1)
    messages: list[_Message] = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    stream: bool = False


# ---------------------------------------------------------------------------
# Message helpers
# ---------------------------------------------------------------------------


def text_content(content: str | list[_ContentPart] | None) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return "\n".join(part.text or "" for part in content if part.type == "text")


def image_url_content(content: str | list[_ContentPart] | None) -> str | None:
    if not isinstance(content, list):
        return None
    for part in content:
        if part.type == "image_url" and part.image_url is not None:
            return part.image_url.url
    return None


def system_prompt(messages: list[_Message]) -> str:
    parts = [text_content(m.content) for m in messages if m.role == "system"]
    return "\n".join(parts).strip()


def user_prompt(messages: list[_Message]) -> str | None:
    parts = [text_content(m.content) for m in messages if m.role == "user"]
    parts = [p for p in parts if p.strip()]
    return "\n".join(parts).strip() if parts else None


def last_user_prompt(messages: list[_Message]) -> str | None:
    """Text of the newest user message only, so history does not leak into image prompts."""
    for message in reversed(messages):
        if message.role == "user":
            text = text_content(message.content).strip()
            if text:
                return text
    return None


def last_user_image_url(messages: list[_Message]) -> str | None:
    for message in reversed(messages):
        if message.role == "user":
            url = image_url_content(message.content)
            if url:
                return url
    return None


def parse_image_flags(raw: str) -> dict[str, str | None]:
    """Strip ``--size``, ``--negative`` and ``--image`` flags from *raw*.

    Returns a dict with the cleaned ``prompt`` and the extracted ``size``,
    ``negative_prompt`` and ``source_image`` (``None`` when absent).
    """
    found: dict[str, str | None] = {"size": None, "negative_prompt": None, "source_image": None}

    def _take(pattern: re.Pattern[str], key: str, text: str) -> str:
        match = pattern.search(text)
        if match is None:
            return text
        found[key] = match.group(1)
        return text[: match.start()] + text[match.end() :]

    text = _take(_SIZE_FLAG, "size", raw)
    text = _take(_NEGATIVE_QUOTED_FLAG, "negative_prompt", text)
    if found["negative_prompt"] is None:
        text = _take(_NEGATIVE_FLAG, "negative_prompt", text)
    text = _take(_IMAGE_FLAG, "source_image", text)
    return {"prompt": text.strip(), **found}


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


@router.post("/chat/completions", response_model=None)
async def chat_completions(
    body: ChatCompletionRequest,
    authorization: str | None = Header(default=None),
    service: GatewayService = Depends(get_service),
) -> StreamingResponse | JSONResponse:
    """Answer a chat completion, generating an image when the model asks for one."""
    request_id = str(uuid.uuid4())
    start_time = time.monotonic()
    log = _log.bind(request_id=request_id, model=body.model, stream=body.stream)

    with _tracer.start_as_current_span("gateway.chat") as span:
        span.set_attribute("gen_ai.request.model", body.model)
        span.set_attribute("llm.stream", body.stream)
        try:
            prompt = user_prompt(body.messages)
            if prompt is None:
                raise InvalidParamsError("messages", "At least one user message is required")

            image_target = service.try_resolve_image_model(body.model)
            if image_target is not None:
                span.set_attribute("gateway.image_via_chat", True)
                model, content = await _image_reply(service, image_target, body, authorization)
            else:
                completion = await service.complete(
                    body.model,
                    CompletionRequest(
                        prompt=prompt,
                        system_prompt=system_prompt(body.messages) or None,
                        max_tokens=body.max_tokens,
                        temperature=body.temperature,
                    ),
                    authorization,
                )
                model, content = completion.model, completion.content
        except ApiError as exc:
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, exc.message)
            log.error("chat_request_error", error_code=exc.code.value, error=exc.message)
            raise

        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        log.info("chat_request_complete", duration_ms=duration_ms)

    headers = {"X-Request-ID": request_id}
    if body.stream:
        return StreamingResponse(
            _stream_sse(request_id, model, content),
            media_type="text/event-stream",
            headers={**headers, "Cache-Control": "no-cache", "Connection": "keep-alive"},
        )
    return JSONResponse(content=_chat_response(request_id, model, content), headers=headers)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


async def _image_reply(
    service: GatewayService,
    target: ResolvedModel,
    body: ChatCompletionRequest,
    authorization: str | None,
) -> tuple[str, str]:
    raw = last_user_prompt(body.messages)
    if raw is None:
        raise InvalidPromptError("Image prompt is required")

    flags = parse_image_flags(raw)
    if not flags["prompt"]:
        raise InvalidPromptError("Image prompt is required")

    width, height = parse_size(flags["size"])
    source_image = last_user_image_url(body.messages) or flags["source_image"]
    image_request = ImageRequest(
        prompt=flags["prompt"],
        width=width,
        height=height,
        negative_prompt=flags["negative_prompt"],
        source_image=source_image,
    )
    result = await service.run_image(target, image_request, authorization)

    prompt = image_request.prompt
    if source_image and result.model in EDIT_MODELS:
        content = f"Image edited\n\nPrompt: {prompt}\n\n![{prompt}]({result.url})"
    else:
        content = (
            f"Image generated\n\nPrompt: {prompt}\nSize: {image_request.size}\n\n"
            f"![{prompt}]({result.url})"
        )
    return body.model, content


def _chat_response(request_id: str, model: str, content: str) -> dict[str, Any]:
    return {
        "id": f"chatcmpl-{request_id}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


async def _stream_sse(request_id: str, model: str, content: str) -> AsyncGenerator[str, None]:
    """Yield the whole reply as one content chunk, a stop chunk and ``[DONE]``."""
    base = {
        "id": f"chatcmpl-{request_id}",
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
    }
    chunk = {
        **base,
        "choices": [
            {
                "index": 0,
                "delta": {"role": "assistant", "content": content},
                "finish_reason": None,
            }
        ],
    }
    done = {**base, "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]}
    yield f"data: {json.dumps(chunk)}\n\n"
    yield f"data: {json.dumps(done)}\n\n"
    yield "data: [DONE]\n\n"
