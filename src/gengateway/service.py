"""Request orchestration shared by every HTTP route.

:class:`GatewayService` turns ``(model string, request, Authorization header)``
into one capability call: it resolves the channel, picks the credential
pool, runs the call under the rotation engine and bounds the whole thing by
the request deadline.  It never inspects upstream responses; every failure
it sees is already an :class:`~gengateway.providers.errors.ApiError`.
"""

import asyncio
import dataclasses
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog

from gengateway.channels.base import Channel
from gengateway.channels.registry import ChannelRegistry, get_registry
from gengateway.config import settings
from gengateway.providers.errors import InvalidParamsError
from gengateway.providers.errors import TimeoutError as GatewayTimeoutError
from gengateway.providers.models import (
    CompletionRequest,
    CompletionResult,
    ImageRequest,
    ImageResult,
)
from gengateway.providers.rotation import parse_credentials, run_with_rotation
from gengateway.routing import (
    CustomRoute,
    ResolvedModel,
    is_known_image_model,
    resolve_chat_model,
    resolve_model,
)

_log = structlog.get_logger(__name__)

T = TypeVar("T")

IMAGE_MODEL_PREFIX = "image/"

# ``Authorization: Bearer <hint>:<token>`` pins a token to one channel.
PROVIDER_HINTS: dict[str, str] = {
    "gitee:": "gitee",
    "ms:": "modelscope",
    "hf:": "huggingface",
    "deepseek:": "deepseek",
    "a4f:": "a4f",
}


@dataclass(frozen=True)
class BearerAuth:
    provider_hint: str | None = None
    token: str | None = None


def parse_bearer(header: str | None) -> BearerAuth:
    """Parse an ``Authorization`` header into an optional provider hint and token.

    Anything that is not ``Bearer <value>`` is treated as no credential.  A
    hint prefix with nothing after it is dropped entirely.
    """
    if not header or not header.startswith("Bearer "):
        return BearerAuth()
    raw = header[len("Bearer ") :].strip()
    if not raw:
        return BearerAuth()
    for prefix, channel_id in PROVIDER_HINTS.items():
        if raw.startswith(prefix):
            token = raw[len(prefix) :].strip()
            return BearerAuth(channel_id, token) if token else BearerAuth()
    return BearerAuth(token=raw)


class GatewayService:
    """Routes image and text requests to channel capabilities.

    Args:
        registry: Channel registry.  ``None`` uses the process-wide registry.
        request_timeout: Deadline in seconds for one whole request,
            rotation included.  ``None`` uses ``settings.request_timeout``.
    """

    def __init__(
        self,
        registry: ChannelRegistry | None = None,
        *,
        request_timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._request_timeout = (
            request_timeout if request_timeout is not None else settings.request_timeout
        )

    @property
    def registry(self) -> ChannelRegistry:
        return self._registry if self._registry is not None else get_registry()

    # ------------------------------------------------------------------
    # Image generation
    # ------------------------------------------------------------------

    async def generate_image(
        self, model: str | None, request: ImageRequest, authorization: str | None = None
    ) -> ImageResult:
        """Resolve *model* with the image grammar and generate one image."""
        return await self.run_image(resolve_model(model), request, authorization)

    async def run_image(
        self, resolved: ResolvedModel, request: ImageRequest, authorization: str | None = None
    ) -> ImageResult:
        """Generate one image on an already resolved ``(channel, model)``.

        Raises:
            InvalidParamsError: Unknown channel, channel without an image
                capability, or a token hint naming another channel.
            AuthRequiredError: No credential available on a channel that
                needs one.
            TimeoutError: The request deadline elapsed.
        """
        auth = parse_bearer(authorization)
        channel = self._channel_for(resolved, auth, "image")
        capability = channel.image
        if capability is None:
            raise InvalidParamsError(
                "model", f"Unsupported image provider: {resolved.channel_id}"
            )

        model = resolved.model or channel.config.default_image_model
        request = dataclasses.replace(request, model=model)
        return await self._run(
            channel,
            resolved,
            auth,
            lambda credential: capability.generate(request, credential),
            kind="image",
            model=model,
        )

    def try_resolve_image_model(self, model: str | None) -> ResolvedModel | None:
        """Decide whether a chat model string asks for an image.

        An explicit ``image/`` prefix always does.  Otherwise the model must
        resolve to a channel with an image capability; channels that also
        serve text only qualify when the name is a known image model.
        Returns ``None`` to fall through to text chat.
        """
        trimmed = (model or "").strip()
        explicit = trimmed.startswith(IMAGE_MODEL_PREFIX)
        inner = trimmed[len(IMAGE_MODEL_PREFIX) :] if explicit else trimmed

        if inner.startswith(CustomRoute.prefix):
            resolved = CustomRoute()(inner)
            if resolved is None:
                return None
            if explicit or self.registry.get_image_capability(resolved.channel_id) is not None:
                return resolved
            return None

        resolved = resolve_model(inner)
        if explicit:
            return resolved

        channel = self.registry.get_channel(resolved.channel_id)
        if channel is None or channel.image is None:
            return None
        if channel.text is not None and not is_known_image_model(inner):
            return None
        return resolved

    # ------------------------------------------------------------------
    # Text completion
    # ------------------------------------------------------------------

    async def complete(
        self, model: str | None, request: CompletionRequest, authorization: str | None = None
    ) -> CompletionResult:
        """Resolve *model* with the chat grammar and run one completion.

        Raises:
            InvalidParamsError: Unknown channel, channel without a text
                capability, or a token hint naming another channel.
            AuthRequiredError: No credential available on a channel that
                needs one.
            TimeoutError: The request deadline elapsed.
        """
        resolved = resolve_chat_model(model)
        auth = parse_bearer(authorization)
        channel = self._channel_for(resolved, auth, "text")
        capability = channel.text
        if capability is None:
            raise InvalidParamsError(
                "model", f"Unsupported model provider: {resolved.channel_id}"
            )

        model_id = resolved.model or channel.config.default_text_model
        request = dataclasses.replace(request, model=model_id)
        return await self._run(
            channel,
            resolved,
            auth,
            lambda credential: capability.complete(request, credential),
            kind="text",
            model=model_id,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _channel_for(self, resolved: ResolvedModel, auth: BearerAuth, kind: str) -> Channel:
        if auth.provider_hint and auth.provider_hint != resolved.channel_id:
            raise InvalidParamsError(
                "Authorization", "Token prefix does not match requested model provider"
            )
        channel = self.registry.get_channel(resolved.channel_id)
        if channel is None:
            noun = "image provider" if kind == "image" else "model provider"
            raise InvalidParamsError("model", f"Unsupported {noun}: {resolved.channel_id}")
        return channel

    async def _run(
        self,
        channel: Channel,
        resolved: ResolvedModel,
        auth: BearerAuth,
        operation: Callable[[str | None], Awaitable[T]],
        *,
        kind: str,
        model: str | None,
    ) -> T:
        # Forced-anonymous routes never forward the caller's token.
        override = () if resolved.force_anonymous else parse_credentials(auth.token)
        credentials = channel.credentials(override)
        allow_anonymous = resolved.force_anonymous or channel.config.allow_anonymous

        log = _log.bind(channel_id=channel.id, model=model, kind=kind)
        start_time = time.monotonic()
        try:
            async with asyncio.timeout(self._request_timeout):
                result = await run_with_rotation(
                    channel.id, credentials, operation, allow_anonymous=allow_anonymous
                )
        except TimeoutError as exc:
            log.warning("request_deadline_exceeded", timeout=self._request_timeout)
            raise GatewayTimeoutError(
                f"Request to {channel.name} exceeded {self._request_timeout:g}s",
                provider=channel.name,
            ) from exc

        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        log.info("request_done", duration_ms=duration_ms, pool_size=len(credentials))
        return result
