"""Reusable adapters for OpenAI-compatible upstream APIs.

Any provider exposing ``/chat/completions`` or ``/images/generations`` in the
OpenAI wire format is served by these two classes, built from just a base
URL and an auth mode.  No bespoke implementation per provider is needed.

* Text completions go through LiteLLM pointed at the custom ``api_base``.
* Image generation is a single JSON POST over the shared httpx client.
"""

import logging
import random
import time
from typing import Any

import httpx
import litellm
import structlog
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from gengateway.http import get_http_client
from gengateway.providers.errors import (
    ApiError,
    AuthInvalidError,
    AuthRequiredError,
    GenerationFailedError,
    InvalidParamsError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    TimeoutError,
    classify_upstream_error,
)
from gengateway.providers.models import (
    MAX_SEED,
    AuthMode,
    CompletionRequest,
    CompletionResult,
    ImageRequest,
    ImageResult,
)

# LiteLLM's own logging is noisy; structured logs are emitted here instead.
logging.getLogger("LiteLLM").setLevel(logging.WARNING)
logging.getLogger("LiteLLM Router").setLevel(logging.WARNING)

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

# The OpenAI SDK refuses to send a request without a key; anonymous
# endpoints ignore the value.
ANONYMOUS_API_KEY = "anonymous"


class OpenAICompatTextCapability:
    """Text completion against an OpenAI-compatible ``/chat/completions`` endpoint.

    Args:
        base_url: API root, e.g. ``"https://api.deepseek.com/v1"``.
        auth: Auth mode of the endpoint.  With :attr:`AuthMode.BEARER` a call
            without a credential fails before any network I/O.
        provider: Display name used for error attribution.
        default_model: Model used when the request does not name one.
        timeout: Per-call timeout in seconds passed to LiteLLM.
    """

    def __init__(
        self,
        base_url: str,
        auth: AuthMode,
        provider: str,
        *,
        default_model: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._provider = provider
        self._default_model = default_model
        self._timeout = timeout

    async def complete(
        self, request: CompletionRequest, credential: str | None = None
    ) -> CompletionResult:
        """Run a non-streaming chat completion.

        Raises:
            AuthRequiredError: Credential missing on a bearer-only endpoint.
            InvalidParamsError: No model given and no default configured, or
                the provider rejected the request.
            ApiError: Any other upstream failure, mapped by :meth:`_map_error`.
        """
        if self._auth is AuthMode.BEARER and not credential:
            raise AuthRequiredError(
                f"{self._provider} requires an API token", provider=self._provider
            )

        model = request.model or self._default_model
        if not model:
            raise InvalidParamsError("model", "model is required", provider=self._provider)

        params: dict[str, Any] = {
            "model": f"openai/{model}",
            "api_base": self._base_url,
            "api_key": self._api_key(credential),
            "messages": request.to_messages(),
            "timeout": self._timeout,
            # Rotation owns retries; the SDK must make exactly one attempt.
            "max_retries": 0,
        }
        if request.max_tokens is not None:
            params["max_tokens"] = request.max_tokens
        if request.temperature is not None:
            params["temperature"] = request.temperature

        start_time = time.monotonic()
        log = _log.bind(provider=self._provider, model=model)

        with _tracer.start_as_current_span("text.complete") as span:
            span.set_attribute("gen_ai.system", self._provider)
            span.set_attribute("gen_ai.request.model", model)
            try:
                response = await litellm.acompletion(**params)
            except Exception as exc:
                mapped = self._map_error(exc)
                span.record_exception(exc)
                span.set_status(StatusCode.ERROR, mapped.message)
                log.warning("text_complete_error", error_code=mapped.code.value, error=str(exc))
                raise mapped from exc

            result = self._parse_response(response, model)
            duration_ms = round((time.monotonic() - start_time) * 1000, 2)
            log.info("text_complete_done", duration_ms=duration_ms, usage=result.usage)
            return result

    def _api_key(self, credential: str | None) -> str:
        if self._auth is AuthMode.NONE or not credential:
            return ANONYMOUS_API_KEY
        return credential.strip()

    def _parse_response(self, raw: Any, requested_model: str) -> CompletionResult:
        try:
            choice = raw.choices[0]
        except (AttributeError, IndexError):
            raise GenerationFailedError(
                "No completion returned", provider=self._provider
            ) from None

        raw_usage = getattr(raw, "usage", None)
        usage: dict[str, int] = {}
        if raw_usage is not None:
            usage = {
                "input_tokens": getattr(raw_usage, "prompt_tokens", 0) or 0,
                "output_tokens": getattr(raw_usage, "completion_tokens", 0) or 0,
            }
        return CompletionResult(
            content=choice.message.content or "",
            model=getattr(raw, "model", None) or requested_model,
            finish_reason=getattr(choice, "finish_reason", None) or "stop",
            usage=usage,
        )

    def _map_error(self, error: Exception) -> ApiError:
        """Map a LiteLLM exception to a typed :class:`ApiError`.

        ===================================  ==============================
        LiteLLM exception                    Gateway exception
        ===================================  ==============================
        ``litellm.RateLimitError``           :class:`RateLimitError`
                                             (:class:`QuotaExceededError`
                                             when the message says quota)
        ``litellm.AuthenticationError``      :class:`AuthInvalidError`
        ``litellm.PermissionDeniedError``    :class:`AuthInvalidError`
        ``litellm.Timeout``                  :class:`TimeoutError`
        ``litellm.NotFoundError``            :class:`InvalidParamsError`
        ``litellm.BadRequestError``          :class:`InvalidParamsError`
        anything else                        status/message classification
        ===================================  ==============================
        """
        if isinstance(error, ApiError):
            return error

        provider = self._provider
        message = str(error)
        status = getattr(error, "status_code", None)

        if _is_quota_message(message) or status == 402:
            return QuotaExceededError(
                f"{provider} quota exceeded", provider=provider, details={"upstream": message}
            )

        if isinstance(error, litellm.RateLimitError):
            return RateLimitError(
                f"{provider} rate limit exceeded", provider=provider, details={"upstream": message}
            )

        if isinstance(error, litellm.AuthenticationError | litellm.PermissionDeniedError):
            return AuthInvalidError(
                f"Invalid credential for {provider}: {message}",
                provider=provider,
                details={"upstream": message},
            )

        if isinstance(error, litellm.Timeout):
            return TimeoutError(f"Request to {provider} timed out", provider=provider)

        if isinstance(error, litellm.NotFoundError):
            return InvalidParamsError(
                "model", f"Model not found on {provider}: {message}", provider=provider
            )

        # BadRequestError is the parent of ContextWindowExceededError in LiteLLM.
        if isinstance(error, litellm.BadRequestError):
            return InvalidParamsError(
                "request", f"Invalid request to {provider}: {message}", provider=provider
            )

        if not isinstance(status, int):
            status = None
        return classify_upstream_error(provider, message, status=status)


class OpenAICompatImageCapability:
    """Image generation against an OpenAI-style ``/images/generations`` endpoint.

    Args:
        base_url: API root, e.g. ``"https://ai.gitee.com/v1"``.
        provider: Display name used for error attribution.
        default_model: Model used when the request does not name one.
        send_extras: Forward ``negative_prompt``, ``seed``,
            ``num_inference_steps`` and ``guidance_scale``.  Disable for
            strict OpenAI clones that reject unknown fields.
        client: HTTP client.  ``None`` uses the process-wide shared client.
        rng: Entropy source for default seeds.
    """

    def __init__(
        self,
        base_url: str,
        provider: str,
        *,
        default_model: str | None = None,
        send_extras: bool = True,
        client: httpx.AsyncClient | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._provider = provider
        self._default_model = default_model
        self._send_extras = send_extras
        self._client = client
        self._rng = rng or random.SystemRandom()

    @property
    def _http(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else get_http_client()

    async def generate(self, request: ImageRequest, credential: str | None = None) -> ImageResult:
        if not credential:
            raise AuthRequiredError(
                f"{self._provider} requires an API token", provider=self._provider
            )

        model = request.model or self._default_model
        if not model:
            raise InvalidParamsError("model", "model is required", provider=self._provider)

        seed = request.seed if request.seed is not None else self._rng.randrange(MAX_SEED)
        body: dict[str, Any] = {
            "model": model,
            "prompt": request.prompt,
            "n": 1,
            "size": request.size,
            "response_format": "url",
        }
        if self._send_extras:
            body["seed"] = seed
            if request.negative_prompt:
                body["negative_prompt"] = request.negative_prompt
            if request.steps is not None:
                body["num_inference_steps"] = request.steps
            if request.guidance_scale is not None:
                body["guidance_scale"] = request.guidance_scale

        url = f"{self._base_url}/images/generations"
        with _tracer.start_as_current_span("image.generate") as span:
            span.set_attribute("gen_ai.system", self._provider)
            span.set_attribute("gen_ai.request.model", model)
            try:
                response = await self._http.post(
                    url,
                    json=body,
                    headers={"Authorization": f"Bearer {credential.strip()}"},
                )
            except httpx.TimeoutException as exc:
                raise TimeoutError(
                    f"Request to {self._provider} timed out", provider=self._provider
                ) from exc
            except httpx.HTTPError as exc:
                raise ProviderError(
                    f"{self._provider} is unreachable: {exc}", provider=self._provider
                ) from exc

            try:
                data = response.json()
            except ValueError:
                data = {}
            if not isinstance(data, dict):
                data = {}

            if response.is_error:
                error = parse_image_api_error(self._provider, response.status_code, data)
                span.set_status(StatusCode.ERROR, error.message)
                raise error

        items = data.get("data")
        if not isinstance(items, list):
            items = []
        first = items[0] if items and isinstance(items[0], dict) else {}
        image_url = first.get("url")
        if not image_url and first.get("b64_json"):
            image_url = f"data:image/png;base64,{first['b64_json']}"
        if not image_url:
            raise GenerationFailedError("No image returned", provider=self._provider)

        _log.info("image_generate_done", provider=self._provider, model=model, seed=seed)
        return ImageResult(url=image_url, seed=seed, model=model)


def parse_image_api_error(provider: str, status: int, data: dict[str, Any]) -> ApiError:
    """Classify a non-2xx response from an OpenAI-style image endpoint."""
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("message") or f"HTTP {status}"
    else:
        message = error or data.get("message") or f"HTTP {status}"
    message = str(message)
    details = {"status": status, "upstream": message}

    if status in (401, 403):
        return AuthInvalidError(
            f"Invalid credential for {provider}: {message}", provider=provider, details=details
        )
    if status == 429:
        return RateLimitError(f"{provider} rate limit exceeded", provider=provider, details=details)
    if status == 402 or _is_quota_message(message):
        return QuotaExceededError(f"{provider} quota exceeded", provider=provider, details=details)
    return ProviderError(message, provider=provider, details=details)


def _is_quota_message(message: str) -> bool:
    lower = message.lower()
    return "quota" in lower or "insufficient" in lower
