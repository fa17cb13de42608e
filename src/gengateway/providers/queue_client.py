"""Client for the Gradio queue protocol used by HuggingFace Spaces.

A job is submitted with one HTTP call and its result is read back from a
second call whose body is an event stream::

    POST {base}/gradio_api/call/{endpoint}             -> {"event_id": "..."}
    GET  {base}/gradio_api/call/{endpoint}/{event_id}  -> event: complete
                                                          data: [...]

This module adds what the bare protocol does not provide:

* Typed errors (:mod:`gengateway.providers.errors`) for every failure
* Bounded linear-backoff retry (tenacity) on cold-Space statuses 404 / 503
* Ordered failover across candidate base URLs
* Binary uploads from public URLs or inline data URIs
"""

import asyncio
import base64
import binascii
import json
import random
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog
from opentelemetry import trace
from opentelemetry.trace import StatusCode
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from gengateway.http import get_http_client
from gengateway.providers.errors import (
    ApiError,
    ErrorCode,
    GenerationFailedError,
    InvalidParamsError,
    ProviderError,
    TimeoutError,
    classify_upstream_error,
)

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

PROVIDER_NAME = "HuggingFace"
RETRYABLE_STATUSES: frozenset[int] = frozenset({404, 503})
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 0.6

_DATA_URI_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)
_UPLOAD_ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"


class _TransientStatusError(Exception):
    """Internal signal for a retryable status; never escapes this module."""

    def __init__(self, status: int, url: str, body: str) -> None:
        self.status = status
        self.url = url
        self.body = body
        super().__init__(f"{status} {url}")


def _before_sleep(retry_state: RetryCallState) -> None:
    """Tenacity ``before_sleep`` hook that emits a structured warning."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    next_action = retry_state.next_action
    wait_seconds = next_action.sleep if next_action is not None else 0.0
    _log.warning(
        "queue_request_retry",
        attempt=retry_state.attempt_number,
        wait_seconds=round(wait_seconds, 2),
        status=getattr(exc, "status", None),
        url=getattr(exc, "url", None),
    )


@dataclass
class QueueJob:
    """One outstanding call against a queue backend.  Created per call, never reused."""

    base_url: str
    endpoint: str
    args: list[Any]
    event_id: str | None = None

    @property
    def submit_url(self) -> str:
        return f"{self.base_url}/gradio_api/call/{self.endpoint}"

    @property
    def result_url(self) -> str:
        if self.event_id is None:
            raise RuntimeError("job has not been submitted")
        return f"{self.submit_url}/{self.event_id}"


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def parse_event_stream(text: str, provider: str = PROVIDER_NAME) -> Any:
    """Return the payload of the first ``complete`` event in *text*.

    The body is scanned line by line while tracking the most recent
    ``event:`` line.  The first ``data:`` line under ``complete`` is parsed
    and returned without draining the rest of the stream.  A ``data:`` line
    under ``error`` is classified and raised.

    Raises:
        ApiError: For an ``error`` event (kind chosen by
            :func:`~gengateway.providers.errors.classify_upstream_error`).
        ProviderError: When neither event is present or the payload is
            not valid JSON.
    """
    current_event = ""
    for line in text.splitlines():
        if line.startswith("event:"):
            current_event = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data = line[len("data:") :].strip()
            if current_event == "complete":
                try:
                    return json.loads(data)
                except ValueError:
                    raise ProviderError(
                        f"Malformed complete payload: {data[:200]}", provider=provider
                    ) from None
            if current_event == "error":
                raise _event_error(data, provider)

    raise ProviderError(f"Unexpected SSE response: {text[:200]}", provider=provider)


def _event_error(data: str, provider: str) -> ApiError:
    try:
        payload = json.loads(data)
    except ValueError:
        return classify_upstream_error(provider, data or "Unknown SSE error")

    if payload is None:
        message = "Unknown error"
    elif isinstance(payload, dict):
        message = payload.get("error") or payload.get("message") or json.dumps(payload)
    else:
        message = json.dumps(payload)
    return classify_upstream_error(provider, str(message))


def normalize_result_array(payload: Any, provider: str = PROVIDER_NAME) -> list[Any]:
    """Normalise a ``complete`` payload to a plain list.

    Spaces return either a bare array or an object wrapping it under
    ``"data"``.  Anything else is a :class:`ProviderError`.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    raise ProviderError(
        f"Unexpected complete payload: {json.dumps(payload, default=str)[:200]}",
        provider=provider,
    )


def is_not_found_error(error: Exception) -> bool:
    """True for a provider error raised from an upstream HTTP 404."""
    return (
        isinstance(error, ApiError)
        and error.code is ErrorCode.PROVIDER_ERROR
        and error.details.get("status") == 404
    )


def decode_data_uri(source: str) -> tuple[bytes, str, str]:
    """Decode ``data:<mime>;base64,<payload>`` into ``(bytes, mime, filename)``."""
    match = _DATA_URI_RE.match(source)
    if match is None:
        raise InvalidParamsError("image", "Invalid base64 data URI")

    mime, encoded = match.group(1), match.group(2)
    try:
        content = base64.b64decode("".join(encoded.split()), validate=True)
    except (binascii.Error, ValueError):
        raise InvalidParamsError("image", "Invalid base64 data URI") from None

    ext = mime.split("/")[1].replace("jpeg", "jpg") if "/" in mime else ""
    return content, mime, f"input.{ext or 'jpg'}"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class QueueClient:
    """Drives the submit / poll / event-stream protocol of a queue backend.

    Example::

        client = QueueClient()
        base_url, data = await client.call_with_failover(
            ["https://primary.hf.space", "https://mirror.hf.space"],
            "generate_image",
            ["a red fox", 1024, 1024, 9, 42, False],
            credential=token,
        )

    Args:
        provider: Display name every raised error is attributed to.
        client: HTTP client.  ``None`` uses the process-wide shared client.
        max_attempts: Attempts per submit or poll when the backend answers
            404 / 503.  Every other status is raised on first occurrence.
        retry_delay: Base delay in seconds; attempt *n* waits ``n * retry_delay``.
        sleep: Awaitable used between retries.  Injected by tests.
        rng: Entropy source for upload identifiers.
    """

    def __init__(
        self,
        provider: str = PROVIDER_NAME,
        client: httpx.AsyncClient | None = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._provider = provider
        self._client = client
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._rng = rng or random.SystemRandom()

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def _http(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else get_http_client()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def upload(self, base_url: str, source: str, credential: str | None = None) -> str:
        """Upload an image and return its server-side path.

        *source* is either a public URL (fetched, then re-uploaded) or an
        inline base64 data URI.

        Raises:
            InvalidParamsError: Malformed data URI or unreachable source URL.
            ProviderError: Upload rejected or returned no file paths.
        """
        if source.startswith("data:"):
            content, mime, filename = decode_data_uri(source)
        else:
            content, mime, filename = await self._fetch_source(source)

        url = f"{base_url}/gradio_api/upload"
        response = await self._send(
            "POST",
            url,
            params={"upload_id": self._upload_id()},
            files={"files": (filename, content, mime)},
            headers=self._auth_headers(credential),
        )
        if response.is_error:
            body = response.text[:200]
            raise ProviderError(
                f"File upload failed ({response.status_code}): {body}",
                provider=self._provider,
                details={"status": response.status_code, "upstream": body},
            )

        try:
            paths = response.json()
        except ValueError:
            paths = None
        if not isinstance(paths, list) or not paths:
            raise ProviderError("Upload returned no file paths", provider=self._provider)

        _log.info("queue_upload_complete", base_url=base_url, size=len(content))
        return str(paths[0])

    async def submit(
        self,
        base_url: str,
        endpoint: str,
        args: list[Any],
        credential: str | None = None,
    ) -> str:
        """Submit a job and return its event id."""
        job = QueueJob(base_url=base_url, endpoint=endpoint, args=args)
        await self._submit(job, credential)
        return job.event_id or ""

    async def poll(
        self,
        base_url: str,
        endpoint: str,
        event_id: str,
        credential: str | None = None,
    ) -> str:
        """Fetch the raw event-stream body for a submitted job."""
        job = QueueJob(base_url=base_url, endpoint=endpoint, args=[], event_id=event_id)
        return await self._poll(job, credential)

    async def call(
        self,
        base_url: str,
        endpoint: str,
        args: list[Any],
        credential: str | None = None,
    ) -> list[Any]:
        """Submit a job, wait for its terminal event and return the result array."""
        job = QueueJob(base_url=base_url, endpoint=endpoint, args=args)
        start_time = time.monotonic()
        log = _log.bind(base_url=base_url, endpoint=endpoint)

        with _tracer.start_as_current_span("queue.call") as span:
            span.set_attribute("queue.base_url", base_url)
            span.set_attribute("queue.endpoint", endpoint)
            try:
                await self._submit(job, credential)
                span.set_attribute("queue.event_id", job.event_id or "")
                text = await self._poll(job, credential)
                data = normalize_result_array(
                    parse_event_stream(text, self._provider), self._provider
                )
            except ApiError as exc:
                span.record_exception(exc)
                span.set_status(StatusCode.ERROR, exc.message)
                log.warning("queue_call_error", error_code=exc.code.value, error=exc.message)
                raise

            duration_ms = round((time.monotonic() - start_time) * 1000, 2)
            log.info("queue_call_complete", event_id=job.event_id, duration_ms=duration_ms)
            return data

    async def call_with_failover(
        self,
        candidate_base_urls: Sequence[str],
        endpoint: str,
        args: list[Any],
        credential: str | None = None,
    ) -> tuple[str, list[Any]]:
        """Try each base URL in order and return ``(base_url, data)`` of the first success.

        A 404-flavoured provider error advances to the next candidate; any
        other error aborts the whole call.

        Raises:
            GenerationFailedError: Every candidate answered 404.
        """
        last_error: ApiError | None = None
        for base_url in candidate_base_urls:
            try:
                return base_url, await self.call(base_url, endpoint, args, credential)
            except ApiError as exc:
                if not is_not_found_error(exc):
                    raise
                last_error = exc
                _log.warning("queue_base_url_not_found", base_url=base_url, endpoint=endpoint)

        raise GenerationFailedError(
            f"No available backend for '{endpoint}'",
            provider=self._provider,
            details={
                "candidates": list(candidate_base_urls),
                "last_error": last_error.message if last_error else None,
            },
        )

    # ------------------------------------------------------------------
    # Protocol steps
    # ------------------------------------------------------------------

    async def _submit(self, job: QueueJob, credential: str | None) -> None:
        response = await self._request_with_retry(
            "POST",
            job.submit_url,
            json={"data": job.args},
            headers=self._auth_headers(credential),
        )
        try:
            payload = response.json()
        except ValueError:
            payload = None

        event_id = payload.get("event_id") if isinstance(payload, dict) else None
        if not event_id:
            raise ProviderError("No event_id returned from queue", provider=self._provider)
        job.event_id = str(event_id)

    async def _poll(self, job: QueueJob, credential: str | None) -> str:
        response = await self._request_with_retry(
            "GET", job.result_url, headers=self._auth_headers(credential)
        )
        if not response.text:
            raise ProviderError("Empty result after retries", provider=self._provider)
        return response.text

    async def _request_with_retry(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying 404 / 503 with linear backoff.

        Retry exhaustion and every other non-2xx status are classified through
        :func:`~gengateway.providers.errors.classify_upstream_error`.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type(_TransientStatusError),
            wait=wait_incrementing(start=self._retry_delay, increment=self._retry_delay),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._send(method, url, **kwargs)
                    if response.status_code in RETRYABLE_STATUSES:
                        raise _TransientStatusError(response.status_code, url, response.text)
                    if response.is_error:
                        raise self._status_error(response.status_code, url, response.text)
                    return response
        except _TransientStatusError as exc:
            raise self._status_error(exc.status, exc.url, exc.body) from None
        raise AssertionError("unreachable")  # pragma: no cover

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one HTTP request, mapping transport failures to typed errors."""
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TimeoutError(
                f"Request to {self._provider} timed out",
                provider=self._provider,
                details={"url": url},
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"{self._provider} is unreachable: {exc}",
                provider=self._provider,
                details={"url": url},
            ) from exc

    async def _fetch_source(self, source: str) -> tuple[bytes, str, str]:
        try:
            response = await self._http.get(source)
        except httpx.HTTPError as exc:
            raise InvalidParamsError("image", f"Failed to fetch source image: {exc}") from exc
        if response.is_error:
            raise InvalidParamsError(
                "image", f"Failed to fetch source image: {response.status_code}"
            )

        mime = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        last_segment = urlparse(source).path.rsplit("/", 1)[-1]
        filename = last_segment if "." in last_segment else "input.jpg"
        return response.content, mime or "image/jpeg", filename

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def _status_error(self, status: int, url: str, body: str) -> ApiError:
        message = f"{status} {url}: {body}" if body else f"{status} {url}"
        return classify_upstream_error(self._provider, message, status=status)

    def _upload_id(self) -> str:
        return "".join(self._rng.choice(_UPLOAD_ID_ALPHABET) for _ in range(11))

    @staticmethod
    def _auth_headers(credential: str | None) -> dict[str, str]:
        return {"Authorization": f"Bearer {credential}"} if credential else {}
