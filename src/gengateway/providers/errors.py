"""Closed error taxonomy for the generation gateway.

Every failure that leaves a capability, the queue client or the rotation
engine is one of the :class:`ApiError` subclasses below.  Callers branch on
:attr:`ApiError.code` (or the subclass) and never on raw HTTP status codes.
"""

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable identifiers for every failure kind."""

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"
    RATE_LIMITED = "RATE_LIMITED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    INVALID_PARAMS = "INVALID_PARAMS"
    INVALID_PROMPT = "INVALID_PROMPT"
    GENERATION_FAILED = "GENERATION_FAILED"


# Failures attributable to the credential used, so another credential may succeed.
CREDENTIAL_SCOPED_CODES: frozenset[ErrorCode] = frozenset(
    {ErrorCode.AUTH_INVALID, ErrorCode.RATE_LIMITED, ErrorCode.QUOTA_EXCEEDED}
)


class ApiError(Exception):
    """Base exception for all gateway failures.

    Attributes:
        code: Taxonomy kind.  Fixed per subclass.
        message: Human-readable error description.
        provider: Display name of the provider the failure is attributed to.
            ``None`` when the failure happened before a provider was chosen.
        details: Optional structured context (raw upstream status, truncated
            body, offending field).  Used for classification by callers.
    """

    code: ErrorCode = ErrorCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.provider = provider
        self.details: dict[str, Any] = dict(details or {})
        super().__init__(message)

    @property
    def is_credential_scoped(self) -> bool:
        return self.code in CREDENTIAL_SCOPED_CODES

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code.value!r}, "
            f"message={self.message!r}, provider={self.provider!r})"
        )


class AuthRequiredError(ApiError):
    """Raised when a channel needs a credential and none was supplied or configured."""

    code = ErrorCode.AUTH_REQUIRED


class AuthInvalidError(ApiError):
    """Raised for authentication or authorisation failures (HTTP 401 / 403)."""

    code = ErrorCode.AUTH_INVALID


class RateLimitError(ApiError):
    """Raised when the provider returns HTTP 429 or reports a rate limit."""

    code = ErrorCode.RATE_LIMITED


class QuotaExceededError(ApiError):
    """Raised when the credential's quota or balance is exhausted."""

    code = ErrorCode.QUOTA_EXCEEDED


class TimeoutError(ApiError):  # noqa: A001
    """Raised when an upstream call or the whole request exceeds its deadline."""

    code = ErrorCode.TIMEOUT


class ProviderError(ApiError):
    """Raised when the provider fails for a reason not tied to the credential."""

    code = ErrorCode.PROVIDER_ERROR


class InvalidParamsError(ApiError):
    """Raised for malformed or unsupported request parameters."""

    code = ErrorCode.INVALID_PARAMS

    def __init__(
        self,
        param: str,
        message: str,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, provider=provider, details={"param": param, **(details or {})})
        self.param = param


class InvalidPromptError(ApiError):
    """Raised when the prompt is missing or rejected."""

    code = ErrorCode.INVALID_PROMPT


class GenerationFailedError(ApiError):
    """Raised when the provider accepted the request but produced no result."""

    code = ErrorCode.GENERATION_FAILED


def classify_upstream_error(
    provider: str,
    message: str,
    status: int | None = None,
    details: dict[str, Any] | None = None,
) -> ApiError:
    """Map an upstream HTTP status and/or message to a typed :class:`ApiError`.

    Pure function.  Status codes take part in matching together with
    lower-cased substrings of *message*, in this order:

    ==============================================  ======================
    Match                                           Result
    ==============================================  ======================
    ``429``, "rate limit", "too many requests"      :class:`RateLimitError`
    "quota", "exceeded"                             :class:`QuotaExceededError`
    ``401``/``403``, "unauthorized", "forbidden"    :class:`AuthInvalidError`
    "timeout", "timed out"                          :class:`TimeoutError`
    ``503``, "unavailable", "loading"               :class:`ProviderError`
    anything else                                   :class:`ProviderError`
    ==============================================  ======================
    """
    lower = message.lower()
    extra: dict[str, Any] = {"upstream": message}
    if status is not None:
        extra["status"] = status
    extra.update(details or {})

    if status == 429 or "rate limit" in lower or "too many requests" in lower:
        return RateLimitError(f"{provider} rate limit exceeded", provider=provider, details=extra)

    if "quota" in lower or "exceeded" in lower:
        return QuotaExceededError(f"{provider} quota exceeded", provider=provider, details=extra)

    if status in (401, 403) or "unauthorized" in lower or "forbidden" in lower:
        return AuthInvalidError(
            f"Invalid credential for {provider}: {message}", provider=provider, details=extra
        )

    if "timeout" in lower or "timed out" in lower:
        return TimeoutError(f"Request to {provider} timed out", provider=provider, details=extra)

    if status == 503 or "unavailable" in lower or "loading" in lower:
        return ProviderError(
            "Service is temporarily unavailable or loading", provider=provider, details=extra
        )

    return ProviderError(message, provider=provider, details=extra)
