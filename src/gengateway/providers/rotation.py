"""Credential rotation engine.

Turns an ordered pool of bearer credentials into a single call.  Only
credential-scoped failures (invalid credential, rate limit, exhausted quota)
move on to the next credential; every other failure aborts immediately
because another credential cannot fix a malformed request or a down backend.
"""

import re
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog

from gengateway.providers.errors import ApiError, AuthRequiredError

_log = structlog.get_logger(__name__)

T = TypeVar("T")

_SEPARATORS = re.compile(r"[\s,]+")


def parse_credentials(raw: str | None) -> tuple[str, ...]:
    """Split a comma/whitespace separated credential string into an ordered pool.

    Empty entries and duplicates are dropped; first occurrence wins.
    """
    if not raw:
        return ()
    seen: dict[str, None] = {}
    for item in _SEPARATORS.split(raw):
        if item:
            seen.setdefault(item, None)
    return tuple(seen)


def mask_credential(credential: str | None) -> str:
    """Return a log-safe representation of *credential*."""
    if not credential:
        return "<anonymous>"
    if len(credential) <= 8:
        return "***"
    return f"{credential[:4]}...{credential[-4:]}"


async def run_with_rotation(
    channel_id: str,
    credentials: Sequence[str],
    operation: Callable[[str | None], Awaitable[T]],
    *,
    allow_anonymous: bool = False,
) -> T:
    """Run *operation* against the credential pool until it succeeds.

    Args:
        channel_id: Channel the credentials belong to (attribution and logs).
        credentials: Ordered pool; tried front to back.
        operation: Coroutine factory taking one credential (``None`` for an
            anonymous call).
        allow_anonymous: Whether an empty pool may call *operation* once
            without a credential.

    Returns:
        The result of the first successful invocation.

    Raises:
        AuthRequiredError: Empty pool on a channel that needs a credential.
            *operation* is never invoked.
        ApiError: The first non-credential-scoped failure, or the last
            credential-scoped failure once the pool is exhausted.
    """
    if not credentials:
        if not allow_anonymous:
            raise AuthRequiredError(f"{channel_id} requires an API token", provider=channel_id)
        return await operation(None)

    log = _log.bind(channel_id=channel_id, pool_size=len(credentials))
    last_error: ApiError | None = None

    for index, credential in enumerate(credentials):
        try:
            return await operation(credential)
        except ApiError as exc:
            if not exc.is_credential_scoped:
                raise
            last_error = exc
            log.warning(
                "credential_rotated",
                index=index,
                credential=mask_credential(credential),
                error_code=exc.code.value,
                remaining=len(credentials) - index - 1,
            )

    assert last_error is not None
    log.error("credential_pool_exhausted", error_code=last_error.code.value)
    raise last_error
