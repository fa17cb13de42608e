"""Process-wide ``httpx.AsyncClient`` shared by every upstream adapter.

The application opens the client on startup and closes it on shutdown.
Adapters constructed without an explicit client resolve it lazily through
:func:`get_http_client` at call time, so channels can be registered before
the event loop starts.
"""

import httpx

from gengateway.config import settings

_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Return the shared client, creating it on first use."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout),
            follow_redirects=True,
        )
    return _client


async def close_http_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
