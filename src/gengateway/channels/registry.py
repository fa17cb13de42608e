"""Process-wide channel registry.

Built-in channels are registered when the registry is first created.
User-configured OpenAI-compatible channels are added once, lazily, by
:func:`ensure_dynamic_channels_initialized`, which is safe to call on every
request.
"""

import threading
from collections.abc import Callable, Iterator, Mapping

import structlog

from gengateway.channels.base import (
    AuthMode,
    Channel,
    ChannelConfig,
    ImageCapability,
    ModelInfo,
    TextCapability,
)
from gengateway.config import settings
from gengateway.providers.openai_compat import OpenAICompatTextCapability
from gengateway.providers.rotation import parse_credentials

_log = structlog.get_logger(__name__)

CUSTOM_CHANNELS_ENV = "CUSTOM_CHANNELS"


class ChannelRegistry:
    """Registry mapping channel id to :class:`Channel`.

    Read-heavy and write-once per id: registering an id that already exists
    is rejected, and channels are never removed.
    """

    def __init__(self) -> None:
        self._channels: dict[str, Channel] = {}

    def register(self, channel: Channel) -> None:
        if channel.id in self._channels:
            raise ValueError(f"channel '{channel.id}' is already registered")
        self._channels[channel.id] = channel

    def get_channel(self, channel_id: str) -> Channel | None:
        return self._channels.get(channel_id)

    def get_image_capability(self, channel_id: str) -> ImageCapability | None:
        channel = self._channels.get(channel_id)
        return channel.image if channel is not None else None

    def get_text_capability(self, channel_id: str) -> TextCapability | None:
        channel = self._channels.get(channel_id)
        return channel.text if channel is not None else None

    def channel_ids(self) -> list[str]:
        return list(self._channels)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._channels

    def __iter__(self) -> Iterator[Channel]:
        return iter(list(self._channels.values()))


class _OnceLatch:
    """Runs an initializer at most once per latch, even under concurrent callers.

    The initializer runs under a thread lock and must not await, so the
    latch is equally safe for threads and for tasks on one event loop.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    def run(self, initializer: Callable[[], None]) -> bool:
        if self._done:
            return False
        with self._lock:
            if self._done:
                return False
            initializer()
            self._done = True
            return True


_registry: ChannelRegistry | None = None
_registry_lock = threading.Lock()
_dynamic_latch = _OnceLatch()


def get_registry() -> ChannelRegistry:
    """Return the global registry, creating it with the built-in channels on first call."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                from gengateway.channels.builtin import builtin_channels

                registry = ChannelRegistry()
                for channel in builtin_channels():
                    registry.register(channel)
                _registry = registry
    return _registry


def get_channel(channel_id: str) -> Channel | None:
    return get_registry().get_channel(channel_id)


def get_image_capability(channel_id: str) -> ImageCapability | None:
    return get_registry().get_image_capability(channel_id)


def get_text_capability(channel_id: str) -> TextCapability | None:
    return get_registry().get_text_capability(channel_id)


def ensure_dynamic_channels_initialized(env: Mapping[str, str | None] | None) -> bool:
    """Register user-configured channels from *env* exactly once per process.

    Recognised keys::

        CUSTOM_CHANNELS=myhost,other          # ids to register
        CUSTOM_MYHOST_BASE_URL=https://...    # required
        CUSTOM_MYHOST_TOKENS=sk-a,sk-b        # optional credential pool
        CUSTOM_MYHOST_MODELS=llama-3,qwen     # optional text model catalog
        CUSTOM_MYHOST_NAME=My Host            # optional display name

    Returns ``True`` for the call that performed the initialization.
    Subsequent calls, and calls racing with the first one, return ``False``.
    """
    registry = get_registry()
    return _dynamic_latch.run(lambda: _register_dynamic_channels(registry, env or {}))


def _register_dynamic_channels(registry: ChannelRegistry, env: Mapping[str, str | None]) -> None:
    for channel in build_dynamic_channels(env):
        if channel.id in registry:
            _log.warning("dynamic_channel_conflict", channel_id=channel.id)
            continue
        registry.register(channel)
        _log.info(
            "dynamic_channel_registered",
            channel_id=channel.id,
            base_url=channel.config.base_url,
            pool_size=len(channel.config.tokens),
        )


def build_dynamic_channels(env: Mapping[str, str | None]) -> list[Channel]:
    """Build custom OpenAI-compatible channels described by *env*.

    Entries without a base URL are skipped with a warning.
    """
    channels: list[Channel] = []
    ids = [item.strip() for item in (env.get(CUSTOM_CHANNELS_ENV) or "").split(",")]
    for channel_id in dict.fromkeys(i for i in ids if i):
        prefix = f"CUSTOM_{channel_id.upper().replace('-', '_')}_"
        base_url = (env.get(f"{prefix}BASE_URL") or "").strip().rstrip("/")
        if not base_url:
            _log.warning(
                "dynamic_channel_skipped", channel_id=channel_id, reason="missing base url"
            )
            continue

        tokens = parse_credentials(env.get(f"{prefix}TOKENS"))
        auth = AuthMode.BEARER if tokens else AuthMode.BEARER_OPTIONAL
        models = tuple(
            ModelInfo(id=m, name=m)
            for m in dict.fromkeys(x.strip() for x in (env.get(f"{prefix}MODELS") or "").split(","))
            if m
        )
        name = (env.get(f"{prefix}NAME") or "").strip() or channel_id
        config = ChannelConfig(base_url=base_url, auth=auth, tokens=tokens, text_models=models)
        channels.append(
            Channel(
                id=channel_id,
                name=name,
                config=config,
                text=OpenAICompatTextCapability(
                    base_url,
                    auth,
                    name,
                    default_model=config.default_text_model,
                    timeout=settings.http_timeout,
                ),
            )
        )
    return channels
