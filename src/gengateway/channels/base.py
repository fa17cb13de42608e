"""Channel and capability model.

A channel is one upstream provider.  It carries its configuration and up to
two optional capabilities; a missing capability is a normal routing outcome
that callers turn into :class:`~gengateway.providers.errors.InvalidParamsError`.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from gengateway.providers.models import (
    AuthMode,
    CompletionRequest,
    CompletionResult,
    ImageRequest,
    ImageResult,
)


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str


@dataclass(frozen=True)
class ChannelConfig:
    """Static configuration owned by a single channel.

    Attributes:
        base_url: Root URL of the provider's API.
        auth: How the provider authenticates callers.
        tokens: Configured credential pool, used when the caller supplies none.
        image_models: Image models the channel advertises.
        text_models: Text models the channel advertises.
    """

    base_url: str
    auth: AuthMode = AuthMode.BEARER
    tokens: tuple[str, ...] = ()
    image_models: tuple[ModelInfo, ...] = ()
    text_models: tuple[ModelInfo, ...] = ()

    @property
    def allow_anonymous(self) -> bool:
        return self.auth in (AuthMode.NONE, AuthMode.BEARER_OPTIONAL)

    @property
    def default_image_model(self) -> str | None:
        return self.image_models[0].id if self.image_models else None

    @property
    def default_text_model(self) -> str | None:
        return self.text_models[0].id if self.text_models else None


@runtime_checkable
class ImageCapability(Protocol):
    """Image generation.  Implementations raise only ``ApiError``."""

    async def generate(self, request: ImageRequest, credential: str | None = None) -> ImageResult:
        ...


@runtime_checkable
class TextCapability(Protocol):
    """Text completion.  Implementations raise only ``ApiError``."""

    async def complete(
        self, request: CompletionRequest, credential: str | None = None
    ) -> CompletionResult:
        ...


@dataclass(frozen=True)
class Channel:
    id: str
    name: str
    config: ChannelConfig
    image: ImageCapability | None = field(default=None, compare=False)
    text: TextCapability | None = field(default=None, compare=False)

    def credentials(self, override: tuple[str, ...] = ()) -> tuple[str, ...]:
        """Caller-supplied credentials win over the configured pool."""
        return override or self.config.tokens
