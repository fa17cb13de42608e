"""Shared fixtures: a private channel registry whose capabilities are ``AsyncMock`` objects."""

import os
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest

# Use litellm's bundled model cost map instead of fetching it at import time.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from httpx import ASGITransport, AsyncClient

from gengateway.channels.base import AuthMode, Channel, ChannelConfig, ModelInfo
from gengateway.channels.registry import ChannelRegistry
from gengateway.providers.models import CompletionResult, ImageResult


class _Image:
    def __init__(self, **kwargs: object) -> None:
        self.generate = AsyncMock(**kwargs)


class _Text:
    def __init__(self, **kwargs: object) -> None:
        self.complete = AsyncMock(**kwargs)


def image_result(model: str = "m") -> ImageResult:
    return ImageResult(url="https://cdn/x.png", seed=5, model=model)


def build_registry() -> ChannelRegistry:
    reg = ChannelRegistry()
    reg.register(
        Channel(
            id="huggingface",
            name="HuggingFace",
            config=ChannelConfig(
                "https://huggingface.co",
                auth=AuthMode.BEARER_OPTIONAL,
                image_models=(ModelInfo("z-image-turbo", "Z"),),
                text_models=(ModelInfo("openai-fast", "P"),),
            ),
            image=_Image(return_value=image_result("z-image-turbo")),
            text=_Text(return_value=CompletionResult(content="hi", model="openai-fast")),
        )
    )
    reg.register(
        Channel(
            id="gitee",
            name="Gitee AI",
            config=ChannelConfig(
                "https://ai.gitee.com/v1",
                tokens=("pool-1", "pool-2"),
                image_models=(ModelInfo("z-image-turbo", "Z"),),
                text_models=(ModelInfo("DeepSeek-V3", "D"),),
            ),
            image=_Image(return_value=image_result()),
            text=_Text(return_value=CompletionResult(content="ok", model="DeepSeek-V3")),
        )
    )
    reg.register(
        Channel(
            id="deepseek",
            name="DeepSeek",
            config=ChannelConfig("https://api.deepseek.com/v1"),
            text=_Text(return_value=CompletionResult(content="ok", model="deepseek-chat")),
        )
    )
    reg.register(
        Channel(
            id="imgonly",
            name="Image Only",
            config=ChannelConfig("https://img.example.com", auth=AuthMode.BEARER_OPTIONAL),
            image=_Image(return_value=image_result()),
        )
    )
    return reg


@pytest.fixture
def reg() -> ChannelRegistry:
    return build_registry()


@pytest.fixture
async def client(reg: ChannelRegistry) -> AsyncGenerator[AsyncClient, None]:
    """ASGI client whose routes see only the channels in *reg*."""
    from gengateway.api.deps import get_service
    from gengateway.main import app
    from gengateway.service import GatewayService

    app.dependency_overrides[get_service] = lambda: GatewayService(reg, request_timeout=5.0)
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
