"""Tests for POST /v1/images/generations endpoint."""

import pytest
from httpx import AsyncClient

from gengateway.channels.registry import ChannelRegistry
from gengateway.providers.errors import (
    ApiError,
    AuthInvalidError,
    GenerationFailedError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    TimeoutError,
)


class TestImageGenerations:
    async def test_happy_path(self, client: AsyncClient, reg: ChannelRegistry) -> None:
        response = await client.post(
            "/v1/images/generations",
            json={
                "model": "gitee/qwen-image",
                "prompt": "a red fox",
                "size": "768x512",
                "negative_prompt": "blur",
                "seed": 9,
                "num_inference_steps": 12,
                "cfg_scale": 3.5,
            },
            headers={"Authorization": "Bearer gitee:mine"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == [{"url": "https://cdn/x.png", "seed": 5}]
        assert "X-Request-ID" in response.headers

        request, credential = reg.get_image_capability("gitee").generate.await_args.args
        assert credential == "mine"
        assert request.model == "Qwen-Image"
        assert (request.width, request.height) == (768, 512)
        assert request.negative_prompt == "blur"
        assert request.seed == 9
        assert request.steps == 12
        assert request.guidance_scale == 3.5

    async def test_default_model(self, client: AsyncClient, reg: ChannelRegistry) -> None:
        response = await client.post("/v1/images/generations", json={"prompt": "a fox"})
        assert response.status_code == 200
        request, credential = reg.get_image_capability("huggingface").generate.await_args.args
        assert request.model == "z-image-turbo"
        assert credential is None

    async def test_blank_prompt_is_invalid_prompt(self, client: AsyncClient) -> None:
        response = await client.post("/v1/images/generations", json={"prompt": "   "})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PROMPT"

    async def test_malformed_size(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/images/generations", json={"prompt": "a fox", "size": "huge"}
        )
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_PARAMS"
        assert error["param"] == "size"

    async def test_missing_prompt_is_invalid_params(self, client: AsyncClient) -> None:
        response = await client.post("/v1/images/generations", json={"model": "gitee/x"})
        assert response.status_code == 400
        assert response.json()["error"]["param"] == "prompt"

    async def test_channel_without_image_capability(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/images/generations",
            json={"model": "deepseek/x", "prompt": "a fox"},
        )
        assert response.status_code == 400
        assert "Unsupported image provider" in response.json()["error"]["message"]

    @pytest.mark.parametrize(
        ("exc", "status", "code"),
        [
            (AuthInvalidError("bad", provider="Gitee AI"), 401, "AUTH_INVALID"),
            (RateLimitError("slow", provider="Gitee AI"), 429, "RATE_LIMITED"),
            (QuotaExceededError("empty", provider="Gitee AI"), 402, "QUOTA_EXCEEDED"),
            (TimeoutError("late", provider="Gitee AI"), 504, "TIMEOUT"),
            (ProviderError("down", provider="Gitee AI"), 502, "PROVIDER_ERROR"),
            (GenerationFailedError("none", provider="Gitee AI"), 502, "GENERATION_FAILED"),
        ],
    )
    async def test_error_status_mapping(
        self,
        client: AsyncClient,
        reg: ChannelRegistry,
        exc: ApiError,
        status: int,
        code: str,
    ) -> None:
        reg.get_image_capability("gitee").generate.side_effect = exc

        response = await client.post(
            "/v1/images/generations",
            json={"model": "gitee/qwen-image", "prompt": "a fox"},
            headers={"Authorization": "Bearer only-one"},
        )

        assert response.status_code == status
        error = response.json()["error"]
        assert error["code"] == code
        assert error["provider"] == "Gitee AI"
        assert error["message"] == exc.message

    async def test_hint_mismatch(self, client: AsyncClient) -> None:
        response = await client.post(
            "/v1/images/generations",
            json={"model": "gitee/qwen-image", "prompt": "a fox"},
            headers={"Authorization": "Bearer hf:tok"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["param"] == "Authorization"
