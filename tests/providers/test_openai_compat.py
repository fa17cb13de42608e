"""Unit tests for the OpenAI-compatible adapters (openai_compat.py).

Mocking strategy
----------------
* ``litellm.acompletion`` is patched at
  ``gengateway.providers.openai_compat.litellm.acompletion`` for text tests.
* Image endpoints are simulated with ``httpx.MockTransport``.

No real API calls are made in this test suite.
"""

import json
import random
from typing import Any
from unittest.mock import AsyncMock

import httpx
import litellm
import pytest

from gengateway.providers.errors import (
    AuthInvalidError,
    AuthRequiredError,
    GenerationFailedError,
    InvalidParamsError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    TimeoutError,
)
from gengateway.providers.models import AuthMode, CompletionRequest, ImageRequest
from gengateway.providers.openai_compat import (
    ANONYMOUS_API_KEY,
    OpenAICompatImageCapability,
    OpenAICompatTextCapability,
    parse_image_api_error,
)
from gengateway.providers.rotation import run_with_rotation

BASE = "https://api.example.com/v1"

# ---------------------------------------------------------------------------
# Mock helpers – lightweight stand-ins for LiteLLM response objects
# ---------------------------------------------------------------------------


class _Usage:
    def __init__(self, prompt_tokens: int, completion_tokens: int) -> None:
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens


class _ResponseMessage:
    def __init__(self, content: str) -> None:
        self.content = content


class _ResponseChoice:
    def __init__(self, content: str, finish_reason: str) -> None:
        self.message = _ResponseMessage(content)
        self.finish_reason = finish_reason


class _CompletionResponse:
    """Mimics a LiteLLM non-streaming completion response object."""

    def __init__(self, content: str = "Hello!", model: str = "deepseek-chat") -> None:
        self.model = model
        self.choices = [_ResponseChoice(content, "stop")]
        self.usage = _Usage(12, 3)


# ---------------------------------------------------------------------------
# LiteLLM exception factories
# Uses real constructors so ``isinstance`` checks in ``_map_error`` pass.
# ---------------------------------------------------------------------------

_DUMMY_REQ = httpx.Request("POST", f"{BASE}/chat/completions")


def _auth_error() -> litellm.AuthenticationError:
    return litellm.AuthenticationError(
        message="Invalid API key",
        llm_provider="openai",
        model="deepseek-chat",
        response=httpx.Response(401, request=_DUMMY_REQ),
    )


def _rate_limit_error(message: str = "Rate limit exceeded") -> litellm.RateLimitError:
    return litellm.RateLimitError(
        message=message,
        llm_provider="openai",
        model="deepseek-chat",
        response=httpx.Response(429, request=_DUMMY_REQ),
    )


def _timeout_error() -> litellm.Timeout:
    return litellm.Timeout(
        message="Request timed out", model="deepseek-chat", llm_provider="openai"
    )


def _bad_request_error() -> litellm.BadRequestError:
    return litellm.BadRequestError(
        message="Invalid request",
        llm_provider="openai",
        model="deepseek-chat",
        response=httpx.Response(400, request=_DUMMY_REQ),
    )


def _service_unavailable_error() -> litellm.ServiceUnavailableError:
    return litellm.ServiceUnavailableError(
        message="Service unavailable",
        llm_provider="openai",
        model="deepseek-chat",
        response=httpx.Response(503, request=_DUMMY_REQ),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def text() -> OpenAICompatTextCapability:
    return OpenAICompatTextCapability(
        BASE, AuthMode.BEARER, "DeepSeek", default_model="deepseek-chat", timeout=5.0
    )


@pytest.fixture
def completion_request() -> CompletionRequest:
    return CompletionRequest(prompt="Hello", system_prompt="Be brief", temperature=0.2)


# ---------------------------------------------------------------------------
# 1. Text capability
# ---------------------------------------------------------------------------


class TestTextComplete:
    async def test_happy_path(
        self, text: OpenAICompatTextCapability, completion_request: CompletionRequest, mocker: Any
    ) -> None:
        mock_acompletion = mocker.patch(
            "gengateway.providers.openai_compat.litellm.acompletion",
            new=AsyncMock(return_value=_CompletionResponse("Hi there")),
        )

        result = await text.complete(completion_request, credential=" sk-1 ")

        assert result.content == "Hi there"
        assert result.model == "deepseek-chat"
        assert result.usage == {"input_tokens": 12, "output_tokens": 3}
        kw = mock_acompletion.call_args.kwargs
        assert kw["model"] == "openai/deepseek-chat"
        assert kw["api_base"] == BASE
        assert kw["api_key"] == "sk-1"
        assert kw["max_retries"] == 0
        assert kw["temperature"] == 0.2
        assert "max_tokens" not in kw
        assert kw["messages"] == [
            {"role": "system", "content": "Be brief"},
            {"role": "user", "content": "Hello"},
        ]

    async def test_request_model_overrides_default(
        self, text: OpenAICompatTextCapability, mocker: Any
    ) -> None:
        mock_acompletion = mocker.patch(
            "gengateway.providers.openai_compat.litellm.acompletion",
            new=AsyncMock(return_value=_CompletionResponse()),
        )
        await text.complete(CompletionRequest(prompt="x", model="deepseek-reasoner"), "sk-1")
        assert mock_acompletion.call_args.kwargs["model"] == "openai/deepseek-reasoner"

    async def test_bearer_without_credential_fails_before_io(
        self, text: OpenAICompatTextCapability, mocker: Any
    ) -> None:
        mock_acompletion = mocker.patch(
            "gengateway.providers.openai_compat.litellm.acompletion", new=AsyncMock()
        )
        with pytest.raises(AuthRequiredError):
            await text.complete(CompletionRequest(prompt="x"))
        mock_acompletion.assert_not_awaited()

    async def test_anonymous_endpoint_uses_placeholder_key(self, mocker: Any) -> None:
        capability = OpenAICompatTextCapability(
            "https://text.pollinations.ai/openai", AuthMode.NONE, "Pollinations"
        )
        mock_acompletion = mocker.patch(
            "gengateway.providers.openai_compat.litellm.acompletion",
            new=AsyncMock(return_value=_CompletionResponse()),
        )
        await capability.complete(CompletionRequest(prompt="x", model="openai"), "caller-token")
        assert mock_acompletion.call_args.kwargs["api_key"] == ANONYMOUS_API_KEY

    async def test_no_model_is_invalid_params(self) -> None:
        capability = OpenAICompatTextCapability(BASE, AuthMode.BEARER_OPTIONAL, "Custom")
        with pytest.raises(InvalidParamsError) as exc_info:
            await capability.complete(CompletionRequest(prompt="x"))
        assert exc_info.value.param == "model"

    async def test_empty_choices_is_generation_failed(
        self, text: OpenAICompatTextCapability, mocker: Any
    ) -> None:
        response = _CompletionResponse()
        response.choices = []
        mocker.patch(
            "gengateway.providers.openai_compat.litellm.acompletion",
            new=AsyncMock(return_value=response),
        )
        with pytest.raises(GenerationFailedError):
            await text.complete(CompletionRequest(prompt="x"), "sk-1")


class TestTextErrorMapping:
    @pytest.mark.parametrize(
        ("factory", "expected"),
        [
            (_auth_error, AuthInvalidError),
            (_rate_limit_error, RateLimitError),
            (lambda: _rate_limit_error("You exceeded your current quota"), QuotaExceededError),
            (_timeout_error, TimeoutError),
            (_bad_request_error, InvalidParamsError),
            (_service_unavailable_error, ProviderError),
        ],
    )
    async def test_litellm_errors_are_mapped(
        self,
        text: OpenAICompatTextCapability,
        mocker: Any,
        factory: Any,
        expected: type[Exception],
    ) -> None:
        mocker.patch(
            "gengateway.providers.openai_compat.litellm.acompletion",
            new=AsyncMock(side_effect=factory()),
        )
        with pytest.raises(expected) as exc_info:
            await text.complete(CompletionRequest(prompt="x"), "sk-1")
        assert exc_info.value.provider == "DeepSeek"

    async def test_unknown_exception_is_provider_error(
        self, text: OpenAICompatTextCapability, mocker: Any
    ) -> None:
        mocker.patch(
            "gengateway.providers.openai_compat.litellm.acompletion",
            new=AsyncMock(side_effect=RuntimeError("kaboom")),
        )
        with pytest.raises(ProviderError, match="kaboom"):
            await text.complete(CompletionRequest(prompt="x"), "sk-1")

    async def test_rate_limit_makes_one_upstream_call_per_credential(
        self, text: OpenAICompatTextCapability, mocker: Any
    ) -> None:
        mock_acompletion = mocker.patch(
            "gengateway.providers.openai_compat.litellm.acompletion",
            new=AsyncMock(side_effect=_rate_limit_error()),
        )
        request = CompletionRequest(prompt="x")

        with pytest.raises(RateLimitError):
            await run_with_rotation(
                "deepseek", ("sk-1", "sk-2"), lambda token: text.complete(request, token)
            )

        assert [c.kwargs["api_key"] for c in mock_acompletion.await_args_list] == [
            "sk-1",
            "sk-2",
        ]
        assert all(c.kwargs["max_retries"] == 0 for c in mock_acompletion.await_args_list)


# ---------------------------------------------------------------------------
# 2. Image capability
# ---------------------------------------------------------------------------


def _image(handler: Any, **kwargs: Any) -> OpenAICompatImageCapability:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAICompatImageCapability(
        BASE, "Gitee AI", default_model="z-image-turbo", client=http, rng=random.Random(1), **kwargs
    )


class TestImageGenerate:
    async def test_happy_path(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"data": [{"url": "https://cdn/x.png"}]})

        request = ImageRequest(
            prompt="a cat", width=768, height=512, seed=7, negative_prompt="blur", steps=9
        )
        result = await _image(handler).generate(request, "gitee-token")

        assert result.url == "https://cdn/x.png"
        assert result.seed == 7
        assert result.model == "z-image-turbo"
        (sent,) = captured
        assert sent.url == f"{BASE}/images/generations"
        assert sent.headers["Authorization"] == "Bearer gitee-token"
        body = json.loads(sent.content)
        assert body["size"] == "768x512"
        assert body["seed"] == 7
        assert body["negative_prompt"] == "blur"
        assert body["num_inference_steps"] == 9

    async def test_random_seed_is_reported(self) -> None:
        handler = lambda request: httpx.Response(200, json={"data": [{"url": "u"}]})  # noqa: E731
        result = await _image(handler).generate(ImageRequest(prompt="a cat"), "t")
        assert 0 <= result.seed < 2**31 - 1
        assert result.seed == random.Random(1).randrange(2**31 - 1)

    async def test_extras_can_be_disabled(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"data": [{"url": "u"}]})

        await _image(handler, send_extras=False).generate(
            ImageRequest(prompt="a cat", seed=3, negative_prompt="blur"), "t"
        )
        body = json.loads(captured[0].content)
        assert "seed" not in body
        assert "negative_prompt" not in body

    async def test_b64_payload_becomes_data_uri(self) -> None:
        payload = {"data": [{"b64_json": "QUJD"}]}
        handler = lambda request: httpx.Response(200, json=payload)  # noqa: E731
        result = await _image(handler).generate(ImageRequest(prompt="a cat"), "t")
        assert result.url == "data:image/png;base64,QUJD"

    async def test_empty_data_is_generation_failed(self) -> None:
        handler = lambda request: httpx.Response(200, json={"data": []})  # noqa: E731
        with pytest.raises(GenerationFailedError):
            await _image(handler).generate(ImageRequest(prompt="a cat"), "t")

    @pytest.mark.parametrize("items", [{"url": "https://x/y.png"}, "https://x/y.png", None])
    async def test_non_list_data_is_generation_failed(self, items: Any) -> None:
        handler = lambda request: httpx.Response(200, json={"data": items})  # noqa: E731
        with pytest.raises(GenerationFailedError):
            await _image(handler).generate(ImageRequest(prompt="a cat"), "t")

    async def test_credential_required(self) -> None:
        handler = lambda request: httpx.Response(200)  # noqa: E731
        with pytest.raises(AuthRequiredError):
            await _image(handler).generate(ImageRequest(prompt="a cat"))

    @pytest.mark.parametrize(
        ("status", "body", "expected"),
        [
            (401, {"error": {"message": "bad key"}}, AuthInvalidError),
            (429, {"error": "slow down"}, RateLimitError),
            (402, {"message": "pay up"}, QuotaExceededError),
            (400, {"error": {"message": "insufficient balance"}}, QuotaExceededError),
            (500, {}, ProviderError),
        ],
    )
    async def test_error_statuses(
        self, status: int, body: dict[str, Any], expected: type[Exception]
    ) -> None:
        handler = lambda request: httpx.Response(status, json=body)  # noqa: E731
        with pytest.raises(expected):
            await _image(handler).generate(ImageRequest(prompt="a cat"), "t")

    async def test_transport_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("slow", request=request)

        with pytest.raises(TimeoutError):
            await _image(handler).generate(ImageRequest(prompt="a cat"), "t")


class TestParseImageApiError:
    def test_message_falls_back_to_status(self) -> None:
        error = parse_image_api_error("Gitee AI", 500, {})
        assert error.message == "HTTP 500"
        assert error.details == {"status": 500, "upstream": "HTTP 500"}
