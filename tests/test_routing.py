"""Unit tests for model string resolution (routing.py)."""

import pytest

from gengateway.routing import (
    CustomRoute,
    ModelResolver,
    PrefixRoute,
    ResolvedModel,
    is_known_image_model,
    public_model_id,
    resolve_chat_model,
    resolve_model,
)

# ---------------------------------------------------------------------------
# 1. Image grammar
# ---------------------------------------------------------------------------


class TestResolveModel:
    @pytest.mark.parametrize(
        ("model", "expected"),
        [
            ("gitee/qwen-image", ResolvedModel("gitee", "Qwen-Image")),
            ("gitee/some-new-model", ResolvedModel("gitee", "some-new-model")),
            ("ms/flux-2", ResolvedModel("modelscope", "black-forest-labs/FLUX.2-dev")),
            ("hf/qwen-image-fast", ResolvedModel("huggingface", "qwen-image-fast")),
            ("a4f/dall-e-3", ResolvedModel("a4f", "dall-e-3")),
            ("deepseek/deepseek-chat", ResolvedModel("deepseek", "deepseek-chat")),
            ("custom/myhost/llama-3", ResolvedModel("myhost", "llama-3")),
            ("custom/myhost/org/model", ResolvedModel("myhost", "org/model")),
            ("pollinations/openai", ResolvedModel("huggingface", "openai", True)),
            ("z-image", ResolvedModel("huggingface", "z-image")),
        ],
    )
    def test_grammar(self, model: str, expected: ResolvedModel) -> None:
        assert resolve_model(model) == expected

    @pytest.mark.parametrize("model", [None, "", "   "])
    def test_empty_uses_default_anonymously(self, model: str | None) -> None:
        assert resolve_model(model) == ResolvedModel("huggingface", "z-image-turbo", True)

    def test_surrounding_whitespace_is_ignored(self) -> None:
        assert resolve_model("  gitee/qwen-image  ") == ResolvedModel("gitee", "Qwen-Image")

    @pytest.mark.parametrize("model", ["custom/", "custom/nochannel", "custom//model"])
    def test_malformed_custom_falls_through(self, model: str) -> None:
        assert resolve_model(model) == ResolvedModel("huggingface", model)

    def test_resolution_is_pure(self) -> None:
        assert resolve_model("ms/flux-1") == resolve_model("ms/flux-1")


# ---------------------------------------------------------------------------
# 2. Chat grammar
# ---------------------------------------------------------------------------


class TestResolveChatModel:
    def test_empty_defaults_to_pollinations(self) -> None:
        assert resolve_chat_model("") == ResolvedModel("huggingface", "openai-fast", True)

    def test_unprefixed_is_anonymous_pollinations(self) -> None:
        assert resolve_chat_model("mistral") == ResolvedModel("huggingface", "mistral", True)

    def test_prefixed_is_not_anonymous(self) -> None:
        assert resolve_chat_model("deepseek/deepseek-chat") == ResolvedModel(
            "deepseek", "deepseek-chat"
        )


# ---------------------------------------------------------------------------
# 3. Matchers and catalog helpers
# ---------------------------------------------------------------------------


class TestMatchers:
    def test_prefix_route_no_match(self) -> None:
        assert PrefixRoute("gitee/", "gitee")("ms/x") is None

    def test_custom_route(self) -> None:
        assert CustomRoute()("custom/a/b") == ResolvedModel("a", "b")
        assert CustomRoute()("custom/a") is None

    def test_custom_resolver_table(self) -> None:
        resolver = ModelResolver(
            default_model="base", routes=(PrefixRoute("x/", "xchan"),), default_channel="fallback"
        )
        assert resolver.resolve("x/m") == ResolvedModel("xchan", "m")
        assert resolver.resolve("gitee/m") == ResolvedModel("fallback", "gitee/m")
        assert resolver.resolve("") == ResolvedModel("fallback", "base", True)


class TestIsKnownImageModel:
    @pytest.mark.parametrize(
        "model",
        ["gitee/qwen-image", "ms/z-image-turbo", "hf/omni-edit", "a4f/gpt-image-1", "z-image"],
    )
    def test_known(self, model: str) -> None:
        assert is_known_image_model(model)

    @pytest.mark.parametrize(
        "model",
        ["", None, "gitee/DeepSeek-V3", "a4f/gemini-2.5-flash-lite", "openai-fast", "hf/mistral"],
    )
    def test_unknown(self, model: str | None) -> None:
        assert not is_known_image_model(model)


class TestPublicModelId:
    def test_alias_round_trip(self) -> None:
        public = public_model_id("gitee", "Qwen-Image")
        assert public == "gitee/qwen-image"
        assert resolve_model(public) == ResolvedModel("gitee", "Qwen-Image")

    def test_default_channel_text_models_use_pollinations(self) -> None:
        assert public_model_id("huggingface", "openai-fast", text=True) == (
            "pollinations/openai-fast"
        )

    def test_custom_channel(self) -> None:
        assert public_model_id("myhost", "llama-3") == "custom/myhost/llama-3"
