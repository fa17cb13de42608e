"""Built-in channel definitions and their static configuration tables."""

from gengateway.channels.base import AuthMode, Channel, ChannelConfig, ModelInfo
from gengateway.config import settings
from gengateway.providers.huggingface import HuggingFaceImageCapability
from gengateway.providers.openai_compat import (
    OpenAICompatImageCapability,
    OpenAICompatTextCapability,
)
from gengateway.providers.queue_client import QueueClient
from gengateway.providers.rotation import parse_credentials

# Primary Space per HuggingFace model; every omni-* model shares "omni-image".
HF_SPACES: dict[str, str] = {
    "z-image-turbo": "https://tongyi-mai-z-image-turbo.hf.space",
    "z-image": "https://tongyi-mai-z-image.hf.space",
    "qwen-image-fast": "https://multimodalart-qwen-image-fast.hf.space",
    "ovis-image": "https://aidc-ai-ovis-image-7b.hf.space",
    "flux-1-schnell": "https://black-forest-labs-flux-1-schnell.hf.space",
    "omni-image": "https://selfit-camera-omni-image-editor.hf.space",
}

HF_SPACE_FALLBACKS: dict[str, tuple[str, ...]] = {
    "z-image-turbo": ("https://mrfakename-z-image-turbo.hf.space",),
    "z-image": ("https://mrfakename-z-image.hf.space",),
}

POLLINATIONS_BASE_URL = "https://text.pollinations.ai/openai"

HUGGINGFACE_CONFIG = ChannelConfig(
    base_url="https://huggingface.co",
    auth=AuthMode.BEARER_OPTIONAL,
    tokens=parse_credentials(settings.token_pool("hf")),
    image_models=(
        ModelInfo("z-image-turbo", "Z-Image Turbo"),
        ModelInfo("z-image", "Z-Image"),
        ModelInfo("qwen-image-fast", "Qwen Image Fast"),
        ModelInfo("ovis-image", "Ovis Image"),
        ModelInfo("flux-1-schnell", "FLUX.1 Schnell"),
        ModelInfo("omni-image", "Omni Image"),
        ModelInfo("omni-edit", "Omni Edit"),
        ModelInfo("omni-upscale", "Omni Upscale"),
        ModelInfo("omni-dewatermark", "Omni Dewatermark"),
    ),
    text_models=(
        ModelInfo("openai-fast", "Pollinations OpenAI Fast"),
        ModelInfo("openai", "Pollinations OpenAI"),
        ModelInfo("mistral", "Pollinations Mistral"),
    ),
)

GITEE_CONFIG = ChannelConfig(
    base_url="https://ai.gitee.com/v1",
    auth=AuthMode.BEARER,
    tokens=parse_credentials(settings.token_pool("gitee")),
    image_models=(
        ModelInfo("z-image-turbo", "Z-Image Turbo"),
        ModelInfo("Qwen-Image", "Qwen Image"),
        ModelInfo("FLUX_1-Krea-dev", "FLUX.1 Krea Dev"),
        ModelInfo("FLUX.1-dev", "FLUX.1 Dev"),
    ),
    text_models=(
        ModelInfo("DeepSeek-V3", "DeepSeek V3"),
        ModelInfo("Qwen3-235B-A22B", "Qwen3 235B"),
    ),
)

MODELSCOPE_CONFIG = ChannelConfig(
    base_url="https://api-inference.modelscope.cn/v1",
    auth=AuthMode.BEARER,
    tokens=parse_credentials(settings.token_pool("modelscope")),
    image_models=(
        ModelInfo("Tongyi-MAI/Z-Image-Turbo", "Z-Image Turbo"),
        ModelInfo("black-forest-labs/FLUX.2-dev", "FLUX.2 Dev"),
        ModelInfo("black-forest-labs/FLUX.1-Krea-dev", "FLUX.1 Krea Dev"),
        ModelInfo("MusePublic/489_ckpt_FLUX_1", "FLUX.1"),
    ),
    text_models=(
        ModelInfo("Qwen/Qwen3-32B", "Qwen3 32B"),
        ModelInfo("deepseek-ai/DeepSeek-V3.1", "DeepSeek V3.1"),
    ),
)

DEEPSEEK_CONFIG = ChannelConfig(
    base_url="https://api.deepseek.com/v1",
    auth=AuthMode.BEARER,
    tokens=parse_credentials(settings.token_pool("deepseek")),
    text_models=(
        ModelInfo("deepseek-chat", "DeepSeek Chat"),
        ModelInfo("deepseek-reasoner", "DeepSeek Reasoner"),
    ),
)

A4F_CONFIG = ChannelConfig(
    base_url="https://api.a4f.co/v1",
    auth=AuthMode.BEARER,
    tokens=parse_credentials(settings.token_pool("a4f")),
    image_models=(
        ModelInfo("gpt-image-1", "GPT Image 1"),
        ModelInfo("dall-e-3", "DALL-E 3"),
    ),
    text_models=(ModelInfo("gemini-2.5-flash-lite", "Gemini 2.5 Flash Lite"),),
)


def _text(config: ChannelConfig, provider: str) -> OpenAICompatTextCapability:
    return OpenAICompatTextCapability(
        config.base_url,
        config.auth,
        provider,
        default_model=config.default_text_model,
        timeout=settings.http_timeout,
    )


def builtin_channels() -> list[Channel]:
    """Construct the built-in channels.  Called once by the registry."""
    queue = QueueClient(
        "HuggingFace",
        max_attempts=settings.queue_max_attempts,
        retry_delay=settings.queue_retry_delay,
    )
    return [
        Channel(
            id="huggingface",
            name="HuggingFace",
            config=HUGGINGFACE_CONFIG,
            image=HuggingFaceImageCapability(HF_SPACES, HF_SPACE_FALLBACKS, queue=queue),
            text=OpenAICompatTextCapability(
                POLLINATIONS_BASE_URL,
                AuthMode.NONE,
                "Pollinations",
                default_model=HUGGINGFACE_CONFIG.default_text_model,
                timeout=settings.http_timeout,
            ),
        ),
        Channel(
            id="gitee",
            name="Gitee AI",
            config=GITEE_CONFIG,
            image=OpenAICompatImageCapability(
                GITEE_CONFIG.base_url,
                "Gitee AI",
                default_model=GITEE_CONFIG.default_image_model,
            ),
            text=_text(GITEE_CONFIG, "Gitee AI"),
        ),
        Channel(
            id="modelscope",
            name="ModelScope",
            config=MODELSCOPE_CONFIG,
            image=OpenAICompatImageCapability(
                MODELSCOPE_CONFIG.base_url,
                "ModelScope",
                default_model=MODELSCOPE_CONFIG.default_image_model,
            ),
            text=_text(MODELSCOPE_CONFIG, "ModelScope"),
        ),
        Channel(
            id="deepseek",
            name="DeepSeek",
            config=DEEPSEEK_CONFIG,
            text=_text(DEEPSEEK_CONFIG, "DeepSeek"),
        ),
        Channel(
            id="a4f",
            name="A4F",
            config=A4F_CONFIG,
            image=OpenAICompatImageCapability(
                A4F_CONFIG.base_url,
                "A4F",
                default_model=A4F_CONFIG.default_image_model,
                send_extras=False,
            ),
            text=_text(A4F_CONFIG, "A4F"),
        ),
    ]
