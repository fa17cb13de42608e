"""Request and result dataclasses for the gateway capability layer.

These types form the contract between the HTTP surface, the rotation engine
and the individual provider capabilities.  All fields are immutable
(``frozen=True``) and validated at construction time so callers get a fast,
typed error rather than a confusing upstream failure.
"""

from dataclasses import dataclass, field
from enum import StrEnum

from gengateway.providers.errors import InvalidParamsError, InvalidPromptError

MAX_SEED = 2**31 - 1
MAX_DIMENSION = 4096


class AuthMode(StrEnum):
    """How an upstream endpoint authenticates callers."""

    NONE = "none"
    BEARER = "bearer"
    BEARER_OPTIONAL = "bearer-optional"


@dataclass(frozen=True)
class ImageRequest:
    """Parameters for a single image generation call.

    Args:
        prompt: Text prompt.  Must contain at least one non-space character.
        width: Output width in pixels.
        height: Output height in pixels.
        model: Provider-native model id.  ``None`` lets the capability pick
            its default model.
        negative_prompt: Things the image should not contain.
        seed: Generation seed in ``[0, 2**31 - 1]``.  ``None`` means the
            capability draws a random seed and reports it in the result.
        source_image: Source image for editing models, either a public URL or
            an inline ``data:<mime>;base64,...`` URI.
        aspect_ratio: Aspect-ratio hint (e.g. ``"16:9"``) for providers that
            take a ratio instead of pixel dimensions.
        steps: Inference step count override.
        guidance_scale: Classifier-free guidance override.

    Raises:
        InvalidPromptError: If the prompt is blank.
        InvalidParamsError: If any other field fails validation.
    """

    prompt: str
    width: int = 1024
    height: int = 1024
    model: str | None = None
    negative_prompt: str | None = None
    seed: int | None = None
    source_image: str | None = None
    aspect_ratio: str | None = None
    steps: int | None = None
    guidance_scale: float | None = None

    def __post_init__(self) -> None:
        if not self.prompt.strip():
            raise InvalidPromptError("Image prompt is required")

        for name, value in (("width", self.width), ("height", self.height)):
            if not 0 < value <= MAX_DIMENSION:
                raise InvalidParamsError(
                    "size", f"{name} must be in (0, {MAX_DIMENSION}], got {value}"
                )

        if self.seed is not None and not 0 <= self.seed <= MAX_SEED:
            raise InvalidParamsError("seed", f"seed must be in [0, {MAX_SEED}], got {self.seed}")

        if self.steps is not None and self.steps <= 0:
            raise InvalidParamsError("steps", f"steps must be a positive integer, got {self.steps}")

    @property
    def size(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class ImageResult:
    """Outcome of an image generation call.

    Attributes:
        url: Location of the generated image (absolute URL or data URI).
        seed: Seed actually used, as reported by the provider or drawn locally.
        model: Provider-native model id that produced the image.
    """

    url: str
    seed: int
    model: str


@dataclass(frozen=True)
class CompletionRequest:
    """Parameters for a single text completion call.

    Args:
        prompt: User prompt, already flattened from the chat history.
        model: Provider-native model id.  ``None`` lets the capability pick
            its default model.
        system_prompt: Optional system instruction.
        max_tokens: Maximum tokens to generate.  ``None`` defers to the
            provider default.
        temperature: Sampling temperature in ``[0.0, 2.0]``.  ``None`` defers
            to the provider default.

    Raises:
        InvalidPromptError: If the prompt is blank.
        InvalidParamsError: If any other field fails validation.
    """

    prompt: str
    model: str | None = None
    system_prompt: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None

    def __post_init__(self) -> None:
        if not self.prompt.strip():
            raise InvalidPromptError("Prompt is required")

        if self.temperature is not None and not 0.0 <= self.temperature <= 2.0:
            raise InvalidParamsError(
                "temperature", f"temperature must be in [0.0, 2.0], got {self.temperature}"
            )

        if self.max_tokens is not None and self.max_tokens <= 0:
            raise InvalidParamsError(
                "max_tokens", f"max_tokens must be a positive integer, got {self.max_tokens}"
            )

    def to_messages(self) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": self.prompt})
        return messages


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of a text completion call.

    Attributes:
        content: Generated text.
        model: Model name as reported by the provider (may differ from the
            requested one due to aliasing).
        finish_reason: Stop reason reported by the provider, when available.
        usage: Token counts ``{"input_tokens": N, "output_tokens": M}``.
    """

    content: str
    model: str
    finish_reason: str | None = "stop"
    usage: dict[str, int] = field(default_factory=dict)


def parse_size(size: str | None, default: tuple[int, int] = (1024, 1024)) -> tuple[int, int]:
    """Parse an OpenAI-style ``"WxH"`` size string.

    Raises:
        InvalidParamsError: If *size* is present but not ``<int>x<int>``.
    """
    if not size or not size.strip():
        return default
    width, sep, height = size.strip().lower().partition("x")
    if not sep or not width.isdigit() or not height.isdigit():
        raise InvalidParamsError("size", f"size must look like '1024x1024', got {size!r}")
    return int(width), int(height)
