"""Provider capability layer.

Public surface area for the providers package.  Import from here rather than
from the individual submodules so internal structure can change freely.

Example::

    from gengateway.providers import (
        ImageRequest,
        OpenAICompatImageCapability,
        run_with_rotation,
    )

    capability = OpenAICompatImageCapability("https://ai.gitee.com/v1", "Gitee AI")
    result = await run_with_rotation(
        "gitee",
        ("token-a", "token-b"),
        lambda token: capability.generate(ImageRequest(prompt="a cat"), token),
    )
    print(result.url, result.seed)
"""

from gengateway.providers.errors import (
    ApiError,
    AuthInvalidError,
    AuthRequiredError,
    ErrorCode,
    GenerationFailedError,
    InvalidParamsError,
    InvalidPromptError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    TimeoutError,
    classify_upstream_error,
)
from gengateway.providers.huggingface import HuggingFaceImageCapability
from gengateway.providers.models import (
    AuthMode,
    CompletionRequest,
    CompletionResult,
    ImageRequest,
    ImageResult,
)
from gengateway.providers.openai_compat import (
    OpenAICompatImageCapability,
    OpenAICompatTextCapability,
)
from gengateway.providers.queue_client import QueueClient
from gengateway.providers.rotation import mask_credential, parse_credentials, run_with_rotation

__all__ = [
    # Models
    "AuthMode",
    "ImageRequest",
    "ImageResult",
    "CompletionRequest",
    "CompletionResult",
    # Capabilities
    "HuggingFaceImageCapability",
    "OpenAICompatImageCapability",
    "OpenAICompatTextCapability",
    "QueueClient",
    # Rotation
    "run_with_rotation",
    "parse_credentials",
    "mask_credential",
    # Errors
    "ErrorCode",
    "ApiError",
    "AuthRequiredError",
    "AuthInvalidError",
    "RateLimitError",
    "QuotaExceededError",
    "TimeoutError",
    "ProviderError",
    "InvalidParamsError",
    "InvalidPromptError",
    "GenerationFailedError",
    "classify_upstream_error",
]
