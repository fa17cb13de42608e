"""Model string resolution.

Maps a caller-supplied model identifier to ``(channel_id, provider_model_id)``.
The grammar is an ordered table of matchers evaluated top to bottom; the
first one that returns a :class:`ResolvedModel` wins.  Adding a provider is
adding a row, not a branch.

===========================  ==========================================
Model string                 Resolution
===========================  ==========================================
``custom/<id>/<model>``      channel ``<id>``, model ``<model>``
``gitee/<alias>``            ``gitee``, alias table applied
``ms/<alias>``               ``modelscope``, alias table applied
``hf/<model>``               ``huggingface``
``a4f/<model>``              ``a4f``
``deepseek/<model>``         ``deepseek``
``pollinations/<model>``     default channel, anonymous
``""``                       fixed default model, anonymous
anything else                default channel, whole string as model id
===========================  ==========================================
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

DEFAULT_CHANNEL = "huggingface"
DEFAULT_IMAGE_MODEL = "z-image-turbo"
DEFAULT_CHAT_MODEL = "openai-fast"

GITEE_MODEL_ALIASES: dict[str, str] = {
    "z-image-turbo": "z-image-turbo",
    "qwen-image": "Qwen-Image",
    "flux-1-krea-dev": "FLUX_1-Krea-dev",
    "flux-1-dev": "FLUX.1-dev",
}

MODELSCOPE_MODEL_ALIASES: dict[str, str] = {
    "z-image-turbo": "Tongyi-MAI/Z-Image-Turbo",
    "flux-2": "black-forest-labs/FLUX.2-dev",
    "flux-1-krea-dev": "black-forest-labs/FLUX.1-Krea-dev",
    "flux-1": "MusePublic/489_ckpt_FLUX_1",
}

HUGGINGFACE_MODEL_ALIASES: dict[str, str] = {
    model: model
    for model in (
        "z-image-turbo",
        "z-image",
        "qwen-image-fast",
        "ovis-image",
        "flux-1-schnell",
        "omni-image",
        "omni-edit",
        "omni-upscale",
        "omni-dewatermark",
    )
}

A4F_IMAGE_MODELS: dict[str, str] = {"gpt-image-1": "gpt-image-1", "dall-e-3": "dall-e-3"}

CHANNEL_ALIASES: dict[str, Mapping[str, str]] = {
    "gitee": GITEE_MODEL_ALIASES,
    "modelscope": MODELSCOPE_MODEL_ALIASES,
    "huggingface": HUGGINGFACE_MODEL_ALIASES,
}


@dataclass(frozen=True)
class ResolvedModel:
    channel_id: str
    model: str
    force_anonymous: bool = False


Matcher = Callable[[str], ResolvedModel | None]


def apply_alias(channel_id: str, model: str) -> str:
    """Translate a public alias to the channel's native id; unknown names pass through."""
    return CHANNEL_ALIASES.get(channel_id, {}).get(model, model)


@dataclass(frozen=True)
class PrefixRoute:
    """``<prefix><model>`` routes to a fixed channel."""

    prefix: str
    channel_id: str
    force_anonymous: bool = False

    def __call__(self, model: str) -> ResolvedModel | None:
        if not model.startswith(self.prefix):
            return None
        raw = model[len(self.prefix) :]
        return ResolvedModel(
            self.channel_id, apply_alias(self.channel_id, raw), self.force_anonymous
        )


@dataclass(frozen=True)
class CustomRoute:
    """``custom/<channel_id>/<model>``; the first ``/`` after the prefix splits the two."""

    prefix: str = "custom/"

    def __call__(self, model: str) -> ResolvedModel | None:
        if not model.startswith(self.prefix):
            return None
        channel_id, sep, rest = model[len(self.prefix) :].partition("/")
        channel_id = channel_id.strip()
        if not sep or not channel_id:
            return None
        return ResolvedModel(channel_id, rest.strip())


@dataclass(frozen=True)
class EmptyRoute:
    default: ResolvedModel

    def __call__(self, model: str) -> ResolvedModel | None:
        return self.default if not model else None


PROVIDER_ROUTES: tuple[Matcher, ...] = (
    CustomRoute(),
    PrefixRoute("gitee/", "gitee"),
    PrefixRoute("ms/", "modelscope"),
    PrefixRoute("hf/", "huggingface"),
    PrefixRoute("a4f/", "a4f"),
    PrefixRoute("deepseek/", "deepseek"),
    PrefixRoute("pollinations/", DEFAULT_CHANNEL, force_anonymous=True),
)


@dataclass(frozen=True)
class ModelResolver:
    """Evaluates *routes* in order, then the empty-string default, then the fallthrough.

    Args:
        default_model: Model used for an empty model string (always anonymous).
        fallthrough_anonymous: Whether unprefixed model strings force
            anonymous credential use on the default channel.
        routes: Ordered prefix matchers.
        default_channel: Channel for empty and unprefixed model strings.
    """

    default_model: str
    fallthrough_anonymous: bool = False
    routes: Sequence[Matcher] = field(default=PROVIDER_ROUTES)
    default_channel: str = DEFAULT_CHANNEL

    def resolve(self, model: str | None) -> ResolvedModel:
        trimmed = (model or "").strip()
        empty = EmptyRoute(ResolvedModel(self.default_channel, self.default_model, True))
        for matcher in (*self.routes, empty):
            resolved = matcher(trimmed)
            if resolved is not None:
                return resolved
        return ResolvedModel(
            self.default_channel,
            apply_alias(self.default_channel, trimmed),
            self.fallthrough_anonymous,
        )


IMAGE_RESOLVER = ModelResolver(default_model=DEFAULT_IMAGE_MODEL)
# Unprefixed chat models are Pollinations ids served anonymously.
CHAT_RESOLVER = ModelResolver(default_model=DEFAULT_CHAT_MODEL, fallthrough_anonymous=True)


def resolve_model(model: str | None) -> ResolvedModel:
    """Resolve an image-generation model string."""
    return IMAGE_RESOLVER.resolve(model)


def resolve_chat_model(model: str | None) -> ResolvedModel:
    """Resolve a text-completion model string."""
    return CHAT_RESOLVER.resolve(model)


_KNOWN_IMAGE_PREFIXES: dict[str, Mapping[str, str]] = {
    "gitee/": GITEE_MODEL_ALIASES,
    "ms/": MODELSCOPE_MODEL_ALIASES,
    "hf/": HUGGINGFACE_MODEL_ALIASES,
    "a4f/": A4F_IMAGE_MODELS,
}


def is_known_image_model(model: str | None) -> bool:
    """Whether *model* names a known image model, without full resolution."""
    trimmed = (model or "").strip()
    if not trimmed:
        return False
    for prefix, aliases in _KNOWN_IMAGE_PREFIXES.items():
        if trimmed.startswith(prefix):
            return trimmed[len(prefix) :] in aliases
    return trimmed in HUGGINGFACE_MODEL_ALIASES


_PUBLIC_PREFIXES: dict[str, str] = {
    "gitee": "gitee/",
    "modelscope": "ms/",
    "huggingface": "hf/",
    "a4f": "a4f/",
    "deepseek": "deepseek/",
}


def public_model_id(channel_id: str, model: str, *, text: bool = False) -> str:
    """Model string that routes back to ``(channel_id, model)``.

    Inverse of the resolution grammar: native ids are mapped back to their
    public alias, and text models on the default channel use the
    ``pollinations/`` prefix.
    """
    aliases = CHANNEL_ALIASES.get(channel_id, {})
    public = next((alias for alias, native in aliases.items() if native == model), model)
    if text and channel_id == DEFAULT_CHANNEL:
        return f"pollinations/{public}"
    prefix = _PUBLIC_PREFIXES.get(channel_id)
    if prefix is None:
        return f"custom/{channel_id}/{model}"
    return f"{prefix}{public}"
