import os

from dotenv import dotenv_values
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="gengateway")
    app_version: str = Field(default="0.1.0")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Observability
    otel_exporter_otlp_endpoint: str = Field(default="http://jaeger:4318")
    otel_service_name: str = Field(default="gengateway")
    log_level: str = Field(default="INFO")

    # Provider credential pools, comma or newline separated, stored as
    # SecretStr to avoid accidental logging
    hf_tokens: SecretStr | None = Field(default=None)
    gitee_tokens: SecretStr | None = Field(default=None)
    modelscope_tokens: SecretStr | None = Field(default=None)
    deepseek_tokens: SecretStr | None = Field(default=None)
    a4f_tokens: SecretStr | None = Field(default=None)

    # Upstream call behaviour
    http_timeout: float = Field(default=120.0)
    request_timeout: float = Field(default=300.0)
    queue_max_attempts: int = Field(default=3)
    queue_retry_delay: float = Field(default=0.6)

    def token_pool(self, channel_id: str) -> str:
        """Return the raw configured pool for *channel_id* (empty when unset)."""
        secret: SecretStr | None = getattr(self, f"{channel_id}_tokens", None)
        return secret.get_secret_value() if secret is not None else ""


settings = Settings()


def channel_env(env_file: str | os.PathLike[str] | None = None) -> dict[str, str | None]:
    """Environment used for custom channel definitions.

    Mirrors how :class:`Settings` reads configuration: values from the
    ``.env`` file, overridden by the process environment.
    """
    path = env_file if env_file is not None else Settings.model_config["env_file"]
    return {**dotenv_values(path), **os.environ}
