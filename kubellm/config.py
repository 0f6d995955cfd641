"""
KubeLLM Configuration Module

This module manages application settings and environment variables using
pydantic-settings for type-safe configuration management.

Environment variables are loaded from .env file or system environment.
Provider credentials use SecretStr to prevent accidental logging.

Settings are validated once at startup and turned into an immutable tuple
of ProviderConfig values; the registry is built from that tuple, never
from the environment directly.
"""

from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal, TextIO
from urllib.parse import urlparse
import logging
import sys

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

if TYPE_CHECKING:
    from kubellm.dispatcher.retry import RetryPolicy


ProviderKind = Literal["anthropic", "openai", "groq"]

PROVIDER_KINDS: tuple[str, ...] = ("anthropic", "openai", "groq")

DEFAULT_ANTHROPIC_MODELS = [
    "claude-sonnet-4-5",
    "claude-opus-4-1",
    "claude-3-5-haiku-latest",
]
DEFAULT_OPENAI_MODELS = ["gpt-4o", "gpt-4o-mini", "gpt-4.1", "gpt-4.1-mini", "gpt-5"]
DEFAULT_GROQ_MODELS = ["llama-3.1-8b-instant", "llama-3.3-70b-versatile"]

CommaSeparated = Annotated[list[str], NoDecode]


class ProviderConfig(BaseModel):
    """
    Validated, immutable configuration for one provider.

    The registry constructs exactly one adapter per ProviderConfig.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str = Field(..., description="Identifier clients use to select the provider")
    kind: ProviderKind = Field(..., description="Adapter variant that speaks the vendor protocol")
    api_key: SecretStr = Field(..., description="Vendor credential")
    base_url: str = Field(..., description="Vendor API base endpoint")
    models: tuple[str, ...] = Field(..., min_length=1, description="Supported model identifiers")
    default_model: str = Field(..., description="Model used when a request names none")
    timeout_seconds: float = Field(default=60.0, gt=0, description="Per-attempt deadline")

    @model_validator(mode="after")
    def validate_default_model(self) -> "ProviderConfig":
        if self.default_model not in self.models:
            raise ValueError(
                f"default model {self.default_model!r} is not among the "
                f"{self.provider_id} models: {', '.join(self.models)}"
            )
        return self


def _validate_endpoint(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"endpoint must be an absolute http(s) URL, got {value!r}")
    return value.rstrip("/")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Pydantic Settings automatically reads from:
    1. Environment variables
    2. .env file in working directory
    3. Default values defined here

    A provider is enabled when its API key is set. At least one provider
    must be enabled, otherwise construction fails.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars
    )

    # --- Anthropic ---
    anthropic_api_key: SecretStr | None = Field(default=None, description="Anthropic API key")
    anthropic_base_url: str = Field(default="https://api.anthropic.com/v1")
    anthropic_models: CommaSeparated = Field(default_factory=lambda: list(DEFAULT_ANTHROPIC_MODELS))
    anthropic_default_model: str = Field(default="claude-sonnet-4-5")
    anthropic_timeout: float = Field(default=60.0, gt=0)

    # --- OpenAI ---
    openai_api_key: SecretStr | None = Field(default=None, description="OpenAI API key")
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    openai_models: CommaSeparated = Field(default_factory=lambda: list(DEFAULT_OPENAI_MODELS))
    openai_default_model: str = Field(default="gpt-4o-mini")
    openai_timeout: float = Field(default=60.0, gt=0)

    # --- Groq ---
    groq_api_key: SecretStr | None = Field(default=None, description="Groq API key")
    groq_base_url: str = Field(default="https://api.groq.com")
    groq_models: CommaSeparated = Field(default_factory=lambda: list(DEFAULT_GROQ_MODELS))
    groq_default_model: str = Field(default="llama-3.1-8b-instant")
    groq_timeout: float = Field(default=60.0, gt=0)

    # --- Persistence ---
    database_url: str = Field(
        default="sqlite:///kubellm.db",
        description="sqlite:///<path> or memory://",
    )
    db_max_connections: int = Field(default=10, ge=1, description="Connection pool size")
    db_acquire_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to wait for a pooled connection"
    )

    # --- Dispatch policy ---
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=8.0, ge=0)
    dispatch_timeout: float = Field(
        default=120.0, gt=0, description="Overall deadline for one dispatch, retries included"
    )
    default_max_tokens: int = Field(default=1024, ge=1)
    default_temperature: float = Field(default=0.5, ge=0.0, le=2.0)

    # --- Server / logging ---
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Application log level"
    )
    host: str = Field(default="127.0.0.1", description="Server bind host")
    port: int = Field(default=3001, description="Server bind port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # --- Interactive shell ---
    history_file_path: Path = Field(
        default_factory=lambda: Path.home() / ".kubellm-cli-history",
        description="Line history kept by `kubellm shell`",
    )

    @field_validator("anthropic_models", "openai_models", "groq_models", mode="before")
    @classmethod
    def split_model_list(cls, v: object) -> object:
        """Accept comma separated model lists from the environment."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("anthropic_base_url", "openai_base_url", "groq_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_endpoint(v)

    @field_validator("history_file_path")
    @classmethod
    def expand_history_path(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not (v.startswith("sqlite:///") or v == "memory://"):
            raise ValueError("database_url must be sqlite:///<path> or memory://")
        return v

    @model_validator(mode="after")
    def validate_providers(self) -> "Settings":
        """Fail fast unless at least one provider is fully usable."""
        enabled = self.enabled_providers()
        if not enabled:
            raise ValueError(
                "No provider credentials configured: set at least one of "
                "ANTHROPIC_API_KEY, OPENAI_API_KEY, GROQ_API_KEY"
            )
        for kind in enabled:
            models = getattr(self, f"{kind}_models")
            default_model = getattr(self, f"{kind}_default_model")
            if not models:
                raise ValueError(f"{kind.upper()}_MODELS must list at least one model")
            if default_model not in models:
                raise ValueError(
                    f"{kind.upper()}_DEFAULT_MODEL {default_model!r} is not in "
                    f"{kind.upper()}_MODELS"
                )
        if self.retry_max_delay < self.retry_base_delay:
            raise ValueError("RETRY_MAX_DELAY must be >= RETRY_BASE_DELAY")
        return self

    def enabled_providers(self) -> list[str]:
        """Provider kinds whose API key is present and non-empty."""
        enabled = []
        for kind in PROVIDER_KINDS:
            key: SecretStr | None = getattr(self, f"{kind}_api_key")
            if key is not None and key.get_secret_value().strip():
                enabled.append(kind)
        return enabled

    def provider_configs(self) -> tuple[ProviderConfig, ...]:
        """
        Build the immutable provider configuration set.

        Returns:
            One ProviderConfig per enabled provider, in a stable order.
        """
        return tuple(
            ProviderConfig(
                provider_id=kind,
                kind=kind,
                api_key=getattr(self, f"{kind}_api_key"),
                base_url=getattr(self, f"{kind}_base_url"),
                models=tuple(getattr(self, f"{kind}_models")),
                default_model=getattr(self, f"{kind}_default_model"),
                timeout_seconds=getattr(self, f"{kind}_timeout"),
            )
            for kind in self.enabled_providers()
        )

    def retry_policy(self) -> "RetryPolicy":
        from kubellm.dispatcher.retry import RetryPolicy

        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Returns cached settings instance.

    Using lru_cache ensures settings are loaded once and reused,
    avoiding repeated file reads and environment parsing.

    Returns:
        Settings: The application settings singleton.
    """
    return Settings()


def configure_logging(settings: Settings, stream: TextIO | None = None) -> None:
    """
    Configure application logging based on settings.

    Sets up structured logging with timestamps and reduces noise
    from third-party HTTP libraries.

    Args:
        settings: The application settings instance.
        stream: Log destination; defaults to stdout. The CLI logs to stderr
                so command output stays machine-readable.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(stream or sys.stdout)],
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("groq").setLevel(logging.WARNING)
