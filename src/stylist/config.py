"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

TryOnMode = Literal["performance", "balanced", "quality"]


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Chat upstream (Llama API or any OpenAI-compatible endpoint)
    llm_api_key: SecretStr = Field(
        ...,
        validation_alias=AliasChoices("LLAMA_API_KEY", "llm_api_key"),
    )
    llm_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.llama.com/v1"),
        validation_alias=AliasChoices("LLAMA_API_BASE_URL", "llm_base_url"),
    )
    chat_model: str = Field(
        default="Llama-4-Maverick-17B-128E-Instruct-FP8",
        validation_alias=AliasChoices("LLAMA_MODEL", "chat_model"),
    )
    llm_stream_format: Literal["llama", "openai"] = Field(
        default="llama",
        validation_alias=AliasChoices("LLM_STREAM_FORMAT", "llm_stream_format"),
    )

    # Text-to-object model used for categorization and board details
    structured_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://openrouter.ai/api/v1"),
        validation_alias=AliasChoices(
            "STRUCTURED_LLM_BASE_URL",
            "LLM_CLIENT_ENDPOINT",
            "structured_base_url",
        ),
    )
    structured_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices(
            "STRUCTURED_LLM_API_KEY",
            "OPENROUTER_API_KEY",
            "LLM_CLIENT_API_KEY",
            "structured_api_key",
        ),
    )
    structured_model: str = Field(
        default="google/gemini-2.5-flash",
        validation_alias=AliasChoices(
            "STRUCTURED_LLM_MODEL",
            "LLM_CLIENT_MODAL",
            "structured_model",
        ),
    )

    # Virtual try-on API
    fashn_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("FASHN_API_KEY", "fashn_api_key"),
    )
    fashn_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.fashn.ai/v1"),
        validation_alias=AliasChoices("FASHN_BASE_URL", "fashn_base_url"),
    )
    try_on_poll_interval_seconds: float = Field(
        default=3.0,
        gt=0,
        validation_alias=AliasChoices(
            "TRY_ON_POLL_INTERVAL_SECONDS", "try_on_poll_interval_seconds"
        ),
    )
    try_on_poll_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices(
            "TRY_ON_POLL_TIMEOUT_SECONDS", "try_on_poll_timeout_seconds"
        ),
    )
    try_on_default_mode: TryOnMode = Field(
        default="performance",
        validation_alias=AliasChoices("TRY_ON_DEFAULT_MODE", "try_on_default_mode"),
    )

    # Product catalog search (RapidAPI Amazon data)
    rapidapi_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("RAPIDAPI_KEY", "rapidapi_key"),
    )
    rapidapi_host: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("RAPIDAPI_HOST", "rapidapi_host"),
    )

    # Deployment host used to self-address and identify outbound calls
    app_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("APP_URL", "app_url"),
    )
    vercel_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("VERCEL_URL", "vercel_url"),
    )
    app_title: str = Field(
        default="AI Stylist",
        validation_alias=AliasChoices("APP_TITLE", "X_TITLE", "app_title"),
    )

    uploads_dir: Path = Field(
        default_factory=lambda: Path("public/uploads"),
        validation_alias=AliasChoices("UPLOADS_DIR", "uploads_dir"),
    )
    uploads_url_prefix: str = Field(
        default="/uploads/",
        validation_alias=AliasChoices("UPLOADS_URL_PREFIX", "uploads_url_prefix"),
    )
    model_images_path: Path = Field(
        default_factory=lambda: Path("data/model-images.json"),
        validation_alias=AliasChoices("MODEL_IMAGES_PATH", "model_images_path"),
    )

    completion_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices(
            "COMPLETION_TTL_SECONDS", "completion_ttl_seconds"
        ),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("REQUEST_TIMEOUT", "timeout"),
        ge=1,
    )
    chat_tool_hop_limit: int = Field(
        default=8,
        ge=1,
        validation_alias=AliasChoices("CHAT_TOOL_HOP_LIMIT", "chat_tool_hop_limit"),
    )

    @property
    def public_app_url(self) -> str:
        """Return the externally reachable base URL without a trailing slash."""

        if self.app_url is not None:
            return str(self.app_url).rstrip("/")
        if self.vercel_url:
            return f"https://{self.vercel_url}".rstrip("/")
        return "http://localhost:8000"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "TryOnMode", "get_settings"]
