"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["development", "production", "test"] = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV", "environment"),
    )

    # IBM Cloud identity + watsonx text generation
    ibm_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("IBM_API_KEY", "ibm_api_key"),
    )
    ibm_iam_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://iam.cloud.ibm.com/identity/token"),
        validation_alias=AliasChoices("IBM_IAM_URL", "ibm_iam_url"),
    )
    ibm_api_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(
            "https://us-south.ml.cloud.ibm.com/ml/v1/text/generation"
        ),
        validation_alias=AliasChoices("IBM_API_URL", "ibm_api_url"),
    )
    ibm_api_version: str = Field(
        default="2023-05-29",
        validation_alias=AliasChoices("IBM_API_VERSION", "ibm_api_version"),
    )
    ibm_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("IBM_PROJECT_ID", "ibm_project_id"),
    )
    ibm_model_id: str = Field(
        default="ibm/granite-13b-instruct-v2",
        validation_alias=AliasChoices("IBM_MODEL_ID", "ibm_model_id"),
    )
    inference_timeout: float = Field(
        default=30.0,
        ge=0.1,
        validation_alias=AliasChoices("INFERENCE_TIMEOUT", "inference_timeout"),
        description="Read timeout for watsonx generation calls; connects use 5s.",
    )
    iam_timeout: float = Field(
        default=5.0,
        ge=0.1,
        validation_alias=AliasChoices("IAM_TIMEOUT", "iam_timeout"),
        description="Timeout for IAM token requests.",
    )
    inference_deadline: float = Field(
        default=60.0,
        ge=1,
        validation_alias=AliasChoices("INFERENCE_DEADLINE", "inference_deadline"),
        description="Hard ceiling on one narrative generation, including the auth retry.",
    )
    token_expiry_buffer_seconds: int = Field(
        default=300,
        ge=0,
        validation_alias=AliasChoices(
            "TOKEN_EXPIRY_BUFFER_SECONDS", "token_expiry_buffer_seconds"
        ),
    )

    # Speech synthesis (Google Translate TTS segment endpoint)
    tts_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://translate.google.com/translate_tts"),
        validation_alias=AliasChoices("TTS_BASE_URL", "tts_base_url"),
    )
    tts_language: str = Field(
        default="en-US",
        validation_alias=AliasChoices("TTS_LANGUAGE", "tts_language"),
    )
    tts_segment_max_chars: int = Field(
        default=200,
        ge=10,
        validation_alias=AliasChoices("TTS_SEGMENT_MAX_CHARS", "tts_segment_max_chars"),
    )
    tts_split_punctuation: str = Field(
        default=",.?!",
        validation_alias=AliasChoices("TTS_SPLIT_PUNCTUATION", "tts_split_punctuation"),
    )
    tts_timeout: float = Field(
        default=10.0,
        ge=0.1,
        validation_alias=AliasChoices("TTS_TIMEOUT", "tts_timeout"),
    )
    tts_max_concurrency: int = Field(
        default=4,
        ge=1,
        validation_alias=AliasChoices("TTS_MAX_CONCURRENCY", "tts_max_concurrency"),
    )
    tts_bitrate_kbps: int = Field(
        default=32,
        ge=1,
        validation_alias=AliasChoices("TTS_BITRATE_KBPS", "tts_bitrate_kbps"),
    )

    # Storage roots
    audio_storage_path: Path = Field(
        default_factory=lambda: Path("data/audio"),
        validation_alias=AliasChoices("AUDIO_STORAGE_PATH", "audio_storage_path"),
    )
    upload_path: Path = Field(
        default_factory=lambda: Path("data/uploads"),
        validation_alias=AliasChoices("UPLOAD_PATH", "upload_path"),
    )
    max_image_bytes: int = Field(
        default=5 * 1024 * 1024,
        ge=1,
        validation_alias=AliasChoices("MAX_IMAGE_BYTES", "max_image_bytes"),
    )

    # Per-client request limit, applied to every route
    rate_limit_window_ms: int = Field(
        default=15 * 60 * 1000,
        ge=1,
        validation_alias=AliasChoices("RATE_LIMIT_WINDOW_MS", "rate_limit_window_ms"),
    )
    rate_limit_max: int = Field(
        default=100,
        ge=0,
        validation_alias=AliasChoices("RATE_LIMIT_MAX", "rate_limit_max"),
        description="Requests allowed per client per window; 0 disables the limit.",
    )

    use_mock_service: bool = Field(
        default=False,
        validation_alias=AliasChoices("USE_MOCK_SERVICE", "use_mock_service"),
    )

    @property
    def mode(self) -> str:
        return "mock" if self.use_mock_service else "live"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
