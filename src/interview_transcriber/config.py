from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from interview_transcriber.nlp.proofreader import PROOFREAD_MODELS

REQUIRED_ENV_VARS: tuple[str, ...] = (
    "DISCORD_BOT_TOKEN",
    "DISCORD_GUILD_ID",
    "GOOGLE_SERVICE_ACCOUNT_EMAIL",
    "GOOGLE_SERVICE_ACCOUNT_KEY",
    "OPENAI_API_KEY",
    "GEMINI_API_KEY",
)

TRANSCRIPTION_BACKENDS: tuple[str, ...] = ("whisper", "gemini")

SUPPORTED_LANGUAGES: tuple[str, ...] = ("en", "ja")


class Settings(BaseSettings):
    """Application configuration loaded from environment variables and `.env`."""

    discord_bot_token: str = ""
    discord_guild_id: str = ""
    google_service_account_email: str = ""
    google_service_account_key: str = ""
    openai_api_key: str = ""
    gemini_api_key: str = ""

    ffmpeg_path: Path | None = None
    ffprobe_path: Path | None = None
    temp_dir: Path | None = None

    # Whisper rejects uploads over 25 MB; keep some headroom.
    max_audio_file_size: int = 23 << 20
    # Gemini transcribes precisely up to about 20 minutes of audio.
    max_audio_duration: float = 20 * 60

    transcription_backend: Literal["whisper", "gemini"] = "whisper"
    whisper_model: str = "whisper-1"
    gemini_transcription_model: str = "gemini-2.5-pro"
    default_language: Literal["en", "ja"] = "ja"
    default_proofread_model: str | None = None
    remove_silence: bool = False

    utilization_ratio: float = Field(default=0.4, gt=0.0, le=1.0)
    token_tolerance: float = Field(default=0.05, ge=0.0)
    oversized_chunk_policy: Literal["warn", "error"] = "warn"

    http_timeout_seconds: float = 600.0
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("google_service_account_key")
    @classmethod
    def _unescape_newlines(cls, value: str) -> str:
        # Keys pasted into .env usually carry literal "\n" sequences.
        return value.replace("\\n", "\n")

    @field_validator("default_proofread_model")
    @classmethod
    def _check_proofread_model(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        key = value.lower().strip()
        if key not in PROOFREAD_MODELS:
            allowed = ", ".join(sorted(PROOFREAD_MODELS))
            raise ValueError(f"Unsupported proofread model '{value}'. Allowed: {allowed}")
        return key

    @model_validator(mode="after")
    def _check_limits(self) -> "Settings":
        if self.max_audio_file_size <= 0:
            raise ValueError("max_audio_file_size must be positive")
        if self.max_audio_duration <= 0:
            raise ValueError("max_audio_duration must be positive")
        return self

    @property
    def guild_id(self) -> int:
        return int(self.discord_guild_id)

    def missing_required(self) -> list[str]:
        return [name for name in REQUIRED_ENV_VARS if not getattr(self, name.lower()).strip()]

    def audio_limits(self) -> dict[str, float | None]:
        """Per-request limits of the configured speech-to-text backend."""

        if self.transcription_backend == "gemini":
            return {"max_bytes": None, "max_seconds": self.max_audio_duration}
        return {"max_bytes": self.max_audio_file_size, "max_seconds": None}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
