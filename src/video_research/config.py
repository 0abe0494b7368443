"""Configuration with 4-layer resolution: defaults -> YAML -> env -> CLI.

Uses pydantic-settings with YamlConfigSettingsSource for layered configuration.
Supports ``.env`` file loading, ``VIDEO_RESEARCH_`` prefixed env vars, and
nested delimiter ``__`` for overriding sub-model fields. Provider credentials
additionally fall back to their conventional unprefixed variables
(``YOUTUBE_API_KEY``, ``ASSEMBLYAI_API_KEY``, ...).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, ClassVar, Literal

import structlog
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

DEFAULT_CASCADE: list[str] = [
    "youtube",
    "youtube-alt",
    "transcript-api",
    "assemblyai",
    "deepgram",
    "whisperapi",
]


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class YouTubeSettings(BaseModel):
    """YouTube Data API configuration."""

    api_key: str | None = Field(default=None, repr=False)
    base_url: str = "https://www.googleapis.com/youtube/v3"
    search_timeout: float = Field(
        default=15.0, gt=0, description="Search request timeout in seconds."
    )
    detail_timeout: float = Field(
        default=10.0, gt=0, description="Video/channel detail timeout in seconds."
    )
    max_results_cap: int = Field(default=50, gt=0, le=50)
    region_code: str = "US"


class FreeTranscriptEndpoint(BaseModel):
    """A third-party free transcript endpoint (``{video_id}`` is substituted)."""

    name: str
    url: str


class TranscriptionSettings(BaseModel):
    """Transcript cascade configuration."""

    min_length: int = Field(default=50, ge=1)
    provider_timeout: float = Field(
        default=15.0, gt=0, description="Per-attempt timeout in seconds."
    )
    providers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CASCADE),
        description="Cascade order; paid providers are skipped without a key.",
    )
    free_api_endpoints: list[FreeTranscriptEndpoint] = Field(
        default_factory=lambda: [
            FreeTranscriptEndpoint(
                name="vercel",
                url=(
                    "https://youtube-transcript-api.vercel.app/api/transcript"
                    "?videoId={video_id}"
                ),
            ),
            FreeTranscriptEndpoint(
                name="youtubetranscript",
                url="https://api.youtubetranscript.com/?video_id={video_id}",
            ),
        ]
    )
    audio_resolver_url: str = "https://api.cobalt.tools/api/json"
    assemblyai_api_key: str | None = Field(default=None, repr=False)
    deepgram_api_key: str | None = Field(default=None, repr=False)
    whisper_api_key: str | None = Field(default=None, repr=False)
    poll_interval_seconds: float = Field(default=5.0, ge=0.0)
    max_poll_attempts: int = Field(default=60, ge=1)
    cost_per_minute_usd: dict[str, float] = Field(
        default_factory=lambda: {
            "assemblyai": 0.37 / 60,
            "deepgram": 0.0125,
            "whisperapi": 0.006,
        }
    )
    max_paid_minutes_per_run: float = Field(
        default=180.0,
        gt=0.0,
        description="Ceiling on estimated paid speech-to-text minutes per run.",
    )


class CacheSettings(BaseModel):
    """Transcript cache configuration."""

    enabled: bool = True
    directory: Path = Path("./data/transcript_cache")
    ttl_days: int = Field(default=30, ge=1)


class PacingSettings(BaseModel):
    """Delays used to stay under external rate limits."""

    delay_between_terms: float = Field(default=1.0, ge=0.0)
    delay_between_videos: float = Field(default=0.5, ge=0.0)
    provider_base_delay: float = Field(default=0.0, ge=0.0)
    provider_max_delay: float = Field(default=30.0, gt=0.0)


class QuotaSettings(BaseModel):
    """YouTube Data API quota model (units per call)."""

    daily_limit: int = Field(default=10_000, gt=0)
    search_cost: int = Field(default=100, ge=0)
    video_cost: int = Field(default=1, ge=0)
    channel_cost: int = Field(default=1, ge=0)
    reserve_units: int = Field(
        default=500,
        ge=0,
        description="Units held back so a batch stops before the quota runs out.",
    )
    warn_at_percentage: int = Field(default=80, ge=0, le=100)


class BatchSettings(BaseModel):
    """Batch orchestration configuration."""

    concurrency: int = Field(default=2, ge=1, le=20)
    delay_between_batches: float = Field(default=5.0, ge=0.0)
    save_progress: bool = True
    progress_file: Path = Path("./data/batch_progress.json")


class ResearchSettings(BaseModel):
    """Per-topic research defaults."""

    depth: Literal["quick", "standard", "deep"] = "standard"
    min_views: int = Field(default=1000, ge=0)
    min_transcript_length: int = Field(default=200, ge=1)
    max_time_minutes: float = Field(default=15.0, gt=0.0)
    rules_file: Path | None = None


class LoggingSettings(BaseModel):
    """Logging / observability configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Main Settings (4-layer resolution)
# ---------------------------------------------------------------------------

# (settings path, attribute, fallback env vars in priority order)
_CREDENTIAL_FALLBACKS: list[tuple[str, str, tuple[str, ...]]] = [
    ("youtube", "api_key", ("YOUTUBE_API_KEY",)),
    ("transcription", "assemblyai_api_key", ("ASSEMBLYAI_API_KEY",)),
    ("transcription", "deepgram_api_key", ("DEEPGRAM_API_KEY",)),
    ("transcription", "whisper_api_key", ("WHISPER_API_KEY", "OPENAI_API_KEY")),
]


class Settings(BaseSettings):
    """Top-level application settings.

    Resolution order (last wins):
        1. Field defaults (defined above)
        2. YAML config file (``config.yaml`` or ``--config`` path)
        3. Environment variables (prefixed ``VIDEO_RESEARCH_``)
        4. CLI overrides (applied programmatically after loading)
    """

    model_config = SettingsConfigDict(
        env_prefix="VIDEO_RESEARCH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="config.yaml",
        yaml_file_encoding="utf-8",
        extra="ignore",
    )

    _config_path_override: ClassVar[Path | None] = None

    youtube: YouTubeSettings = Field(default_factory=YouTubeSettings)
    transcription: TranscriptionSettings = Field(
        default_factory=TranscriptionSettings
    )
    cache: CacheSettings = Field(default_factory=CacheSettings)
    pacing: PacingSettings = Field(default_factory=PacingSettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    research: ResearchSettings = Field(default_factory=ResearchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @model_validator(mode="after")
    def _apply_credential_fallbacks(self) -> Settings:
        for section, attribute, env_names in _CREDENTIAL_FALLBACKS:
            sub_model = getattr(self, section)
            if getattr(sub_model, attribute):
                continue
            for env_name in env_names:
                value = os.environ.get(env_name)
                if value:
                    setattr(sub_model, attribute, value)
                    break
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Resolution order (first = highest priority):
            init_settings (CLI) > env_settings > dotenv (.env) > yaml > defaults

        Args:
            settings_cls: The settings class.
            init_settings: Init / programmatic overrides.
            env_settings: Environment variable source.
            dotenv_settings: Dotenv file source (.env).
            file_secret_settings: Secret file source (unused).

        Returns:
            Ordered tuple of settings sources (first = highest priority).
        """
        yaml_file = cls._config_path_override or settings_cls.model_config.get(
            "yaml_file", "config.yaml"
        )
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )

    @classmethod
    def load(cls, config_path: Path | None = None, **overrides: Any) -> Settings:
        """Load settings with optional config path and CLI overrides.

        Args:
            config_path: Optional path to a YAML config file.
            **overrides: Key-value CLI overrides applied at highest priority.

        Returns:
            Fully-resolved Settings instance.

        Raises:
            ValidationError: If any setting value fails validation.
        """
        cls._config_path_override = config_path
        try:
            return cls(**overrides)
        finally:
            cls._config_path_override = None

    def configured_paid_providers(self) -> list[str]:
        """Return the paid transcript providers that have a credential set."""
        keys = {
            "assemblyai": self.transcription.assemblyai_api_key,
            "deepgram": self.transcription.deepgram_api_key,
            "whisperapi": self.transcription.whisper_api_key,
        }
        return [name for name, key in keys.items() if key]


def format_validation_error(exc: ValidationError) -> str:
    """Format a Pydantic ValidationError into a user-friendly message.

    Args:
        exc: The validation error to format.

    Returns:
        A multi-line string with each error on its own line.
    """
    lines: list[str] = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"])
        msg = error["msg"]
        raw_input = error.get("input")
        if raw_input is not None:
            lines.append(f"  {loc}: {msg} (got {raw_input!r})")
        else:
            lines.append(f"  {loc}: {msg}")
    return "Configuration error:\n" + "\n".join(lines)
