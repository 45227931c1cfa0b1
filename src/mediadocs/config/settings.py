"""Application settings loaded from environment variables and config files."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveFloat, PositiveInt, SecretStr
from pydantic.networks import PostgresDsn
from pydantic_settings import BaseSettings, SettingsConfigDict

from mediadocs.config import CONFIG_ROOT

RATE_LIMITS_FILE = CONFIG_ROOT / "rate_limits.yaml"


class ServiceRateLimit(BaseModel):
    """Token bucket for one provider: sustained requests per minute plus a burst allowance."""

    requests_per_minute: Optional[PositiveInt] = None
    burst: Optional[PositiveInt] = None

    model_config = ConfigDict(extra="forbid")


class RateLimitConfig(BaseModel):
    """Throttles keyed by provider name (``cloud_asr``, ``llm``)."""

    services: Dict[str, ServiceRateLimit] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


def load_rate_limits(path: Path = RATE_LIMITS_FILE) -> RateLimitConfig:
    """Read provider throttles from YAML; a missing file means no throttling."""

    if not path.exists():
        return RateLimitConfig()
    document = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return RateLimitConfig.model_validate({"services": document.get("services") or {}})


class Settings(BaseSettings):
    """Primary application settings for the mediadocs pipeline and CLI."""

    output_root: Path = Field(default=Path("tmp/mediadocs-jobs"), alias="OUTPUT_ROOT")
    database_url: Optional[PostgresDsn] = Field(default=None, alias="DATABASE_URL")
    database_pool_size: PositiveInt = Field(default=5, alias="DATABASE_POOL_SIZE")
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[SecretStr] = Field(default=None, alias="ANTHROPIC_API_KEY")

    llm_model_name: str = Field(default="gpt-5-mini", alias="LLM_MODEL_NAME")
    max_transcript_chars: PositiveInt = Field(default=60_000, alias="MAX_TRANSCRIPT_CHARS")
    llm_vision: bool = Field(default=False, alias="LLM_VISION")
    llm_vision_max_images: PositiveInt = Field(default=20, alias="LLM_VISION_MAX_IMAGES")
    cloud_asr_model: str = Field(default="whisper-1", alias="CLOUD_ASR_MODEL")
    local_asr_model: str = Field(default="large-v2", alias="LOCAL_ASR_MODEL")
    local_asr_device: Optional[str] = Field(default=None, alias="LOCAL_ASR_DEVICE")
    language: Optional[str] = Field(default=None, alias="LANGUAGE")

    max_concurrent_jobs: NonNegativeInt = Field(default=0, alias="MAX_CONCURRENT_JOBS")
    connector_max_attempts: PositiveInt = Field(default=10, alias="CONNECTOR_MAX_ATTEMPTS")
    connector_retry_delay_seconds: float = Field(default=0.5, ge=0.0, alias="CONNECTOR_RETRY_DELAY_SECONDS")
    progress_buffer_size: PositiveInt = Field(default=100, alias="PROGRESS_BUFFER_SIZE")
    download_subtitles: bool = Field(default=True, alias="DOWNLOAD_SUBTITLES")

    stage_weight_download: NonNegativeInt = Field(default=15, alias="STAGE_WEIGHT_DOWNLOAD")
    stage_weight_transcribe: NonNegativeInt = Field(default=35, alias="STAGE_WEIGHT_TRANSCRIBE")
    stage_weight_keyframes: NonNegativeInt = Field(default=30, alias="STAGE_WEIGHT_KEYFRAMES")
    stage_weight_generate: NonNegativeInt = Field(default=20, alias="STAGE_WEIGHT_GENERATE")

    keyframe_min_interval_seconds: float = Field(default=2.0, ge=0.0, alias="KEYFRAME_MIN_INTERVAL_SECONDS")
    keyframe_max_count: PositiveInt = Field(default=30, alias="KEYFRAME_MAX_COUNT")
    keyframe_caption_window_seconds: PositiveFloat = Field(default=15.0, alias="KEYFRAME_CAPTION_WINDOW_SECONDS")
    keyframe_scene_sample_seconds: PositiveFloat = Field(default=2.0, alias="KEYFRAME_SCENE_SAMPLE_SECONDS")
    keyframe_hybrid_semantic_weight: float = Field(
        default=0.5, ge=0.0, le=1.0, alias="KEYFRAME_HYBRID_SEMANTIC_WEIGHT"
    )

    rate_limits: RateLimitConfig = Field(default_factory=load_rate_limits)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings are read once per process; call ``get_settings.cache_clear()`` after changing the environment."""

    return Settings()


__all__ = ["RATE_LIMITS_FILE", "RateLimitConfig", "ServiceRateLimit", "Settings", "get_settings", "load_rate_limits"]
