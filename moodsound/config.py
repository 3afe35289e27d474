"""Engine configuration, read from environment variables."""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel, Field

log = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_PROVIDER_TIMEOUT = 30.0
DEFAULT_DURATION_SECONDS = 8.0
DEFAULT_SAMPLE_RATE = 44100

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    log.warning("Invalid %s=%r, using default %s", name, raw, default)
    return default


def _env_number(name: str, default: float, cast=float, minimum: float | None = None):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        log.warning("Invalid %s=%r, using default %s", name, raw, default)
        return default
    if minimum is not None and value < minimum:
        log.warning("%s=%r is below %s, using default %s", name, raw, minimum, default)
        return default
    return value


class EngineSettings(BaseModel):
    """Static configuration for providers, retries, synthesis and storage."""

    elevenlabs_api_key: str | None = None
    replicate_api_token: str | None = None
    huggingface_api_token: str | None = None

    elevenlabs_enabled: bool = True
    replicate_enabled: bool = True
    # Disabled by default: the free inference tier rejects most musicgen calls
    huggingface_enabled: bool = False

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1)
    retry_base_delay: float = Field(default=DEFAULT_RETRY_BASE_DELAY, ge=0.0)
    provider_timeout: float = Field(default=DEFAULT_PROVIDER_TIMEOUT, gt=0.0)

    duration_seconds: float = Field(default=DEFAULT_DURATION_SECONDS, gt=0.0)
    sample_rate: int = Field(default=DEFAULT_SAMPLE_RATE, gt=0)

    storage_dir: str | None = Field(
        default=None, description="Directory for FileStorage; in-memory storage when unset"
    )

    @classmethod
    def from_env(cls) -> EngineSettings:
        return cls(
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY") or None,
            replicate_api_token=os.environ.get("REPLICATE_API_TOKEN") or None,
            huggingface_api_token=os.environ.get("HUGGINGFACE_API_TOKEN") or None,
            elevenlabs_enabled=_env_flag("MOODSOUND_ELEVENLABS_ENABLED", True),
            replicate_enabled=_env_flag("MOODSOUND_REPLICATE_ENABLED", True),
            huggingface_enabled=_env_flag("MOODSOUND_HUGGINGFACE_ENABLED", False),
            max_retries=_env_number("MOODSOUND_MAX_RETRIES", DEFAULT_MAX_RETRIES, int, 1),
            retry_base_delay=_env_number(
                "MOODSOUND_RETRY_BASE_DELAY", DEFAULT_RETRY_BASE_DELAY, float, 0.0
            ),
            provider_timeout=_env_number(
                "MOODSOUND_PROVIDER_TIMEOUT", DEFAULT_PROVIDER_TIMEOUT, float, 0.001
            ),
            duration_seconds=_env_number(
                "MOODSOUND_DURATION", DEFAULT_DURATION_SECONDS, float, 0.001
            ),
            sample_rate=_env_number("MOODSOUND_SAMPLE_RATE", DEFAULT_SAMPLE_RATE, int, 1),
            storage_dir=os.environ.get("MOODSOUND_STORAGE_DIR") or None,
        )

    def without_providers(self) -> EngineSettings:
        """Copy of these settings with every provider switched off."""
        return self.model_copy(
            update={
                "elevenlabs_enabled": False,
                "replicate_enabled": False,
                "huggingface_enabled": False,
            }
        )
