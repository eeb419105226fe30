"""
issuer_core.config
------------------
Runtime settings for the combined controller.

Values resolve in order: explicit config dict, environment, defaults.
Durations are seconds (floats) in the environment.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from issuer_core.constants import (
    DEFAULT_BACKOFF_MAX_SECONDS, DEFAULT_BACKOFF_MIN_SECONDS, DEFAULT_FIELD_OWNER,
    DEFAULT_MAX_RETRY_DURATION_SECONDS, DEFAULT_WORKERS,
)


class ConfigurationError(Exception):
    pass


@dataclass
class ControllerSettings:
    field_owner: str = DEFAULT_FIELD_OWNER
    max_retry_duration: timedelta = timedelta(seconds=DEFAULT_MAX_RETRY_DURATION_SECONDS)
    backoff_min: float = DEFAULT_BACKOFF_MIN_SECONDS
    backoff_max: float = DEFAULT_BACKOFF_MAX_SECONDS
    workers: int = DEFAULT_WORKERS

    def validate(self) -> "ControllerSettings":
        if not self.field_owner:
            raise ConfigurationError("field_owner must not be empty")
        if self.max_retry_duration <= timedelta(0):
            raise ConfigurationError(f"max_retry_duration must be positive, got {self.max_retry_duration}")
        if self.backoff_min <= 0 or self.backoff_max < self.backoff_min:
            raise ConfigurationError(f"invalid backoff bounds: min={self.backoff_min} max={self.backoff_max}")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers}")
        return self


def _float(config: Dict[str, Any], key: str, env: str, default: float) -> float:
    raw = config.get(key, os.getenv(env))
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{env} must be a number, got {raw!r}") from None


def load_settings(config: Optional[Dict[str, Any]] = None) -> ControllerSettings:
    config = config or {}
    settings = ControllerSettings(
        field_owner=config.get("field_owner") or os.getenv("ISSUER_FIELD_OWNER", DEFAULT_FIELD_OWNER),
        max_retry_duration=timedelta(seconds=_float(
            config, "max_retry_duration", "ISSUER_MAX_RETRY_DURATION", DEFAULT_MAX_RETRY_DURATION_SECONDS)),
        backoff_min=_float(config, "backoff_min", "ISSUER_BACKOFF_MIN", DEFAULT_BACKOFF_MIN_SECONDS),
        backoff_max=_float(config, "backoff_max", "ISSUER_BACKOFF_MAX", DEFAULT_BACKOFF_MAX_SECONDS),
        workers=int(_float(config, "workers", "ISSUER_WORKERS", DEFAULT_WORKERS)),
    )
    return settings.validate()
