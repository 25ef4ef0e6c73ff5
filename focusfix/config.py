from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields, replace
from urllib.parse import urlparse

from .database import FocusDatabase
from .errors import ConfigurationError

SETTINGS_POLL_SECONDS = 5.0
LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}


@dataclass(frozen=True)
class TrackerSettings:
    capture_interval_seconds: float = 10.0
    analysis_interval_seconds: float = 20.0
    similarity_threshold: float = 80.0
    tracking_enabled: bool = False
    model_endpoint: str = "https://api.openai.com/v1"
    model_name: str = "gpt-4.1-nano"
    api_key: str = ""
    default_segment_minutes: float = 20.0

    @classmethod
    def load(cls, db: FocusDatabase) -> "TrackerSettings":
        defaults = cls()
        values = {}
        for field in fields(cls):
            raw = db.get_setting(field.name)
            if raw is None:
                continue
            try:
                values[field.name] = _coerce(field.name, raw, getattr(defaults, field.name))
            except ValueError:
                continue
        return replace(defaults, **values)

    def save(self, db: FocusDatabase) -> None:
        for key, value in asdict(self).items():
            db.set_setting(key, _serialize(value))

    def with_value(self, key: str, raw: str) -> "TrackerSettings":
        names = {field.name for field in fields(self)}
        if key not in names:
            raise ConfigurationError(f"Unknown setting: {key}")
        try:
            value = _coerce(key, raw, getattr(self, key))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid value for {key}: {raw!r}") from exc
        return replace(self, **{key: value})

    @property
    def is_local_endpoint(self) -> bool:
        host = urlparse(self.model_endpoint.strip()).hostname or ""
        return host in LOCAL_HOSTS

    def validate(self) -> None:
        if self.capture_interval_seconds <= 0:
            raise ConfigurationError("Capture interval must be positive.")
        if self.analysis_interval_seconds <= 0:
            raise ConfigurationError("Analysis interval must be positive.")
        if self.default_segment_minutes <= 0:
            raise ConfigurationError("Default segment duration must be positive.")
        if not 0 <= self.similarity_threshold <= 100:
            raise ConfigurationError("Similarity threshold must be between 0 and 100.")
        if not self.model_name.strip():
            raise ConfigurationError("Model is required.")
        if not self.api_key.strip() and not self.is_local_endpoint:
            raise ConfigurationError("API key is required for this endpoint.")


def _coerce(key: str, raw: str, default):
    text = str(raw).strip()
    if isinstance(default, bool):
        lowered = text.lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"{key} expects a boolean")
    if isinstance(default, float):
        number = float(text)
        if not math.isfinite(number):
            raise ValueError(f"{key} expects a finite number")
        return number
    return str(raw)


def _serialize(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
