import json
import re
from dataclasses import dataclass, field, fields, replace
from typing import Annotated, Any, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from ipgate.app.exceptions import ConfigValueError


DEFAULT_BAN_MESSAGE = (
    "This request was canceled due to the amount of requests done in a short "
    "interval of time. Try again after a few minutes, or contact us if you "
    "think this is a mistake."
)

DEFAULT_EXCEPTIONS = ("/assets/",)


def _parse_exception_patterns(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate a plain comma/whitespace separated list.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    parts = [p for p in re.split(r"[,\s]+", raw) if p]

    # Deduplicate while preserving order.
    seen: set[str] = set()
    result: list[str] = []
    for part in parts:
        if part in seen:
            continue
        seen.add(part)
        result.append(part)
    return result


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via IPGATE_* environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Redis settings
    redis_enabled: bool = True
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 2.0  # Per-command deadline in seconds
    redis_connect_timeout: float = 2.0

    # Rate limiting settings
    ban_time: int = 300  # Seconds a breaching IP stays blacklisted
    max_requests: int = 30  # Ceiling per window
    time_interval: int = 15  # Seconds per counting window
    ban_page: Optional[str] = None  # Static HTML shown to banned browsers
    ban_message: str = DEFAULT_BAN_MESSAGE
    exceptions: Annotated[list[str], NoDecode] = list(DEFAULT_EXCEPTIONS)
    trust_forwarded_for: bool = False  # Only behind a trusted reverse proxy
    fail_closed: bool = True  # Deny requests when the store is unavailable

    # Maintenance settings
    gc_probability: float = 0.1  # Chance per request to schedule a sweep
    gc_interval_seconds: int = 0  # Periodic sweep interval, 0 disables the timer

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("exceptions", mode="before")
    @classmethod
    def decode_exceptions(cls, v: Any) -> list[str]:
        return _parse_exception_patterns(v)

    @field_validator("ban_time", "max_requests", "time_interval")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("gc_probability")
    @classmethod
    def validate_probability(cls, v: float) -> float:
        """Validate the sweep probability is a probability."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("gc_probability must be between 0 and 1")
        return v

    @field_validator("gc_interval_seconds")
    @classmethod
    def validate_gc_interval(cls, v: int) -> int:
        if v < 0:
            raise ValueError("gc_interval_seconds must not be negative")
        return v

    @field_validator("redis_socket_timeout", "redis_connect_timeout")
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    model_config = SettingsConfigDict(env_prefix="IPGATE_", env_file=".env", extra="ignore")


@dataclass(frozen=True)
class LimiterConfig:
    """Immutable rate limiter configuration shared by every request.

    Assembled once at startup (usually through LimiterConfigBuilder) and
    passed by reference into the engine, renderer and middleware.
    """

    ban_time: int = 300
    max_requests: int = 30
    time_interval: int = 15
    ban_page: Optional[str] = None
    ban_json_payload: dict[str, Any] = field(
        default_factory=lambda: {"error": True, "message": DEFAULT_BAN_MESSAGE}
    )
    exceptions: tuple[str, ...] = DEFAULT_EXCEPTIONS
    gc_probability: float = 0.1
    gc_interval_seconds: int = 0
    fail_closed: bool = True
    trust_forwarded_for: bool = False

    def __post_init__(self) -> None:
        for name in ("ban_time", "max_requests", "time_interval"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigValueError(name, f"must be a positive integer, got {value!r}")
        if not 0.0 <= self.gc_probability <= 1.0:
            raise ConfigValueError("gc_probability", "must be between 0 and 1")
        if self.gc_interval_seconds < 0:
            raise ConfigValueError("gc_interval_seconds", "must not be negative")
        if not isinstance(self.ban_json_payload, dict):
            raise ConfigValueError("ban_json_payload", "must be a mapping")
        if any(not p or not p.strip() for p in self.exceptions):
            raise ConfigValueError("exceptions", "patterns must not be blank")

    def with_overrides(self, **options: Any) -> "LimiterConfig":
        """Return a copy with the given options replaced."""
        known = {f.name for f in fields(self)}
        unknown = set(options) - known
        if unknown:
            raise ConfigValueError(", ".join(sorted(unknown)), "unknown option")
        return replace(self, **options)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LimiterConfig":
        """Build the limiter configuration from environment settings."""
        return cls(
            ban_time=settings.ban_time,
            max_requests=settings.max_requests,
            time_interval=settings.time_interval,
            ban_page=settings.ban_page,
            ban_json_payload={"error": True, "message": settings.ban_message},
            exceptions=tuple(settings.exceptions),
            gc_probability=settings.gc_probability,
            gc_interval_seconds=settings.gc_interval_seconds,
            fail_closed=settings.fail_closed,
            trust_forwarded_for=settings.trust_forwarded_for,
        )


class LimiterConfigBuilder:
    """Collects overrides and exception patterns, then builds a LimiterConfig.

    Example:
        >>> config = (
        ...     LimiterConfigBuilder()
        ...     .configure(max_requests=5, ban_time=60)
        ...     .add_exception("/static/")
        ...     .build()
        ... )
    """

    def __init__(self, base: Optional[LimiterConfig] = None) -> None:
        self._base = base or LimiterConfig()
        self._options: dict[str, Any] = {}
        self._exceptions: list[str] = list(self._base.exceptions)

    def configure(self, **options: Any) -> "LimiterConfigBuilder":
        """Set tuning options (ban_time, max_requests, time_interval, ...)."""
        known = {f.name for f in fields(LimiterConfig)} - {"exceptions"}
        unknown = set(options) - known
        if unknown:
            raise ConfigValueError(", ".join(sorted(unknown)), "unknown option")
        self._options.update(options)
        return self

    def add_exception(self, url_pattern: str) -> "LimiterConfigBuilder":
        """Append a URL substring that bypasses rate limiting."""
        if not url_pattern or not url_pattern.strip():
            raise ConfigValueError("exceptions", "patterns must not be blank")
        self._exceptions.append(url_pattern)
        return self

    def build(self) -> LimiterConfig:
        return self._base.with_overrides(
            exceptions=tuple(self._exceptions), **self._options
        )


# Global settings instance
settings = Settings()
