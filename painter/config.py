from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List

DEFAULT_PAINTER_MODEL = "gemini-3-pro-image-preview"


def _as_bool(value: str | None, default: bool) -> bool:
    """Interpret common truthy / falsy strings while providing a default."""

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int, *, minimum: int = 0) -> int:
    """Parse an integer environment value, falling back on bad input."""
    if value is None or not str(value).strip():
        return default
    try:
        return max(int(str(value).strip()), minimum)
    except (TypeError, ValueError):
        return default


def _as_list(csv: str | None, fallback: List[str]) -> List[str]:
    """Split a CSV string to list with trimming, de-duplication and fallback."""
    if not csv:
        return fallback
    items: List[str] = []
    for token in csv.split(","):
        item = token.strip()
        if item and item not in items:
            items.append(item)
    return items or fallback


@dataclass
class PainterConfig:
    api_url: str | None = None
    api_keys: List[str] = field(default_factory=list)
    model: str = DEFAULT_PAINTER_MODEL
    provider_shape: str = "gateway"
    timeout_seconds: float = 600.0
    retry_backoff_seconds: float = 0.8
    max_response_bytes: int = 64 * 1024 * 1024
    max_log_chars: int = 20_000
    max_workers: int = 1
    mock: bool = False

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_keys)

    @classmethod
    def from_env(cls) -> "PainterConfig":
        single_key = (os.getenv("PAINTER_API_KEY") or "").strip()
        keys = _as_list(os.getenv("PAINTER_API_KEYS"), [single_key] if single_key else [])
        shape = (os.getenv("PAINTER_PROVIDER_SHAPE") or "gateway").strip().lower()
        return cls(
            api_url=(os.getenv("PAINTER_API_URL") or "").strip() or None,
            api_keys=keys,
            model=(os.getenv("PAINTER_MODEL") or "").strip() or DEFAULT_PAINTER_MODEL,
            provider_shape=shape if shape in {"gateway", "native"} else "gateway",
            timeout_seconds=_as_int(os.getenv("PAINTER_TIMEOUT_MS"), 600_000, minimum=1) / 1000,
            retry_backoff_seconds=_as_int(os.getenv("PAINTER_RETRY_BACKOFF_MS"), 800) / 1000,
            max_response_bytes=_as_int(
                os.getenv("PAINTER_MAX_RESPONSE_BYTES"), 64 * 1024 * 1024, minimum=1
            ),
            max_log_chars=_as_int(os.getenv("PAINTER_MAX_LOG_CHARS"), 20_000),
            max_workers=_as_int(os.getenv("PAINTER_MAX_WORKERS"), 1, minimum=1),
            mock=_as_bool(os.getenv("MOCK_PAINTER"), False),
        )


@dataclass
class FetchConfig:
    timeout_seconds: float = 10.0
    max_bytes: int = 10 * 1024 * 1024
    attempts: int = 2

    @classmethod
    def from_env(cls) -> "FetchConfig":
        return cls(
            timeout_seconds=_as_int(os.getenv("REF_FETCH_TIMEOUT_MS"), 10_000, minimum=1) / 1000,
            max_bytes=_as_int(os.getenv("REF_FETCH_MAX_BYTES"), 10 * 1024 * 1024, minimum=1),
            attempts=_as_int(os.getenv("REF_FETCH_ATTEMPTS"), 2, minimum=1),
        )


@dataclass
class StorageConfig:
    bucket: str | None = None
    region: str | None = None
    secret_id: str | None = None
    secret_key: str | None = None
    endpoint: str | None = None
    cdn_domain: str | None = None

    @property
    def is_configured(self) -> bool:
        return bool(self.bucket and self.region)

    @classmethod
    def from_env(cls) -> "StorageConfig":
        def _get(name: str) -> str | None:
            value = (os.getenv(name) or "").strip()
            return value or None

        return cls(
            bucket=_get("COS_BUCKET"),
            region=_get("COS_REGION"),
            secret_id=_get("TENCENT_SECRET_ID"),
            secret_key=_get("TENCENT_SECRET_KEY"),
            endpoint=_get("COS_ENDPOINT"),
            cdn_domain=_get("COS_CDN_DOMAIN"),
        )


@dataclass
class GuardConfig:
    max_body_bytes: int = 2 * 1024 * 1024

    @classmethod
    def from_env(cls) -> "GuardConfig":
        return cls(max_body_bytes=_as_int(os.getenv("MAX_JSON_BYTES"), 2 * 1024 * 1024))


@dataclass
class Settings:
    environment: str
    log_level: str
    painter: PainterConfig
    fetch: FetchConfig
    storage: StorageConfig
    guard: GuardConfig


@lru_cache()
def get_settings() -> Settings:
    return Settings(
        environment=os.getenv("ENVIRONMENT", "development"),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        painter=PainterConfig.from_env(),
        fetch=FetchConfig.from_env(),
        storage=StorageConfig.from_env(),
        guard=GuardConfig.from_env(),
    )
