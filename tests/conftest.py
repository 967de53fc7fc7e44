from __future__ import annotations

import base64
import json
from typing import Any, Callable

import pytest

from painter.config import FetchConfig, GuardConfig, PainterConfig, Settings, StorageConfig, get_settings

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"fake-png-body"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


def image_frame(data: str = PNG_B64, mime_type: str = "image/png") -> dict[str, Any]:
    return {
        "candidates": [
            {"content": {"parts": [{"inlineData": {"mimeType": mime_type, "data": data}}]}}
        ]
    }


def text_frame(text: str, finish_reason: str | None = None) -> dict[str, Any]:
    candidate: dict[str, Any] = {"content": {"parts": [{"text": text}]}}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    return {"candidates": [candidate]}


def sse(*frames: dict[str, Any]) -> bytes:
    return b"".join(f"data: {json.dumps(frame)}\n\n".encode() for frame in frames)


class RecordingUploader:
    def __init__(self, fail_for: Callable[[str], bool] | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_for = fail_for

    def put_object(self, bucket: str, region: str, key: str, data: bytes, content_type: str) -> None:
        if self.fail_for and self.fail_for(key):
            raise RuntimeError("bucket unavailable")
        self.calls.append(
            {"bucket": bucket, "region": region, "key": key, "data": data, "content_type": content_type}
        )


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def painter_config() -> PainterConfig:
    return PainterConfig(
        api_url="https://gateway.example.com",
        api_keys=["key-one-123456", "key-two-123456"],
        model="m1",
        timeout_seconds=5,
        retry_backoff_seconds=0,
    )


@pytest.fixture
def storage_config() -> StorageConfig:
    return StorageConfig(bucket="bucket-1250000000", region="ap-shanghai")


@pytest.fixture
def settings(painter_config: PainterConfig, storage_config: StorageConfig) -> Settings:
    return Settings(
        environment="test",
        log_level="INFO",
        painter=painter_config,
        fetch=FetchConfig(timeout_seconds=2, max_bytes=1024, attempts=2),
        storage=storage_config,
        guard=GuardConfig(max_body_bytes=2 * 1024 * 1024),
    )
