"""Object storage for generated images (Tencent COS through its S3 API)."""
from __future__ import annotations

import asyncio
import logging
import re
import secrets
import string
import time
from typing import Optional, Protocol

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from painter.config import StorageConfig
from painter.errors import ConfigError, StorageError

logger = logging.getLogger(__name__)

GENERATED_FOLDER = "generated"
_SAFE_KEY_RE = re.compile(r"[^0-9A-Za-z._-]")
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


class StorageUploader(Protocol):
    def put_object(
        self, bucket: str, region: str, key: str, data: bytes, content_type: str
    ) -> None:
        ...


def cos_endpoint(region: str) -> str:
    return f"https://cos.{region}.myqcloud.com"


def public_url_for(bucket: str, region: str, key: str, cdn_domain: str | None = None) -> str:
    key = key.lstrip("/")
    if cdn_domain:
        base = cdn_domain.rstrip("/")
        if "://" not in base:
            base = f"https://{base}"
        return f"{base}/{key}"
    return f"https://{bucket}.cos.{region}.myqcloud.com/{key}"


def extension_for(mime_type: str | None) -> str:
    text = (mime_type or "").lower()
    if "webp" in text:
        return "webp"
    if "png" in text:
        return "png"
    return "jpg"


def safe_content_type(mime_type: str | None) -> str:
    if isinstance(mime_type, str) and mime_type.startswith("image/"):
        return mime_type
    return "image/png"


def make_generated_key(shot_id: str, mime_type: str | None, *, now_ms: int | None = None) -> str:
    """``generated/{shotId}-{epoch ms}-{6 random chars}.{ext}``; never reused."""

    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    safe_id = _SAFE_KEY_RE.sub("_", shot_id or "shot")
    return f"{GENERATED_FOLDER}/{safe_id}-{timestamp}-{suffix}.{extension_for(mime_type)}"


def _build_client(config: StorageConfig) -> BaseClient:
    session = boto3.session.Session()
    return session.client(
        "s3",
        endpoint_url=config.endpoint or cos_endpoint(config.region or ""),
        aws_access_key_id=config.secret_id,
        aws_secret_access_key=config.secret_key,
        region_name=config.region,
        config=Config(
            s3={"addressing_style": "virtual"},
            connect_timeout=10,
            read_timeout=60,
            retries={"max_attempts": 2},
        ),
    )


class CosStorage:
    """:class:`StorageUploader` backed by a boto3 S3 client."""

    def __init__(self, config: StorageConfig, *, client: Optional[BaseClient] = None) -> None:
        if not config.is_configured:
            raise ConfigError("COS storage is not configured (COS_BUCKET / COS_REGION)")
        self.config = config
        self._client = client or _build_client(config)

    def put_object(
        self, bucket: str, region: str, key: str, data: bytes, content_type: str
    ) -> None:
        try:
            self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.warning("COS put failed: bucket=%s region=%s key=%s err=%s", bucket, region, key, exc)
            raise StorageError(f"Failed to store image at key={key}: {exc}") from exc


async def store_generated_image(
    uploader: StorageUploader,
    config: StorageConfig,
    *,
    shot_id: str,
    data: bytes,
    mime_type: str | None,
) -> str:
    """Upload ``data`` under a fresh key and return its public URL."""

    if not isinstance(data, (bytes, bytearray)) or not data:
        raise StorageError("image payload must be non-empty bytes")
    if not config.is_configured:
        raise ConfigError("COS storage is not configured (COS_BUCKET / COS_REGION)")

    bucket, region = config.bucket or "", config.region or ""
    content_type = safe_content_type(mime_type)
    key = make_generated_key(shot_id, content_type)
    try:
        await asyncio.to_thread(uploader.put_object, bucket, region, key, bytes(data), content_type)
    except StorageError:
        raise
    except Exception as exc:  # noqa: BLE001 - third-party uploaders raise anything
        raise StorageError(f"Failed to store image at key={key}: {exc}") from exc

    logger.info("storage.saved shot=%s key=%s size_kb=%s", shot_id, key, round(len(data) / 1024))
    return public_url_for(bucket, region, key, config.cdn_domain)


__all__ = [
    "CosStorage",
    "StorageUploader",
    "cos_endpoint",
    "extension_for",
    "make_generated_key",
    "public_url_for",
    "safe_content_type",
    "store_generated_image",
]
