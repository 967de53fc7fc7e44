"""Download reference / base / mask images for a shot."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlparse

import httpx

from painter.config import FetchConfig
from painter.errors import DownloadError, InvalidInputError, status_is_retryable
from painter.schemas import ImageInput

logger = logging.getLogger(__name__)

# thumbnail to 2560px wide at quality 95
CI_COMPRESSION_OPS = "imageMogr2/thumbnail/2560x/quality/95"

_SIGNED_PARAM_PREFIXES = ("q-sign-", "x-cos-")


@dataclass(frozen=True)
class ReferenceImage:
    data: bytes
    mime_type: str
    url: str
    label: str = "REF"


def _is_cos_host(host: str) -> bool:
    host = host.lower()
    return ".cos." in host and host.endswith(".myqcloud.com")


def _has_signed_params(query: str) -> bool:
    for key, _ in parse_qsl(query, keep_blank_values=True):
        lowered = key.lower()
        if lowered.startswith(_SIGNED_PARAM_PREFIXES) or "signature" in lowered:
            return True
    return False


def apply_cos_compression(url: str) -> tuple[str, bool]:
    """Append the CI thumbnail operator when it is provably safe to do so.

    Only unsigned COS object URLs without existing ``imageMogr2`` operators are
    rewritten; everything else is returned untouched.
    """

    if not url.startswith(("http://", "https://")) or "imageMogr2/" in url:
        return url, False
    try:
        parsed = urlparse(url)
    except ValueError:
        return url, False
    if not parsed.hostname or not _is_cos_host(parsed.hostname):
        return url, False
    if _has_signed_params(parsed.query):
        return url, False

    joiner = "&" if parsed.query else "?"
    return f"{url}{joiner}{CI_COMPRESSION_OPS}", True


def guess_mime_type(url: str, content_type: str | None = None) -> str:
    from_header = (content_type or "").split(";")[0].strip().lower()
    if from_header.startswith("image/"):
        return from_header

    path = urlparse(url).path.lower() if url.startswith(("http://", "https://")) else url.lower()
    if path.endswith(".png"):
        return "image/png"
    if path.endswith(".webp"):
        return "image/webp"
    if path.endswith(".gif"):
        return "image/gif"
    return "image/jpeg"


def _short(url: str) -> str:
    return url if len(url) <= 80 else f"{url[:77]}..."


async def _stream_image(
    client: httpx.AsyncClient, url: str, *, timeout: httpx.Timeout, max_bytes: int
) -> tuple[bytes, str]:
    async with client.stream("GET", url, timeout=timeout, headers={"Accept": "image/*"}) as resp:
        if resp.status_code >= 400:
            raise DownloadError(
                f"Image download failed (HTTP {resp.status_code}): {_short(url)}",
                retryable=status_is_retryable(resp.status_code),
            )

        declared = resp.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > max_bytes:
            raise DownloadError(
                f"Image exceeds maximum size of {max_bytes} bytes: {_short(url)}",
                retryable=False,
            )

        chunks: list[bytes] = []
        total = 0
        async for chunk in resp.aiter_bytes():
            if not chunk:
                continue
            total += len(chunk)
            if total > max_bytes:
                raise DownloadError(
                    f"Image exceeds maximum size of {max_bytes} bytes: {_short(url)}",
                    retryable=False,
                )
            chunks.append(chunk)

        return b"".join(chunks), guess_mime_type(url, resp.headers.get("Content-Type"))


async def download_image(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_seconds: float,
    max_bytes: int,
) -> tuple[bytes, str]:
    """Fetch ``url`` with a size cap; returns ``(data, mime_type)``.

    ``timeout_seconds`` bounds the whole download, not each read.
    """

    timeout = httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 10.0))
    try:
        data, mime_type = await asyncio.wait_for(
            _stream_image(client, url, timeout=timeout, max_bytes=max_bytes),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        raise DownloadError(
            f"Image download timed out after {timeout_seconds:g}s: {_short(url)}", retryable=True
        ) from exc
    except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as exc:
        raise DownloadError(
            f"Image download failed: {exc.__class__.__name__}: {_short(url)}", retryable=True
        ) from exc

    if not data:
        raise DownloadError(f"Image download returned no data: {_short(url)}", retryable=True)
    return data, mime_type


async def fetch_reference_image(
    client: httpx.AsyncClient,
    image: ImageInput,
    config: FetchConfig,
) -> ReferenceImage:
    url = image.url
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise InvalidInputError(f"Reference image must be an http(s) URL: {_short(url)}")

    target = url
    if image.allow_transform:
        target, applied = apply_cos_compression(url)
        if applied:
            logger.info("ref.fetch ci-optimised label=%s url=%s", image.label, _short(url))

    attempts = max(config.attempts, 1)
    for attempt in range(1, attempts + 1):
        try:
            data, mime_type = await download_image(
                client,
                target,
                timeout_seconds=config.timeout_seconds,
                max_bytes=config.max_bytes,
            )
        except DownloadError as exc:
            if not exc.retryable or attempt >= attempts:
                logger.warning(
                    "ref.fetch failed label=%s attempt=%s/%s err=%s", image.label, attempt, attempts, exc
                )
                raise
            logger.info("ref.fetch retry label=%s attempt=%s err=%s", image.label, attempt, exc)
            continue

        logger.info(
            "ref.fetch ok label=%s size_kb=%s mime=%s", image.label, round(len(data) / 1024), mime_type
        )
        return ReferenceImage(data=data, mime_type=mime_type, url=target, label=image.label)

    raise DownloadError(f"Image download failed: {_short(url)}")  # pragma: no cover - loop always returns/raises


__all__ = [
    "CI_COMPRESSION_OPS",
    "ReferenceImage",
    "apply_cos_compression",
    "download_image",
    "fetch_reference_image",
    "guess_mime_type",
]
