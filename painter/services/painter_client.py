"""Async client turning one shot into one generated image."""
from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from painter.config import FetchConfig, PainterConfig
from painter.errors import NoImageDataError, TransportError
from painter.schemas import GenerationParams, Shot, normalise_image_size
from painter.services.endpoint import redact_endpoint
from painter.services.image_extractor import ImageExtractor
from painter.services.key_pool import Credential, CredentialLeases, KeyPool, KeyPoolRetryExecutor
from painter.services.placeholder import render_placeholder
from painter.services.reference_fetcher import ReferenceImage, download_image, fetch_reference_image
from painter.services.request_builder import build_generate_request
from painter.services.stream_reader import read_generation_response

logger = logging.getLogger(__name__)

_ERROR_PREVIEW_BYTES = 4096


@dataclass(frozen=True)
class GenerationOutcome:
    image_bytes: bytes
    mime_type: str
    shoot_log_text: str = ""


async def _error_detail(response: httpx.Response) -> str:
    """Summarise an error body without reading more than a few KiB."""

    collected = bytearray()
    async for chunk in response.aiter_bytes():
        collected.extend(chunk)
        if len(collected) >= _ERROR_PREVIEW_BYTES:
            break
    text = bytes(collected[:_ERROR_PREVIEW_BYTES]).decode("utf-8", errors="replace").strip()
    try:
        payload: Any = json.loads(text)
    except ValueError:
        return text[:300] or response.reason_phrase
    if isinstance(payload, list) and payload:
        payload = payload[0]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])[:300]
        if isinstance(error, str):
            return error[:300]
    return text[:300]


def _decode_image(data: str) -> bytes:
    try:
        decoded = base64.b64decode(data)
    except (binascii.Error, ValueError) as exc:
        raise NoImageDataError("Painter returned an invalid base64 image payload") from exc
    if not decoded:
        raise NoImageDataError("Painter returned an empty image payload")
    return decoded


class PainterClient:
    def __init__(
        self,
        config: PainterConfig,
        fetch: FetchConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        leases: CredentialLeases | None = None,
    ) -> None:
        self.config = config
        self.fetch = fetch or FetchConfig()
        self.leases = leases
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(follow_redirects=True)

    async def __aenter__(self) -> "PainterClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_references(
        self, shot: Shot, job_params: GenerationParams | None = None
    ) -> list[ReferenceImage]:
        """Download every image concurrently; the first failure cancels the rest."""

        images = shot.image_inputs(job_params)
        if not images:
            return []
        tasks = [
            asyncio.create_task(fetch_reference_image(self._client, image, self.fetch))
            for image in images
        ]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def generate(
        self,
        shot: Shot,
        pool: KeyPool,
        *,
        job_params: GenerationParams | None = None,
        start: int | None = None,
    ) -> GenerationOutcome:
        if self.config.mock:
            return self._mock(shot, job_params)

        references = await self.fetch_references(shot, job_params)
        body = build_generate_request(shot, references, job_params=job_params)
        executor = KeyPoolRetryExecutor(
            pool,
            timeout_seconds=self.config.timeout_seconds,
            backoff_seconds=self.config.retry_backoff_seconds,
            leases=self.leases,
            start=start,
            label=f"painter:{shot.shot_id}",
        )
        return await executor.run(
            lambda credential, index: self._attempt(credential, body, shot.shot_id, index)
        )

    async def _attempt(
        self, credential: Credential, body: dict[str, Any], shot_id: str, index: int
    ) -> GenerationOutcome:
        endpoint = credential.endpoint()
        logger.info(
            "painter.call shot=%s attempt=%s endpoint=%s",
            shot_id,
            index,
            redact_endpoint(endpoint, credential.api_key),
        )

        extractor = ImageExtractor(max_log_chars=self.config.max_log_chars)
        started = time.monotonic()
        timeout = httpx.Timeout(self.config.timeout_seconds, connect=min(self.config.timeout_seconds, 30.0))
        try:
            async with self._client.stream(
                "POST",
                endpoint,
                json=body,
                headers={"Content-Type": "application/json"},
                timeout=timeout,
            ) as response:
                if response.status_code >= 400:
                    detail = await _error_detail(response)
                    raise TransportError(
                        f"Painter API returned HTTP {response.status_code}: {detail}",
                        status_code=response.status_code,
                    )
                outcome = await read_generation_response(
                    response, extractor, max_bytes=self.config.max_response_bytes
                )
        except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as exc:
            raise TransportError(f"Painter request failed: {exc.__class__.__name__}: {exc}") from exc

        if outcome.image is not None:
            data = _decode_image(outcome.image.data)
            mime_type = outcome.image.mime_type
        elif outcome.file_ref is None:
            raise extractor.no_image_error(1)
        else:
            # model output, never transformed
            data, header_mime = await download_image(
                self._client,
                outcome.file_ref.uri,
                timeout_seconds=self.fetch.timeout_seconds,
                max_bytes=self.config.max_response_bytes,
            )
            mime_type = outcome.file_ref.mime_type or header_mime

        logger.info(
            "painter.ok shot=%s attempt=%s dur=%.2fs mime=%s size_kb=%s frames=%s",
            shot_id,
            index,
            time.monotonic() - started,
            mime_type,
            round(len(data) / 1024),
            extractor.frames_seen,
        )
        return GenerationOutcome(
            image_bytes=data, mime_type=mime_type, shoot_log_text=extractor.shoot_log.text
        )

    def _mock(self, shot: Shot, job_params: GenerationParams | None) -> GenerationOutcome:
        build_generate_request(shot, [], job_params=job_params)
        params = shot.effective_params(job_params)
        logger.warning("painter.mock shot=%s (MOCK_PAINTER enabled)", shot.shot_id)
        data = render_placeholder(
            shot.user_text,
            aspect_ratio=params.aspect_ratio,
            image_size=normalise_image_size(params.image_size),
        )
        return GenerationOutcome(image_bytes=data, mime_type="image/png", shoot_log_text="Mock painter run")


__all__ = ["GenerationOutcome", "PainterClient"]
