"""Read a Painter HTTP response as a sequence of JSON frames.

Three framings are understood: Server-Sent Events, newline-delimited JSON and
a single buffered JSON document.  Reading stops at the first frame that
resolves an image; the caller closes the response, which aborts the
connection instead of draining the remaining frames.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Iterator

import httpx

from painter.errors import SizeLimitError
from painter.services.image_extractor import FrameOutcome, ImageExtractor

logger = logging.getLogger(__name__)

FRAMING_SSE = "sse"
FRAMING_NDJSON = "ndjson"
FRAMING_JSON = "json"

DONE_SENTINEL = "[DONE]"
_IGNORED_SSE_FIELDS = frozenset({"event", "id", "retry"})


def detect_framing(content_type: str | None) -> str:
    value = (content_type or "").lower()
    if "event-stream" in value:
        return FRAMING_SSE
    if "ndjson" in value or "jsonl" in value or "json-seq" in value or "x-json-stream" in value:
        return FRAMING_NDJSON
    return FRAMING_JSON


def decode_payload(text: str) -> list[Any]:
    """Decode one payload into zero or more frames.

    Sentinels and anything that does not look like JSON are dropped without
    error; a top-level array contributes one frame per object.
    """

    payload = text.strip()
    if not payload or payload == DONE_SENTINEL or payload[0] not in "{[":
        return []
    try:
        decoded = json.loads(payload)
    except ValueError:
        logger.debug("stream.payload undecodable len=%s", len(payload))
        return []
    if isinstance(decoded, list):
        return [item for item in decoded if isinstance(item, dict)]
    if isinstance(decoded, dict):
        return [decoded]
    return []


class FrameParser:
    """Incremental line-oriented parser for SSE and NDJSON bodies."""

    def __init__(self, framing: str = FRAMING_SSE) -> None:
        self.framing = framing
        self._buffer = bytearray()
        self._data_lines: list[str] = []

    def feed(self, chunk: bytes) -> Iterator[Any]:
        self._buffer.extend(chunk)
        while True:
            index = self._buffer.find(b"\n")
            if index < 0:
                return
            raw = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            yield from self._line(raw.decode("utf-8", errors="replace").rstrip("\r"))

    def close(self) -> Iterator[Any]:
        if self._buffer:
            raw = bytes(self._buffer)
            self._buffer.clear()
            yield from self._line(raw.decode("utf-8", errors="replace").rstrip("\r"))
        yield from self._flush()

    def _flush(self) -> list[Any]:
        if not self._data_lines:
            return []
        payload = "\n".join(self._data_lines)
        self._data_lines = []
        return decode_payload(payload)

    def _line(self, line: str) -> list[Any]:
        if self.framing == FRAMING_NDJSON:
            return decode_payload(line)

        if not line:
            return self._flush()
        if line.startswith(":"):
            return []
        if line.startswith("data:"):
            value = line[5:]
            self._data_lines.append(value[1:] if value.startswith(" ") else value)
            return []
        if line.split(":", 1)[0].strip() in _IGNORED_SSE_FIELDS:
            return []

        # any other line ends the pending event; bare JSON lines count on their own
        frames = self._flush()
        frames.extend(decode_payload(line))
        return frames


def iter_buffered_frames(body: bytes) -> Iterator[Any]:
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return
    try:
        decoded = json.loads(text)
    except ValueError:
        # mislabelled streams: fall back to line framing
        parser = FrameParser(FRAMING_SSE)
        yield from parser.feed(text.encode("utf-8") + b"\n")
        yield from parser.close()
        return
    if isinstance(decoded, list):
        yield from (item for item in decoded if isinstance(item, dict))
    elif isinstance(decoded, dict):
        yield decoded


async def read_generation_response(
    response: httpx.Response,
    extractor: ImageExtractor,
    *,
    max_bytes: int,
) -> FrameOutcome:
    """Feed frames to ``extractor`` until one resolves an image.

    Raises :class:`SizeLimitError` when more than ``max_bytes`` arrive and the
    extractor's :class:`NoImageDataError` when the body ends without an image.
    """

    framing = detect_framing(response.headers.get("Content-Type"))
    received = 0

    def _count(chunk: bytes) -> None:
        nonlocal received
        received += len(chunk)
        if received > max_bytes:
            raise SizeLimitError(f"Painter response exceeded {max_bytes} bytes")

    if framing == FRAMING_JSON:
        body = bytearray()
        async for chunk in response.aiter_bytes():
            _count(chunk)
            body.extend(chunk)
        for frame in iter_buffered_frames(bytes(body)):
            outcome = extractor.feed(frame)
            if outcome.done:
                return outcome
        raise extractor.no_image_error(received)

    parser = FrameParser(framing)
    async for chunk in response.aiter_bytes():
        _count(chunk)
        for frame in parser.feed(chunk):
            outcome = extractor.feed(frame)
            if outcome.done:
                logger.debug("stream.image frames=%s bytes=%s", extractor.frames_seen, received)
                return outcome
    for frame in parser.close():
        outcome = extractor.feed(frame)
        if outcome.done:
            return outcome
    raise extractor.no_image_error(received)


__all__ = [
    "DONE_SENTINEL",
    "FRAMING_JSON",
    "FRAMING_NDJSON",
    "FRAMING_SSE",
    "FrameParser",
    "decode_payload",
    "detect_framing",
    "iter_buffered_frames",
    "read_generation_response",
]
