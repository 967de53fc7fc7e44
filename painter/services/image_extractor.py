"""Per-frame inspection of ``generateContent`` responses.

A frame is one decoded JSON object.  Each frame is checked independently for
a block reason, text fragments, an inline image and a file reference; the
result of :meth:`ImageExtractor.feed` tells the stream loop whether it may
stop reading.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from painter.errors import ContentBlockedError, NoImageDataError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_MAX_LOG_CHARS = 20_000

SAFETY_FINISH_REASONS = frozenset(
    {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "IMAGE_SAFETY", "IMAGE_PROHIBITED_CONTENT"}
)


@dataclass(frozen=True)
class InlineImage:
    data: str
    mime_type: str


@dataclass(frozen=True)
class FileReference:
    uri: str
    mime_type: str


@dataclass(frozen=True)
class FrameOutcome:
    done: bool
    image: InlineImage | None = None
    file_ref: FileReference | None = None


CONTINUE = FrameOutcome(done=False)


def _get(mapping: Any, *names: str) -> Any:
    if not isinstance(mapping, Mapping):
        return None
    for name in names:
        value = mapping.get(name)
        if value is not None:
            return value
    return None


class ShootLog:
    """Accumulates model text, silently dropping anything past ``max_chars``."""

    def __init__(self, max_chars: int = DEFAULT_MAX_LOG_CHARS) -> None:
        self.max_chars = max(max_chars, 0)
        self._chunks: list[str] = []
        self._size = 0
        self.truncated = False

    def append(self, text: str) -> None:
        if not text:
            return
        room = self.max_chars - self._size
        if room <= 0:
            self.truncated = True
            return
        if len(text) > room:
            text = text[:room]
            self.truncated = True
        self._chunks.append(text)
        self._size += len(text)

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def __len__(self) -> int:
        return self._size


class ImageExtractor:
    def __init__(self, *, max_log_chars: int = DEFAULT_MAX_LOG_CHARS) -> None:
        self.shoot_log = ShootLog(max_log_chars)
        self.frames_seen = 0
        self.finish_reason: str | None = None

    def feed(self, frame: Any) -> FrameOutcome:
        self.frames_seen += 1
        if not isinstance(frame, Mapping):
            return CONTINUE

        error = frame.get("error")
        if isinstance(error, Mapping):
            code = error.get("code")
            status = code if isinstance(code, int) else None
            message = error.get("message") or error.get("status") or "upstream error"
            raise TransportError(
                f"Upstream error in response{f' (HTTP {status})' if status else ''}: {message}",
                status_code=status,
            )

        block_reason = _get(frame.get("promptFeedback"), "blockReason", "block_reason")
        if block_reason:
            raise ContentBlockedError(f"Prompt blocked: {block_reason}")

        candidates = frame.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            return CONTINUE
        candidate = candidates[0]
        if not isinstance(candidate, Mapping):
            return CONTINUE

        finish_reason = _get(candidate, "finishReason", "finish_reason")
        if finish_reason:
            self.finish_reason = str(finish_reason)

        parts = _get(candidate.get("content"), "parts") or []
        file_ref: FileReference | None = None
        for part in parts if isinstance(parts, list) else []:
            if not isinstance(part, Mapping):
                continue
            text = part.get("text")
            if isinstance(text, str):
                self.shoot_log.append(text)

            inline = _get(part, "inlineData", "inline_data")
            data = _get(inline, "data")
            if isinstance(data, str) and data:
                mime_type = _get(inline, "mimeType", "mime_type") or "image/png"
                return FrameOutcome(done=True, image=InlineImage(data=data, mime_type=str(mime_type)))

            file_data = _get(part, "fileData", "file_data")
            uri = _get(file_data, "fileUri", "file_uri")
            mime_type = str(_get(file_data, "mimeType", "mime_type") or "")
            if file_ref is None and isinstance(uri, str) and uri and mime_type.startswith("image/"):
                file_ref = FileReference(uri=uri, mime_type=mime_type)

        if file_ref is not None:
            return FrameOutcome(done=True, file_ref=file_ref)

        if self.finish_reason in SAFETY_FINISH_REASONS:
            raise ContentBlockedError(f"Generation blocked: finishReason={self.finish_reason}")
        return CONTINUE

    def no_image_error(self, received_bytes: int) -> NoImageDataError:
        """Build the terminal error once the response ended without an image."""

        if received_bytes <= 0:
            return NoImageDataError("Stream ended with no data received from Painter API")

        details = [f"frames={self.frames_seen}"]
        if self.finish_reason:
            details.append(f"finishReason={self.finish_reason}")
        log_text = self.shoot_log.text.strip()
        if log_text:
            preview = log_text if len(log_text) <= 500 else f"{log_text[:500]}..."
            details.append(f"text={preview!r}")
        return NoImageDataError(f"No image data found in API response ({', '.join(details)})")


__all__ = [
    "CONTINUE",
    "FileReference",
    "FrameOutcome",
    "ImageExtractor",
    "InlineImage",
    "SAFETY_FINISH_REASONS",
    "ShootLog",
]
