"""Error taxonomy for the painter pipeline.

Every failure raised while rendering a shot is a :class:`PainterError`.  The
``retryable`` flag drives the key-pool executor; :func:`is_retryable` is the
single classification table, so retry decisions never depend on the wording
of upstream error messages.

Classification (retryable?):

===================  ==========================================================
ConfigError          no  - job level, aborts the invocation
InvalidInputError    no  - bad prompt / image URL
DownloadError        network causes only; size limits and 4xx are final
ContentBlockedError  no  - same policy applies to every key
NoImageDataError     yes - empty or text-only answers are usually transient
TransportError       timeouts, resets, HTTP 429 and HTTP 5xx; other 4xx final
SizeLimitError       no  - a larger response will not shrink on retry
StorageError         no  - raised after generation, never retried per key
===================  ==========================================================

Generation has no side effect visible to the caller, so every 5xx is treated
as safe to retry even though the request is a POST.
"""
from __future__ import annotations

import asyncio

import httpx


class PainterError(Exception):
    """Base class for all painter failures."""

    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable

    @property
    def message(self) -> str:
        return str(self)


class ConfigError(PainterError):
    pass


class InvalidInputError(PainterError):
    pass


class DownloadError(PainterError):
    pass


class ContentBlockedError(PainterError):
    pass


class NoImageDataError(PainterError):
    retryable = True


class SizeLimitError(PainterError):
    pass


class StorageError(PainterError):
    pass


class TransportError(PainterError):
    """Network-level or HTTP status failure talking to the generation API."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message, retryable=status_is_retryable(status_code))
        self.status_code = status_code


def status_is_retryable(status_code: int | None) -> bool:
    """``None`` means no response arrived (timeout, reset, abort)."""
    if status_code is None:
        return True
    return status_code == 429 or status_code >= 500


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, PainterError):
        return exc.retryable
    if isinstance(exc, httpx.HTTPStatusError):
        return status_is_retryable(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, asyncio.TimeoutError):
        return True
    return False


__all__ = [
    "ConfigError",
    "ContentBlockedError",
    "DownloadError",
    "InvalidInputError",
    "NoImageDataError",
    "PainterError",
    "SizeLimitError",
    "StorageError",
    "TransportError",
    "is_retryable",
    "status_is_retryable",
]
