"""Credential pools and the retry-by-rotation executor."""
from __future__ import annotations

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable, Iterator, TypeVar

import httpx

from painter.errors import ConfigError, PainterError, TransportError, is_retryable
from painter.services.endpoint import build_painter_endpoint, mask_secret

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Credential:
    api_key: str
    gateway: str
    model: str
    shape: str = "gateway"

    def endpoint(self) -> str:
        return build_painter_endpoint(self.gateway, self.api_key, self.model, shape=self.shape)

    @property
    def masked(self) -> str:
        return mask_secret(self.api_key)


class KeyPool:
    """Ordered, de-duplicated, read-only set of interchangeable credentials."""

    def __init__(self, credentials: Iterable[Credential]) -> None:
        unique: dict[str, Credential] = {}
        for credential in credentials:
            key = credential.api_key.strip()
            if key and key not in unique:
                unique[key] = credential
        if not unique:
            raise ConfigError("Painter key pool is empty; configure at least one API key")
        self._credentials = tuple(unique.values())

    @classmethod
    def from_keys(
        cls,
        keys: Iterable[str],
        *,
        gateway: str,
        model: str,
        shape: str = "gateway",
    ) -> "KeyPool":
        return cls(
            Credential(api_key=str(key).strip(), gateway=gateway, model=model, shape=shape)
            for key in keys
            if key and str(key).strip()
        )

    @property
    def credentials(self) -> tuple[Credential, ...]:
        return self._credentials

    def rotated(self, start: int = 0) -> tuple[Credential, ...]:
        offset = start % len(self._credentials)
        return self._credentials[offset:] + self._credentials[:offset]

    def __len__(self) -> int:
        return len(self._credentials)

    def __iter__(self) -> Iterator[Credential]:
        return iter(self._credentials)


class CredentialLeases:
    """Allows at most one in-flight attempt per credential across concurrent shots."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, credential: Credential) -> AsyncIterator[None]:
        lock = self._locks.setdefault(credential.api_key, asyncio.Lock())
        async with lock:
            yield


Attempt = Callable[[Credential, int], Awaitable[T]]


def _as_painter_error(exc: BaseException, timeout_seconds: float) -> PainterError:
    if isinstance(exc, PainterError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return TransportError(f"Painter request timed out after {timeout_seconds:g}s")
    if isinstance(exc, httpx.HTTPError):
        return TransportError(f"Painter request failed: {exc.__class__.__name__}: {exc}")
    raise exc


class KeyPoolRetryExecutor:
    """Run one attempt per credential until success or a final error.

    At most ``len(pool)`` attempts are made.  Retryable failures move on to
    the next credential after a fixed backoff; anything else is raised at once.
    """

    def __init__(
        self,
        pool: KeyPool,
        *,
        timeout_seconds: float,
        backoff_seconds: float = 0.8,
        leases: CredentialLeases | None = None,
        start: int | None = None,
        label: str = "painter",
    ) -> None:
        self.pool = pool
        self.timeout_seconds = timeout_seconds
        self.backoff_seconds = max(backoff_seconds, 0.0)
        self.leases = leases
        self.start = start
        self.label = label
        self.attempts = 0

    @asynccontextmanager
    async def _lease(self, credential: Credential) -> AsyncIterator[None]:
        if self.leases is None:
            yield
            return
        async with self.leases.hold(credential):
            yield

    async def run(self, attempt: Attempt[T]) -> T:
        start = self.start if self.start is not None else random.randrange(len(self.pool))
        order = self.pool.rotated(start)
        total = len(order)

        for index, credential in enumerate(order, start=1):
            self.attempts = index
            logger.info(
                "[%s] attempt %s/%s key=%s", self.label, index, total, credential.masked
            )
            try:
                async with self._lease(credential):
                    return await asyncio.wait_for(
                        attempt(credential, index), timeout=self.timeout_seconds
                    )
            except (PainterError, asyncio.TimeoutError, httpx.HTTPError) as exc:
                error = _as_painter_error(exc, self.timeout_seconds)
                retryable = is_retryable(error)
                if not retryable or index >= total:
                    logger.warning(
                        "[%s] attempt %s/%s failed (%s, final): %s",
                        self.label,
                        index,
                        total,
                        "retryable" if retryable else "fatal",
                        error,
                    )
                    if error is exc:
                        raise
                    raise error from exc
                logger.warning(
                    "[%s] attempt %s/%s failed, switching key: %s", self.label, index, total, error
                )
            await asyncio.sleep(self.backoff_seconds)

        raise ConfigError("Painter key pool is empty")  # pragma: no cover - pool is never empty


__all__ = ["Credential", "CredentialLeases", "KeyPool", "KeyPoolRetryExecutor"]
