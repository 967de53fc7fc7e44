"""Cap the size of job payloads before they reach the invocation route."""
from __future__ import annotations

import logging
from typing import Any

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("painter.body-limit")

DEFAULT_MAX_BODY_BYTES = 2 * 1024 * 1024
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


class BodyLimitMiddleware:
    """Answer oversized ``/api/`` bodies with the invocation's 400 error shape.

    Jobs reference images by URL, so a legitimate payload stays small.  The
    declared ``Content-Length`` is checked first; chunked bodies are counted
    as they arrive and the buffered body is replayed to the app.  A limit of
    ``0`` disables the check.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        max_body_bytes: int | None = None,
        path_prefix: str = "/api/",
    ) -> None:
        self.app = app
        limit = DEFAULT_MAX_BODY_BYTES if max_body_bytes is None else max_body_bytes
        self.max_body_bytes = limit if limit > 0 else None
        self.path_prefix = path_prefix

    def _watched(self, scope: Scope) -> bool:
        return (
            self.max_body_bytes is not None
            and scope["type"] == "http"
            and scope.get("method") in _BODY_METHODS
            and scope.get("path", "").startswith(self.path_prefix)
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if not self._watched(scope):
            await self.app(scope, receive, send)
            return

        limit = self.max_body_bytes or 0
        declared = Headers(scope=scope).get("content-length", "")
        if declared.isdigit() and int(declared) > limit:
            await self._reject(scope, receive, send, int(declared))
            return

        chunks: list[bytes] = []
        size = 0
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > limit:
                await self._reject(scope, receive, send, size)
                return
            chunks.append(chunk)
            if not message.get("more_body", False):
                break

        body = b"".join(chunks)
        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if replayed:
                return await receive()
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}

        await self.app(scope, replay, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send, size: int) -> None:
        logger.warning(
            "body.rejected path=%s size=%s limit=%s", scope.get("path"), size, self.max_body_bytes
        )
        content: dict[str, Any] = {
            "success": False,
            "error": f"Request body exceeds {self.max_body_bytes} bytes; pass images by URL",
        }
        await JSONResponse(status_code=400, content=content)(scope, receive, send)


__all__ = ["BodyLimitMiddleware", "DEFAULT_MAX_BODY_BYTES"]
