from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Response

from painter.config import get_settings
from painter.middlewares import BodyLimitMiddleware
from painter.routes.painter import router as painter_router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("uvicorn").setLevel(settings.log_level)
logging.getLogger("uvicorn.error").setLevel(settings.log_level)
logging.getLogger("uvicorn.access").setLevel(settings.log_level)

logger = logging.getLogger("painter")

app = FastAPI(title="Painter Generation API", version="1.0.0")

app.add_middleware(BodyLimitMiddleware, max_body_bytes=settings.guard.max_body_bytes)
logger.info("BodyLimitMiddleware ready max_json_bytes=%s", settings.guard.max_body_bytes)

app.include_router(painter_router)


@app.get("/", include_in_schema=False)
def root() -> dict[str, Any]:
    return {"service": "painter", "ok": True}


@app.head("/", include_in_schema=False)
def root_head() -> Response:
    return Response(status_code=200)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "ok": True,
        "painter_configured": settings.painter.is_configured or settings.painter.mock,
        "storage_configured": settings.storage.is_configured,
    }
