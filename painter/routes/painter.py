from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from painter.services.invocation import run_invocation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/painter", tags=["painter"])


@router.post("/generate")
async def generate(request: Request) -> JSONResponse:
    """Render every shot of a job; per-shot failures stay inside ``results``."""

    # raw body: malformed JSON must map to our 400 shape, not FastAPI's 422
    body = await request.body()
    status_code, payload = await run_invocation(body)
    return JSONResponse(status_code=status_code, content=payload)
