"""Batch invocation contract: job payload in, per-shot results out."""
from __future__ import annotations

import json
import logging
from typing import Any, Tuple

import httpx
from pydantic import ValidationError

from painter.config import PainterConfig, Settings, get_settings
from painter.errors import ConfigError
from painter.schemas import BatchResponse, JobConfig, JobRequest
from painter.services.batch_runner import ShotBatchRunner
from painter.services.key_pool import KeyPool
from painter.services.painter_client import PainterClient
from painter.services.storage import CosStorage, StorageUploader

logger = logging.getLogger(__name__)

MOCK_GATEWAY = "https://mock.painter.invalid/v1"


def _validation_message(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "__root__")
        text = str(error.get("msg", "invalid value"))
        messages.append(f"{location}: {text}" if location else text)
    return "; ".join(messages) or "invalid request"


def resolve_key_pool(config: JobConfig, painter: PainterConfig) -> KeyPool:
    """Build the job's key pool.

    Deployment settings win over the request for gateway and keys; the model
    comes from the request first.  Endpoint construction is checked once here
    so configuration problems fail the job before any shot runs.
    """

    model = (config.painter_model or painter.model or "").strip()
    shape = config.provider_shape or painter.provider_shape
    if painter.mock:
        return KeyPool.from_keys(["mock-key"], gateway=MOCK_GATEWAY, model=model or "mock", shape=shape)

    gateway = (painter.api_url or config.painter_gateway or "").strip()
    if painter.api_keys:
        keys = list(painter.api_keys)
    elif config.painter_keys:
        keys = list(config.painter_keys)
    else:
        keys = [config.painter_key] if config.painter_key else []

    if not gateway or not keys:
        raise ConfigError("Painter API is not configured (URL or key missing)")

    pool = KeyPool.from_keys(keys, gateway=gateway, model=model, shape=shape)
    pool.credentials[0].endpoint()
    return pool


async def run_invocation(
    payload: Any,
    *,
    settings: Settings | None = None,
    uploader: StorageUploader | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Tuple[int, dict[str, Any]]:
    """Return ``(status_code, body)`` for one batch invocation."""

    settings = settings or get_settings()

    try:
        if isinstance(payload, (bytes, str)):
            payload = json.loads(payload or "{}")
        request = JobRequest.model_validate(payload)
    except ValueError as exc:
        message = _validation_message(exc) if isinstance(exc, ValidationError) else f"invalid JSON: {exc}"
        logger.warning("invocation.rejected %s", message)
        return 400, {"success": False, "error": message}

    task_id = request.task_id
    try:
        if not settings.storage.is_configured:
            raise ConfigError("COS storage is not configured (COS_BUCKET / COS_REGION)")
        pool = resolve_key_pool(request.config, settings.painter)
        uploader = uploader or CosStorage(settings.storage)
    except Exception as exc:  # noqa: BLE001 - any setup failure is a job-level 500
        logger.error("invocation.setup_failed task=%s err=%s", task_id, exc)
        return 500, {"success": False, "taskId": task_id, "error": str(exc)}

    logger.info(
        "invocation.start task=%s shots=%s legacy=%s", task_id, len(request.shots), request.legacy
    )
    try:
        async with PainterClient(settings.painter, settings.fetch, http_client=http_client) as client:
            runner = ShotBatchRunner(
                client,
                uploader,
                settings.storage,
                max_workers=settings.painter.max_workers,
            )
            results = await runner.run(
                request.shots, pool, job_params=request.config.painter_params
            )
    except Exception as exc:  # noqa: BLE001 - surfaced to the orchestrator as a 500
        logger.exception("invocation.failed task=%s", task_id)
        return 500, {"success": False, "taskId": task_id, "error": str(exc)}

    body = BatchResponse(
        success=True, task_id=task_id, results=results, count=len(results)
    ).to_payload()
    if request.legacy and len(results) == 1:
        single = results[0].model_dump(by_alias=True, exclude_none=True)
        for field in ("shotId", "imageUrl", "error"):
            if field in single:
                body[field] = single[field]
    return 200, body


__all__ = ["MOCK_GATEWAY", "resolve_key_pool", "run_invocation"]
