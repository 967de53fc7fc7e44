"""Cloud function entry point (API gateway trigger)."""
from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from typing import Any

from painter.config import get_settings
from painter.services.invocation import run_invocation

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("painter.scf")


def _event_body(event: Any) -> Any:
    if not isinstance(event, dict):
        return event
    body = event.get("body")
    if body is None:
        # direct invocation passes the job itself as the event
        return event
    if isinstance(body, str) and event.get("isBase64Encoded"):
        return base64.b64decode(body, validate=True)
    return body


def _response(status_code: int, payload: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(payload, ensure_ascii=False),
    }


def main_handler(event: Any, context: Any = None) -> dict[str, Any]:
    request_id = getattr(context, "request_id", None) or (
        context.get("request_id") if isinstance(context, dict) else None
    )
    logger.info("scf.event request_id=%s", request_id)

    try:
        body = _event_body(event)
    except (binascii.Error, ValueError) as exc:
        logger.warning("scf.rejected request_id=%s undecodable body: %s", request_id, exc)
        return _response(400, {"success": False, "error": f"invalid base64 body: {exc}"})

    status_code, payload = asyncio.run(run_invocation(body))
    return _response(status_code, payload)


__all__ = ["main_handler"]
