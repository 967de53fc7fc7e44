"""Painter endpoint construction."""
from __future__ import annotations

import re
from urllib.parse import quote

from painter.errors import ConfigError

PROVIDER_SHAPES = ("gateway", "native")
_DEFAULT_VERSION = {"gateway": "v1", "native": "v1beta"}

_CONCRETE_ENDPOINT_RE = re.compile(r":(?:stream)?[gG]enerateContent(?:\?|$)")
_VERSION_ROOT_RE = re.compile(r"/v1(?:beta|alpha)?$")
_KEY_PARAM_RE = re.compile(r"[?&]key=")


def mask_secret(value: str | None) -> str:
    if not value:
        return ""
    text = str(value)
    if len(text) <= 8:
        return "***"
    return f"{text[:3]}***{text[-3:]}"


def redact_endpoint(endpoint: str, api_key: str | None) -> str:
    """Return ``endpoint`` with the credential masked, safe for logs."""
    if not api_key:
        return endpoint
    redacted = endpoint.replace(quote(api_key, safe=""), mask_secret(api_key))
    return redacted.replace(api_key, mask_secret(api_key))


def build_painter_endpoint(
    gateway: str | None,
    api_key: str | None,
    model: str | None,
    *,
    shape: str = "gateway",
) -> str:
    """Resolve the ``generateContent`` URL for one credential.

    ``gateway`` may already be a concrete ``...:generateContent`` endpoint (the
    key is appended unless present) or a gateway root, which is normalised to a
    versioned API root before ``/models/{model}:generateContent`` is added.
    Native-shaped providers default to ``v1beta``, gateways to ``v1``.
    """

    raw = (gateway or "").strip()
    if not raw:
        raise ConfigError("Painter API URL is not configured")
    key = (api_key or "").strip()
    if not key:
        raise ConfigError("Painter API key is not configured")

    trimmed = raw.rstrip("/")
    encoded_key = quote(key, safe="")

    if _CONCRETE_ENDPOINT_RE.search(trimmed):
        if _KEY_PARAM_RE.search(trimmed):
            return trimmed
        joiner = "&" if "?" in trimmed else "?"
        return f"{trimmed}{joiner}key={encoded_key}"

    painter_model = (model or "").strip()
    if not painter_model:
        raise ConfigError("Painter model is not configured (painterModel)")

    if shape not in PROVIDER_SHAPES:
        raise ConfigError(f"Unknown provider shape: {shape}")

    root = trimmed
    if not _VERSION_ROOT_RE.search(root):
        root = f"{root}/{_DEFAULT_VERSION[shape]}"

    return f"{root}/models/{quote(painter_model, safe='')}:generateContent?key={encoded_key}"


__all__ = ["PROVIDER_SHAPES", "build_painter_endpoint", "mask_secret", "redact_endpoint"]
