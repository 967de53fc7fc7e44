from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from painter.config import FetchConfig
from painter.errors import DownloadError, NoImageDataError, TransportError
from painter.schemas import Shot
from painter.services.key_pool import KeyPool
from painter.services.painter_client import PainterClient

from conftest import PNG_BYTES, image_frame, sse, text_frame

GATEWAY = "https://gateway.example.com"


def _pool(*keys: str) -> KeyPool:
    return KeyPool.from_keys(keys, gateway=GATEWAY, model="m1")


def _client(painter_config, handler, **fetch) -> PainterClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PainterClient(painter_config, FetchConfig(**fetch), http_client=http_client)


@pytest.mark.asyncio
async def test_buffered_json_response(painter_config) -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=image_frame())

    client = _client(painter_config, handler)
    outcome = await client.generate(Shot(shot_id="s1", user_text="a hat"), _pool("k1"), start=0)

    assert outcome.image_bytes == PNG_BYTES
    assert outcome.mime_type == "image/png"
    assert bodies[0]["contents"][0]["parts"][0]["text"].startswith("a hat")


@pytest.mark.asyncio
async def test_rate_limited_key_is_rotated(painter_config) -> None:
    keys_used: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        key = request.url.params["key"]
        keys_used.append(key)
        if key == "k1":
            return httpx.Response(429, json={"error": {"code": 429, "message": "quota exhausted"}})
        return httpx.Response(
            200,
            headers={"Content-Type": "text/event-stream"},
            content=sse(text_frame("Lighting set. "), image_frame()),
        )

    client = _client(painter_config, handler)
    outcome = await client.generate(Shot(shot_id="s1", user_text="a hat"), _pool("k1", "k2"), start=0)

    assert keys_used == ["k1", "k2"]
    assert outcome.shoot_log_text == "Lighting set. "


@pytest.mark.asyncio
async def test_client_error_is_not_retried(painter_config) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(400, json={"error": {"message": "model not found"}})

    client = _client(painter_config, handler)
    with pytest.raises(TransportError) as excinfo:
        await client.generate(Shot(shot_id="s1", user_text="a hat"), _pool("k1", "k2"), start=0)

    assert calls == 1
    assert "HTTP 400" in str(excinfo.value)
    assert "model not found" in str(excinfo.value)


@pytest.mark.asyncio
async def test_text_only_answers_exhaust_pool(painter_config) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=text_frame("Here is a description instead.", "STOP"))

    client = _client(painter_config, handler)
    with pytest.raises(NoImageDataError) as excinfo:
        await client.generate(Shot(shot_id="s1", user_text="a hat"), _pool("k1", "k2"), start=0)

    assert calls == 2
    assert "No image data found" in str(excinfo.value)


@pytest.mark.asyncio
async def test_file_reference_is_downloaded(painter_config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "files.example.com":
            return httpx.Response(200, headers={"Content-Type": "image/webp"}, content=b"webp-data")
        frame = {
            "candidates": [
                {"content": {"parts": [{"fileData": {"fileUri": "https://files.example.com/out.webp", "mimeType": "image/webp"}}]}}
            ]
        }
        return httpx.Response(200, json=frame)

    client = _client(painter_config, handler)
    outcome = await client.generate(Shot(shot_id="s1", user_text="a hat"), _pool("k1"), start=0)

    assert outcome.image_bytes == b"webp-data"
    assert outcome.mime_type == "image/webp"


@pytest.mark.asyncio
async def test_references_are_inlined_in_order(painter_config) -> None:
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, headers={"Content-Type": "image/jpeg"}, content=request.url.path.encode())
        sent.append(json.loads(request.content))
        return httpx.Response(200, json=image_frame())

    shot = Shot.model_validate(
        {
            "shotId": "s1",
            "userText": "a hat",
            "images": [{"url": "https://cdn.example.com/base.jpg", "label": "BASE"}],
            "referenceImageUrls": ["https://cdn.example.com/ref.jpg"],
        }
    )
    client = _client(painter_config, handler)
    await client.generate(shot, _pool("k1"), start=0)

    inline = [part["inlineData"] for part in sent[0]["contents"][0]["parts"] if "inlineData" in part]
    assert len(inline) == 2
    assert inline[0]["mimeType"] == "image/jpeg"


@pytest.mark.asyncio
async def test_oversized_reference_never_calls_generation(painter_config) -> None:
    posts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal posts
        if request.method == "POST":
            posts += 1
            return httpx.Response(200, json=image_frame())
        return httpx.Response(200, content=b"x" * 4096)

    shot = Shot(shot_id="s1", user_text="a hat", reference_image_urls=["https://cdn.example.com/huge.jpg"])
    client = _client(painter_config, handler, max_bytes=1024)
    with pytest.raises(DownloadError):
        await client.generate(shot, _pool("k1", "k2"), start=0)
    assert posts == 0


@pytest.mark.asyncio
async def test_mock_mode_skips_network(painter_config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("network must not be used in mock mode")

    client = _client(replace(painter_config, mock=True), handler)
    outcome = await client.generate(Shot(shot_id="s1", user_text="a hat"), _pool("k1"))

    assert outcome.mime_type == "image/png"
    assert outcome.image_bytes.startswith(b"\x89PNG")
    assert outcome.shoot_log_text == "Mock painter run"


@pytest.mark.asyncio
async def test_injected_client_is_not_closed(painter_config) -> None:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    async with PainterClient(painter_config, http_client=http_client):
        pass
    assert not http_client.is_closed
    await http_client.aclose()


@pytest.mark.asyncio
async def test_failed_reference_cancels_sibling_downloads(painter_config) -> None:
    cancelled: list[str] = []

    class StalledBody:
        async def __aiter__(self):
            try:
                await asyncio.sleep(30)
                yield b"never"
            except asyncio.CancelledError:
                cancelled.append("slow")
                raise

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("missing.jpg"):
            return httpx.Response(404)
        if request.method == "GET":
            return httpx.Response(200, content=StalledBody())
        raise AssertionError("generation must not be called")

    shot = Shot(
        shot_id="s1",
        user_text="a hat",
        reference_image_urls=["https://cdn.example.com/slow.jpg", "https://cdn.example.com/missing.jpg"],
    )
    client = _client(painter_config, handler, timeout_seconds=60)

    with pytest.raises(DownloadError) as excinfo:
        await asyncio.wait_for(client.generate(shot, _pool("k1"), start=0), timeout=5)

    assert "HTTP 404" in str(excinfo.value)
    assert cancelled == ["slow"]
