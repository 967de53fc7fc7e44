from __future__ import annotations

import base64
import json

import pytest

from painter.scf_handler import _event_body, main_handler

from conftest import RecordingUploader

JOB = {"taskId": "t1", "shots": [{"shotId": "s1", "userText": "a red dress"}]}


@pytest.fixture
def mock_env(monkeypatch):
    uploader = RecordingUploader()
    monkeypatch.setenv("MOCK_PAINTER", "true")
    monkeypatch.setenv("COS_BUCKET", "bucket-1250000000")
    monkeypatch.setenv("COS_REGION", "ap-shanghai")
    monkeypatch.setattr("painter.services.invocation.CosStorage", lambda config: uploader)
    return uploader


def test_event_body_shapes() -> None:
    raw = json.dumps(JOB)
    assert _event_body({"body": raw}) == raw
    assert _event_body({"body": base64.b64encode(raw.encode()).decode(), "isBase64Encoded": True}) == raw.encode()
    assert _event_body(JOB) is JOB


def test_gateway_event_returns_http_response(mock_env) -> None:
    response = main_handler({"body": json.dumps(JOB), "httpMethod": "POST"}, None)

    assert response["statusCode"] == 200
    assert response["headers"]["Content-Type"] == "application/json"
    body = json.loads(response["body"])
    assert body["taskId"] == "t1"
    assert body["results"][0]["success"] is True
    assert len(mock_env.calls) == 1


def test_direct_invocation_with_invalid_job(mock_env) -> None:
    response = main_handler({"shots": []})
    assert response["statusCode"] == 400
    assert json.loads(response["body"])["success"] is False


@pytest.mark.parametrize("body", ["%%%not-base64", "abc", "eyJzaG90cyI6W119!"])
def test_undecodable_base64_body_is_400(body) -> None:
    response = main_handler({"body": body, "isBase64Encoded": True}, None)

    assert response["statusCode"] == 400
    payload = json.loads(response["body"])
    assert payload["success"] is False
    assert "base64" in payload["error"]


def test_base64_body_with_invalid_json_is_400(mock_env) -> None:
    encoded = base64.b64encode(b"{not json").decode()
    response = main_handler({"body": encoded, "isBase64Encoded": True}, None)
    assert response["statusCode"] == 400
    assert mock_env.calls == []
