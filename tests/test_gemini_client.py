from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from interview_transcriber.clients.gemini import SAFETY_CATEGORIES, GeminiClient
from interview_transcriber.errors import EmptyResponseError, ExternalServiceError


def _client(handler) -> GeminiClient:
    return GeminiClient("key", poll_interval_seconds=0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_count_tokens() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1beta/models/gemini-2.5-pro:countTokens"
        assert request.headers["x-goog-api-key"] == "key"
        body = json.loads(request.content)
        assert body["contents"][0]["parts"][0]["text"] == "hello"
        return httpx.Response(200, json={"totalTokens": 7})

    assert await _client(handler).count_tokens("gemini-2.5-pro", "hello") == 7


@pytest.mark.asyncio
async def test_count_tokens_raises_on_error() -> None:
    client = _client(lambda request: httpx.Response(429, text="Resource exhausted"))

    with pytest.raises(ExternalServiceError, match="429"):
        await client.count_tokens("gemini-2.5-pro", "hello")


@pytest.mark.asyncio
async def test_generate_content_disables_safety_filters() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": "Proofread "}, {"text": "text"}]}}]},
        )

    text = await _client(handler).generate_content("gemini-2.5-flash", [{"text": "hi"}], max_output_tokens=100)

    assert text == "Proofread text"
    payload = seen[0]
    assert payload["generationConfig"] == {
        "temperature": 0.0,
        "responseMimeType": "text/plain",
        "maxOutputTokens": 100,
    }
    assert [item["category"] for item in payload["safetySettings"]] == list(SAFETY_CATEGORIES)
    assert {item["threshold"] for item in payload["safetySettings"]} == {"BLOCK_NONE"}


@pytest.mark.asyncio
async def test_generate_content_rejects_empty_responses() -> None:
    blocked = _client(lambda request: httpx.Response(200, json={"promptFeedback": {"blockReason": "OTHER"}}))
    empty = _client(
        lambda request: httpx.Response(
            200, json={"candidates": [{"content": {"parts": []}, "finishReason": "MAX_TOKENS"}]}
        )
    )

    with pytest.raises(EmptyResponseError, match="blocked: OTHER"):
        await blocked.generate_content("m", [{"text": "hi"}])
    with pytest.raises(EmptyResponseError, match="MAX_TOKENS"):
        await empty.generate_content("m", [{"text": "hi"}])


@pytest.mark.asyncio
async def test_upload_file_waits_until_active(tmp_path: Path) -> None:
    audio = tmp_path / "talk000.mp3"
    audio.write_bytes(b"ID3")
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(f"{request.method} {request.url.path}")
        if request.url.path == "/upload/v1beta/files":
            assert request.headers["X-Goog-Upload-Command"] == "start"
            assert request.headers["X-Goog-Upload-Header-Content-Type"] == "audio/mpeg"
            return httpx.Response(200, headers={"x-goog-upload-url": "https://upload.example/session-1"})
        if request.url.host == "upload.example":
            assert request.content == b"ID3"
            return httpx.Response(200, json={"file": {"name": "files/abc", "state": "PROCESSING"}})
        return httpx.Response(
            200,
            json={"name": "files/abc", "uri": "https://files/abc", "mimeType": "audio/mpeg", "state": "ACTIVE"},
        )

    uploaded = await _client(handler).upload_file(audio, "audio/mpeg")

    assert uploaded.uri == "https://files/abc"
    assert uploaded.mime_type == "audio/mpeg"
    assert calls == ["POST /upload/v1beta/files", "POST /session-1", "GET /v1beta/files/abc"]
