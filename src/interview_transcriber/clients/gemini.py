from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from interview_transcriber.errors import EmptyResponseError, ExternalServiceError

logger = logging.getLogger(__name__)

SAFETY_CATEGORIES: tuple[str, ...] = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_CIVIC_INTEGRITY",
)


@dataclass(frozen=True, slots=True)
class UploadedFile:
    name: str
    uri: str
    mime_type: str


def _raise_for_status(response: httpx.Response, action: str) -> None:
    if response.status_code >= 400:
        raise ExternalServiceError(
            f"Gemini {action} failed ({response.status_code}): {response.text[:400]}"
        )


class GeminiClient:
    """Thin wrapper over the Gemini REST API."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout_seconds: float = 600.0,
        poll_interval_seconds: float = 2.0,
        max_wait_seconds: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.max_wait_seconds = max_wait_seconds
        self.base_url = "https://generativelanguage.googleapis.com"
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"x-goog-api-key": self.api_key},
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    async def list_models(self) -> list[str]:
        async with self._client() as client:
            response = await client.get("/v1beta/models", params={"pageSize": 100})
        _raise_for_status(response, "model list")
        return [str(item.get("name")) for item in response.json().get("models", [])]

    async def count_tokens(self, model: str, text: str) -> int:
        payload = {"contents": [{"role": "user", "parts": [{"text": text}]}]}
        async with self._client() as client:
            response = await client.post(f"/v1beta/models/{model}:countTokens", json=payload)
        _raise_for_status(response, "token count")
        total = response.json().get("totalTokens")
        if total is None:
            raise ExternalServiceError("Gemini token count response missing totalTokens")
        return int(total)

    async def generate_content(
        self,
        model: str,
        parts: list[dict[str, Any]],
        *,
        temperature: float = 0.0,
        max_output_tokens: int | None = None,
    ) -> str:
        generation_config: dict[str, Any] = {
            # reduce randomness
            "temperature": temperature,
            "responseMimeType": "text/plain",
        }
        if max_output_tokens is not None:
            generation_config["maxOutputTokens"] = max_output_tokens
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_NONE"} for category in SAFETY_CATEGORIES
            ],
        }
        async with self._client() as client:
            response = await client.post(f"/v1beta/models/{model}:generateContent", json=payload)
        _raise_for_status(response, "generation")
        return self._extract_text(response.json())

    async def upload_file(self, path: Path, mime_type: str) -> UploadedFile:
        """Upload a local file to the Files API and wait until it can be referenced."""

        data = await asyncio.to_thread(path.read_bytes)
        async with self._client() as client:
            start = await client.post(
                "/upload/v1beta/files",
                headers={
                    "X-Goog-Upload-Protocol": "resumable",
                    "X-Goog-Upload-Command": "start",
                    "X-Goog-Upload-Header-Content-Length": str(len(data)),
                    "X-Goog-Upload-Header-Content-Type": mime_type,
                },
                json={"file": {"display_name": path.name}},
            )
            _raise_for_status(start, "upload start")
            upload_url = start.headers.get("x-goog-upload-url")
            if not upload_url:
                raise ExternalServiceError("Gemini upload response missing upload URL")

            finalize = await client.post(
                upload_url,
                headers={
                    "X-Goog-Upload-Offset": "0",
                    "X-Goog-Upload-Command": "upload, finalize",
                },
                content=data,
            )
            _raise_for_status(finalize, "upload")
            payload = finalize.json().get("file") or {}
            payload = await self._wait_until_active(client, payload)

        name = payload.get("name")
        uri = payload.get("uri")
        if not (name and uri):
            raise ExternalServiceError("Gemini upload response missing file name or URI")
        return UploadedFile(name=str(name), uri=str(uri), mime_type=str(payload.get("mimeType") or mime_type))

    async def _wait_until_active(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> dict[str, Any]:
        started = time.monotonic()
        while True:
            state = str(payload.get("state") or "ACTIVE").upper()
            if state == "ACTIVE":
                return payload
            if state == "FAILED":
                raise ExternalServiceError(f"Gemini could not process uploaded file {payload.get('name')}")
            if time.monotonic() - started >= self.max_wait_seconds:
                raise ExternalServiceError("Gemini file processing timed out")

            await asyncio.sleep(self.poll_interval_seconds)
            response = await client.get(f"/v1beta/{payload.get('name')}")
            _raise_for_status(response, "file status")
            payload = response.json()

    @staticmethod
    def _extract_text(payload: dict[str, Any]) -> str:
        candidates = payload.get("candidates") or []
        if not candidates:
            reason = (payload.get("promptFeedback") or {}).get("blockReason")
            detail = f" (blocked: {reason})" if reason else ""
            raise EmptyResponseError(f"Gemini returned no candidates{detail}")

        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(str(part.get("text") or "") for part in parts).strip()
        if not text:
            finish = candidates[0].get("finishReason") or "unknown"
            raise EmptyResponseError(f"Gemini returned an empty response (finish reason: {finish})")
        return text
