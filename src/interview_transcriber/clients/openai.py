from __future__ import annotations

import asyncio
import mimetypes
from pathlib import Path
from typing import Any

import httpx

from interview_transcriber.errors import ExternalServiceError


class OpenAIClient:
    """Thin wrapper over the OpenAI REST API."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout_seconds: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.base_url = "https://api.openai.com/v1"
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    async def list_models(self) -> list[str]:
        async with self._client() as client:
            response = await client.get("/models")
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"OpenAI model list failed ({response.status_code}): {response.text[:400]}"
            )
        return [str(item.get("id")) for item in response.json().get("data", [])]

    async def transcribe_audio(
        self,
        audio_path: Path,
        *,
        model: str,
        language: str | None = None,
        prompt: str | None = None,
    ) -> dict[str, Any]:
        """Send one audio file to `/audio/transcriptions` and return the verbose JSON payload."""

        content = await asyncio.to_thread(audio_path.read_bytes)
        mime_type = mimetypes.guess_type(audio_path.name)[0] or "application/octet-stream"
        data = {"model": model, "response_format": "verbose_json"}
        if language:
            data["language"] = language
        if prompt:
            data["prompt"] = prompt

        async with self._client() as client:
            response = await client.post(
                "/audio/transcriptions",
                data=data,
                files={"file": (audio_path.name, content, mime_type)},
            )
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"OpenAI transcription failed ({response.status_code}): {response.text[:400]}"
            )
        return dict(response.json())
