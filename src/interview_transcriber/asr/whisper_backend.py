from __future__ import annotations

from pathlib import Path
from typing import Sequence

from interview_transcriber.asr.base import Speaker, TranscriptSegment, TranscriptionResult
from interview_transcriber.clients.openai import OpenAIClient
from interview_transcriber.errors import EmptyResponseError


class WhisperTranscriber:
    """OpenAI speech-to-text backend returning timestamped segments."""

    def __init__(self, client: OpenAIClient, *, model: str = "whisper-1") -> None:
        self.client = client
        self.model = model

    async def transcribe(
        self,
        audio_path: Path,
        *,
        language: str | None = None,
        speakers: Sequence[Speaker] = (),
    ) -> TranscriptionResult:
        if not audio_path.exists():
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        # Speaker names in the prompt help the model spell them correctly.
        prompt = ", ".join(speaker.name for speaker in speakers if speaker.name) or None
        payload = await self.client.transcribe_audio(
            audio_path,
            model=self.model,
            language=language,
            prompt=prompt,
        )

        segments = self._extract_segments(payload.get("segments"))
        if not segments:
            text = str(payload.get("text") or "").strip()
            if not text:
                raise EmptyResponseError(f"Transcription of {audio_path.name} is empty")
            duration = self._as_float(payload.get("duration"))
            segments = [TranscriptSegment(start=0.0, end=duration, text=text)]

        detected = payload.get("language")
        return TranscriptionResult(
            segments=segments,
            language=str(detected) if detected else language,
            backend="whisper",
        )

    def _extract_segments(self, items: object) -> list[TranscriptSegment]:
        if not isinstance(items, list):
            return []

        segments: list[TranscriptSegment] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            text = str(item.get("text") or "").strip()
            if not text:
                continue
            segments.append(
                TranscriptSegment(
                    start=self._as_float(item.get("start")),
                    end=self._as_float(item.get("end")),
                    text=text,
                )
            )
        return segments

    @staticmethod
    def _as_float(value: object) -> float:
        try:
            return float(str(value)) if value is not None else 0.0
        except (TypeError, ValueError):
            return 0.0
