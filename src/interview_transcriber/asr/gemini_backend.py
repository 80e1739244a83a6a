from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Sequence

from interview_transcriber.asr.base import Speaker, TranscriptSegment, TranscriptionResult
from interview_transcriber.clients.gemini import GeminiClient
from interview_transcriber.errors import InvalidInputError
from interview_transcriber.nlp.prompts import build_transcription_prompt


class GeminiTranscriber:
    """Transcribes an interview recording into article-style text with a multimodal model.

    The model receives the speaker list as context and drops fillers and
    repetitions, so the result is one block of text per audio file rather
    than timestamped segments.
    """

    def __init__(self, client: GeminiClient, *, model: str = "gemini-2.5-pro") -> None:
        self.client = client
        self.model = model

    async def transcribe(
        self,
        audio_path: Path,
        *,
        language: str | None = None,
        speakers: Sequence[Speaker] = (),
    ) -> TranscriptionResult:
        mime_type = mimetypes.guess_type(audio_path.name)[0]
        if not mime_type or not mime_type.startswith("audio/"):
            raise InvalidInputError(f"The file is not an audio file: {audio_path.name}")

        uploaded = await self.client.upload_file(audio_path, mime_type)
        text = await self.client.generate_content(
            self.model,
            [
                {"file_data": {"mime_type": uploaded.mime_type, "file_uri": uploaded.uri}},
                {"text": build_transcription_prompt(speakers, language)},
            ],
        )
        return TranscriptionResult(
            segments=[TranscriptSegment(start=0.0, end=0.0, text=text.strip())],
            language=language,
            backend="gemini",
        )
