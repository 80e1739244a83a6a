from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence


@dataclass(frozen=True, slots=True)
class Speaker:
    role: str
    name: str
    gender: str


@dataclass(slots=True)
class TranscriptSegment:
    start: float
    end: float
    text: str


@dataclass(slots=True)
class TranscriptionResult:
    segments: list[TranscriptSegment]
    language: str | None
    backend: str

    @property
    def text(self) -> str:
        return "\n".join(segment.text for segment in self.segments)


class Transcriber(Protocol):
    async def transcribe(
        self,
        audio_path: Path,
        *,
        language: str | None = None,
        speakers: Sequence[Speaker] = (),
    ) -> TranscriptionResult:
        """Transcribe an audio file into text segments."""
