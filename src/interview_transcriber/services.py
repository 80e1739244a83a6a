"""Transcription pipeline from a Google Drive recording to transcript documents."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol, Sequence, TypeVar

from interview_transcriber.asr.base import Speaker, Transcriber, TranscriptionResult
from interview_transcriber.audio import ffmpeg
from interview_transcriber.audio.splitting import AudioSegment, split_audio
from interview_transcriber.config import Settings, get_settings
from interview_transcriber.errors import EmptyResponseError, InvalidInputError, StageError
from interview_transcriber.nlp.units import count_units
from interview_transcriber.storage.drive import GOOGLE_DOCUMENT, DriveFile
from interview_transcriber.tasks import gather_or_cancel

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Stage(str, Enum):
    FETCH_METADATA = "fetch-metadata"
    DOWNLOAD = "download"
    EXTRACT_AUDIO = "extract-audio"
    REMOVE_SILENCE = "remove-silence"
    SPLIT = "split"
    TRANSCRIBE = "transcribe"
    CONCATENATE = "concatenate"
    PROOFREAD = "proofread"
    UPLOAD = "upload"


class DriveStorage(Protocol):
    async def get_file(self, file_id: str, *, fields: str = ..., required: Sequence[str] = ...) -> DriveFile: ...

    async def download(self, file_id: str, path: Path) -> Path: ...

    async def upload(self, path: Path, parent_id: str | None = None, *, convert_to: str | None = None) -> DriveFile: ...


class TextProofreader(Protocol):
    async def proofread(self, text: str, *, language: str | None, model_key: str) -> str: ...


class MediaProcessor(Protocol):
    def extract_audio(self, video_path: Path) -> Path: ...

    def remove_silence(self, audio_path: Path) -> Path: ...

    def split(self, audio_path: Path) -> list[AudioSegment]: ...


class MediaTools:
    """Blocking ffmpeg operations bound to the configured executables."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def extract_audio(self, video_path: Path) -> Path:
        return ffmpeg.extract_audio(video_path, ffmpeg_path=self.settings.ffmpeg_path)

    def remove_silence(self, audio_path: Path) -> Path:
        return ffmpeg.remove_silence(audio_path, ffmpeg_path=self.settings.ffmpeg_path)

    def split(self, audio_path: Path) -> list[AudioSegment]:
        return split_audio(
            audio_path,
            **self.settings.audio_limits(),
            ffmpeg_path=self.settings.ffmpeg_path,
            ffprobe_path=self.settings.ffprobe_path,
        )


@dataclass(slots=True)
class TranscriptionRequest:
    file_id: str
    language: str = "ja"
    speakers: list[Speaker] = field(default_factory=list)
    proofread_model: str | None = None


@dataclass(slots=True)
class TranscriptionOutcome:
    source: DriveFile
    parent: DriveFile | None
    audio: DriveFile | None
    transcription: DriveFile
    proofread: DriveFile | None
    segments: list[AudioSegment]
    stages: list[Stage]


class TranscriptionService:
    """Runs the stages of one transcription in order; any failure aborts the run."""

    def __init__(
        self,
        *,
        drive: DriveStorage,
        transcriber: Transcriber,
        proofreader: TextProofreader | None = None,
        media: MediaProcessor | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.drive = drive
        self.transcriber = transcriber
        self.proofreader = proofreader
        self.media: MediaProcessor = media or MediaTools(self.settings)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TranscriptionService":
        from interview_transcriber.asr.gemini_backend import GeminiTranscriber
        from interview_transcriber.asr.whisper_backend import WhisperTranscriber
        from interview_transcriber.clients.gemini import GeminiClient
        from interview_transcriber.clients.openai import OpenAIClient
        from interview_transcriber.nlp.proofreader import Proofreader
        from interview_transcriber.storage.drive import DriveClient

        timeout = settings.http_timeout_seconds
        gemini = GeminiClient(settings.gemini_api_key, timeout_seconds=timeout)
        if settings.transcription_backend == "gemini":
            transcriber: Transcriber = GeminiTranscriber(gemini, model=settings.gemini_transcription_model)
        else:
            transcriber = WhisperTranscriber(
                OpenAIClient(settings.openai_api_key, timeout_seconds=timeout),
                model=settings.whisper_model,
            )
        return cls(
            drive=DriveClient.from_service_account(
                settings.google_service_account_email,
                settings.google_service_account_key,
                timeout_seconds=timeout,
            ),
            transcriber=transcriber,
            proofreader=Proofreader(
                gemini,
                utilization_ratio=settings.utilization_ratio,
                tolerance=settings.token_tolerance,
                oversized=settings.oversized_chunk_policy,
            ),
            settings=settings,
        )

    def _temp_run_dir(self) -> Path:
        base = self.settings.temp_dir
        if base is not None:
            base.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="interview-transcriber-", dir=base))

    async def _stage(
        self,
        stage: Stage,
        completed: list[Stage],
        step: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        logger.debug("Stage %s started", stage.value)
        try:
            result = await step(*args)
        except Exception as exc:
            raise StageError(stage, exc) from exc
        completed.append(stage)
        return result

    async def run(self, request: TranscriptionRequest) -> TranscriptionOutcome:
        if request.proofread_model and self.proofreader is None:
            raise ValueError("Proofreading was requested but no proofreader is configured.")

        logger.info("Transcribing %s...", request.file_id)
        stages: list[Stage] = []
        run_dir = self._temp_run_dir()
        try:
            source = await self._stage(Stage.FETCH_METADATA, stages, self._fetch_metadata, request.file_id)
            logger.info("File: %s (%s)", source.name, source.web_view_link)

            source_path = await self._stage(Stage.DOWNLOAD, stages, self._download, source, run_dir)
            logger.info("Downloaded to %s", source_path)

            audio_path = source_path
            extracted: Path | None = None
            if (source.mime_type or "").startswith("video/"):
                extracted = await self._stage(
                    Stage.EXTRACT_AUDIO, stages, asyncio.to_thread, self.media.extract_audio, source_path
                )
                audio_path = extracted
                logger.info("Extracted audio to %s", audio_path)

            if self.settings.remove_silence:
                audio_path = await self._stage(
                    Stage.REMOVE_SILENCE, stages, asyncio.to_thread, self.media.remove_silence, audio_path
                )
                logger.info("Removed silence into %s", audio_path)

            segments: list[AudioSegment] = await self._stage(
                Stage.SPLIT, stages, asyncio.to_thread, self.media.split, audio_path
            )
            logger.info(
                "Split audio into %d file(s) (total %.1f seconds)",
                len(segments),
                segments[-1].end if segments else 0.0,
            )

            results = await self._stage(Stage.TRANSCRIBE, stages, self._transcribe, segments, request)

            stem = Path(source.name).stem or source.id
            transcription_path, transcribed_text = await self._stage(
                Stage.CONCATENATE, stages, self._concatenate, results, run_dir / f"{stem}_transcription.txt"
            )
            logger.info(
                "Transcribed audio to %s (%d units)",
                transcription_path,
                count_units(transcribed_text, request.language),
            )

            proofread_path: Path | None = None
            if request.proofread_model:
                proofread_path = await self._stage(
                    Stage.PROOFREAD,
                    stages,
                    self._proofread,
                    transcribed_text,
                    request.language,
                    request.proofread_model,
                    run_dir / f"{stem}_proofread.txt",
                )
                logger.info("Proofread transcription to %s", proofread_path)

            parent, audio, transcription, proofread = await self._stage(
                Stage.UPLOAD, stages, self._upload, source, extracted, transcription_path, proofread_path
            )
        finally:
            shutil.rmtree(run_dir, ignore_errors=True)

        logger.info("Uploaded transcription to %s", transcription.web_view_link)
        if proofread is not None:
            logger.info("Uploaded proofread transcription to %s", proofread.web_view_link)
        return TranscriptionOutcome(
            source=source,
            parent=parent,
            audio=audio,
            transcription=transcription,
            proofread=proofread,
            segments=segments,
            stages=stages,
        )

    async def _fetch_metadata(self, file_id: str) -> DriveFile:
        source = await self.drive.get_file(
            file_id,
            required=("id", "name", "web_view_link", "mime_type", "parents"),
        )
        mime_type = source.mime_type or ""
        if not (mime_type.startswith("video/") or mime_type.startswith("audio/")):
            raise InvalidInputError(f"Specified file is not a video or an audio file ({mime_type}).")
        return source

    async def _download(self, source: DriveFile, run_dir: Path) -> Path:
        # Drive names may contain path separators.
        name = Path(source.name.replace("/", "_")).name or source.id
        return await self.drive.download(source.id, run_dir / name)

    async def _transcribe(
        self,
        segments: list[AudioSegment],
        request: TranscriptionRequest,
    ) -> list[TranscriptionResult]:
        # Results keep the segment order regardless of completion order.
        return await gather_or_cancel(
            *(
                self.transcriber.transcribe(
                    segment.path,
                    language=request.language,
                    speakers=request.speakers,
                )
                for segment in segments
            )
        )

    async def _concatenate(self, results: list[TranscriptionResult], output_path: Path) -> tuple[Path, str]:
        text = "\n".join(result.text for result in results)
        if not text.strip():
            raise EmptyResponseError("Transcription returned no text.")
        await asyncio.to_thread(output_path.write_text, text, encoding="utf-8")
        return output_path, text

    async def _proofread(self, text: str, language: str, model_key: str, output_path: Path) -> Path:
        if self.proofreader is None:
            raise ValueError("Proofreading was requested but no proofreader is configured.")
        proofread_text = await self.proofreader.proofread(text, language=language, model_key=model_key)
        await asyncio.to_thread(output_path.write_text, proofread_text, encoding="utf-8")
        return output_path

    async def _upload(
        self,
        source: DriveFile,
        audio_path: Path | None,
        transcription_path: Path,
        proofread_path: Path | None,
    ) -> tuple[DriveFile | None, DriveFile | None, DriveFile, DriveFile | None]:
        parent_id = source.parents[0] if source.parents else None

        async def maybe(awaitable: Awaitable[DriveFile] | None) -> DriveFile | None:
            return await awaitable if awaitable is not None else None

        parent, audio, transcription, proofread = await gather_or_cancel(
            maybe(self.drive.get_file(parent_id, fields="id,name,webViewLink") if parent_id else None),
            maybe(self.drive.upload(audio_path, parent_id) if audio_path else None),
            self.drive.upload(transcription_path, parent_id, convert_to=GOOGLE_DOCUMENT),
            maybe(
                self.drive.upload(proofread_path, parent_id, convert_to=GOOGLE_DOCUMENT)
                if proofread_path
                else None
            ),
        )
        return parent, audio, transcription, proofread
