from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from interview_transcriber.asr.base import Speaker, TranscriptSegment, TranscriptionResult
from interview_transcriber.audio import ffmpeg
from interview_transcriber.audio.splitting import AudioSegment
from interview_transcriber.config import Settings
from interview_transcriber.errors import (
    EmptyResponseError,
    InvalidInputError,
    MetadataError,
    StageError,
)
from interview_transcriber.services import (
    MediaTools,
    Stage,
    TranscriptionRequest,
    TranscriptionService,
)
from interview_transcriber.storage.drive import GOOGLE_DOCUMENT, DriveFile

SOURCE_ID = "1AbCdEfGhIjKlMnOpQrStUvWxYz012345"


class FakeDrive:
    def __init__(self, payload: dict) -> None:
        self.payload = payload
        self.downloads: list[Path] = []
        self.uploads: list[tuple[str, str | None, str | None, str]] = []

    async def get_file(self, file_id: str, *, fields: str = "", required=("id", "name", "web_view_link")) -> DriveFile:
        if file_id == "folder-1":
            return DriveFile(id="folder-1", name="Interviews", web_view_link="https://drive/folder-1")
        return DriveFile.from_api(self.payload, required=required)

    async def download(self, file_id: str, path: Path) -> Path:
        path.write_bytes(b"media")
        self.downloads.append(path)
        return path

    async def upload(self, path: Path, parent_id: str | None = None, *, convert_to: str | None = None) -> DriveFile:
        self.uploads.append((path.name, parent_id, convert_to, path.read_text(encoding="utf-8", errors="ignore")))
        return DriveFile(id=f"up-{path.name}", name=path.name, web_view_link=f"https://drive/{path.name}")


class FakeTranscriber:
    def __init__(self, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.calls: list[tuple[str, str | None, tuple[Speaker, ...]]] = []

    async def transcribe(self, audio_path: Path, *, language=None, speakers=()) -> TranscriptionResult:
        self.calls.append((audio_path.name, language, tuple(speakers)))
        if audio_path.name == self.fail_on:
            raise EmptyResponseError(f"Transcription of {audio_path.name} is empty")
        # The first segment finishes last.
        await asyncio.sleep(0.02 if audio_path.name.endswith("000.mp3") else 0)
        return TranscriptionResult(
            segments=[TranscriptSegment(start=0.0, end=1.0, text=f"text of {audio_path.stem}")],
            language=language,
            backend="fake",
        )


class SlowSegmentTranscriber:
    """Fails the second segment at once while the first one is still in flight."""

    def __init__(self) -> None:
        self.events: list[tuple[str, bool]] = []

    async def transcribe(self, audio_path: Path, *, language=None, speakers=()) -> TranscriptionResult:
        if audio_path.name.endswith("001.mp3"):
            raise EmptyResponseError(f"Transcription of {audio_path.name} is empty")
        try:
            await asyncio.sleep(1)
        except asyncio.CancelledError:
            self.events.append(("cancelled", audio_path.parent.exists()))
            raise
        self.events.append(("finished", audio_path.parent.exists()))
        return TranscriptionResult(segments=[], language=language, backend="fake")


class FakeProofreader:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None, str]] = []

    async def proofread(self, text: str, *, language: str | None, model_key: str) -> str:
        self.calls.append((text, language, model_key))
        return text.upper()


def _payload(mime_type: str | None = "video/mp4", name: str = "interview.mp4") -> dict:
    payload = {
        "id": SOURCE_ID,
        "name": name,
        "webViewLink": f"https://drive.google.com/file/d/{SOURCE_ID}/view",
        "parents": ["folder-1"],
    }
    if mime_type is not None:
        payload["mimeType"] = mime_type
    return payload


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(_env_file=None, temp_dir=tmp_path / "runs")


@pytest.fixture
def fake_ffmpeg(monkeypatch):
    """A 40 minute recording twice the size of the upload limit."""

    calls: list[str] = []

    def extract_audio(video_path: Path, ffmpeg_path: Path | None = None) -> Path:
        calls.append("extract")
        output = video_path.with_suffix(".mp3")
        output.write_bytes(b"audio")
        return output

    def probe_media(path: Path, ffprobe_path: Path | None = None) -> ffmpeg.MediaInfo:
        return ffmpeg.MediaInfo(duration=2400.0, size=46 << 20)

    def segment_audio(source: Path, segment_time: int, ffmpeg_path: Path | None = None) -> Path:
        calls.append(f"segment {segment_time}")
        list_path = source.with_suffix(".csv")
        list_path.write_text(
            f"{source.stem}000.mp3,0.000000,1200.026122\n{source.stem}001.mp3,1200.026122,2400.000000\n",
            encoding="utf-8",
        )
        return list_path

    def remove_silence(audio_path: Path, ffmpeg_path: Path | None = None) -> Path:
        calls.append("silence")
        output = audio_path.with_name(f"{audio_path.stem}_trimmed{audio_path.suffix}")
        output.write_bytes(b"audio")
        return output

    monkeypatch.setattr(ffmpeg, "extract_audio", extract_audio)
    monkeypatch.setattr(ffmpeg, "probe_media", probe_media)
    monkeypatch.setattr(ffmpeg, "segment_audio", segment_audio)
    monkeypatch.setattr(ffmpeg, "remove_silence", remove_silence)
    return calls


def _run_dirs(settings: Settings) -> list[Path]:
    return list(settings.temp_dir.iterdir()) if settings.temp_dir.exists() else []


@pytest.mark.asyncio
async def test_video_is_split_transcribed_and_uploaded_in_order(settings, fake_ffmpeg) -> None:
    drive = FakeDrive(_payload())
    transcriber = FakeTranscriber()
    speakers = [Speaker(role="Interviewer", name="Alice", gender="female")]
    service = TranscriptionService(drive=drive, transcriber=transcriber, settings=settings)

    outcome = await service.run(TranscriptionRequest(file_id=SOURCE_ID, language="en", speakers=speakers))

    assert fake_ffmpeg == ["extract", "segment 1200"]
    assert [(item.path.name, item.start, item.end) for item in outcome.segments] == [
        ("interview000.mp3", 0.0, 1200.026122),
        ("interview001.mp3", 1200.026122, 2400.0),
    ]
    assert sorted(call[0] for call in transcriber.calls) == ["interview000.mp3", "interview001.mp3"]
    assert all(call[1] == "en" and call[2] == tuple(speakers) for call in transcriber.calls)

    uploads = {name: (parent, convert_to, text) for name, parent, convert_to, text in drive.uploads}
    assert uploads["interview_transcription.txt"] == (
        "folder-1",
        GOOGLE_DOCUMENT,
        "text of interview000\ntext of interview001",
    )
    assert uploads["interview.mp3"][:2] == ("folder-1", None)
    assert outcome.parent is not None and outcome.parent.name == "Interviews"
    assert outcome.audio is not None and outcome.audio.name == "interview.mp3"
    assert outcome.proofread is None
    assert outcome.stages == [
        Stage.FETCH_METADATA,
        Stage.DOWNLOAD,
        Stage.EXTRACT_AUDIO,
        Stage.SPLIT,
        Stage.TRANSCRIBE,
        Stage.CONCATENATE,
        Stage.UPLOAD,
    ]
    assert _run_dirs(settings) == []


@pytest.mark.asyncio
async def test_audio_input_skips_extraction(settings, fake_ffmpeg) -> None:
    drive = FakeDrive(_payload("audio/mpeg", "call.mp3"))
    service = TranscriptionService(drive=drive, transcriber=FakeTranscriber(), settings=settings)

    outcome = await service.run(TranscriptionRequest(file_id=SOURCE_ID))

    assert "extract" not in fake_ffmpeg
    assert Stage.EXTRACT_AUDIO not in outcome.stages
    assert outcome.audio is None
    assert [name for name, *_ in drive.uploads] == ["call_transcription.txt"]


@pytest.mark.asyncio
async def test_missing_mime_type_fails_before_download(settings, fake_ffmpeg) -> None:
    drive = FakeDrive(_payload(mime_type=None))
    service = TranscriptionService(drive=drive, transcriber=FakeTranscriber(), settings=settings)

    with pytest.raises(StageError) as info:
        await service.run(TranscriptionRequest(file_id=SOURCE_ID))

    assert info.value.stage is Stage.FETCH_METADATA
    assert isinstance(info.value.cause, MetadataError)
    assert "mimeType" in str(info.value)
    assert drive.downloads == []
    assert _run_dirs(settings) == []


@pytest.mark.asyncio
async def test_non_media_file_is_invalid_input(settings, fake_ffmpeg) -> None:
    drive = FakeDrive(_payload("application/pdf", "notes.pdf"))
    service = TranscriptionService(drive=drive, transcriber=FakeTranscriber(), settings=settings)

    with pytest.raises(StageError) as info:
        await service.run(TranscriptionRequest(file_id=SOURCE_ID))

    assert isinstance(info.value.cause, InvalidInputError)
    assert drive.downloads == []


@pytest.mark.asyncio
async def test_transcription_failure_aborts_and_cleans_up(settings, fake_ffmpeg) -> None:
    drive = FakeDrive(_payload())
    service = TranscriptionService(
        drive=drive,
        transcriber=FakeTranscriber(fail_on="interview001.mp3"),
        settings=settings,
    )

    with pytest.raises(StageError, match="interview001.mp3 is empty") as info:
        await service.run(TranscriptionRequest(file_id=SOURCE_ID))

    assert info.value.stage is Stage.TRANSCRIBE
    assert drive.uploads == []
    assert _run_dirs(settings) == []


@pytest.mark.asyncio
async def test_proofread_and_silence_removal(settings, fake_ffmpeg) -> None:
    settings.remove_silence = True
    drive = FakeDrive(_payload())
    proofreader = FakeProofreader()
    service = TranscriptionService(
        drive=drive,
        transcriber=FakeTranscriber(),
        proofreader=proofreader,
        settings=settings,
    )

    outcome = await service.run(
        TranscriptionRequest(file_id=SOURCE_ID, language="ja", proofread_model="gemini-2.5-flash")
    )

    assert fake_ffmpeg == ["extract", "silence", "segment 1200"]
    assert proofreader.calls == [
        ("text of interview_trimmed000\ntext of interview_trimmed001", "ja", "gemini-2.5-flash")
    ]
    uploads = {name: (convert_to, text) for name, _, convert_to, text in drive.uploads}
    assert uploads["interview_proofread.txt"] == (
        GOOGLE_DOCUMENT,
        "TEXT OF INTERVIEW_TRIMMED000\nTEXT OF INTERVIEW_TRIMMED001",
    )
    assert outcome.proofread is not None
    assert Stage.REMOVE_SILENCE in outcome.stages
    assert outcome.stages[-2:] == [Stage.PROOFREAD, Stage.UPLOAD]


@pytest.mark.asyncio
async def test_proofread_requires_a_proofreader(settings) -> None:
    service = TranscriptionService(drive=FakeDrive(_payload()), transcriber=FakeTranscriber(), settings=settings)

    with pytest.raises(ValueError, match="no proofreader"):
        await service.run(TranscriptionRequest(file_id=SOURCE_ID, proofread_model="gemini-2.5-pro"))


def test_media_tools_use_backend_limits(settings, fake_ffmpeg, tmp_path: Path) -> None:
    settings.transcription_backend = "gemini"
    settings.max_audio_duration = 900

    segments = MediaTools(settings).split(tmp_path / "talk.mp3")

    assert fake_ffmpeg == ["segment 900"]
    assert isinstance(segments[0], AudioSegment)


@pytest.mark.asyncio
async def test_transcription_failure_cancels_segments_in_flight(settings, fake_ffmpeg) -> None:
    drive = FakeDrive(_payload())
    transcriber = SlowSegmentTranscriber()
    service = TranscriptionService(drive=drive, transcriber=transcriber, settings=settings)

    with pytest.raises(StageError, match="interview001.mp3 is empty") as info:
        await service.run(TranscriptionRequest(file_id=SOURCE_ID))
    await asyncio.sleep(0.05)

    assert info.value.stage is Stage.TRANSCRIBE
    assert isinstance(info.value.cause, EmptyResponseError)
    # Cancelled while the working directory still existed.
    assert transcriber.events == [("cancelled", True)]
    assert _run_dirs(settings) == []


class FakeMedia:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def extract_audio(self, video_path: Path) -> Path:
        self.calls.append(f"extract {video_path.name}")
        return video_path.with_suffix(".mp3")

    def remove_silence(self, audio_path: Path) -> Path:
        self.calls.append(f"silence {audio_path.name}")
        return audio_path

    def split(self, audio_path: Path) -> list[AudioSegment]:
        self.calls.append(f"split {audio_path.name}")
        return [AudioSegment(audio_path, 0.0, 60.0)]


@pytest.mark.asyncio
async def test_injected_media_processor_replaces_ffmpeg(settings) -> None:
    drive = FakeDrive(_payload("audio/mpeg", "call.mp3"))
    media = FakeMedia()
    service = TranscriptionService(drive=drive, transcriber=FakeTranscriber(), media=media, settings=settings)

    outcome = await service.run(TranscriptionRequest(file_id=SOURCE_ID))

    assert media.calls == ["split call.mp3"]
    assert [segment.end for segment in outcome.segments] == [60.0]
    assert drive.uploads[0][0] == "call_transcription.txt"
