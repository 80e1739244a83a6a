from __future__ import annotations

import json
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from interview_transcriber.errors import ExternalServiceError


class FfmpegError(ExternalServiceError):
    """Raised when ffmpeg or ffprobe commands fail."""


@dataclass(frozen=True, slots=True)
class MediaInfo:
    duration: float
    size: int


def _executable_name(tool: str) -> str:
    return f"{tool}.exe" if os.name == "nt" else tool


def project_tool_candidates(tool: str = "ffmpeg") -> list[Path]:
    exe_name = _executable_name(tool)
    cwd = Path.cwd()
    return [
        cwd / "tools" / "ffmpeg" / "bin" / exe_name,
        cwd / "ffmpeg" / "bin" / exe_name,
        cwd / "bin" / exe_name,
    ]


def resolve_tool_command(tool: str = "ffmpeg", tool_path: Path | None = None) -> str:
    if tool_path is not None:
        return str(Path(tool_path).expanduser())

    for candidate in project_tool_candidates(tool):
        if candidate.exists():
            return str(candidate)

    return _executable_name(tool)


def get_tool_version(tool: str = "ffmpeg", tool_path: Path | None = None) -> str | None:
    command = resolve_tool_command(tool, tool_path)
    try:
        completed = subprocess.run(
            [command, "-version"],
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        return None
    if completed.returncode != 0:
        return None
    first_line = completed.stdout.splitlines()[0] if completed.stdout else f"{tool} detected"
    return f"{first_line.strip()} (command: {command})"


def _run(tool: str, args: list[str], tool_path: Path | None = None) -> str:
    command = resolve_tool_command(tool, tool_path)
    try:
        completed = subprocess.run(
            [command, "-hide_banner", "-loglevel", "error", *args],
            check=True,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as exc:
        raise FfmpegError(
            f"{tool} not found (command: {command}). "
            f"Install ffmpeg, place it under ./tools/ffmpeg/bin/, or set {tool.upper()}_PATH."
        ) from exc
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.strip() if exc.stderr else f"Unknown {tool} error."
        raise FfmpegError(stderr) from exc
    return completed.stdout


def probe_media(input_path: Path, ffprobe_path: Path | None = None) -> MediaInfo:
    """Read container duration (seconds) and size (bytes) with ffprobe."""

    output = _run(
        "ffprobe",
        ["-show_format", "-of", "json", str(input_path)],
        tool_path=ffprobe_path,
    )
    try:
        fmt = json.loads(output or "{}").get("format") or {}
        duration = float(fmt["duration"])
        size = int(fmt["size"])
    except (KeyError, TypeError, ValueError) as exc:
        raise FfmpegError(f"Failed to get file metadata from ffprobe: {input_path.name}") from exc
    if duration <= 0 or size <= 0:
        raise FfmpegError(f"Failed to get file metadata from ffprobe: {input_path.name}")
    return MediaInfo(duration=duration, size=size)


def extract_audio(video_path: Path, ffmpeg_path: Path | None = None) -> Path:
    """Drop the video stream and write `<stem>.mp3` next to the source."""

    output_path = video_path.with_suffix(".mp3")
    _run(
        "ffmpeg",
        ["-y", "-i", str(video_path), "-vn", str(output_path)],
        tool_path=ffmpeg_path,
    )
    return output_path


def remove_silence(
    audio_path: Path,
    ffmpeg_path: Path | None = None,
    *,
    threshold_db: float = -50.0,
    min_silence_s: float = 1.0,
) -> Path:
    """Cut silent stretches longer than `min_silence_s` anywhere in the file."""

    output_path = audio_path.with_name(f"{audio_path.stem}_trimmed{audio_path.suffix}")
    audio_filter = (
        "silenceremove="
        f"stop_periods=-1:stop_duration={min_silence_s}:stop_threshold={threshold_db}dB"
    )
    _run(
        "ffmpeg",
        ["-y", "-i", str(audio_path), "-af", audio_filter, str(output_path)],
        tool_path=ffmpeg_path,
    )
    return output_path


def segment_audio(source_path: Path, segment_time: int, ffmpeg_path: Path | None = None) -> Path:
    """Split `source_path` into `<stem>NNN<ext>` files of `segment_time` seconds.

    Returns the path of the CSV segment list (file name, start, end per row)
    written next to the source.
    """

    if segment_time <= 0:
        raise ValueError("Segment time must be positive.")
    pattern = source_path.with_name(f"{source_path.stem}%03d{source_path.suffix}")
    list_path = source_path.with_suffix(".csv")
    _run(
        "ffmpeg",
        [
            "-y",
            "-i",
            str(source_path),
            "-f",
            "segment",
            "-segment_time",
            str(segment_time),
            "-segment_list",
            str(list_path),
            "-segment_list_type",
            "csv",
            "-c",
            "copy",
            str(pattern),
        ],
        tool_path=ffmpeg_path,
    )
    return list_path
