from __future__ import annotations

import csv
import io
import logging
import math
from dataclasses import dataclass
from pathlib import Path

from interview_transcriber.audio import ffmpeg
from interview_transcriber.errors import ManifestError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AudioSegment:
    path: Path
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


def segment_time_for(duration: float, size: int, max_bytes: int) -> int:
    """Seconds per segment so that each piece stays under `max_bytes` at constant bitrate."""

    return math.floor(duration * max_bytes / size)


def parse_segment_list(text: str, base_dir: Path) -> list[AudioSegment]:
    """Parse an ffmpeg CSV segment list into audio segments.

    Every row must carry a file name, a start and an end time; a single
    malformed row rejects the whole list.
    """

    segments: list[AudioSegment] = []
    for line_no, row in enumerate(csv.reader(io.StringIO(text)), start=1):
        if not row:
            continue
        if len(row) < 3 or not all(field.strip() for field in row[:3]):
            raise ManifestError(f"Segment list row {line_no} is missing fields: {row!r}")
        name, start_raw, end_raw = (field.strip() for field in row[:3])
        try:
            start = float(start_raw)
            end = float(end_raw)
        except ValueError as exc:
            raise ManifestError(f"Segment list row {line_no} has invalid times: {row!r}") from exc
        segments.append(AudioSegment(path=base_dir / name, start=start, end=end))

    if not segments:
        raise ManifestError("Segment list is empty.")
    return segments


def make_contiguous(segments: list[AudioSegment], duration: float) -> list[AudioSegment]:
    """Snap segment boundaries so they tile `[0, duration]` without gaps or overlaps.

    ffmpeg cuts on packet boundaries, so reported times drift by a few
    milliseconds between consecutive rows.
    """

    ordered = sorted(segments, key=lambda item: item.start)
    output: list[AudioSegment] = []
    cursor = 0.0
    for index, segment in enumerate(ordered):
        end = duration if index == len(ordered) - 1 else max(segment.end, cursor)
        output.append(AudioSegment(path=segment.path, start=cursor, end=end))
        cursor = end
    return output


def split_audio(
    source_path: Path,
    *,
    max_bytes: int | None = None,
    max_seconds: float | None = None,
    ffmpeg_path: Path | None = None,
    ffprobe_path: Path | None = None,
) -> list[AudioSegment]:
    """Split an audio file into contiguous segments under the given size and duration limits."""

    if max_bytes is None and max_seconds is None:
        raise ValueError("Either max_bytes or max_seconds is required.")

    info = ffmpeg.probe_media(source_path, ffprobe_path=ffprobe_path)
    fits_size = max_bytes is None or info.size <= max_bytes
    fits_duration = max_seconds is None or info.duration <= max_seconds
    if fits_size and fits_duration:
        return [AudioSegment(path=source_path, start=0.0, end=info.duration)]

    candidates: list[int] = []
    if max_bytes is not None:
        candidates.append(segment_time_for(info.duration, info.size, max_bytes))
    if max_seconds is not None:
        candidates.append(math.floor(max_seconds))
    segment_time = min(candidates)
    if segment_time <= 0:
        raise ValueError(
            f"Limits are too small to split {source_path.name} "
            f"({info.size} bytes, {info.duration:.1f} s)."
        )

    logger.debug("Segmenting %s into %d s pieces", source_path.name, segment_time)
    list_path = ffmpeg.segment_audio(source_path, segment_time, ffmpeg_path=ffmpeg_path)
    segments = parse_segment_list(list_path.read_text(encoding="utf-8"), list_path.parent)
    return make_contiguous(segments, info.duration)
