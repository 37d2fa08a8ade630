from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from meetscribe.core.errors import FormattingError

SPEAKER_SEPARATOR = "："


@dataclass(frozen=True)
class TranscriptSegment:
    """A recognized segment placed on the meeting timeline (seconds from midnight when the track time is known)."""

    start: float
    end: Optional[float]
    speaker: Optional[str]
    text: str


def format_seconds(value: float) -> str:
    """Seconds -> HH:MM:SS (rounded, never negative)."""
    total = max(0, int(round(value)))
    return f"{total // 3600:02d}:{(total % 3600) // 60:02d}:{total % 60:02d}"


def format_line(segment: TranscriptSegment, include_timestamps: bool, include_speaker: bool) -> str:
    """One transcript line: optional [start-end] range, optional 'speaker：' label, then the text. The speaker label is omitted when the segment has none."""
    prefix = ""
    if include_timestamps:
        if segment.end is not None:
            prefix = f"[{format_seconds(segment.start)}-{format_seconds(segment.end)}] "
        else:
            prefix = f"[{format_seconds(segment.start)}] "
    if include_speaker and segment.speaker:
        prefix += f"{segment.speaker}{SPEAKER_SEPARATOR}"
    return prefix + segment.text


def format_segments(
    segments: Iterable[TranscriptSegment],
    include_timestamps: bool,
    include_speaker: bool,
) -> str:
    """Render segments in start order, one per line."""
    ordered = sorted(segments, key=lambda s: s.start)
    return "".join(format_line(s, include_timestamps, include_speaker) + "\n" for s in ordered)


def write_transcript(path: Path, text: str) -> Path:
    """Write the transcript, creating the output directory. Raises FormattingError on any I/O failure."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise FormattingError(f"Failed to write transcript {path}: {e}") from e
    return path
