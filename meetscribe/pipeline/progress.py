"""Line-level parsing of tool output into progress deltas.

whisper.cpp prints one ``[t0 --> t1]  text`` line per emitted segment and, with
``-pp``, ``progress = NN%`` lines. ffmpeg prints the input ``Duration:`` once.
Parsers only look at one raw line at a time and know nothing about jobs.
"""
import re
from dataclasses import dataclass
from typing import Optional, Protocol

SEGMENT_LINE_RE = re.compile(
    r"^\[\d+:\d{2}:\d{2}[.,]\d{3}\s*-->\s*(\d+):(\d{2}):(\d{2})[.,](\d{3})\]"
)
PERCENT_RE = re.compile(r"progress\s*=\s*(\d{1,3})\s*%")
DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")


@dataclass(frozen=True)
class ProgressDelta:
    """What one output line says about progress. Any field may be None."""

    percent: Optional[float] = None
    segment_end: Optional[float] = None
    duration: Optional[float] = None


class ProgressParser(Protocol):
    def parse(self, line: str) -> Optional[ProgressDelta]:
        ...


def _hms(h: str, m: str, s: str, ms: str = "0") -> float:
    return int(h) * 3600 + int(m) * 60 + float(s) + int(ms) / 1000.0


class WhisperProgressParser:
    """Parses whisper.cpp console output (segment lines and -pp percentage lines)."""

    def parse(self, line: str) -> Optional[ProgressDelta]:
        s = line.strip()
        m = SEGMENT_LINE_RE.match(s)
        if m:
            return ProgressDelta(segment_end=_hms(*m.groups()))
        m = PERCENT_RE.search(s)
        if m:
            return ProgressDelta(percent=float(min(int(m.group(1)), 100)))
        return None


class FfmpegProgressParser:
    """Picks the input duration out of ffmpeg's banner."""

    def parse(self, line: str) -> Optional[ProgressDelta]:
        m = DURATION_RE.search(line)
        if not m:
            return None
        return ProgressDelta(duration=_hms(m.group(1), m.group(2), m.group(3)))


def percent_of(delta: Optional[ProgressDelta], duration: Optional[float]) -> Optional[float]:
    """Percent complete within the current track: explicit percentage wins, else segment end relative to the track duration."""
    if delta is None:
        return None
    if delta.percent is not None:
        return max(0.0, min(delta.percent, 100.0))
    if delta.segment_end is not None and duration:
        return max(0.0, min(delta.segment_end / duration * 100.0, 100.0))
    return None
