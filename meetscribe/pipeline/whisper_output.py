"""Reading the segment files whisper.cpp writes next to ``-of <base>``.

Different whisper builds write different JSON shapes; all of the known ones are
accepted, then JSON lines, then the plain ``.txt`` output as a single segment.
"""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from meetscribe.core.errors import RecognitionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawSegment:
    """One recognized segment relative to the start of its track (seconds)."""

    start: float
    end: Optional[float]
    text: str


def parse_timestamp(value: Any) -> Optional[float]:
    """'HH:MM:SS,mmm' (or with '.') -> seconds."""
    if not isinstance(value, str):
        return None
    parts = value.strip().replace(".", ",").split(":")
    if len(parts) != 3:
        return None
    sec, _, millis = parts[2].partition(",")
    try:
        return int(parts[0]) * 3600 + int(parts[1]) * 60 + int(sec) + int(millis or 0) / 1000.0
    except ValueError:
        return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _bound(obj: dict, plain: str, edge: str, centi: str) -> Optional[float]:
    """Read one segment boundary from whichever field this whisper build wrote."""
    v = _number(obj.get(plain))
    if v is not None:
        return v
    offsets = obj.get("offsets")
    if isinstance(offsets, dict) and _number(offsets.get(edge)) is not None:
        return _number(offsets.get(edge)) / 1000.0
    timestamps = obj.get("timestamps")
    if isinstance(timestamps, dict):
        ts = parse_timestamp(timestamps.get(edge))
        if ts is not None:
            return ts
    v = _number(obj.get(centi))
    if v is not None:
        return v / 100.0
    return None


def segment_from_value(value: Any) -> Optional[RawSegment]:
    if not isinstance(value, dict):
        return None
    text = value.get("text")
    if not isinstance(text, str) or not text.strip():
        return None
    start = _bound(value, "start", "from", "t0")
    end = _bound(value, "end", "to", "t1")
    return RawSegment(start=start or 0.0, end=end, text=text)


def segments_from_array(items: List[Any]) -> List[RawSegment]:
    return [s for s in (segment_from_value(item) for item in items) if s is not None]


def extract_segments(value: Any) -> Optional[List[RawSegment]]:
    """Segments from a parsed JSON document, or None if the shape is not recognized. A recognized but empty list means silence."""
    if isinstance(value, list):
        return segments_from_array(value)
    if not isinstance(value, dict):
        return None
    for key in ("segments", "transcription"):
        if isinstance(value.get(key), list):
            return segments_from_array(value[key])
    results = value.get("results")
    if isinstance(results, dict) and isinstance(results.get("segments"), list):
        return segments_from_array(results["segments"])
    return None


def parse_json_lines(contents: str) -> Optional[List[RawSegment]]:
    segments: List[RawSegment] = []
    for line in contents.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            value = json.loads(line)
        except json.JSONDecodeError:
            continue
        nested = extract_segments(value) if isinstance(value, dict) and not value.get("text") else None
        if nested:
            segments.extend(nested)
            continue
        seg = segment_from_value(value)
        if seg is not None:
            segments.append(seg)
    return segments or None


def normalize_json_contents(contents: str) -> str:
    """Strip a BOM and any console noise around the outermost JSON value."""
    trimmed = contents.lstrip("\ufeff").strip()
    if not trimmed:
        return ""
    starts = [i for i in (trimmed.find("{"), trimmed.find("[")) if i >= 0]
    end = max(trimmed.rfind("}"), trimmed.rfind("]"))
    if starts and end >= min(starts):
        return trimmed[min(starts):end + 1]
    return trimmed


def _read(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None


def load_segments(output_base: str) -> List[RawSegment]:
    """Read <output_base>.json (any known shape), falling back to JSON lines and then <output_base>.txt. Raises RecognitionError when nothing usable exists."""
    base = Path(output_base)
    contents = _read(base.with_name(base.name + ".json"))
    if contents is not None:
        normalized = normalize_json_contents(contents)
        try:
            segments = extract_segments(json.loads(normalized)) if normalized else None
        except json.JSONDecodeError:
            segments = None
        if segments is None:
            segments = parse_json_lines(contents)
        if segments is not None:
            return segments

    text = _read(base.with_name(base.name + ".txt"))
    if text is not None:
        cleaned = " ".join(line.strip() for line in text.splitlines() if line.strip())
        if cleaned:
            logger.warning("whisper_json_unusable_using_txt", extra={"output_base": str(base)})
            return [RawSegment(start=0.0, end=None, text=cleaned)]

    raise RecognitionError(f"Failed to parse whisper output at {base}.json")
