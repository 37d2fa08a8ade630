"""Object key convention for recorded meetings.

Keys look like ``<date>/<roomId>/<meetingTime>/<speaker>/<trackTime>_<suffix>.ogg``;
the speaker directory is optional. Times are ``HH-MM-SS`` or ``H時M分S秒``.
"""
import os
import re
from dataclasses import dataclass
from datetime import time as dtime
from typing import Optional, Tuple

JAPANESE_TIME_RE = re.compile(r"^(\d{1,2})時(\d{1,2})分(\d{1,2})秒$")
HYPHEN_TIME_RE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{1,2})$")
ROOM_ID_PREFIX = "localWorld."
UNSAFE_FILENAME_RE = re.compile(r'[\\/:*?"<>|\s]+')


@dataclass(frozen=True)
class ParsedKey:
    """Components of one audio object key."""

    date: str
    room_id: str
    meeting_time: str
    speaker: Optional[str]
    file_name: str
    track_time: str

    @property
    def meeting_id(self) -> str:
        return derive_meeting_id(self.date, self.room_id, self.meeting_time)


def parse_key(key: str) -> Optional[ParsedKey]:
    """Split an object key into meeting/track components. Returns None for keys that do not follow the convention (wrong depth, empty segments, directory markers)."""
    parts = key.split("/")
    if len(parts) == 5:
        date, room_id, meeting_time, speaker, file_name = parts
    elif len(parts) == 4:
        date, room_id, meeting_time, file_name = parts
        speaker = None
    else:
        return None
    if not all(parts):
        return None
    stem, _ext = os.path.splitext(file_name)
    track_time = stem.split("_", 1)[0]
    return ParsedKey(date, room_id, meeting_time, speaker, file_name, track_time)


def derive_meeting_id(date: str, room_id: str, meeting_time: str) -> str:
    """Deterministic meeting id; also the key prefix of the meeting's audio objects."""
    return f"{date}/{room_id}/{meeting_time}"


def split_meeting_id(meeting_id: str) -> Tuple[str, str, str]:
    """Inverse of derive_meeting_id. Raises ValueError for anything that is not three non-empty segments."""
    parts = (meeting_id or "").split("/")
    if len(parts) != 3 or not all(p.strip() for p in parts):
        raise ValueError(f"Invalid meeting id: {meeting_id!r} (expected <date>/<roomId>/<meetingTime>)")
    return parts[0], parts[1], parts[2]


def room_label(room_id: str) -> str:
    """Human label for a room: 'localWorld.<n>-<label>' -> '<label>', anything else unchanged."""
    if room_id.startswith(ROOM_ID_PREFIX):
        _, sep, label = room_id[len(ROOM_ID_PREFIX):].partition("-")
        if sep and label:
            return label
    return room_id


def parse_time(value: str) -> Optional[dtime]:
    """Parse HH-MM-SS or H時M分S秒 into a time of day; None if neither form matches or the values are out of range."""
    s = (value or "").strip()
    m = JAPANESE_TIME_RE.match(s) or HYPHEN_TIME_RE.match(s)
    if not m:
        return None
    h, mi, sec = (int(g) for g in m.groups())
    try:
        return dtime(h, mi, sec)
    except ValueError:
        return None


def seconds_of_day(value: str) -> Optional[int]:
    t = parse_time(value)
    if t is None:
        return None
    return t.hour * 3600 + t.minute * 60 + t.second


def compare_times(a: str, b: str) -> int:
    """Time-aware comparison: parseable times order by time of day and sort before unparseable strings; two unparseable strings compare lexicographically."""
    ta, tb = seconds_of_day(a), seconds_of_day(b)
    if ta is not None and tb is not None:
        return (ta > tb) - (ta < tb)
    if ta is not None:
        return -1
    if tb is not None:
        return 1
    return (a > b) - (a < b)


def format_time_japanese(value: str) -> Optional[str]:
    t = parse_time(value)
    if t is None:
        return None
    return f"{t.hour}時{t.minute}分{t.second}秒"


def transcript_filename(meeting_id: str) -> str:
    """File name for a meeting's transcript: <date>_<roomId>_<time>.txt with path-unsafe characters replaced."""
    date, room_id, meeting_time = split_meeting_id(meeting_id)
    time_part = format_time_japanese(meeting_time) or meeting_time
    stem = "_".join(UNSAFE_FILENAME_RE.sub("_", p).strip("._") or "_" for p in (date, room_id, time_part))
    return f"{stem}.txt"
