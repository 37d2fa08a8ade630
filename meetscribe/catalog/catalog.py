import logging
from functools import cmp_to_key
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from botocore.exceptions import BotoCoreError, ClientError

from meetscribe.catalog.keys import (
    compare_times,
    derive_meeting_id,
    parse_key,
    room_label,
    seconds_of_day,
    split_meeting_id,
)
from meetscribe.core.errors import CatalogError, StorageConfigError
from meetscribe.models.schemas import AppConfig, MeetingSummary, Track
from meetscribe.storage.client import S3ClientFactory, build_s3_client

logger = logging.getLogger(__name__)


def _meeting_order(a: MeetingSummary, b: MeetingSummary) -> int:
    """Most recent meeting first (parseable times before unparseable), then room id, then id."""
    pa = seconds_of_day(a.meeting_time) is not None
    pb = seconds_of_day(b.meeting_time) is not None
    if pa != pb:
        return -1 if pa else 1
    c = compare_times(b.meeting_time, a.meeting_time)
    if c:
        return c
    for x, y in ((a.room_id, b.room_id), (a.id, b.id)):
        if x != y:
            return -1 if x < y else 1
    return 0


def _track_order(a: Track, b: Track) -> int:
    c = compare_times(a.track_time, b.track_time)
    if c:
        return c
    return (a.key > b.key) - (a.key < b.key)


class MeetingCatalog:
    """Discovers dates, meetings and audio tracks from object-store keys.
    Why available: Backs list_dates / list_meetings and resolves a meeting id to its tracks for the fetch stage. Every storage failure surfaces as CatalogError."""

    def __init__(
        self,
        config_provider: Callable[[], AppConfig],
        client_factory: S3ClientFactory = build_s3_client,
    ):
        self.config_provider = config_provider
        self.client_factory = client_factory

    def _list_pages(self, config: Optional[AppConfig] = None, **kwargs: Any) -> List[Dict[str, Any]]:
        """Run a paginated list_objects_v2 and return every page. Uses the current config unless a snapshot is given."""
        storage = (config or self.config_provider()).storage
        try:
            client = self.client_factory(storage)
            paginator = client.get_paginator("list_objects_v2")
            return list(paginator.paginate(Bucket=storage.bucket, **kwargs))
        except StorageConfigError as e:
            raise CatalogError(str(e)) from e
        except ClientError as e:
            code = (e.response or {}).get("Error", {}).get("Code", "unknown")
            logger.warning("catalog_listing_failed", extra={"code": code, "kwargs": kwargs})
            raise CatalogError(f"Listing failed ({code}): {e}") from e
        except (BotoCoreError, ValueError) as e:
            logger.warning("catalog_listing_failed", extra={"error": str(e), "kwargs": kwargs})
            raise CatalogError(f"Listing failed: {e}") from e

    @staticmethod
    def _keys(pages: List[Dict[str, Any]]) -> Iterator[str]:
        for page in pages:
            for obj in page.get("Contents") or []:
                key = obj.get("Key")
                if key:
                    yield key

    def list_dates(self) -> List[str]:
        """Top-level date partitions, most recent first. Falls back to the first key segment when the store returns no common prefixes."""
        pages = self._list_pages(Delimiter="/")
        dates: Set[str] = set()
        for page in pages:
            for prefix in page.get("CommonPrefixes") or []:
                value = (prefix.get("Prefix") or "").rstrip("/")
                if value:
                    dates.add(value)
        if not dates:
            for key in self._keys(self._list_pages()):
                first = key.split("/", 1)[0]
                if first and "/" in key:
                    dates.add(first)
        return sorted(dates, reverse=True)

    def list_meetings(self, date: str) -> List[MeetingSummary]:
        """Meetings recorded on date, grouped by room and time. Order is total, so repeated calls on unchanged data return the same sequence."""
        date = (date or "").strip()
        if not date or "/" in date:
            raise ValueError(f"Invalid date: {date!r}")

        groups: Dict[str, Dict[str, Any]] = {}
        for key in self._keys(self._list_pages(Prefix=f"{date}/")):
            parsed = parse_key(key)
            if parsed is None or parsed.date != date:
                continue
            entry = groups.setdefault(
                parsed.meeting_id,
                {"parsed": parsed, "speakers": set(), "tracks": 0},
            )
            if parsed.speaker:
                entry["speakers"].add(parsed.speaker)
            entry["tracks"] += 1

        meetings = [
            MeetingSummary(
                id=meeting_id,
                date=g["parsed"].date,
                room_id=g["parsed"].room_id,
                room_label=room_label(g["parsed"].room_id),
                meeting_time=g["parsed"].meeting_time,
                speaker_count=len(g["speakers"]),
                track_count=g["tracks"],
            )
            for meeting_id, g in groups.items()
        ]
        return sorted(meetings, key=cmp_to_key(_meeting_order))

    def list_tracks(self, meeting_id: str, config: Optional[AppConfig] = None) -> List[Track]:
        """Audio objects of one meeting ordered by track start time. Jobs pass their config snapshot."""
        meeting_id = derive_meeting_id(*split_meeting_id(meeting_id))
        tracks: List[Track] = []
        for key in self._keys(self._list_pages(config, Prefix=f"{meeting_id}/")):
            parsed = parse_key(key)
            if parsed is None or parsed.meeting_id != meeting_id:
                continue
            tracks.append(Track(key=key, speaker=parsed.speaker, track_time=parsed.track_time))
        return sorted(tracks, key=cmp_to_key(_track_order))
