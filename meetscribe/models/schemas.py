from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Any, Optional


class CamelModel(BaseModel):
    """Base for every wire/persisted model: camelCase on the wire, snake_case accepted on input.
    Why available: The config file and the client both speak camelCase while Python code uses snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class StorageConfig(CamelModel):
    """Object-store section of the AppConfig (S3-compatible endpoint, credentials, bucket)."""

    url: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    bucket: str = ""

    @property
    def is_complete(self) -> bool:
        """True when url, both keys and bucket are set; region may be blank (defaults to us-east-1)."""
        return all(v.strip() for v in (self.url, self.access_key, self.secret_key, self.bucket))


class PipelineConfig(CamelModel):
    """Pipeline section of the AppConfig: binary/model paths, output directory and transcript formatting flags."""

    binary_path: str = ""
    ffmpeg_path: str = ""
    model_path: str = ""
    output_dir: str = ""
    include_timestamps: bool = False
    include_speaker: bool = True


class AppConfig(CamelModel):
    """Persisted user configuration. Every field has a default so a missing or partial file still yields a complete config.
    Why available: Loaded by the ConfigStore at startup, edited via set_config, and copied into each job at start time."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)

    @model_validator(mode="before")
    @classmethod
    def migrate_legacy_sections(cls, data: Any) -> Any:
        """Accept config files written with the old section names (minio / whisper)."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "minio" in data and "storage" not in data:
            data["storage"] = data.pop("minio")
        if "whisper" in data and "pipeline" not in data:
            data["pipeline"] = data.pop("whisper")
        return data


class MeetingSummary(CamelModel):
    """One recorded meeting as discovered from object-store keys. Immutable once produced by the catalog.
    Why available: Returned by list_meetings; its id is the handle passed to start_transcribe."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Deterministic id: <date>/<roomId>/<meetingTime>")
    date: str
    room_id: str
    room_label: str
    meeting_time: str
    speaker_count: Optional[int] = Field(None, ge=0)
    track_count: Optional[int] = Field(None, ge=0)


class Track(CamelModel):
    """One audio object belonging to a meeting."""

    model_config = ConfigDict(frozen=True)

    key: str
    speaker: Optional[str] = None
    track_time: str = ""


class Health(CamelModel):
    """Connectivity check result: reachable, or unreachable with a reason tag and a human-readable detail.
    Why available: check_minio reports failures through this value instead of raising."""

    reachable: bool
    reason: Optional[str] = Field(
        None,
        description="incomplete_config | auth_failed | bucket_missing | network_error | storage_error",
    )
    detail: Optional[str] = None

    @classmethod
    def ok(cls) -> "Health":
        return cls(reachable=True)

    @classmethod
    def unreachable(cls, reason: str, detail: str) -> "Health":
        return cls(reachable=False, reason=reason, detail=detail)


class StartTranscribeRequest(CamelModel):
    """Request body for POST /transcribe."""

    meeting_id: str = Field(..., min_length=1, description="Meeting id returned by list_meetings")


class StartTranscribeResponse(CamelModel):
    job_id: str


class JobStatusResponse(CamelModel):
    """Snapshot of a transcription job. Why available: Lets clients poll GET /transcribe/{job_id} until the job completes or fails."""

    job_id: str
    meeting_id: str
    state: str = Field(..., description="pending | downloading | running | completed | failed")
    completed: int = Field(0, ge=0)
    total: int = Field(0, ge=0)
    output_path: Optional[str] = None
    error: Optional[str] = None
    log: str = ""
    log_dropped: int = Field(0, ge=0, description="Earliest log lines no longer kept in the log")
    created_at: float
    started_at: Optional[float] = None
    finished_at: Optional[float] = None


class DefaultPathResponse(CamelModel):
    path: Optional[str] = None


class AckResponse(CamelModel):
    ok: bool = True
