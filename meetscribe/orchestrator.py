"""Wires config, catalog, connectivity check and job manager into the operations the HTTP layer exposes."""
import logging
from typing import Any, List, Optional

from meetscribe.catalog.catalog import MeetingCatalog
from meetscribe.config_store.probes import Probes
from meetscribe.config_store.store import ConfigStore
from meetscribe.jobs.jobs import Job
from meetscribe.jobs.manager import JobManager
from meetscribe.models.schemas import AppConfig, Health, MeetingSummary
from meetscribe.pipeline.runner import TranscriptionPipeline
from meetscribe.storage.client import S3ClientFactory, build_s3_client
from meetscribe.storage.health import ConnectivityChecker

logger = logging.getLogger(__name__)

_orchestrator: Any = None


class Orchestrator:
    """Facade over the meeting transcription components.
    Why available: One object owns the config store, catalog and single job slot, so every caller (HTTP routes, scripts, tests) sees the same state."""

    def __init__(
        self,
        config_store: Optional[ConfigStore] = None,
        *,
        probes: Optional[Probes] = None,
        client_factory: S3ClientFactory = build_s3_client,
        checker: Optional[ConnectivityChecker] = None,
        scratch_root: Optional[str] = None,
    ):
        self.probes = probes or Probes()
        self.config_store = config_store or ConfigStore(probes=self.probes)
        self.catalog = MeetingCatalog(self.config_store.current, client_factory)
        self.checker = checker or ConnectivityChecker(client_factory)
        self.pipeline = TranscriptionPipeline(
            self.catalog,
            client_factory=client_factory,
            probes=self.probes,
            scratch_root=scratch_root,
        )
        self.jobs = JobManager(self.pipeline, self.config_store.current)

    # -------------------------
    # Catalog
    # -------------------------

    def list_dates(self) -> List[str]:
        return self.catalog.list_dates()

    def list_meetings(self, date: str) -> List[MeetingSummary]:
        return self.catalog.list_meetings(date)

    # -------------------------
    # Jobs
    # -------------------------

    def start_transcribe(self, meeting_id: str) -> str:
        return self.jobs.start(meeting_id)

    def get_transcribe_status(self, job_id: str) -> Job:
        return self.jobs.status(job_id)

    # -------------------------
    # Config
    # -------------------------

    def get_config(self) -> AppConfig:
        return self.config_store.current()

    def set_config(self, config: AppConfig) -> AppConfig:
        """Apply config immediately; the file write may complete later. Running jobs keep the config they started with."""
        return self.config_store.update(config)

    def check_minio(self) -> Health:
        return self.checker.check(self.config_store.current())

    # -------------------------
    # Probed defaults
    # -------------------------

    def get_default_whisper_binary(self) -> Optional[str]:
        return self.probes.whisper_binary()

    def get_default_ffmpeg_binary(self) -> Optional[str]:
        return self.probes.ffmpeg_binary()

    def get_default_output_dir(self) -> str:
        return self.probes.output_dir()

    def get_default_whisper_model_root(self) -> str:
        return self.probes.model_root()

    def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """Stop accepting jobs, wait for the worker, and flush pending config writes."""
        self.jobs.shutdown(wait=True)
        if not self.config_store.wait_idle(timeout):
            logger.warning("config_flush_timeout", extra={"timeout_s": timeout})


def get_orchestrator() -> Orchestrator:
    """Return the process-wide Orchestrator, creating it on first use.
    Why available: FastAPI dependency for every route; tests override it with an orchestrator built on fakes."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator()
    return _orchestrator


def shutdown_orchestrator() -> None:
    """Shut down the process-wide Orchestrator if one was created."""
    global _orchestrator
    if _orchestrator is not None:
        _orchestrator.shutdown()
        _orchestrator = None
