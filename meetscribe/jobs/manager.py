import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from meetscribe.catalog.keys import split_meeting_id
from meetscribe.core.errors import PipelineError
from meetscribe.jobs.jobs import PENDING, Job, JobSlot, SlotReporter
from meetscribe.models.schemas import AppConfig
from meetscribe.pipeline.runner import TranscriptionPipeline

logger = logging.getLogger(__name__)


class JobManager:
    """Single-flight transcription jobs: one active job at a time, run on a single background worker.
    Why available: start_transcribe returns immediately with a job id; clients poll status() while the pipeline runs."""

    def __init__(
        self,
        pipeline: TranscriptionPipeline,
        config_provider: Callable[[], AppConfig],
        slot: Optional[JobSlot] = None,
    ):
        self.pipeline = pipeline
        self.config_provider = config_provider
        self.slot = slot or JobSlot()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="transcribe")
        self._closed = False
        self._start_lock = threading.Lock()

    def start(self, meeting_id: str) -> str:
        """Create and enqueue a job for meeting_id. Raises ValueError for a malformed id and ConflictError while another job is active."""
        date, room_id, meeting_time = split_meeting_id(meeting_id)
        meeting_id = f"{date}/{room_id}/{meeting_time}"

        with self._start_lock:
            if self._closed:
                raise RuntimeError("Job manager is shut down")
            config = self.config_provider()
            job = Job(
                job_id=str(uuid.uuid4()),
                meeting_id=meeting_id,
                state=PENDING,
                created_at=time.time(),
            )
            self.slot.try_start(job)
            logger.info("job_created", extra={"job_id": job.job_id, "meeting_id": meeting_id})
            self._executor.submit(self._run, job.job_id, meeting_id, config)
        return job.job_id

    def status(self, job_id: str) -> Job:
        """Snapshot of the job; JobNotFoundError for unknown or superseded ids."""
        return self.slot.snapshot(job_id)

    def _run(self, job_id: str, meeting_id: str, config: AppConfig) -> None:
        """Background task: run the pipeline and terminalize the job. Nothing escapes the worker."""
        reporter = SlotReporter(self.slot, job_id)
        t0 = time.perf_counter()
        try:
            output_path = self.pipeline.run(job_id, meeting_id, config, reporter)
        except PipelineError as e:
            logger.warning("job_failed", extra={"job_id": job_id, "meeting_id": meeting_id, "error": str(e)})
            reporter.log(str(e))
            self.slot.fail(job_id, str(e))
            return
        except Exception as e:
            logger.exception("job_crashed", extra={"job_id": job_id, "meeting_id": meeting_id})
            self.slot.fail(job_id, f"Unexpected error: {e}")
            return
        self.slot.complete(job_id, output_path)
        logger.info(
            "job_completed",
            extra={
                "job_id": job_id,
                "meeting_id": meeting_id,
                "output_path": output_path,
                "elapsed_s": round(time.perf_counter() - t0, 2),
            },
        )

    def shutdown(self, wait: bool = True) -> None:
        with self._start_lock:
            self._closed = True
        self._executor.shutdown(wait=wait)
