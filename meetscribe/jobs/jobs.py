"""In-memory job slot for transcription: at most one current job, tracked through pending / downloading / running / completed / failed."""
import copy
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from meetscribe.core.errors import ConflictError, JobNotFoundError

PENDING = "pending"
DOWNLOADING = "downloading"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"

ACTIVE_STATES = (PENDING, DOWNLOADING, RUNNING)
_ORDER = {PENDING: 0, DOWNLOADING: 1, RUNNING: 2, COMPLETED: 3, FAILED: 3}

MAX_LOG_LINES = 500


@dataclass
class Job:
    """A single transcription job: ids, state (pending | downloading | running | completed | failed), progress units, timestamps, and output path or error.
    The log is append-only but keeps only the last MAX_LOG_LINES lines; log_dropped counts the lines trimmed from the front.
    Why available: Held in the JobSlot so clients can poll get_transcribe_status until the job completes or fails."""

    job_id: str
    meeting_id: str
    state: str  # pending | downloading | running | completed | failed
    created_at: float
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    completed: int = 0
    total: int = 0
    output_path: Optional[str] = None
    error: Optional[str] = None
    log_lines: List[str] = field(default_factory=list)
    log_dropped: int = 0

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    @property
    def log(self) -> str:
        return "\n".join(self.log_lines)


class JobSlot:
    """Lock-guarded holder of the current job. Starting a new job supersedes the previous one; updates addressed to a superseded id are dropped."""

    def __init__(self):
        self._lock = threading.Lock()
        self._job: Optional[Job] = None

    def try_start(self, job: Job) -> None:
        """Install job as the current job unless the current one is still active (ConflictError, nothing changes)."""
        with self._lock:
            if self._job is not None and self._job.is_active:
                raise ConflictError(
                    f"Job {self._job.job_id} for {self._job.meeting_id} is still {self._job.state}"
                )
            self._job = job

    def snapshot(self, job_id: str) -> Job:
        with self._lock:
            if self._job is None or self._job.job_id != job_id:
                raise JobNotFoundError(f"Job not found: {job_id}")
            return copy.deepcopy(self._job)

    def _mutate(self, job_id: str, fn: Callable[[Job], None]) -> None:
        with self._lock:
            job = self._job
            if job is None or job.job_id != job_id or not job.is_active:
                return
            fn(job)

    def set_state(self, job_id: str, state: str) -> None:
        if state not in ACTIVE_STATES:
            raise ValueError(f"Use complete() or fail() to finish a job, not {state!r}")

        def apply(job: Job) -> None:
            if _ORDER[state] <= _ORDER[job.state]:
                return
            if job.started_at is None:
                job.started_at = time.time()
            job.state = state

        self._mutate(job_id, apply)

    def set_total(self, job_id: str, total: int) -> None:
        def apply(job: Job) -> None:
            job.total = max(job.total, int(total))
            job.completed = min(job.completed, job.total)

        self._mutate(job_id, apply)

    def set_completed(self, job_id: str, completed: int) -> None:
        def apply(job: Job) -> None:
            value = int(completed)
            if job.total > 0:
                value = min(value, job.total)
            job.completed = max(job.completed, value)

        self._mutate(job_id, apply)

    def append_log(self, job_id: str, line: str) -> None:
        def apply(job: Job) -> None:
            job.log_lines.append(line)
            excess = len(job.log_lines) - MAX_LOG_LINES
            if excess > 0:
                del job.log_lines[:excess]
                job.log_dropped += excess

        self._mutate(job_id, apply)

    def complete(self, job_id: str, output_path: str) -> None:
        def apply(job: Job) -> None:
            job.state = COMPLETED
            job.output_path = output_path
            job.error = None
            job.completed = job.total
            job.finished_at = time.time()

        self._mutate(job_id, apply)

    def fail(self, job_id: str, error: str) -> None:
        def apply(job: Job) -> None:
            job.state = FAILED
            job.error = error or "Unknown error"
            job.output_path = None
            job.finished_at = time.time()

        self._mutate(job_id, apply)


class SlotReporter:
    """Binds a JobSlot to one job id so the pipeline can report progress without knowing about supersession."""

    def __init__(self, slot: JobSlot, job_id: str):
        self.slot = slot
        self.job_id = job_id

    def set_state(self, state: str) -> None:
        self.slot.set_state(self.job_id, state)

    def set_total(self, total: int) -> None:
        self.slot.set_total(self.job_id, total)

    def set_completed(self, completed: int) -> None:
        self.slot.set_completed(self.job_id, completed)

    def log(self, line: str) -> None:
        self.slot.append_log(self.job_id, line)
