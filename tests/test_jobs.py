"""Unit tests for the job slot and single-flight job manager."""
import threading
import time

import pytest

from meetscribe.core.errors import ConflictError, ExtractionError, JobNotFoundError
from meetscribe.jobs.jobs import MAX_LOG_LINES, Job, JobSlot
from meetscribe.jobs.manager import JobManager
from meetscribe.models.schemas import AppConfig, StorageConfig

MEETING = "2024-05-01/roomA/10-00-00"


def _job(job_id="j1", state="pending"):
    return Job(job_id=job_id, meeting_id=MEETING, state=state, created_at=time.time())


def wait_for_terminal(manager, job_id, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        job = manager.status(job_id)
        if job.state in ("completed", "failed"):
            return job
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


class StubPipeline:
    """Reports a fixed sequence of updates, optionally blocking until released."""

    def __init__(self, error=None, block=False):
        self.error = error
        self.release = threading.Event()
        self.entered = threading.Event()
        if not block:
            self.release.set()
        self.configs = []

    def run(self, job_id, meeting_id, config, reporter):
        self.configs.append(config)
        reporter.set_state("downloading")
        reporter.set_total(200)
        self.entered.set()
        assert self.release.wait(5)
        reporter.set_state("running")
        reporter.set_completed(120)
        reporter.set_completed(80)
        reporter.log("line")
        if self.error is not None:
            raise self.error
        return "/out/transcript.txt"


# -------------------------
# JobSlot
# -------------------------

def test_progress_is_monotonic_and_bounded():
    slot = JobSlot()
    slot.try_start(_job())
    slot.set_total("j1", 100)
    slot.set_completed("j1", 60)
    slot.set_completed("j1", 30)
    assert slot.snapshot("j1").completed == 60
    slot.set_completed("j1", 500)
    assert slot.snapshot("j1").completed == 100


def test_state_never_moves_backwards():
    slot = JobSlot()
    slot.try_start(_job())
    slot.set_state("j1", "running")
    slot.set_state("j1", "downloading")
    job = slot.snapshot("j1")
    assert job.state == "running"
    assert job.started_at is not None


def test_terminal_state_is_final():
    slot = JobSlot()
    slot.try_start(_job())
    slot.fail("j1", "boom")
    slot.complete("j1", "/out.txt")
    slot.set_state("j1", "running")
    job = slot.snapshot("j1")
    assert job.state == "failed"
    assert job.error == "boom"
    assert job.output_path is None


def test_superseded_job_updates_are_ignored():
    slot = JobSlot()
    slot.try_start(_job("old"))
    slot.fail("old", "x")
    slot.try_start(_job("new"))
    slot.set_completed("old", 10)
    slot.append_log("old", "stale")
    assert slot.snapshot("new").log == ""
    with pytest.raises(JobNotFoundError):
        slot.snapshot("old")


def test_try_start_conflicts_while_active():
    slot = JobSlot()
    slot.try_start(_job("a"))
    with pytest.raises(ConflictError):
        slot.try_start(_job("b"))
    assert slot.snapshot("a").state == "pending"


def test_snapshot_is_a_copy():
    slot = JobSlot()
    slot.try_start(_job())
    snap = slot.snapshot("j1")
    snap.log_lines.append("mutated")
    assert slot.snapshot("j1").log_lines == []


def test_log_keeps_last_lines_and_counts_dropped():
    slot = JobSlot()
    slot.try_start(_job())
    for i in range(MAX_LOG_LINES + 3):
        slot.append_log("j1", f"line {i}")
    job = slot.snapshot("j1")
    assert len(job.log_lines) == MAX_LOG_LINES
    assert job.log_lines[0] == "line 3"
    assert job.log_lines[-1] == f"line {MAX_LOG_LINES + 2}"
    assert job.log_dropped == 3


# -------------------------
# JobManager
# -------------------------

def test_job_completes():
    manager = JobManager(StubPipeline(), AppConfig)
    job_id = manager.start(MEETING)
    job = wait_for_terminal(manager, job_id)
    assert job.state == "completed"
    assert job.output_path == "/out/transcript.txt"
    assert job.error is None
    assert job.completed == job.total == 200
    assert job.finished_at is not None
    manager.shutdown()


def test_start_conflicts_while_running():
    pipeline = StubPipeline(block=True)
    manager = JobManager(pipeline, AppConfig)
    job_id = manager.start(MEETING)
    assert pipeline.entered.wait(5)
    with pytest.raises(ConflictError):
        manager.start("2024-05-01/roomB/11-00-00")
    assert manager.status(job_id).state == "downloading"
    pipeline.release.set()
    wait_for_terminal(manager, job_id)
    # a finished job frees the slot
    second = manager.start(MEETING)
    assert second != job_id
    with pytest.raises(JobNotFoundError):
        manager.status(job_id)
    wait_for_terminal(manager, second)
    manager.shutdown()


def test_stage_error_fails_job():
    manager = JobManager(StubPipeline(error=ExtractionError("ffmpeg exited with code 1")), AppConfig)
    job = wait_for_terminal(manager, manager.start(MEETING))
    assert job.state == "failed"
    assert job.error == "extract failed: ffmpeg exited with code 1"
    assert job.output_path is None
    assert job.completed == 120
    manager.shutdown()


def test_unexpected_error_fails_job():
    manager = JobManager(StubPipeline(error=KeyError("boom")), AppConfig)
    job = wait_for_terminal(manager, manager.start(MEETING))
    assert job.state == "failed"
    assert "boom" in job.error
    manager.shutdown()


@pytest.mark.parametrize("bad", ["", "no-slashes", "a/b", "a//c"])
def test_start_rejects_malformed_meeting_id(bad):
    manager = JobManager(StubPipeline(), AppConfig)
    with pytest.raises(ValueError):
        manager.start(bad)
    manager.shutdown()


def test_status_unknown_job():
    manager = JobManager(StubPipeline(), AppConfig)
    with pytest.raises(JobNotFoundError):
        manager.status("nope")
    manager.shutdown()


def test_job_uses_config_snapshot_from_start():
    current = {"config": AppConfig(storage=StorageConfig(bucket="first"))}
    pipeline = StubPipeline(block=True)
    manager = JobManager(pipeline, lambda: current["config"].model_copy(deep=True))
    job_id = manager.start(MEETING)
    assert pipeline.entered.wait(5)
    current["config"] = AppConfig(storage=StorageConfig(bucket="second"))
    pipeline.release.set()
    wait_for_terminal(manager, job_id)
    assert pipeline.configs[0].storage.bucket == "first"
    manager.shutdown()


def test_shutdown_rejects_new_jobs():
    manager = JobManager(StubPipeline(), AppConfig)
    manager.shutdown()
    with pytest.raises(RuntimeError):
        manager.start(MEETING)
