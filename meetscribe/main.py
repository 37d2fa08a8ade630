import logging
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, HTTPException

from meetscribe.core.config import settings
from meetscribe.core.errors import (
    CatalogError,
    ConflictError,
    JobNotFoundError,
    as_http_500,
)
from meetscribe.jobs.jobs import Job
from meetscribe.models.schemas import (
    AckResponse,
    AppConfig,
    DefaultPathResponse,
    Health,
    JobStatusResponse,
    MeetingSummary,
    StartTranscribeRequest,
    StartTranscribeResponse,
)
from meetscribe.observability.middleware import RequestTimingMiddleware
from meetscribe.orchestrator import Orchestrator, get_orchestrator, shutdown_orchestrator

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


# -------------------------
# App setup
# -------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    shutdown_orchestrator()


app = FastAPI(title="Meetscribe", lifespan=lifespan)
app.add_middleware(RequestTimingMiddleware)


def to_http_error(e: Exception) -> HTTPException:
    """Map orchestrator errors to HTTP status codes; anything unexpected becomes a logged generic 500.
    Why available: Keeps every route's error handling identical without leaking internals."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, JobNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, CatalogError):
        logger.warning("catalog_error", extra={"error": str(e)})
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail=str(e))
    return as_http_500(e)


def job_to_response(job: Job) -> JobStatusResponse:
    return JobStatusResponse(
        job_id=job.job_id,
        meeting_id=job.meeting_id,
        state=job.state,
        completed=job.completed,
        total=job.total,
        output_path=job.output_path,
        error=job.error,
        log=job.log,
        log_dropped=job.log_dropped,
        created_at=job.created_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
    )


# -------------------------
# Health
# -------------------------

@app.get("/health")
def health():
    """Returns 200 OK with status. Used by probes to check the API is up.
    Why available: Standard endpoint for uptime checks."""
    return {"status": "ok"}


# -------------------------
# Catalog
# -------------------------

@app.get("/dates", response_model=List[str])
def list_dates(orch: Orchestrator = Depends(get_orchestrator)):
    """Returns the recording dates present in the bucket, most recent first.
    Why available: First step of browsing; the client picks a date, then lists its meetings."""
    try:
        return orch.list_dates()
    except Exception as e:
        raise to_http_error(e)


@app.get("/dates/{date}/meetings", response_model=List[MeetingSummary])
def list_meetings(date: str, orch: Orchestrator = Depends(get_orchestrator)):
    """Returns the meetings recorded on date with room label, speaker and track counts."""
    try:
        return orch.list_meetings(date)
    except Exception as e:
        raise to_http_error(e)


# -------------------------
# Transcription jobs
# -------------------------

@app.post("/transcribe", response_model=StartTranscribeResponse)
def start_transcribe(req: StartTranscribeRequest, orch: Orchestrator = Depends(get_orchestrator)):
    """Starts a background transcription of one meeting and returns its job id. 409 while another job is active.
    Why available: Transcription takes minutes; the client polls GET /transcribe/{job_id} for progress."""
    try:
        job_id = orch.start_transcribe(req.meeting_id)
    except Exception as e:
        raise to_http_error(e)
    return StartTranscribeResponse(job_id=job_id)


@app.get("/transcribe/{job_id}", response_model=JobStatusResponse)
def transcribe_status(job_id: str, orch: Orchestrator = Depends(get_orchestrator)):
    """Returns state, progress units, log output and the transcript path or error of a job."""
    try:
        job = orch.get_transcribe_status(job_id)
    except Exception as e:
        raise to_http_error(e)
    return job_to_response(job)


# -------------------------
# Config
# -------------------------

@app.get("/config", response_model=AppConfig)
def get_config(orch: Orchestrator = Depends(get_orchestrator)):
    return orch.get_config()


@app.put("/config", response_model=AckResponse)
def set_config(config: AppConfig, orch: Orchestrator = Depends(get_orchestrator)):
    """Replaces the configuration. Takes effect immediately; a failed file write is logged and does not fail the request."""
    try:
        orch.set_config(config)
    except Exception as e:
        raise to_http_error(e)
    return AckResponse()


@app.get("/check_minio", response_model=Health)
def check_minio(orch: Orchestrator = Depends(get_orchestrator)):
    """Checks that the object store is reachable with the current config. Always 200; the body says reachable or why not."""
    try:
        return orch.check_minio()
    except Exception as e:
        raise to_http_error(e)


# -------------------------
# Probed defaults
# -------------------------

@app.get("/defaults/whisper_binary", response_model=DefaultPathResponse)
def default_whisper_binary(orch: Orchestrator = Depends(get_orchestrator)):
    return DefaultPathResponse(path=orch.get_default_whisper_binary())


@app.get("/defaults/ffmpeg_binary", response_model=DefaultPathResponse)
def default_ffmpeg_binary(orch: Orchestrator = Depends(get_orchestrator)):
    return DefaultPathResponse(path=orch.get_default_ffmpeg_binary())


@app.get("/defaults/output_dir", response_model=DefaultPathResponse)
def default_output_dir(orch: Orchestrator = Depends(get_orchestrator)):
    return DefaultPathResponse(path=orch.get_default_output_dir())


@app.get("/defaults/model_root", response_model=DefaultPathResponse)
def default_model_root(orch: Orchestrator = Depends(get_orchestrator)):
    return DefaultPathResponse(path=orch.get_default_whisper_model_root())
