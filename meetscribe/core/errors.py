"""Error taxonomy for the orchestrator.

Connectivity and catalog errors are reported to the caller and may be retried.
Pipeline errors never leave the worker: they terminalize the active job with a
human-readable message. Persist errors are logged only.
"""
import logging

from fastapi import HTTPException

logger = logging.getLogger(__name__)


class MeetscribeError(Exception):
    """Base class for every error raised on purpose by the orchestrator."""


class ConnectivityError(MeetscribeError):
    """Object store unreachable, credentials rejected, or bucket missing."""


class StorageConfigError(ConnectivityError):
    """Storage section of the config is missing url, credentials or bucket."""


class CatalogError(MeetscribeError):
    """Listing dates, meetings or tracks failed."""


class ConflictError(MeetscribeError):
    """A transcription job is already pending, downloading or running."""


class JobNotFoundError(MeetscribeError):
    """Job id is unknown or belongs to a superseded job."""


class ConfigPersistError(MeetscribeError):
    """Writing the config file failed. The in-memory config stays authoritative."""


class PipelineError(MeetscribeError):
    """A pipeline stage failed; the message is shown to the user as the job error."""

    stage = "pipeline"

    def __str__(self) -> str:
        return f"{self.stage} failed: {super().__str__()}"


class FetchError(PipelineError):
    stage = "fetch"


class ExtractionError(PipelineError):
    stage = "extract"


class RecognitionError(PipelineError):
    stage = "recognize"


class FormattingError(PipelineError):
    stage = "format"


def as_http_500(e: Exception) -> HTTPException:
    """Log exception and return a generic 500 HTTPException (no internal details leaked).
    Why available: Centralized error handling so the API never leaks stack traces or internal state to clients."""
    logger.error("unhandled_error", exc_info=e)
    return HTTPException(status_code=500, detail="Internal server error")
