"""Transcription pipeline: fetch -> extract -> recognize -> format.

Each stage is gated on the previous one. Stage failures raise the matching
PipelineError subclass; the job manager turns that into a failed job.
"""
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Optional, Protocol, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from meetscribe.catalog.catalog import MeetingCatalog
from meetscribe.catalog.keys import seconds_of_day, transcript_filename
from meetscribe.config_store.probes import Probes
from meetscribe.config_store.store import normalize_model_path
from meetscribe.core.config import settings
from meetscribe.core.errors import (
    CatalogError,
    ExtractionError,
    FetchError,
    RecognitionError,
    StorageConfigError,
)
from meetscribe.models.schemas import AppConfig, Track
from meetscribe.pipeline.formatter import TranscriptSegment, format_segments, write_transcript
from meetscribe.pipeline.process import run_tool
from meetscribe.pipeline.progress import (
    FfmpegProgressParser,
    ProgressParser,
    WhisperProgressParser,
    percent_of,
)
from meetscribe.pipeline.whisper_output import RawSegment, load_segments
from meetscribe.storage.client import S3ClientFactory, build_s3_client
from meetscribe.storage.health import NETWORK_ERRORS, client_error_code
from meetscribe.utils.retry import with_retry

logger = logging.getLogger(__name__)

UNITS_PER_TRACK = 100
DOWNLOAD_RETRIES = 2


class JobReporter(Protocol):
    """What the pipeline may do to its job record."""

    def set_state(self, state: str) -> None:
        ...

    def set_total(self, total: int) -> None:
        ...

    def set_completed(self, completed: int) -> None:
        ...

    def log(self, line: str) -> None:
        ...


@dataclass(frozen=True)
class ResolvedTools:
    whisper_binary: str
    model_path: str
    ffmpeg_binary: str


class TranscriptionPipeline:
    """Runs one meeting through download, ffmpeg normalization, whisper recognition and transcript formatting.
    Why available: The job manager's single unit of background work; all external processes and transfers for a job happen here."""

    def __init__(
        self,
        catalog: MeetingCatalog,
        *,
        client_factory: S3ClientFactory = build_s3_client,
        probes: Optional[Probes] = None,
        scratch_root: Optional[str] = None,
        language: Optional[str] = None,
        sample_rate: Optional[int] = None,
        progress_parser: Optional[ProgressParser] = None,
    ):
        self.catalog = catalog
        self.client_factory = client_factory
        self.probes = probes or Probes()
        self.scratch_root = scratch_root or settings.scratch_dir
        self.language = language or settings.whisper_language
        self.sample_rate = sample_rate or settings.sample_rate
        self.progress_parser = progress_parser or WhisperProgressParser()

    # -------------------------
    # Pre-flight
    # -------------------------

    def resolve_tools(self, config: AppConfig) -> ResolvedTools:
        """Locate whisper, its model and ffmpeg before any transfer starts."""
        pipeline = config.pipeline

        requested = pipeline.binary_path.strip()
        if requested:
            binary = requested
            if not (os.path.isabs(requested) or os.path.exists(requested)):
                binary = self.probes.find_in_path(requested) or requested
            hint = "Set binaryPath (or WHISPER_BINARY) to a valid local path."
        else:
            binary = self.probes.whisper_binary() or ""
            hint = (
                "Install whisper.cpp and ensure one of "
                f"{self.probes.whisper_binary_candidates()} is in PATH, or set WHISPER_BINARY."
            )
        if not binary or not os.path.exists(binary):
            raise RecognitionError(f"Whisper binary not found at {binary or '(unset)'}. {hint}")

        model = normalize_model_path(pipeline.model_path)
        if not model:
            model = os.path.join(self.probes.model_root(), settings.default_model_name)
        elif not os.path.isabs(model):
            model = os.path.join(self.probes.model_root(), model)
        if not os.path.isfile(model):
            raise RecognitionError(
                f"Whisper model not found at {model}. Set modelPath (or WHISPER_MODEL) to a local model file."
            )

        ffmpeg = None
        requested = pipeline.ffmpeg_path.strip()
        if requested:
            ffmpeg = requested if os.path.isfile(requested) else self.probes.find_in_path(requested)
        ffmpeg = ffmpeg or self.probes.ffmpeg_binary()
        if not ffmpeg:
            raise ExtractionError("ffmpeg not found. Install ffmpeg or set ffmpegPath (or FFMPEG_BINARY).")

        return ResolvedTools(whisper_binary=binary, model_path=model, ffmpeg_binary=ffmpeg)

    # -------------------------
    # Run
    # -------------------------

    def run(self, job_id: str, meeting_id: str, config: AppConfig, reporter: JobReporter) -> str:
        """Run every stage for meeting_id and return the transcript path. The scratch directory is removed whatever the outcome."""
        tools = self.resolve_tools(config)
        scratch = Path(self.scratch_root) / job_id
        try:
            reporter.set_state("downloading")
            local_tracks = self.fetch(meeting_id, config, scratch, reporter)

            reporter.set_state("running")
            segments: List[TranscriptSegment] = []
            count = len(local_tracks)
            for index, (track, audio_path) in enumerate(local_tracks):
                label = f"Track {index + 1}/{count}"
                reporter.log(f"{label}: converting to wav")
                wav_path, duration = self.extract(tools, audio_path, scratch / f"track_{index}.wav", reporter)
                reporter.log(f"{label}: transcribing")
                raw = self.recognize(
                    tools,
                    wav_path,
                    scratch / f"out_{index}",
                    duration,
                    reporter,
                    base_units=index * UNITS_PER_TRACK,
                )
                segments.extend(place_on_timeline(track, raw))
                reporter.set_completed((index + 1) * UNITS_PER_TRACK)

            return self.format(meeting_id, config, segments, reporter)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    def fetch(self, meeting_id: str, config: AppConfig, scratch: Path, reporter: JobReporter) -> List[Tuple[Track, Path]]:
        try:
            tracks = self.catalog.list_tracks(meeting_id, config)
        except CatalogError as e:
            raise FetchError(str(e)) from e
        logger.info("tracks_found", extra={"meeting_id": meeting_id, "tracks": len(tracks)})
        if not tracks:
            raise FetchError(f"No audio tracks found for meeting: {meeting_id}")
        reporter.set_total(len(tracks) * UNITS_PER_TRACK)

        try:
            client = self.client_factory(config.storage)
        except (StorageConfigError, ValueError) as e:
            raise FetchError(str(e)) from e

        try:
            scratch.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FetchError(f"Failed to create scratch dir {scratch}: {e}") from e

        out: List[Tuple[Track, Path]] = []
        for index, track in enumerate(tracks):
            reporter.log(f"Track {index + 1}/{len(tracks)}: downloading audio")
            suffix = PurePosixPath(track.key).suffix or ".audio"
            dest = scratch / f"track_{index}{suffix}"
            self._download(client, config.storage.bucket, track.key, dest)
            out.append((track, dest))
        return out

    def _download(self, client, bucket: str, key: str, dest: Path) -> None:
        try:
            with_retry(
                lambda: client.download_file(bucket, key, str(dest)),
                retries=DOWNLOAD_RETRIES,
                backoff_seconds=1.0,
                retry_on=NETWORK_ERRORS,
            )
        except ClientError as e:
            code = client_error_code(e)
            if code in ("404", "NoSuchKey"):
                raise FetchError(f"Audio object missing: {key}") from e
            raise FetchError(f"Failed to download {key} ({code or 'unknown'}): {e}") from e
        except (BotoCoreError, OSError) as e:
            raise FetchError(f"Failed to download {key}: {e}") from e
        if not dest.is_file():
            raise FetchError(f"Download produced no file for {key}")

    def extract(self, tools: ResolvedTools, src: Path, wav_path: Path, reporter: JobReporter) -> Tuple[Path, Optional[float]]:
        """Normalize audio to mono WAV at the configured sample rate. Returns the WAV path and the input duration when ffmpeg reported one."""
        parser = FfmpegProgressParser()
        duration: Optional[float] = None

        def on_line(line: str) -> None:
            nonlocal duration
            reporter.log(line)
            delta = parser.parse(line)
            if delta is not None and duration is None:
                duration = delta.duration

        args = [
            tools.ffmpeg_binary, "-y", "-nostdin",
            "-i", str(src),
            "-ar", str(self.sample_rate),
            "-ac", "1",
            str(wav_path),
        ]
        try:
            result = run_tool(args, on_line)
        except OSError as e:
            raise ExtractionError(f"Failed to execute ffmpeg ({tools.ffmpeg_binary}): {e}") from e
        if result.returncode != 0:
            raise ExtractionError(f"ffmpeg exited with code {result.returncode}: {result.last_line}")
        if not wav_path.is_file():
            raise ExtractionError(f"ffmpeg produced no output file: {wav_path}")
        return wav_path, duration

    def recognize(
        self,
        tools: ResolvedTools,
        wav_path: Path,
        output_base: Path,
        duration: Optional[float],
        reporter: JobReporter,
        *,
        base_units: int = 0,
    ) -> List[RawSegment]:
        """Run whisper on one WAV; every output line is logged and fed to the progress parser."""

        def on_line(line: str) -> None:
            reporter.log(line)
            pct = percent_of(self.progress_parser.parse(line), duration)
            if pct is not None:
                reporter.set_completed(base_units + int(pct * UNITS_PER_TRACK / 100))

        args = [
            tools.whisper_binary,
            "-m", tools.model_path,
            "-f", str(wav_path),
            "-l", self.language,
            "-oj", "-otxt",
            "-of", str(output_base),
            "-pp",
        ]
        try:
            result = run_tool(args, on_line)
        except OSError as e:
            raise RecognitionError(f"Failed to execute whisper ({tools.whisper_binary}): {e}") from e
        if result.returncode != 0:
            raise RecognitionError(f"whisper exited with code {result.returncode}: {result.last_line}")
        return load_segments(str(output_base))

    def format(self, meeting_id: str, config: AppConfig, segments: List[TranscriptSegment], reporter: JobReporter) -> str:
        output_dir = config.pipeline.output_dir.strip() or self.probes.output_dir()
        path = Path(output_dir) / transcript_filename(meeting_id)
        text = format_segments(
            segments,
            include_timestamps=config.pipeline.include_timestamps,
            include_speaker=config.pipeline.include_speaker,
        )
        if not segments:
            reporter.log("No speech detected")
        write_transcript(path, text)
        reporter.log("Done")
        logger.info("transcript_written", extra={"meeting_id": meeting_id, "path": str(path), "segments": len(segments)})
        return str(path)


def place_on_timeline(track: Track, segments: List[RawSegment]) -> List[TranscriptSegment]:
    """Offset track-relative segments by the track's start time of day and attach the track's speaker."""
    offset = float(seconds_of_day(track.track_time) or 0)
    out: List[TranscriptSegment] = []
    for seg in segments:
        text = seg.text.strip()
        if not text:
            continue
        out.append(
            TranscriptSegment(
                start=offset + seg.start,
                end=offset + seg.end if seg.end is not None else None,
                speaker=track.speaker,
                text=text,
            )
        )
    return out
