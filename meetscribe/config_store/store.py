"""Persistent user configuration with default resolution and coalesced writes."""
import logging
import os
import re
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from meetscribe.config_store.probes import Probes
from meetscribe.core.config import settings
from meetscribe.core.errors import ConfigPersistError
from meetscribe.models.schemas import AppConfig

logger = logging.getLogger(__name__)

# English-only whisper.cpp models cannot transcribe the configured language.
ENGLISH_ONLY_MODEL_RE = re.compile(r"^ggml-(?P<size>[\w.-]+?)\.en\.bin$")
MODEL_DIR_PREFIXES = ("models/", "models\\")


def normalize_model_path(model_path: str) -> str:
    """Apply the one-time model path normalization: strip a leading models/ prefix from a relative path, and rewrite ggml-<size>.en.bin to ggml-<size>.bin.
    Why available: Older configs stored paths relative to the app folder and English-only model names; both are migrated at load time."""
    value = (model_path or "").strip()
    if not value:
        return ""
    if not os.path.isabs(value):
        for prefix in MODEL_DIR_PREFIXES:
            if value.startswith(prefix):
                value = value[len(prefix):]
                break
    cut = max(value.rfind("/"), value.rfind("\\")) + 1
    head, name = value[:cut], value[cut:]
    m = ENGLISH_ONLY_MODEL_RE.match(name)
    if m:
        name = f"ggml-{m.group('size')}.bin"
    return head + name


def normalize_config(config: AppConfig) -> AppConfig:
    """Return a copy of config with the model path normalized."""
    out = config.model_copy(deep=True)
    out.pipeline.model_path = normalize_model_path(out.pipeline.model_path)
    return out


def resolve_defaults(config: AppConfig, probes: Probes) -> AppConfig:
    """Fill blank binary, ffmpeg, model and output-directory fields from probes. Fields stay blank when nothing is found; the input is not mutated.
    Why available: Pure merge step so "defaults for blanks" can be tested without touching disk; ConfigStore runs it at load time and on every update."""
    out = config.model_copy(deep=True)
    pipeline = out.pipeline
    if not pipeline.binary_path.strip():
        pipeline.binary_path = probes.whisper_binary() or ""
    if not pipeline.ffmpeg_path.strip():
        pipeline.ffmpeg_path = probes.ffmpeg_binary() or ""
    if not pipeline.model_path.strip():
        pipeline.model_path = probes.whisper_model() or ""
    if not pipeline.output_dir.strip():
        pipeline.output_dir = probes.output_dir() or ""
    return out


class ConfigStore:
    """Owns the in-memory AppConfig and its JSON file.

    The in-memory value is authoritative for the running process. Writes go
    through a coalescing queue: while one write is in flight, newer values
    replace each other in a single pending slot and the writer issues one
    follow-up write with the latest value.
    """

    def __init__(self, path: Optional[str] = None, probes: Optional[Probes] = None):
        self.path = path or settings.config_path
        self.probes = probes or Probes()
        self._lock = threading.Lock()
        self._write_cond = threading.Condition()
        self._pending: Optional[AppConfig] = None
        self._writing = False
        self._config = self.load()

    def load(self) -> AppConfig:
        """Read the config file; missing, blank, unreadable or malformed files yield defaults. Never raises and never rewrites the file."""
        return resolve_defaults(normalize_config(self._read_file()), self.probes)

    def _read_file(self) -> AppConfig:
        try:
            text = Path(self.path).read_text(encoding="utf-8")
        except FileNotFoundError:
            return AppConfig()
        except (OSError, UnicodeDecodeError):
            logger.warning("config_unreadable", exc_info=True, extra={"path": self.path})
            return AppConfig()
        text = text.lstrip("\ufeff").strip()
        if not text:
            return AppConfig()
        try:
            return AppConfig.model_validate_json(text)
        except ValidationError:
            logger.warning("config_malformed_using_defaults", exc_info=True, extra={"path": self.path})
            return AppConfig()

    def current(self) -> AppConfig:
        """Point-in-time copy of the in-memory config."""
        with self._lock:
            return self._config.model_copy(deep=True)

    def update(self, config: AppConfig) -> AppConfig:
        """Replace the in-memory config and persist it. Returns the resolved config now in effect."""
        normalized = normalize_config(config)
        resolved = resolve_defaults(normalized, self.probes)
        with self._lock:
            self._config = resolved
            # enqueue under the same lock so file order matches memory order
            must_drain = self._enqueue(normalized)
        if must_drain:
            self._drain()
        return resolved.model_copy(deep=True)

    def save(self, config: AppConfig) -> None:
        """Persist config. Returns after the write if no other write was in flight; otherwise the value is queued for the in-flight writer."""
        if self._enqueue(config.model_copy(deep=True)):
            self._drain()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no write is pending or in flight. Returns False on timeout."""
        with self._write_cond:
            return self._write_cond.wait_for(
                lambda: not self._writing and self._pending is None, timeout
            )

    def _enqueue(self, config: AppConfig) -> bool:
        with self._write_cond:
            self._pending = config
            if self._writing:
                return False
            self._writing = True
            return True

    def _drain(self) -> None:
        finished = False
        try:
            while True:
                with self._write_cond:
                    value, self._pending = self._pending, None
                    if value is None:
                        self._writing = False
                        self._write_cond.notify_all()
                        finished = True
                        return
                try:
                    self._write(value)
                except ConfigPersistError:
                    logger.error("config_persist_failed", exc_info=True, extra={"path": self.path})
        finally:
            if not finished:
                with self._write_cond:
                    self._writing = False
                    self._write_cond.notify_all()

    def _write(self, config: AppConfig) -> None:
        path = Path(self.path)
        tmp = path.with_name(path.name + ".tmp")
        try:
            payload = config.model_dump_json(by_alias=True, indent=2)
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)
        except (OSError, ValueError) as e:
            raise ConfigPersistError(f"Failed to write config {path}: {e}") from e
        logger.info("config_saved", extra={"path": str(path)})
