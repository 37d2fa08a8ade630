#!/usr/bin/env python3
"""Print service settings, the resolved user config and probed tool defaults. Run from repo root: python scripts/print_config.py"""
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from meetscribe.config_store.probes import Probes
from meetscribe.config_store.store import ConfigStore
from meetscribe.core.config import settings


def _mask(value: str) -> str:
    if not value:
        return "(unset)"
    return value[:2] + "*" * max(0, len(value) - 2)


def main():
    """Print settings (env), the effective AppConfig (secrets masked) and what the probes found."""
    probes = Probes()
    config = ConfigStore(probes=probes).current()

    print("Service settings")
    print("----------------")
    print(f"  MEETSCRIBE_CONFIG_PATH  = {settings.config_path}")
    print(f"  MEETSCRIBE_SCRATCH_DIR  = {settings.scratch_dir}")
    print(f"  WHISPER_LANGUAGE        = {settings.whisper_language}")
    print(f"  STORAGE timeouts        = connect {settings.storage_connect_timeout}s / read {settings.storage_read_timeout}s")
    print(f"  CHECK_RETRIES           = {settings.check_retries} (backoff {settings.check_backoff_seconds}s)")
    print("")
    print("Storage")
    print("-------")
    print(f"  url        = {config.storage.url or '(unset)'}")
    print(f"  region     = {config.storage.region or '(default us-east-1)'}")
    print(f"  bucket     = {config.storage.bucket or '(unset)'}")
    print(f"  accessKey  = {_mask(config.storage.access_key)}")
    print(f"  secretKey  = {_mask(config.storage.secret_key)}")
    print("")
    print("Pipeline")
    print("--------")
    print(f"  binaryPath = {config.pipeline.binary_path or '(not found)'}")
    print(f"  ffmpegPath = {config.pipeline.ffmpeg_path or '(not found)'}")
    print(f"  modelPath  = {config.pipeline.model_path or '(not found)'}")
    print(f"  outputDir  = {config.pipeline.output_dir}")
    print(f"  model root = {probes.model_root()}")
    print("")
    print("Env: WHISPER_BINARY, FFMPEG_BINARY, WHISPER_MODEL (see .env.example)")


if __name__ == "__main__":
    main()
