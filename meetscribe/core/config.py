import os
import tempfile
from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

load_dotenv()

_DEFAULT_DATA_DIR = os.path.join(os.getcwd(), "data")


class Settings(BaseModel):
    """Service settings loaded from environment: where the user config and scratch files live, recognition language, object-store timeouts and retry budget.
    Why available: Single source of process-level configuration; the user-editable AppConfig (credentials, binary paths) is persisted separately by the ConfigStore."""
    data_dir: str = os.getenv("MEETSCRIBE_DATA_DIR", _DEFAULT_DATA_DIR)
    config_path: str = os.getenv(
        "MEETSCRIBE_CONFIG_PATH",
        os.path.join(os.getenv("MEETSCRIBE_DATA_DIR", _DEFAULT_DATA_DIR), "config.json"),
    )
    scratch_dir: str = os.getenv("MEETSCRIBE_SCRATCH_DIR", os.path.join(tempfile.gettempdir(), "meetscribe"))
    whisper_language: str = os.getenv("WHISPER_LANGUAGE", "ja")
    default_model_name: str = os.getenv("WHISPER_DEFAULT_MODEL", "ggml-large-v3.bin")
    sample_rate: int = int(os.getenv("AUDIO_SAMPLE_RATE", "16000"))
    storage_connect_timeout: int = int(os.getenv("STORAGE_CONNECT_TIMEOUT", "5"))
    storage_read_timeout: int = int(os.getenv("STORAGE_READ_TIMEOUT", "60"))
    storage_max_attempts: int = int(os.getenv("STORAGE_MAX_ATTEMPTS", "2"))
    check_retries: int = int(os.getenv("CHECK_RETRIES", "2"))
    check_backoff_seconds: float = float(os.getenv("CHECK_BACKOFF_SECONDS", "0.5"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    @field_validator("sample_rate", "storage_connect_timeout", "storage_read_timeout", "storage_max_attempts")
    @classmethod
    def must_be_positive(cls, v):
        """Ensure sample rate, storage timeouts and attempt budget are positive integers. Prevents invalid config from env."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("check_retries")
    @classmethod
    def must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError("must be >= 0")
        return v


settings = Settings()
