import logging
import time
from typing import Callable, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
)

from meetscribe.core.config import settings
from meetscribe.core.errors import StorageConfigError
from meetscribe.models.schemas import AppConfig, Health
from meetscribe.storage.client import S3ClientFactory, build_s3_client
from meetscribe.utils.retry import with_retry

logger = logging.getLogger(__name__)

NETWORK_ERRORS = (BotoConnectionError, HTTPClientError)
AUTH_ERROR_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "InvalidToken",
    "ExpiredToken",
    "403",
}
MISSING_BUCKET_CODES = {"NoSuchBucket", "404"}


def client_error_code(e: ClientError) -> str:
    return str((e.response or {}).get("Error", {}).get("Code", ""))


class ConnectivityChecker:
    """Verifies the configured bucket is reachable with a one-key listing. Expected failures become Health.unreachable(reason), never exceptions.
    Why available: Backs check_minio so the client can show a health flag and decide whether to retry."""

    def __init__(
        self,
        client_factory: S3ClientFactory = build_s3_client,
        *,
        retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client_factory = client_factory
        self.retries = settings.check_retries if retries is None else retries
        self.backoff_seconds = settings.check_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.sleep = sleep

    def check(self, config: AppConfig) -> Health:
        if config is None:
            raise ValueError("config is required")
        storage = config.storage
        try:
            client = self.client_factory(storage)
        except StorageConfigError as e:
            return Health.unreachable("incomplete_config", str(e))
        except ValueError as e:
            # botocore rejects malformed endpoint urls at construction time
            return Health.unreachable("incomplete_config", f"Invalid storage endpoint: {e}")

        try:
            with_retry(
                lambda: client.list_objects_v2(Bucket=storage.bucket, MaxKeys=1),
                retries=self.retries,
                backoff_seconds=self.backoff_seconds,
                retry_on=NETWORK_ERRORS,
                sleep=self.sleep,
            )
        except ClientError as e:
            code = client_error_code(e)
            if code in AUTH_ERROR_CODES:
                health = Health.unreachable("auth_failed", f"Storage rejected the credentials ({code})")
            elif code in MISSING_BUCKET_CODES:
                health = Health.unreachable("bucket_missing", f"Bucket not found: {storage.bucket}")
            else:
                health = Health.unreachable("storage_error", f"Storage error ({code or 'unknown'}): {e}")
        except NETWORK_ERRORS as e:
            health = Health.unreachable("network_error", f"Storage endpoint unreachable: {e}")
        except BotoCoreError as e:
            health = Health.unreachable("storage_error", str(e))
        else:
            logger.info("storage_reachable", extra={"endpoint": storage.url, "bucket": storage.bucket})
            return Health.ok()

        logger.warning(
            "storage_unreachable",
            extra={"endpoint": storage.url, "bucket": storage.bucket, "reason": health.reason},
        )
        return health
