from typing import Any, Callable

import boto3
from botocore.config import Config

from meetscribe.core.config import settings
from meetscribe.core.errors import StorageConfigError
from meetscribe.models.schemas import StorageConfig

DEFAULT_REGION = "us-east-1"

# Anything with the boto3 S3 client surface used here: list_objects_v2, get_paginator, download_file.
S3ClientFactory = Callable[[StorageConfig], Any]


def build_s3_client(storage: StorageConfig) -> Any:
    """Return a boto3 S3 client for an S3-compatible endpoint (path-style addressing, bounded timeouts). Raises StorageConfigError if url, keys or bucket are blank.
    Why available: Catalog, connectivity check and fetch stage all talk to the store through this one constructor so timeouts and addressing stay consistent."""
    if not storage.is_complete:
        raise StorageConfigError("Storage config is incomplete (url, access key, secret key and bucket are required)")
    return boto3.client(
        "s3",
        endpoint_url=storage.url.strip(),
        region_name=storage.region.strip() or DEFAULT_REGION,
        aws_access_key_id=storage.access_key,
        aws_secret_access_key=storage.secret_key,
        config=Config(
            s3={"addressing_style": "path"},
            connect_timeout=settings.storage_connect_timeout,
            read_timeout=settings.storage_read_timeout,
            retries={"max_attempts": settings.storage_max_attempts, "mode": "standard"},
        ),
    )
