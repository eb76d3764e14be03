from __future__ import annotations

from typing import Any

from loguru import logger

from .config import Settings


def get_table(settings: Settings) -> Any:
    # Lazy import so unit tests can run without AWS deps installed.
    import boto3  # type: ignore
    from botocore.config import Config  # type: ignore

    config = Config(
        connect_timeout=settings.timeout_seconds,
        read_timeout=settings.timeout_seconds,
        # Retry policy belongs to the caller.
        retries={"total_max_attempts": 1, "mode": "standard"},
    )
    ddb = boto3.resource(
        "dynamodb",
        region_name=settings.region,
        endpoint_url=settings.endpoint_url,
        config=config,
    )
    logger.info(f"Using DynamoDB table {settings.table_name} (endpoint: {settings.endpoint_url or 'default'})")
    return ddb.Table(settings.table_name)
