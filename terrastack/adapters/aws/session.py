"""
AWS session adapter — builds boto3 clients from explicit settings.

Nothing here reads global state after construction: settings are
collected once (usually ``AwsSettings.from_env()`` in the CLI) and
handed to every component that talks to AWS.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.config import Config as BotoConfig


@dataclass(frozen=True)
class AwsSettings:
    region_name: Optional[str] = None
    profile_name: Optional[str] = None
    endpoint_url: Optional[str] = None
    connect_timeout: float = 10.0
    read_timeout: float = 30.0

    @staticmethod
    def from_env() -> "AwsSettings":
        region_name = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
        profile_name = os.getenv("AWS_PROFILE")
        endpoint_url = os.getenv("TERRASTACK_AWS_ENDPOINT_URL")

        return AwsSettings(
            region_name=region_name,
            profile_name=profile_name,
            endpoint_url=endpoint_url,
        )


class AwsClientFactory:
    """Creates S3 and DynamoDB clients for a given set of settings.

    botocore's own retry layer is kept minimal; bounded retries with
    transient/permanent classification happen in RetryPolicy.
    """

    def __init__(self, settings: AwsSettings) -> None:
        self._settings = settings
        self._session = boto3.Session(
            profile_name=settings.profile_name,
            region_name=settings.region_name,
        )

    @property
    def settings(self) -> AwsSettings:
        return self._settings

    def client(self, service: str, region_name: str | None = None) -> Any:
        return self._session.client(
            service,
            region_name=region_name or self._settings.region_name,
            endpoint_url=self._settings.endpoint_url,
            config=BotoConfig(
                connect_timeout=self._settings.connect_timeout,
                read_timeout=self._settings.read_timeout,
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )

    def s3(self, region_name: str | None = None) -> Any:
        return self.client("s3", region_name)

    def dynamodb(self, region_name: str | None = None) -> Any:
        return self.client("dynamodb", region_name)
