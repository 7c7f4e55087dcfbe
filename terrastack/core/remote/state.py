"""
Remote state manager — bootstraps the S3 bucket and the lock table.

terraform's S3 backend assumes its bucket (and, for locking, its
DynamoDB table) already exist. ``ensure()`` checks both and creates
whatever is missing, then hands back the backend settings that
``terraform init`` needs.

Every step is idempotent and tolerates concurrent runs:
    bucket missing        → create it (versioning + encryption on)
    BucketAlreadyOwnedByYou → someone in our account won the race; fine
    BucketAlreadyExists   → name taken by another account; fatal
    lock table missing    → create it (ResourceInUse counts as success)

Nothing is cached between runs: every invocation checks again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from botocore.exceptions import BotoCoreError, ClientError

from terrastack.core.errors import LockError, RemoteStateError
from terrastack.core.locks.table import ensure_lock_table
from terrastack.core.models.config import DEFAULT_LOCK_TABLE, RemoteStateConfig
from terrastack.core.reliability.retry import RetryPolicy, client_error_code

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("s3",)

_BUCKET_MISSING_CODES = frozenset({"404", "NoSuchBucket", "NotFound"})
_WAITER_CONFIG = {"Delay": 2, "MaxAttempts": 30}


@dataclass(frozen=True)
class RemoteStateDescriptor:
    """Everything needed to find (or create) one module's state."""

    bucket: str
    key: str
    region: str
    lock_table: str = DEFAULT_LOCK_TABLE
    encrypt: bool = True
    versioning: bool = True


@dataclass(frozen=True)
class BackendConfig:
    """The ``backend "s3"`` settings passed to terraform init."""

    bucket: str
    key: str
    region: str
    encrypt: bool = True
    dynamodb_table: str = ""
    backend: str = "s3"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "bucket": self.bucket,
            "key": self.key,
            "region": self.region,
            "encrypt": self.encrypt,
        }
        if self.dynamodb_table:
            data["dynamodb_table"] = self.dynamodb_table
        return data

    def to_init_args(self) -> list[str]:
        """``-backend-config=key=value`` arguments for terraform init."""
        args = []
        for key, value in self.to_dict().items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            args.append(f"-backend-config={key}={value}")
        return args


def descriptor_from_config(config: RemoteStateConfig) -> RemoteStateDescriptor:
    """Build a descriptor from a module's remote_state section.

    Raises:
        RemoteStateError: For an unsupported backend or missing bucket.
    """
    if config.backend not in SUPPORTED_BACKENDS:
        raise RemoteStateError(
            f"Unsupported remote state backend '{config.backend}' "
            f"(supported: {', '.join(SUPPORTED_BACKENDS)})"
        )
    if not config.bucket:
        raise RemoteStateError("remote_state.bucket is required for the s3 backend")
    if not config.key:
        raise RemoteStateError("remote_state.key is required for the s3 backend")

    return RemoteStateDescriptor(
        bucket=config.bucket,
        key=config.key,
        region=config.region,
        lock_table=config.lock_table,
        encrypt=config.encrypt,
        versioning=config.versioning,
    )


class RemoteStateManager:
    """Makes sure a module's state bucket and lock table exist.

    Args:
        s3_client: boto3 S3 client in the state bucket's region.
        dynamodb_client: boto3 DynamoDB client in the same region.
        retry_policy: Bounded retry for transient AWS errors.
        confirm: Optional prompt callback. When set, it is asked before a
            missing bucket is created; returning False aborts.
    """

    def __init__(
        self,
        s3_client: Any,
        dynamodb_client: Any,
        retry_policy: RetryPolicy | None = None,
        confirm: Callable[[str], bool] | None = None,
    ):
        self._s3 = s3_client
        self._dynamodb = dynamodb_client
        self._retry = retry_policy or RetryPolicy()
        self._confirm = confirm

    def ensure(self, descriptor: RemoteStateDescriptor) -> BackendConfig:
        """Create the bucket and lock table if needed.

        Returns:
            Backend settings for terraform init.

        Raises:
            RemoteStateError: If anything could not be checked or created.
        """
        try:
            self._ensure_bucket(descriptor)
        except (ClientError, BotoCoreError) as e:
            raise RemoteStateError(
                f"Failed to set up state bucket {descriptor.bucket}: {e}"
            ) from e

        if descriptor.lock_table:
            try:
                ensure_lock_table(self._dynamodb, descriptor.lock_table, self._retry)
            except LockError as e:
                raise RemoteStateError(str(e)) from e

        return BackendConfig(
            bucket=descriptor.bucket,
            key=descriptor.key,
            region=descriptor.region,
            encrypt=descriptor.encrypt,
            dynamodb_table=descriptor.lock_table,
        )

    def bucket_exists(self, bucket: str) -> bool:
        """Read-only existence probe.

        Raises:
            ClientError: For anything other than "not found" (e.g. 403,
                a bucket owned by another account).
        """
        try:
            self._retry.call(
                lambda: self._s3.head_bucket(Bucket=bucket),
                f"head bucket {bucket}",
            )
        except ClientError as e:
            if client_error_code(e) in _BUCKET_MISSING_CODES:
                return False
            raise
        return True

    # ── Internals ───────────────────────────────────────────────

    def _ensure_bucket(self, descriptor: RemoteStateDescriptor) -> None:
        bucket = descriptor.bucket

        if self.bucket_exists(bucket):
            logger.debug("State bucket %s exists", bucket)
            if descriptor.versioning:
                self._warn_if_unversioned(bucket)
            return

        if self._confirm is not None:
            prompt = (
                f"Remote state S3 bucket {bucket} does not exist. "
                "Create it now?"
            )
            if not self._confirm(prompt):
                raise RemoteStateError(
                    f"State bucket {bucket} does not exist and creation was declined"
                )

        if not self._create_bucket(bucket, descriptor.region):
            # Created concurrently by another run; it owns the settings.
            return

        self._wait_for_bucket(bucket)

        if descriptor.versioning:
            logger.info("Enabling versioning on %s", bucket)
            self._retry.call(
                lambda: self._s3.put_bucket_versioning(
                    Bucket=bucket,
                    VersioningConfiguration={"Status": "Enabled"},
                ),
                f"enable versioning on {bucket}",
            )

        if descriptor.encrypt:
            logger.info("Enabling default encryption on %s", bucket)
            self._retry.call(
                lambda: self._s3.put_bucket_encryption(
                    Bucket=bucket,
                    ServerSideEncryptionConfiguration={
                        "Rules": [
                            {
                                "ApplyServerSideEncryptionByDefault": {
                                    "SSEAlgorithm": "AES256",
                                },
                            },
                        ],
                    },
                ),
                f"enable encryption on {bucket}",
            )

    def _create_bucket(self, bucket: str, region: str) -> bool:
        """Create the bucket. False if it already belongs to us."""
        kwargs: dict[str, Any] = {"Bucket": bucket}
        # us-east-1 rejects an explicit LocationConstraint
        if region and region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}

        logger.info("Creating state bucket %s in %s", bucket, region)
        try:
            self._retry.call(lambda: self._s3.create_bucket(**kwargs), f"create bucket {bucket}")
        except ClientError as e:
            code = client_error_code(e)
            if code == "BucketAlreadyOwnedByYou":
                logger.info("State bucket %s was created concurrently", bucket)
                return False
            if code == "BucketAlreadyExists":
                raise RemoteStateError(
                    f"Bucket name {bucket} is already taken by another account; "
                    "pick a different remote_state.bucket"
                ) from e
            raise
        return True

    def _wait_for_bucket(self, bucket: str) -> None:
        self._s3.get_waiter("bucket_exists").wait(Bucket=bucket, WaiterConfig=_WAITER_CONFIG)

    def _warn_if_unversioned(self, bucket: str) -> None:
        response = self._retry.call(
            lambda: self._s3.get_bucket_versioning(Bucket=bucket),
            f"get versioning of {bucket}",
        )
        if response.get("Status") != "Enabled":
            logger.warning(
                "Versioning is not enabled on state bucket %s; "
                "earlier state versions cannot be recovered",
                bucket,
            )
