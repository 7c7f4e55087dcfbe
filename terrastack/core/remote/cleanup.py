"""
Remote state cleanup — tear down a state bucket and its lock table.

Normal operation never deletes either. These helpers back the
``terrastack cleanup`` command and throwaway test environments.
A versioned bucket can only be deleted once every object version and
delete marker in it is gone, so deletion walks all versions first.
"""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from terrastack.core.errors import LockError, RemoteStateError
from terrastack.core.locks.table import delete_lock_table
from terrastack.core.reliability.retry import RetryPolicy, client_error_code

logger = logging.getLogger(__name__)

# DeleteObjects accepts at most 1000 keys per request
_DELETE_BATCH = 1000


def _list_all_versions(s3_client: Any, bucket: str, retry: RetryPolicy) -> list[dict[str, str]]:
    """Every object version and delete marker in the bucket."""
    identifiers: list[dict[str, str]] = []
    kwargs: dict[str, Any] = {"Bucket": bucket}

    while True:
        page = retry.call(
            lambda: s3_client.list_object_versions(**kwargs),
            f"list object versions in {bucket}",
        )
        for entry in page.get("Versions", []) + page.get("DeleteMarkers", []):
            identifiers.append({"Key": entry["Key"], "VersionId": entry["VersionId"]})

        if not page.get("IsTruncated"):
            return identifiers
        kwargs = {
            "Bucket": bucket,
            "KeyMarker": page.get("NextKeyMarker"),
            "VersionIdMarker": page.get("NextVersionIdMarker"),
        }


def delete_bucket(s3_client: Any, bucket: str, retry_policy: RetryPolicy | None = None) -> bool:
    """Delete every object version in ``bucket``, then the bucket.

    Returns:
        True if the bucket was deleted, False if it did not exist.

    Raises:
        RemoteStateError: If listing or deleting fails.
    """
    retry = retry_policy or RetryPolicy()
    try:
        identifiers = _list_all_versions(s3_client, bucket, retry)
        for start in range(0, len(identifiers), _DELETE_BATCH):
            batch = identifiers[start:start + _DELETE_BATCH]
            response = retry.call(
                lambda: s3_client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": batch, "Quiet": True},
                ),
                f"delete objects in {bucket}",
            )
            errors = response.get("Errors", [])
            if errors:
                first = errors[0]
                raise RemoteStateError(
                    f"Failed to delete {len(errors)} object version(s) in {bucket}, "
                    f"e.g. {first.get('Key')}: {first.get('Message', first.get('Code'))}"
                )
        logger.info("Deleted %d object version(s) from %s", len(identifiers), bucket)

        retry.call(lambda: s3_client.delete_bucket(Bucket=bucket), f"delete bucket {bucket}")
    except ClientError as e:
        if client_error_code(e) == "NoSuchBucket":
            logger.info("State bucket %s does not exist; nothing to delete", bucket)
            return False
        raise RemoteStateError(f"Failed to delete state bucket {bucket}: {e}") from e
    except BotoCoreError as e:
        raise RemoteStateError(f"Failed to delete state bucket {bucket}: {e}") from e

    logger.info("Deleted state bucket %s", bucket)
    return True


def delete_remote_state(
    s3_client: Any,
    dynamodb_client: Any,
    bucket: str,
    lock_table: str | None,
    retry_policy: RetryPolicy | None = None,
) -> dict[str, bool]:
    """Delete a state bucket and (optionally) its lock table."""
    result = {"bucket_deleted": delete_bucket(s3_client, bucket, retry_policy)}
    if lock_table:
        try:
            result["lock_table_deleted"] = delete_lock_table(
                dynamodb_client, lock_table, retry_policy
            )
        except LockError as e:
            raise RemoteStateError(str(e)) from e
    return result
