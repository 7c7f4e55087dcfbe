"""
Lock table management — create (and, for cleanup, delete) the table.

Creation is idempotent and safe to race: a table that already exists,
or that another process creates between our check and our create,
counts as success as long as its key schema is the one the lock
manager writes.
"""

from __future__ import annotations

import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from terrastack.core.errors import LockError
from terrastack.core.locks.dynamodb import STATE_ID_ATTRIBUTE
from terrastack.core.reliability.retry import RetryPolicy, client_error_code

logger = logging.getLogger(__name__)

EXPECTED_KEY_SCHEMA = [{"AttributeName": STATE_ID_ATTRIBUTE, "KeyType": "HASH"}]

_WAITER_CONFIG = {"Delay": 2, "MaxAttempts": 60}


def _describe(client: Any, table_name: str, retry: RetryPolicy) -> dict[str, Any] | None:
    try:
        response = retry.call(
            lambda: client.describe_table(TableName=table_name),
            f"describe table {table_name}",
        )
    except ClientError as e:
        if client_error_code(e) == "ResourceNotFoundException":
            return None
        raise
    return response.get("Table", {})


def _check_schema(table_name: str, table: dict[str, Any]) -> None:
    key_schema = table.get("KeySchema", [])
    attribute_types = {
        a.get("AttributeName"): a.get("AttributeType")
        for a in table.get("AttributeDefinitions", [])
    }
    if key_schema != EXPECTED_KEY_SCHEMA or attribute_types.get(STATE_ID_ATTRIBUTE) != "S":
        raise LockError(
            f"Lock table {table_name} exists but its primary key is {key_schema}; "
            f"expected a single string hash key '{STATE_ID_ATTRIBUTE}'"
        )


def ensure_lock_table(
    client: Any,
    table_name: str,
    retry_policy: RetryPolicy | None = None,
) -> bool:
    """Make sure the lock table exists and is ACTIVE.

    Returns:
        True if this call created the table.

    Raises:
        LockError: If the table cannot be checked or created, or exists
            with a different key schema.
    """
    retry = retry_policy or RetryPolicy()
    created = False

    try:
        table = _describe(client, table_name, retry)
        if table is None:
            logger.info("Lock table %s does not exist; creating it", table_name)
            created = _create(client, table_name, retry)
            table = _describe(client, table_name, retry) or {}

        _check_schema(table_name, table)

        if table.get("TableStatus", "ACTIVE") != "ACTIVE":
            logger.info("Waiting for lock table %s to become active", table_name)
            client.get_waiter("table_exists").wait(
                TableName=table_name, WaiterConfig=_WAITER_CONFIG
            )
    except (ClientError, BotoCoreError) as e:
        # WaiterError is a BotoCoreError
        raise LockError(f"Failed to ensure lock table {table_name}: {e}") from e

    return created


def _create(client: Any, table_name: str, retry: RetryPolicy) -> bool:
    """Create the table. False if someone else created it first."""
    try:
        retry.call(
            lambda: client.create_table(
                TableName=table_name,
                AttributeDefinitions=[
                    {"AttributeName": STATE_ID_ATTRIBUTE, "AttributeType": "S"},
                ],
                KeySchema=EXPECTED_KEY_SCHEMA,
                BillingMode="PAY_PER_REQUEST",
            ),
            f"create table {table_name}",
        )
    except ClientError as e:
        if client_error_code(e) == "ResourceInUseException":
            logger.info("Lock table %s was created concurrently", table_name)
            return False
        raise
    return True


def delete_lock_table(
    client: Any,
    table_name: str,
    retry_policy: RetryPolicy | None = None,
) -> bool:
    """Delete the lock table. Cleanup tooling only.

    Returns:
        True if a table was deleted, False if there was none.
    """
    retry = retry_policy or RetryPolicy()
    try:
        retry.call(
            lambda: client.delete_table(TableName=table_name),
            f"delete table {table_name}",
        )
        client.get_waiter("table_not_exists").wait(
            TableName=table_name, WaiterConfig=_WAITER_CONFIG
        )
    except ClientError as e:
        if client_error_code(e) == "ResourceNotFoundException":
            return False
        raise LockError(f"Failed to delete lock table {table_name}: {e}") from e
    except BotoCoreError as e:
        raise LockError(f"Failed to delete lock table {table_name}: {e}") from e

    logger.info("Deleted lock table %s", table_name)
    return True
