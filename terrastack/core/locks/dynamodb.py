"""
DynamoDB lock manager — mutual exclusion for terraform state.

A lock is an item in a DynamoDB table keyed by the state identifier.
Acquiring is a conditional put that only succeeds when no item with
that key exists; releasing is a conditional delete that only succeeds
when the stored holder matches. DynamoDB evaluates both conditions
atomically, so two processes (or two machines) can never both hold
the same lock.

Locks do not expire. A lock left behind by a crashed process stays
until an operator removes it (``terrastack release-lock --force``).

Table schema:
    StateFileId (S, HASH)   the state identifier
    Holder       (S)        who holds the lock
    Hostname     (S)        where the holder runs
    CreationDate (S)        ISO-8601 UTC acquisition time
"""

from __future__ import annotations

import getpass
import logging
import socket
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Iterator

from botocore.exceptions import BotoCoreError, ClientError

from terrastack.core.errors import LockError, LockUnavailable
from terrastack.core.reliability.retry import RetryPolicy, client_error_code

logger = logging.getLogger(__name__)

STATE_ID_ATTRIBUTE = "StateFileId"
HOLDER_ATTRIBUTE = "Holder"
HOSTNAME_ATTRIBUTE = "Hostname"
CREATED_ATTRIBUTE = "CreationDate"

CONDITION_FAILED = "ConditionalCheckFailedException"


def default_holder() -> str:
    """Identity recorded on locks taken by this user on this machine."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname()}"


@dataclass(frozen=True)
class LockRecord:
    """One lock, as stored in the table."""

    state_id: str
    holder: str
    hostname: str = ""
    acquired_at: str = ""

    def to_item(self) -> dict[str, dict[str, str]]:
        return {
            STATE_ID_ATTRIBUTE: {"S": self.state_id},
            HOLDER_ATTRIBUTE: {"S": self.holder},
            HOSTNAME_ATTRIBUTE: {"S": self.hostname},
            CREATED_ATTRIBUTE: {"S": self.acquired_at},
        }

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> LockRecord:
        def _s(name: str) -> str:
            return str(item.get(name, {}).get("S", ""))

        return cls(
            state_id=_s(STATE_ID_ATTRIBUTE),
            holder=_s(HOLDER_ATTRIBUTE),
            hostname=_s(HOSTNAME_ATTRIBUTE),
            acquired_at=_s(CREATED_ATTRIBUTE),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "state_id": self.state_id,
            "holder": self.holder,
            "hostname": self.hostname,
            "acquired_at": self.acquired_at,
        }


class DynamoDBLockManager:
    """Acquire and release locks in one DynamoDB table.

    Nothing is cached between calls: every acquire, release, and holder
    lookup reads or writes the table.
    """

    def __init__(
        self,
        client: Any,
        table_name: str,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = client
        self._table = table_name
        self._retry = retry_policy or RetryPolicy()
        self._sleep = sleep

    @property
    def table_name(self) -> str:
        return self._table

    def acquire(
        self,
        state_id: str,
        holder: str,
        max_retries: int = 0,
        retry_interval: float = 10.0,
    ) -> LockRecord:
        """Take the lock for ``state_id``.

        Tries once, then up to ``max_retries`` more times while someone
        else holds the lock, sleeping ``retry_interval`` seconds between
        attempts.

        Raises:
            LockUnavailable: The lock is still held after the last attempt.
            LockError: The table could not be reached or written.
        """
        if not state_id:
            raise LockError("Cannot lock an empty state identifier")

        record = LockRecord(
            state_id=state_id,
            holder=holder,
            hostname=socket.gethostname(),
            acquired_at=datetime.now(UTC).isoformat(),
        )
        attempts = max(0, max_retries) + 1
        current: LockRecord | None = None

        for attempt in range(1, attempts + 1):
            if self._put_if_absent(record):
                logger.info("Acquired lock for %s as %s", state_id, holder)
                return record

            current = self.current_holder(state_id)
            if current == record:
                # An earlier attempt went through but its response was lost
                logger.info("Acquired lock for %s as %s", state_id, holder)
                return record

            if attempt < attempts:
                logger.info(
                    "Lock for %s is held by %s; retrying in %ss (attempt %d/%d)",
                    state_id,
                    current.holder if current else "unknown",
                    retry_interval,
                    attempt,
                    attempts,
                )
                self._sleep(retry_interval)

        raise LockUnavailable(
            state_id,
            holder=current.holder if current else None,
            acquired_at=current.acquired_at if current else None,
        )

    def release(self, state_id: str, holder: str) -> bool:
        """Drop the lock for ``state_id`` if ``holder`` holds it.

        Releasing a lock held by someone else, or one that does not exist,
        changes nothing and is not an error.

        Returns:
            True if a lock was deleted.
        """

        def _delete() -> Any:
            return self._client.delete_item(
                TableName=self._table,
                Key={STATE_ID_ATTRIBUTE: {"S": state_id}},
                ConditionExpression="#holder = :holder",
                ExpressionAttributeNames={"#holder": HOLDER_ATTRIBUTE},
                ExpressionAttributeValues={":holder": {"S": holder}},
            )

        try:
            self._retry.call(_delete, f"release lock {state_id}")
        except ClientError as e:
            if client_error_code(e) == CONDITION_FAILED:
                logger.info("No lock for %s held by %s; nothing to release", state_id, holder)
                return False
            raise LockError(f"Failed to release lock for {state_id}: {e}") from e
        except BotoCoreError as e:
            raise LockError(f"Failed to release lock for {state_id}: {e}") from e

        logger.info("Released lock for %s", state_id)
        return True

    def force_release(self, state_id: str) -> LockRecord | None:
        """Delete the lock for ``state_id`` whoever holds it.

        For operators cleaning up after a crashed holder.

        Returns:
            The record that was removed, or None if there was none.
        """

        def _delete() -> Any:
            return self._client.delete_item(
                TableName=self._table,
                Key={STATE_ID_ATTRIBUTE: {"S": state_id}},
                ReturnValues="ALL_OLD",
            )

        try:
            response = self._retry.call(_delete, f"force release lock {state_id}")
        except (ClientError, BotoCoreError) as e:
            raise LockError(f"Failed to release lock for {state_id}: {e}") from e

        old = response.get("Attributes")
        if not old:
            return None
        removed = LockRecord.from_item(old)
        logger.warning("Forcibly released lock for %s held by %s", state_id, removed.holder)
        return removed

    def current_holder(self, state_id: str) -> LockRecord | None:
        """The lock currently stored for ``state_id``, if any."""

        def _get() -> Any:
            return self._client.get_item(
                TableName=self._table,
                Key={STATE_ID_ATTRIBUTE: {"S": state_id}},
                ConsistentRead=True,
            )

        try:
            response = self._retry.call(_get, f"read lock {state_id}")
        except (ClientError, BotoCoreError) as e:
            raise LockError(f"Failed to read lock for {state_id}: {e}") from e

        item = response.get("Item")
        return LockRecord.from_item(item) if item else None

    @contextmanager
    def hold(
        self,
        state_id: str,
        holder: str,
        max_retries: int = 0,
        retry_interval: float = 10.0,
    ) -> Iterator[LockRecord]:
        """Hold the lock for the duration of a ``with`` block.

        The lock is released however the block exits, including
        KeyboardInterrupt. If the block is already failing, a release
        failure is logged instead of replacing the original error.
        """
        record = self.acquire(state_id, holder, max_retries, retry_interval)
        try:
            yield record
        except BaseException:
            try:
                self.release(state_id, holder)
            except LockError as e:
                logger.error(
                    "Could not release lock for %s: %s. "
                    "Remove it with 'terrastack release-lock --force'.",
                    state_id,
                    e,
                )
            raise
        else:
            self.release(state_id, holder)

    def _put_if_absent(self, record: LockRecord) -> bool:
        """Conditional put. False when a lock already exists."""

        def _put() -> Any:
            return self._client.put_item(
                TableName=self._table,
                Item=record.to_item(),
                ConditionExpression="attribute_not_exists(#id)",
                ExpressionAttributeNames={"#id": STATE_ID_ATTRIBUTE},
            )

        try:
            self._retry.call(_put, f"acquire lock {record.state_id}")
        except ClientError as e:
            if client_error_code(e) == CONDITION_FAILED:
                return False
            raise LockError(f"Failed to acquire lock for {record.state_id}: {e}") from e
        except BotoCoreError as e:
            raise LockError(f"Failed to acquire lock for {record.state_id}: {e}") from e
        return True
