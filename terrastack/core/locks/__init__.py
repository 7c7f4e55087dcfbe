"""Locks — distributed mutual exclusion on DynamoDB."""

from terrastack.core.locks.dynamodb import DynamoDBLockManager, LockRecord, default_holder
from terrastack.core.locks.table import delete_lock_table, ensure_lock_table

__all__ = [
    "DynamoDBLockManager",
    "LockRecord",
    "default_holder",
    "delete_lock_table",
    "ensure_lock_table",
]
