"""
Cleanup use case — delete a module's remote state infrastructure.

Removes every object version and delete marker from the state bucket,
the bucket itself, and (unless told otherwise) the lock table. This is
irreversible; the CLI asks for confirmation first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from terrastack.core.errors import RemoteStateError, TerrastackError
from terrastack.core.remote.cleanup import delete_remote_state
from terrastack.core.remote.state import descriptor_from_config
from terrastack.core.use_cases.common import load_module_config, resolve_clients

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    module_path: Path | None = None
    bucket: str = ""
    lock_table: str = ""
    bucket_deleted: bool = False
    lock_table_deleted: bool = False
    error: TerrastackError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "module": str(self.module_path) if self.module_path else None,
            "bucket": self.bucket,
            "lock_table": self.lock_table,
            "bucket_deleted": self.bucket_deleted,
            "lock_table_deleted": self.lock_table_deleted,
            "status": "ok" if self.ok else "failed",
            "error": str(self.error) if self.error else None,
        }


def cleanup_remote_state(
    working_dir: Path | None = None,
    config_path: Path | None = None,
    keep_lock_table: bool = False,
    substitutions: Mapping[str, str] | None = None,
    clients: Any | None = None,
) -> CleanupResult:
    """Delete the state bucket (and lock table) named by a module's config."""
    clients = resolve_clients(clients)
    result = CleanupResult()

    try:
        module_dir, resolved = load_module_config(working_dir, config_path, substitutions)
        result.module_path = module_dir
        if resolved.config.remote_state is None:
            raise RemoteStateError(f"{resolved.path} has no remote_state section")

        descriptor = descriptor_from_config(resolved.config.remote_state)
        result.bucket = descriptor.bucket
        result.lock_table = "" if keep_lock_table else descriptor.lock_table

        deleted = delete_remote_state(
            clients.s3(descriptor.region),
            clients.dynamodb(descriptor.region),
            descriptor.bucket,
            result.lock_table or None,
        )
        result.bucket_deleted = deleted["bucket_deleted"]
        result.lock_table_deleted = deleted.get("lock_table_deleted", False)
    except TerrastackError as e:
        logger.debug("cleanup failed: %s", e)
        result.error = e

    return result
