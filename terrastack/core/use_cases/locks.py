"""
Lock use cases — take or drop a module's state lock by hand.

``acquire-lock`` holds the lock past the end of the process, e.g. to
freeze an environment during maintenance. Until ``release-lock`` runs,
every mutating command against that state waits and then fails with
LockUnavailable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from terrastack.core.config.loader import resolve_config
from terrastack.core.engine.executor import generate_operation_id
from terrastack.core.engine.pipeline import BackendFactory
from terrastack.core.errors import LockError, TerrastackError
from terrastack.core.locks.dynamodb import LockRecord, default_holder
from terrastack.core.models.config import TerrastackConfig
from terrastack.core.persistence.audit import AuditEntry, AuditWriter, default_audit_path
from terrastack.core.remote.state import descriptor_from_config
from terrastack.core.use_cases.common import build_backends, locate_config

logger = logging.getLogger(__name__)


@dataclass
class LockResult:
    """Result of acquire-lock / release-lock."""

    action: str                      # acquire-lock, release-lock
    holder: str
    module_path: Path | None = None
    config_path: Path | None = None
    state_id: str = ""
    lock_table: str = ""
    changed: bool = False            # lock taken, or lock removed
    record: LockRecord | None = None  # our lock (acquire) or the removed one (force)
    current: LockRecord | None = None  # who holds it now, when it isn't us
    operation_id: str = ""
    error: TerrastackError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "action": self.action,
            "module": str(self.module_path) if self.module_path else None,
            "config": str(self.config_path) if self.config_path else None,
            "state_id": self.state_id,
            "lock_table": self.lock_table,
            "holder": self.holder,
            "changed": self.changed,
            "record": self.record.to_dict() if self.record else None,
            "current": self.current.to_dict() if self.current else None,
            "status": "ok" if self.ok else "failed",
            "error": str(self.error) if self.error else None,
            "error_type": type(self.error).__name__ if self.error else None,
        }


def _lock_target(config: TerrastackConfig, config_path: Path) -> tuple[str, str, str]:
    """``(state_id, lock_table, region)`` for a module's config."""
    if config.remote_state is None:
        raise LockError(f"{config_path} has no remote_state section; nothing to lock")
    descriptor = descriptor_from_config(config.remote_state)
    if not descriptor.lock_table:
        raise LockError(f"{config_path} has no remote_state.lock_table; nothing to lock")
    return config.state_id, descriptor.lock_table, descriptor.region


def acquire_lock(
    working_dir: Path | None = None,
    config_path: Path | None = None,
    holder: str | None = None,
    substitutions: Mapping[str, str] | None = None,
    clients: Any | None = None,
    backends: BackendFactory | None = None,
    audit: bool = True,
) -> LockResult:
    """Acquire the module's state lock and keep it.

    The lock table is created first if it doesn't exist. Contended
    locks are retried per the module's ``lock`` section.
    """
    backends = backends or build_backends(clients)
    result = LockResult(
        action="acquire-lock",
        holder=holder or default_holder(),
        operation_id=generate_operation_id(),
    )

    try:
        module_dir, path = locate_config(working_dir, config_path)
        result.module_path, result.config_path = module_dir, path
        resolved = resolve_config(path, substitutions)
        state_id, table, region = _lock_target(resolved.config, resolved.path)
        result.state_id, result.lock_table = state_id, table

        backends.ensure_lock_table(table, region)
        manager = backends.lock_manager(table, region)
        result.record = manager.acquire(
            state_id,
            result.holder,
            max_retries=resolved.config.lock.max_lock_retries,
            retry_interval=resolved.config.lock.retry_interval,
        )
        result.changed = True
    except TerrastackError as e:
        logger.debug("acquire-lock failed for %s: %s", result.config_path, e)
        result.error = e

    if audit:
        _write_audit(result, working_dir)
    return result


def release_lock(
    working_dir: Path | None = None,
    config_path: Path | None = None,
    holder: str | None = None,
    force: bool = False,
    substitutions: Mapping[str, str] | None = None,
    clients: Any | None = None,
    backends: BackendFactory | None = None,
    audit: bool = True,
) -> LockResult:
    """Release the module's state lock.

    Without ``force`` only our own lock is removed; a lock held by
    someone else is left alone and reported in ``current``. Releasing a
    lock that isn't held is not an error.
    """
    backends = backends or build_backends(clients)
    result = LockResult(
        action="release-lock",
        holder=holder or default_holder(),
        operation_id=generate_operation_id(),
    )

    try:
        module_dir, path = locate_config(working_dir, config_path)
        result.module_path, result.config_path = module_dir, path
        resolved = resolve_config(path, substitutions)
        state_id, table, region = _lock_target(resolved.config, resolved.path)
        result.state_id, result.lock_table = state_id, table

        manager = backends.lock_manager(table, region)
        if force:
            result.record = manager.force_release(state_id)
            result.changed = result.record is not None
        else:
            result.changed = manager.release(state_id, result.holder)
            if not result.changed:
                result.current = manager.current_holder(state_id)
                if result.current is not None:
                    logger.info(
                        "Lock for %s is held by %s, not %s; left in place",
                        state_id,
                        result.current.holder,
                        result.holder,
                    )
    except TerrastackError as e:
        logger.debug("release-lock failed for %s: %s", result.config_path, e)
        result.error = e

    if audit:
        _write_audit(result, working_dir)
    return result


def _write_audit(result: LockResult, working_dir: Path | None) -> None:
    root = result.module_path or (working_dir or Path.cwd()).resolve()
    AuditWriter(default_audit_path(root)).write(
        AuditEntry(
            operation_id=result.operation_id,
            operation_type="lock",
            command=result.action,
            holder=result.holder,
            modules_affected=[str(result.module_path)] if result.module_path else [],
            status="ok" if result.ok else "failed",
            errors=[str(result.error)] if result.error else [],
            context={"state_id": result.state_id, "changed": result.changed},
        )
    )
