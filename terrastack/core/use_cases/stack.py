"""
Stack use case — apply or destroy every module under a directory.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from terrastack.adapters.base import Runner
from terrastack.core.config.loader import DEFAULT_CONFIG_FILE
from terrastack.core.engine.executor import StackOptions, StackOrchestrator, StackResult
from terrastack.core.engine.pipeline import ModulePipeline
from terrastack.core.errors import TerrastackError
from terrastack.core.persistence.audit import AuditEntry, AuditWriter, default_audit_path
from terrastack.core.use_cases.common import build_pipeline

logger = logging.getLogger(__name__)


@dataclass
class StackRunResult:
    """Result of a stack command.

    ``stack`` is None when the run never started (no modules, bad
    config, broken dependency graph); ``error`` then says why.
    """

    operation: str
    root: Path
    holder: str = ""
    stack: StackResult | None = None
    error: TerrastackError | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.stack is not None and self.stack.ok

    @property
    def failure(self) -> TerrastackError | None:
        if self.error is not None:
            return self.error
        return self.stack.error if self.stack else None

    def to_dict(self) -> dict[str, Any]:
        if self.stack is not None:
            data = self.stack.to_dict()
        else:
            data = {
                "operation": self.operation,
                "root": str(self.root),
                "status": "failed",
                "error": str(self.error) if self.error else None,
                "error_type": type(self.error).__name__ if self.error else None,
            }
        data["holder"] = self.holder
        data["duration_ms"] = self.duration_ms
        return data


def run_stack(
    operation: str,
    root: Path | None = None,
    extra_args: list[str] | tuple[str, ...] = (),
    non_interactive: bool = False,
    mock_mode: bool = False,
    substitutions: Mapping[str, str] | None = None,
    config_filename: str = DEFAULT_CONFIG_FILE,
    holder: str | None = None,
    confirm: Callable[[str], bool] | None = None,
    clients: Any | None = None,
    runner: Runner | None = None,
    pipeline: ModulePipeline | None = None,
    audit: bool = True,
) -> StackRunResult:
    """Run ``operation`` over the stack rooted at ``root``.

    Modules run one at a time in dependency order (reversed for
    destroy) and the run stops at the first failure.
    """
    root = (root or Path.cwd()).resolve()
    if pipeline is None:
        pipeline = build_pipeline(
            non_interactive=non_interactive,
            mock_mode=mock_mode,
            holder=holder,
            confirm=confirm,
            clients=clients,
            runner=runner,
        )

    result = StackRunResult(operation=operation, root=root, holder=pipeline.holder)
    options = StackOptions(
        extra_args=tuple(extra_args),
        substitutions=dict(substitutions or {}),
        config_filename=config_filename,
    )
    start = time.monotonic()

    try:
        result.stack = StackOrchestrator(pipeline).run(operation, root, options)
    except TerrastackError as e:
        logger.debug("stack %s failed before any module ran: %s", operation, e)
        result.error = e
    finally:
        result.duration_ms = int((time.monotonic() - start) * 1000)

    if audit:
        _write_audit(result)
    return result


def _write_audit(result: StackRunResult) -> None:
    stack = result.stack
    failure = result.failure
    AuditWriter(default_audit_path(result.root)).write(
        AuditEntry(
            operation_id=stack.operation_id if stack else "",
            operation_type="stack",
            command=result.operation,
            holder=result.holder,
            modules_affected=[stack.relative(p) for p in stack.order] if stack else [],
            status="ok" if result.ok else "failed",
            modules_succeeded=len(stack.succeeded) if stack else 0,
            modules_failed=1 if stack and stack.failed else 0,
            duration_ms=result.duration_ms,
            errors=[str(failure)] if failure else [],
            context={"failed_module": stack.relative(stack.failed)} if stack and stack.failed else {},
        )
    )
