"""
Module use case — run one terraform command in one module.

    config → remote state → lock (mutating commands) → terraform

Failures come back in the result rather than as exceptions, so the CLI
can print them and the audit ledger can record them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from terrastack.adapters.base import Runner
from terrastack.core.config.loader import resolve_config
from terrastack.core.engine.executor import generate_operation_id
from terrastack.core.engine.pipeline import ModulePipeline
from terrastack.core.errors import RunnerError, TerrastackError
from terrastack.core.models.receipt import Receipt
from terrastack.core.persistence.audit import AuditEntry, AuditWriter, default_audit_path
from terrastack.core.use_cases.common import build_pipeline, locate_config

logger = logging.getLogger(__name__)


@dataclass
class ModuleResult:
    """Result of a single-module terraform command."""

    command: str
    module_path: Path | None = None
    config_path: Path | None = None
    operation_id: str = ""
    holder: str = ""
    receipt: Receipt | None = None
    error: TerrastackError | None = None
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def status(self) -> str:
        return "ok" if self.ok else "failed"

    @property
    def exit_code(self) -> int | None:
        if isinstance(self.error, RunnerError):
            return self.error.exit_code
        return self.receipt.exit_code if self.receipt else None

    @property
    def output(self) -> str:
        if isinstance(self.error, RunnerError):
            return self.error.output
        return self.receipt.output if self.receipt else ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "command": self.command,
            "module": str(self.module_path) if self.module_path else None,
            "config": str(self.config_path) if self.config_path else None,
            "holder": self.holder,
            "status": self.status,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "error": str(self.error) if self.error else None,
            "error_type": type(self.error).__name__ if self.error else None,
        }


def run_module(
    command: str,
    working_dir: Path | None = None,
    config_path: Path | None = None,
    extra_args: list[str] | tuple[str, ...] = (),
    non_interactive: bool = False,
    mock_mode: bool = False,
    substitutions: Mapping[str, str] | None = None,
    holder: str | None = None,
    confirm: Callable[[str], bool] | None = None,
    clients: Any | None = None,
    runner: Runner | None = None,
    pipeline: ModulePipeline | None = None,
    audit: bool = True,
) -> ModuleResult:
    """Run ``terraform <command>`` in the module at ``working_dir``.

    Args:
        command: terraform subcommand (apply, plan, destroy, ...).
        working_dir: Module directory (default: cwd).
        config_path: Config file (default: <working_dir>/terrastack.yml).
        extra_args: Appended to the terraform command line.
        non_interactive: Never prompt.
        mock_mode: Use the mock runner instead of terraform.
        substitutions: Extra placeholder values for the config.
        holder: Lock holder identity.
        confirm: Prompt callback for bucket creation.
        clients: AWS client factory.
        runner: Explicit runner.
        pipeline: Pre-built pipeline; overrides the wiring arguments.
        audit: Append an entry to the audit ledger.

    Returns:
        ModuleResult; ``error`` is set on failure.
    """
    if pipeline is None:
        pipeline = build_pipeline(
            non_interactive=non_interactive,
            mock_mode=mock_mode,
            holder=holder,
            confirm=confirm,
            clients=clients,
            runner=runner,
        )

    result = ModuleResult(
        command=command,
        operation_id=generate_operation_id(),
        holder=pipeline.holder,
    )
    start = time.monotonic()

    try:
        module_dir, path = locate_config(working_dir, config_path)
        result.module_path, result.config_path = module_dir, path
        resolved = resolve_config(path, substitutions)
        result.receipt = pipeline.run(module_dir, resolved.config, command, extra_args)
    except TerrastackError as e:
        logger.debug("terraform %s failed in %s: %s", command, result.module_path, e)
        result.error = e
    finally:
        result.duration_ms = int((time.monotonic() - start) * 1000)

    if audit:
        _write_audit(result, working_dir)
    return result


def _write_audit(result: ModuleResult, working_dir: Path | None) -> None:
    root = result.module_path or (working_dir or Path.cwd()).resolve()
    AuditWriter(default_audit_path(root)).write(
        AuditEntry(
            operation_id=result.operation_id,
            operation_type="module",
            command=result.command,
            holder=result.holder,
            modules_affected=[str(result.module_path)] if result.module_path else [],
            status=result.status,
            modules_succeeded=1 if result.ok else 0,
            modules_failed=0 if result.ok else 1,
            duration_ms=result.duration_ms,
            errors=[str(result.error)] if result.error else [],
            context={"config": str(result.config_path)} if result.config_path else {},
        )
    )
