"""
Stack executor — applies or destroys a whole tree of modules.

The orchestrator takes an operation and a root directory, discovers
the modules underneath, orders them by their declared dependencies,
and runs the module pipeline on each one in turn.

Flow:
    discovering → ordering → executing → done | failed

Direction:
    apply-like    dependencies first (topological order)
    destroy-like  dependents first (reverse topological order)

Execution is sequential and fail-stop: the first module that fails
ends the run. Modules that already finished are left as they are.
Nothing is rolled back.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, Mapping

from terrastack.core.config.loader import DEFAULT_CONFIG_FILE
from terrastack.core.config.stack_loader import discover_modules
from terrastack.core.engine.graph import order_modules
from terrastack.core.engine.pipeline import ModulePipeline
from terrastack.core.errors import TerrastackError
from terrastack.core.models.module import Module
from terrastack.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

# Operations that tear infrastructure down run in reverse order
DESTROY_LIKE_OPERATIONS = frozenset({"destroy"})


def is_destroy_like(operation: str) -> bool:
    return operation in DESTROY_LIKE_OPERATIONS


class StackState(StrEnum):
    """Orchestrator lifecycle."""

    PENDING = "pending"
    DISCOVERING = "discovering"
    ORDERING = "ordering"
    EXECUTING = "executing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class StackOptions:
    """Per-run knobs for a stack operation."""

    extra_args: tuple[str, ...] = ()
    substitutions: Mapping[str, str] = field(default_factory=dict)
    config_filename: str = DEFAULT_CONFIG_FILE


@dataclass
class StackResult:
    """Outcome of a stack operation."""

    operation: str
    root: Path
    operation_id: str = ""
    order: list[Path] = field(default_factory=list)
    succeeded: list[Path] = field(default_factory=list)
    failed: Path | None = None
    error: TerrastackError | None = None
    receipts: dict[Path, Receipt] = field(default_factory=dict)

    @property
    def not_attempted(self) -> list[Path]:
        done = set(self.succeeded)
        if self.failed is not None:
            done.add(self.failed)
        return [p for p in self.order if p not in done]

    @property
    def ok(self) -> bool:
        return self.failed is None and self.error is None

    @property
    def status(self) -> str:
        return "ok" if self.ok else "failed"

    def relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root)) or "."
        except ValueError:
            return str(path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "operation": self.operation,
            "root": str(self.root),
            "status": self.status,
            "order": [self.relative(p) for p in self.order],
            "succeeded": [self.relative(p) for p in self.succeeded],
            "failed": self.relative(self.failed) if self.failed is not None else None,
            "error": str(self.error) if self.error else None,
            "error_type": type(self.error).__name__ if self.error else None,
            "not_attempted": [self.relative(p) for p in self.not_attempted],
        }


class StackOrchestrator:
    """Discover, order, and run every module under a root directory."""

    def __init__(self, pipeline: ModulePipeline):
        self._pipeline = pipeline
        self._state = StackState.PENDING

    @property
    def state(self) -> StackState:
        return self._state

    def plan(self, root: Path, options: StackOptions | None = None) -> list[Module]:
        """Discover and order modules without running anything.

        Raises:
            NoModulesFound, ConfigError, UnresolvedDependency, CyclicDependency
        """
        options = options or StackOptions()
        try:
            self._state = StackState.DISCOVERING
            modules = discover_modules(root, options.config_filename, options.substitutions)
            self._state = StackState.ORDERING
            return order_modules(modules)
        except TerrastackError:
            self._state = StackState.FAILED
            raise

    def run(
        self,
        operation: str,
        root: Path,
        options: StackOptions | None = None,
    ) -> StackResult:
        """Run ``operation`` across the stack under ``root``.

        Structural problems (no modules, bad config, unresolved or cyclic
        dependencies) raise before any module runs. Failures inside a
        module's pipeline are recorded in the result instead.
        """
        options = options or StackOptions()
        root = root.resolve()

        ordered = self.plan(root, options)
        sequence = list(reversed(ordered)) if is_destroy_like(operation) else ordered

        result = StackResult(
            operation=operation,
            root=root,
            operation_id=generate_operation_id(),
            order=[m.path for m in sequence],
        )

        self._state = StackState.EXECUTING
        logger.info(
            "%s: %d module(s) in order %s",
            operation,
            len(sequence),
            [m.relative_to(root) for m in sequence],
        )

        for module in sequence:
            label = module.relative_to(root)
            logger.info("▶ %s %s", operation, label)
            try:
                receipt = self._pipeline.run(
                    module.path,
                    module.config,
                    operation,
                    options.extra_args,
                )
            except TerrastackError as e:
                result.failed = module.path
                result.error = e
                logger.info("✗ %s %s: %s", operation, label, e)
                break

            result.succeeded.append(module.path)
            result.receipts[module.path] = receipt
            logger.info("✓ %s %s", operation, label)

        self._state = StackState.DONE if result.ok else StackState.FAILED
        if result.not_attempted:
            logger.info(
                "Stopped after failure; not attempted: %s",
                [result.relative(p) for p in result.not_attempted],
            )
        return result


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
