"""
Error hierarchy — every failure the core can surface.

Structural errors (configuration, dependency graph) fail fast.
Remote errors (lock table, state bucket) are raised only after the
retry policy has given up on transient causes. Runner errors wrap a
failed terraform invocation.

The CLI catches ``TerrastackError`` and exits non-zero; anything else
is a bug.
"""

from __future__ import annotations

from pathlib import Path


class TerrastackError(Exception):
    """Base class for all terrastack failures."""


# ── Configuration ───────────────────────────────────────────────


class ConfigError(TerrastackError):
    """Raised when a configuration file is invalid or unreadable."""

    def __init__(self, message: str, path: Path | str | None = None):
        self.path = Path(path) if path is not None else None
        super().__init__(message)


class ConfigNotFound(ConfigError):
    """Raised when a configuration file does not exist."""


class CyclicInclude(ConfigError):
    """Raised when a configuration transitively includes itself."""

    def __init__(self, chain: list[Path]):
        self.chain = list(chain)
        rendered = " -> ".join(str(p) for p in chain)
        super().__init__(f"Cyclic include detected: {rendered}", path=chain[0])


# ── Stack graph ─────────────────────────────────────────────────


class StackError(TerrastackError):
    """Base class for stack discovery and ordering failures."""


class NoModulesFound(StackError):
    def __init__(self, root: Path, config_filename: str):
        self.root = root
        super().__init__(f"No modules with a {config_filename} found under {root}")


class UnresolvedDependency(StackError):
    """A declared dependency does not point at a discovered module."""

    def __init__(self, module: Path, dependency: Path):
        self.module = module
        self.dependency = dependency
        super().__init__(
            f"Module {module} depends on {dependency}, "
            "which is not a module in this stack"
        )


class CyclicDependency(StackError):
    def __init__(self, cycle: list[Path]):
        self.cycle = list(cycle)
        rendered = " -> ".join(str(p) for p in cycle)
        super().__init__(f"Cyclic dependency detected: {rendered}")


# ── Locks ───────────────────────────────────────────────────────


class LockError(TerrastackError):
    """Transport or permission failure talking to the lock table."""


class LockUnavailable(TerrastackError):
    """The lock is held by someone else and the retry budget ran out."""

    def __init__(self, state_id: str, holder: str | None, acquired_at: str | None = None):
        self.state_id = state_id
        self.holder = holder
        self.acquired_at = acquired_at
        who = holder or "an unknown holder"
        since = f" since {acquired_at}" if acquired_at else ""
        super().__init__(
            f"Unable to acquire lock for state '{state_id}': "
            f"currently held by {who}{since}"
        )


# ── Remote state ────────────────────────────────────────────────


class RemoteStateError(TerrastackError):
    """The state bucket or lock table could not be checked or created."""


# ── Runner ──────────────────────────────────────────────────────


class RunnerError(TerrastackError):
    """terraform exited non-zero (or could not be started)."""

    def __init__(self, message: str, exit_code: int | None = None, output: str = ""):
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)
