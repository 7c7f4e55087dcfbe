"""
Mock runner — stand-in for terraform.

Used by ``--mock`` and by the tests to drive the pipeline without
touching real infrastructure. Succeeds by default; can be told to fail
for specific modules.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from terrastack.adapters.base import Runner
from terrastack.core.models.receipt import Receipt, RunRequest


class MockRunner(Runner):
    """Universal mock runner.

    By default, returns success for everything. Can be configured
    with failures per module directory and a hook that runs on every call.
    """

    def __init__(
        self,
        available: bool = True,
        default_output: str = "[mock] executed",
        on_run: Callable[[RunRequest], None] | None = None,
    ):
        self._available = available
        self._default_output = default_output
        self._on_run = on_run
        self._failures: dict[str, tuple[str, int]] = {}
        self._call_log: list[RunRequest] = []

    @property
    def name(self) -> str:
        return "mock"

    @property
    def call_log(self) -> list[RunRequest]:
        """All requests this mock has received."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    @property
    def called_paths(self) -> list[str]:
        """Module paths, in call order."""
        return [r.module_path for r in self._call_log]

    def is_available(self) -> bool:
        return self._available

    def set_failure(self, module_path: str | Path, error: str = "Mock failure", exit_code: int = 1) -> None:
        """Configure runs in a specific module directory to fail."""
        self._failures[str(module_path)] = (error, exit_code)

    def set_hook(self, on_run: Callable[[RunRequest], None] | None) -> None:
        """Call ``on_run`` with every request before answering it."""
        self._on_run = on_run

    def run(self, request: RunRequest) -> Receipt:
        self._call_log.append(request)
        if self._on_run is not None:
            self._on_run(request)

        failure = self._failures.get(request.module_path)
        if failure is not None:
            error, exit_code = failure
            return Receipt.failure(
                runner=self.name,
                request=request,
                error=error,
                exit_code=exit_code,
            )

        return Receipt.success(
            runner=self.name,
            request=request,
            output=self._default_output,
            exit_code=0,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and configured failures."""
        self._call_log.clear()
        self._failures.clear()
