"""
Terraform runner — executes terraform in a module directory.

Every run is two subprocesses: ``terraform init`` with the backend
settings produced by the remote state manager, then the requested
command. init is always captured. The command itself is captured in
non-interactive mode; otherwise it shares the terminal, so approval
and variable prompts reach the user and their output is not in the
Receipt.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from pathlib import Path

from terrastack.adapters.base import Runner
from terrastack.core.models.receipt import Receipt, RunRequest

logger = logging.getLogger(__name__)

DEFAULT_BINARY = "terraform"

# Commands that prompt for approval unless told not to
_APPROVAL_COMMANDS = frozenset({"apply", "destroy"})


class TerraformRunner(Runner):
    """Run terraform as a subprocess and capture its output.

    Args:
        binary: terraform executable (name on PATH or absolute path).
        timeout: Per-subprocess timeout in seconds.
    """

    def __init__(self, binary: str = DEFAULT_BINARY, timeout: int = 3600):
        self._binary = binary
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "terraform"

    def is_available(self) -> bool:
        return shutil.which(self._binary) is not None

    def build_commands(self, request: RunRequest) -> list[list[str]]:
        """The argv lists this request will run, in order."""
        init = [self._binary, "init", "-input=false", *request.backend_args]

        main = [self._binary, request.command]
        if request.non_interactive:
            main.append("-input=false")
            if request.command in _APPROVAL_COMMANDS:
                main.append("-auto-approve")
        main.extend(request.extra_args)

        return [init, main]

    def run(self, request: RunRequest) -> Receipt:
        cwd = request.module_path
        if not Path(cwd).is_dir():
            return Receipt.failure(
                runner=self.name,
                request=request,
                error=f"Module directory does not exist: {cwd}",
            )

        env = {**os.environ, **request.env}
        if request.non_interactive:
            env.setdefault("TF_INPUT", "0")

        start = time.monotonic()
        outputs: list[str] = []
        commands = self.build_commands(request)

        for index, argv in enumerate(commands):
            attached = not request.non_interactive and index == len(commands) - 1
            logger.debug("Executing: %s (cwd=%s, attached=%s)", " ".join(argv), cwd, attached)
            try:
                result = subprocess.run(
                    argv,
                    cwd=cwd,
                    env=env,
                    capture_output=not attached,
                    text=True,
                    timeout=self._timeout,
                )
            except FileNotFoundError:
                return Receipt.failure(
                    runner=self.name,
                    request=request,
                    error=f"terraform binary not found: {self._binary}",
                    metadata={"command": argv},
                )
            except subprocess.TimeoutExpired:
                return Receipt.failure(
                    runner=self.name,
                    request=request,
                    error=f"Command timed out after {self._timeout}s: {' '.join(argv)}",
                    duration_ms=int((time.monotonic() - start) * 1000),
                    metadata={"command": argv, "timeout": self._timeout},
                )

            stdout = (result.stdout or "").strip()
            stderr = (result.stderr or "").strip()
            if not attached:
                outputs.append(stdout)

            if result.returncode != 0:
                return Receipt.failure(
                    runner=self.name,
                    request=request,
                    error=stderr or f"Command exited with code {result.returncode}",
                    exit_code=result.returncode,
                    output="\n".join(outputs),
                    duration_ms=int((time.monotonic() - start) * 1000),
                    metadata={"command": argv},
                )

        return Receipt.success(
            runner=self.name,
            request=request,
            output="\n".join(outputs),
            exit_code=0,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
