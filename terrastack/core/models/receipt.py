"""
RunRequest and Receipt models — the runner contract.

The pipeline sends a RunRequest, the runner returns a Receipt.
Runners never raise: a failed terraform invocation is a Receipt with
status ``failed`` and the pipeline decides what that means.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class RunRequest(BaseModel):
    """One terraform command to run in one module directory."""

    command: str                              # apply, destroy, plan, ...
    module_path: str
    backend_args: list[str] = Field(default_factory=list)   # -backend-config=...
    extra_args: list[str] = Field(default_factory=list)
    non_interactive: bool = False
    env: dict[str, str] = Field(default_factory=dict)


class Receipt(BaseModel):
    """What a runner did with a RunRequest."""

    runner: str
    module_path: str
    command: str
    status: Literal["ok", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    exit_code: int | None = None
    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(
        cls,
        runner: str,
        request: RunRequest,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """terraform exited 0."""
        return cls(
            runner=runner,
            module_path=request.module_path,
            command=request.command,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        runner: str,
        request: RunRequest,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """terraform failed or could not be run."""
        return cls(
            runner=runner,
            module_path=request.module_path,
            command=request.command,
            status="failed",
            error=error,
            **kwargs,
        )

