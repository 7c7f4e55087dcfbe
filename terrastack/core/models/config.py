"""
Configuration model — the typed view of a resolved terrastack.yml.

The loader merges the include chain as raw YAML mappings first and
only then validates the result against these models, so every field
here describes the *merged* configuration a module runs with.

Models are frozen: once resolved, a configuration is never mutated.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_LOCK_TABLE = "terrastack-locks"


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class IncludeConfig(_Section):
    """Pointer to a parent configuration."""

    path: str


class RemoteStateConfig(_Section):
    """Where terraform keeps its state, and the table that guards it."""

    backend: str = "s3"
    bucket: str = ""
    key: str = "terraform.tfstate"
    region: str = "us-east-1"
    encrypt: bool = True
    versioning: bool = True
    lock_table: str = DEFAULT_LOCK_TABLE

    @field_validator("backend")
    @classmethod
    def _lower_backend(cls, value: str) -> str:
        return value.strip().lower()


class LockConfig(_Section):
    """How long to wait for a lock held by someone else."""

    state_file_id: str = ""       # default: "<bucket>/<key>"
    max_lock_retries: int = Field(default=360, ge=0)
    retry_interval: float = Field(default=10.0, ge=0)


class DependenciesConfig(_Section):
    """Other modules that must be applied before this one."""

    paths: tuple[str, ...] = ()


class TerraformConfig(_Section):
    """Extra arguments handed to every terraform invocation."""

    extra_arguments: tuple[str, ...] = ()
    vars: dict[str, Any] = Field(default_factory=dict)

    def var_arguments(self) -> list[str]:
        """Render ``vars`` as ``-var key=value`` arguments.

        Lists and maps are written as JSON, which terraform accepts as
        HCL for complex variable types.
        """
        args: list[str] = []
        for key in sorted(self.vars):
            value = self.vars[key]
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, (dict, list, tuple)):
                value = json.dumps(value, separators=(",", ":"))
            args.extend(["-var", f"{key}={value}"])
        return args


class TerrastackConfig(_Section):
    """A module's fully merged configuration."""

    include: IncludeConfig | None = None
    remote_state: RemoteStateConfig | None = None
    lock: LockConfig = Field(default_factory=LockConfig)
    dependencies: DependenciesConfig = Field(default_factory=DependenciesConfig)
    terraform: TerraformConfig = Field(default_factory=TerraformConfig)

    @property
    def state_id(self) -> str:
        """Identifier of the state object guarded by the lock.

        Explicit ``lock.state_file_id`` wins; otherwise the bucket/key pair
        of the remote state is used, which is unique per state object.
        """
        if self.lock.state_file_id:
            return self.lock.state_file_id
        if self.remote_state is not None and self.remote_state.bucket:
            return f"{self.remote_state.bucket}/{self.remote_state.key}"
        return ""

    @property
    def dependency_paths(self) -> tuple[str, ...]:
        return self.dependencies.paths


# Top-level keys understood by the loader; anything else is ignored.
RECOGNIZED_SECTIONS = ("include", "remote_state", "lock", "dependencies", "terraform")
