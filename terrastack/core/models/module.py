"""
Module model — one terraform directory inside a stack.

A module is discovered by finding a terrastack.yml in a directory.
Its configuration is resolved (include chain merged) before the
dependency graph is built, so ``dependencies`` already holds absolute
paths to other module directories.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from terrastack.core.models.config import TerrastackConfig


class Module(BaseModel):
    """A module with its resolved configuration."""

    model_config = ConfigDict(frozen=True)

    path: Path
    config_path: Path
    config: TerrastackConfig = Field(default_factory=TerrastackConfig)
    dependencies: tuple[Path, ...] = ()

    @property
    def name(self) -> str:
        return self.path.name

    def relative_to(self, root: Path) -> str:
        """Path relative to the stack root, for display."""
        try:
            rel = self.path.relative_to(root)
        except ValueError:
            return str(self.path)
        return str(rel) or "."
