"""Adapters — bindings for terraform and AWS.

Public re-exports for convenient access.
"""

from terrastack.adapters.base import Runner
from terrastack.adapters.mock import MockRunner
from terrastack.adapters.shell.command import TerraformRunner

__all__ = [
    "MockRunner",
    "Runner",
    "TerraformRunner",
]
