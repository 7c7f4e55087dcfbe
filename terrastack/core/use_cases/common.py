"""
Shared wiring for use cases — config lookup and pipeline assembly.

Use cases take their collaborators as optional arguments (runner,
AWS clients, confirm callback) and fall back to the real ones here.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Mapping

from terrastack.adapters.aws.session import AwsClientFactory, AwsSettings
from terrastack.adapters.base import Runner
from terrastack.adapters.mock import MockRunner
from terrastack.adapters.shell.command import DEFAULT_BINARY, TerraformRunner
from terrastack.core.config.loader import DEFAULT_CONFIG_FILE, ResolvedConfig, resolve_config
from terrastack.core.engine.pipeline import BackendFactory, ModulePipeline
from terrastack.core.reliability.retry import RetryPolicy


def default_clients() -> AwsClientFactory:
    """boto3 clients configured from the environment."""
    return AwsClientFactory(AwsSettings.from_env())


def resolve_clients(clients: Any | None) -> Any:
    return clients if clients is not None else default_clients()


def build_runner(mock_mode: bool = False) -> Runner:
    if mock_mode:
        return MockRunner()
    return TerraformRunner(binary=os.environ.get("TERRASTACK_TERRAFORM_BINARY", DEFAULT_BINARY))


def build_backends(
    clients: Any | None = None,
    confirm: Callable[[str], bool] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> BackendFactory:
    return BackendFactory(
        clients=resolve_clients(clients),
        retry_policy=retry_policy,
        confirm=confirm,
    )


def build_pipeline(
    non_interactive: bool = False,
    mock_mode: bool = False,
    holder: str | None = None,
    confirm: Callable[[str], bool] | None = None,
    clients: Any | None = None,
    runner: Runner | None = None,
) -> ModulePipeline:
    """Assemble a module pipeline from CLI-level choices.

    Args:
        non_interactive: Never prompt; pass -input=false to terraform.
        mock_mode: Use MockRunner instead of the terraform binary.
            AWS calls still go through ``clients``.
        holder: Lock holder identity (default: user@host).
        confirm: Prompt callback for bucket creation. Ignored when
            ``non_interactive`` is set.
        clients: AWS client factory (default: from the environment).
        runner: Explicit runner; overrides ``mock_mode``.
    """
    return ModulePipeline(
        runner=runner or build_runner(mock_mode),
        backends=build_backends(clients, None if non_interactive else confirm),
        holder=holder,
        non_interactive=non_interactive,
    )


def locate_config(working_dir: Path | None, config_path: Path | None) -> tuple[Path, Path]:
    """Return ``(module_dir, config_path)`` for a single-module command.

    The module directory is the working directory; the config defaults
    to the terrastack.yml inside it.
    """
    module_dir = (working_dir or Path.cwd()).resolve()
    if config_path is None:
        config_path = module_dir / DEFAULT_CONFIG_FILE
    elif not config_path.is_absolute():
        config_path = module_dir / config_path
    return module_dir, config_path


def load_module_config(
    working_dir: Path | None,
    config_path: Path | None,
    substitutions: Mapping[str, str] | None = None,
) -> tuple[Path, ResolvedConfig]:
    module_dir, path = locate_config(working_dir, config_path)
    return module_dir, resolve_config(path, substitutions)
