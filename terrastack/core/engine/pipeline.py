"""
Module pipeline — everything that happens to one module.

    resolved config → remote state ensure → lock acquire → terraform → lock release

Used for single-module commands and, once per module, by the stack
orchestrator. The lock is only taken for commands that can write
state; read-only commands (plan, output, validate) run unlocked.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable

from terrastack.adapters.base import Runner
from terrastack.core.errors import RunnerError
from terrastack.core.locks.dynamodb import DynamoDBLockManager, default_holder
from terrastack.core.locks.table import ensure_lock_table
from terrastack.core.models.config import TerrastackConfig
from terrastack.core.models.receipt import Receipt, RunRequest
from terrastack.core.reliability.retry import RetryPolicy
from terrastack.core.remote.state import (
    BackendConfig,
    RemoteStateManager,
    descriptor_from_config,
)

logger = logging.getLogger(__name__)

# terraform commands that write state and therefore need the lock
MUTATING_COMMANDS = frozenset({
    "apply",
    "destroy",
    "import",
    "refresh",
    "taint",
    "untaint",
})


class BackendFactory:
    """Builds remote-state and lock managers for a module's region.

    Args:
        clients: Anything with ``s3(region)`` and ``dynamodb(region)``
            methods returning boto3 clients (see AwsClientFactory).
        retry_policy: Shared bounded retry for AWS calls.
        confirm: Prompt callback for creating a missing bucket.
    """

    def __init__(
        self,
        clients: Any,
        retry_policy: RetryPolicy | None = None,
        confirm: Callable[[str], bool] | None = None,
    ):
        self._clients = clients
        self._retry = retry_policy or RetryPolicy()
        self._confirm = confirm

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    def remote_state(self, region: str) -> RemoteStateManager:
        return RemoteStateManager(
            s3_client=self._clients.s3(region),
            dynamodb_client=self._clients.dynamodb(region),
            retry_policy=self._retry,
            confirm=self._confirm,
        )

    def lock_manager(self, table_name: str, region: str) -> DynamoDBLockManager:
        return DynamoDBLockManager(
            client=self._clients.dynamodb(region),
            table_name=table_name,
            retry_policy=self._retry,
        )

    def ensure_lock_table(self, table_name: str, region: str) -> bool:
        return ensure_lock_table(self._clients.dynamodb(region), table_name, self._retry)


class ModulePipeline:
    """Run one terraform command against one module, safely.

    Args:
        runner: Executes terraform (or a mock).
        backends: Creates the AWS-facing managers.
        holder: Identity recorded on locks this pipeline takes.
        non_interactive: Pass -input=false / -auto-approve to terraform
            and never prompt.
    """

    def __init__(
        self,
        runner: Runner,
        backends: BackendFactory,
        holder: str | None = None,
        non_interactive: bool = False,
    ):
        self._runner = runner
        self._backends = backends
        self._holder = holder or default_holder()
        self._non_interactive = non_interactive

    @property
    def holder(self) -> str:
        return self._holder

    @property
    def backends(self) -> BackendFactory:
        return self._backends

    def prepare_backend(self, config: TerrastackConfig) -> BackendConfig | None:
        """Ensure the state bucket and lock table; None for local state."""
        if config.remote_state is None:
            return None
        descriptor = descriptor_from_config(config.remote_state)
        return self._backends.remote_state(descriptor.region).ensure(descriptor)

    def build_request(
        self,
        module_dir: Path,
        config: TerrastackConfig,
        command: str,
        backend: BackendConfig | None,
        extra_args: list[str] | tuple[str, ...] = (),
    ) -> RunRequest:
        return RunRequest(
            command=command,
            module_path=str(module_dir),
            backend_args=backend.to_init_args() if backend else [],
            extra_args=[
                *config.terraform.extra_arguments,
                *config.terraform.var_arguments(),
                *extra_args,
            ],
            non_interactive=self._non_interactive,
        )

    def run(
        self,
        module_dir: Path,
        config: TerrastackConfig,
        command: str,
        extra_args: list[str] | tuple[str, ...] = (),
    ) -> Receipt:
        """Run ``terraform <command>`` in ``module_dir``.

        Returns:
            The successful receipt.

        Raises:
            RemoteStateError: Bucket or lock table could not be ensured.
            LockUnavailable: Someone else holds the state lock.
            LockError: The lock table could not be reached.
            RunnerError: terraform failed.
        """
        backend = self.prepare_backend(config)
        request = self.build_request(module_dir, config, command, backend, extra_args)

        if backend is None:
            logger.debug("%s has no remote_state; running without a lock", module_dir)
            receipt = self._runner.run(request)
        elif command in MUTATING_COMMANDS and backend.dynamodb_table and config.state_id:
            locks = self._backends.lock_manager(backend.dynamodb_table, backend.region)
            with locks.hold(
                config.state_id,
                self._holder,
                max_retries=config.lock.max_lock_retries,
                retry_interval=config.lock.retry_interval,
            ):
                receipt = self._runner.run(request)
        else:
            receipt = self._runner.run(request)

        if receipt.failed:
            raise RunnerError(
                f"terraform {command} failed in {module_dir}: {receipt.error}",
                exit_code=receipt.exit_code,
                output=receipt.output,
            )
        return receipt
