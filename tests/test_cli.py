"""
Tests for CLI commands — module, lock, stack, and cleanup commands.

AWS is replaced by the in-memory fakes; terraform by --mock.
"""

import json
import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from terrastack.adapters.mock import MockRunner
from terrastack.core.persistence.audit import AuditWriter, default_audit_path
from terrastack.main import cli

BUCKET = "terrastack-cli-bucket"
TABLE = "terrastack-locks-test"
FILL = ["--substitute", f"__FILL_IN_BUCKET_NAME__={BUCKET}"]

MODULE_CONFIG = """\
    remote_state:
      bucket: __FILL_IN_BUCKET_NAME__
      key: my-app/terraform.tfstate
      region: us-west-2
      lock_table: terrastack-locks-test
    lock:
      max_lock_retries: 0
      retry_interval: 0
"""


@pytest.fixture(autouse=True)
def restore_root_logger():
    """The CLI group replaces the root handlers; put pytest's back."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture(autouse=True)
def fake_aws(monkeypatch, fake_clients):
    monkeypatch.setattr("terrastack.core.use_cases.common.default_clients", lambda: fake_clients)
    return fake_clients


@pytest.fixture
def module_dir(tmp_path: Path, write_module) -> Path:
    return write_module(tmp_path / "my-app", MODULE_CONFIG).resolve()


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def _invoke(runner: CliRunner, *args: str, input: str | None = None):
    return runner.invoke(cli, list(args), input=input, catch_exceptions=False)


class TestCLIGlobal:
    def test_help(self, runner):
        result = _invoke(runner, "--help")
        assert result.exit_code == 0
        for command in ("apply", "plan", "destroy", "acquire-lock", "release-lock",
                        "stack-apply", "stack-destroy", "cleanup"):
            assert command in result.output

    def test_version(self, runner):
        result = _invoke(runner, "--version")
        assert result.exit_code == 0
        assert "0.1.0" in result.output


# ── Module commands ─────────────────────────────────────────────


class TestModuleCommands:
    def test_apply(self, runner, module_dir, fake_s3, fake_dynamodb):
        result = _invoke(
            runner, "apply", "--working-dir", str(module_dir), *FILL, "--mock", "--non-interactive"
        )
        assert result.exit_code == 0, result.output
        assert "apply" in result.output
        assert BUCKET in fake_s3.buckets
        assert fake_dynamodb.tables[TABLE]["items"] == {}

    def test_json_output(self, runner, module_dir):
        result = _invoke(
            runner, "plan", "-w", str(module_dir), *FILL, "--mock", "--non-interactive", "--json"
        )
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "ok"
        assert data["command"] == "plan"
        assert data["module"] == str(module_dir)

    def test_extra_args_after_double_dash(self, runner, module_dir, monkeypatch):
        captured = []
        mock = MockRunner(on_run=captured.append)
        monkeypatch.setattr("terrastack.core.use_cases.common.build_runner", lambda mock_mode=False: mock)

        result = _invoke(
            runner, "apply", "-w", str(module_dir), *FILL, "--non-interactive",
            "--", "-var", "env=qa", "-target=aws_vpc.main",
        )
        assert result.exit_code == 0, result.output
        assert captured[0].extra_args[-3:] == ["-var", "env=qa", "-target=aws_vpc.main"]

    def test_missing_config_fails(self, runner, tmp_path):
        result = _invoke(runner, "apply", "-w", str(tmp_path), "--mock", "--non-interactive")
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_explicit_config_file(self, runner, tmp_path, module_dir):
        other = tmp_path / "elsewhere.yml"
        other.write_text("lock:\n  state_file_id: x\n")
        result = _invoke(
            runner, "plan", "-w", str(module_dir), "--config", str(other), "--mock", "--non-interactive"
        )
        assert result.exit_code == 0, result.output

    def test_bucket_creation_prompt_accepted(self, runner, module_dir, fake_s3):
        result = _invoke(runner, "plan", "-w", str(module_dir), *FILL, "--mock", input="y\n")
        assert result.exit_code == 0, result.output
        assert "does not exist" in result.output
        assert BUCKET in fake_s3.buckets

    def test_bucket_creation_prompt_declined(self, runner, module_dir, fake_s3):
        result = _invoke(runner, "plan", "-w", str(module_dir), *FILL, "--mock", input="n\n")
        assert result.exit_code == 1
        assert "declined" in result.output
        assert BUCKET not in fake_s3.buckets

    def test_locked_apply_names_config_once(self, runner, module_dir):
        _invoke(runner, "acquire-lock", "-w", str(module_dir), *FILL, "--holder", "alice@laptop")
        result = _invoke(runner, "apply", "-w", str(module_dir), *FILL, "--mock", "--non-interactive")

        assert result.exit_code == 1
        assert f"in {module_dir / 'terrastack.yml'}" in result.output
        assert result.output.count("Unable to acquire lock") == 1

    def test_locked_apply_json_has_config(self, runner, module_dir):
        _invoke(runner, "acquire-lock", "-w", str(module_dir), *FILL, "--holder", "alice@laptop")
        result = _invoke(
            runner, "apply", "-w", str(module_dir), *FILL, "--mock", "--non-interactive", "--json"
        )

        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["error_type"] == "LockUnavailable"
        assert data["config"] == str(module_dir / "terrastack.yml")

    def test_foreign_bucket_names_config(self, runner, module_dir, fake_s3):
        fake_s3.foreign_buckets.add(BUCKET)
        result = _invoke(runner, "apply", "-w", str(module_dir), *FILL, "--mock", "--non-interactive")

        assert result.exit_code == 1
        assert BUCKET in result.output
        assert f"in {module_dir / 'terrastack.yml'}" in result.output

    def test_non_utf8_config_fails_cleanly(self, runner, tmp_path):
        (tmp_path / "terrastack.yml").write_bytes(b"remote_state:\n  bucket: \xff\xfe\n")
        result = runner.invoke(cli, ["plan", "-w", str(tmp_path), "--mock", "--non-interactive"])

        assert result.exit_code == 1
        assert "Cannot read" in result.output

    def test_bad_substitution(self, runner, module_dir):
        result = runner.invoke(cli, ["plan", "-w", str(module_dir), "--substitute", "nope", "--mock"])
        assert result.exit_code == 2
        assert "TOKEN=VALUE" in result.output

    def test_writes_audit_entry(self, runner, module_dir):
        _invoke(runner, "apply", "-w", str(module_dir), *FILL, "--mock", "--non-interactive")
        entries = AuditWriter(default_audit_path(module_dir)).read_all()
        assert len(entries) == 1
        assert entries[0].operation_type == "module"
        assert entries[0].command == "apply"
        assert entries[0].status == "ok"


# ── Lock commands ───────────────────────────────────────────────


class TestLockCommands:
    def test_acquire_blocks_apply_until_released(self, runner, module_dir):
        acquired = _invoke(runner, "acquire-lock", "-w", str(module_dir), *FILL)
        assert acquired.exit_code == 0, acquired.output
        assert "Lock acquired" in acquired.output

        blocked = _invoke(runner, "apply", "-w", str(module_dir), *FILL, "--mock", "--non-interactive")
        assert blocked.exit_code == 1
        assert "Unable to acquire lock" in blocked.output

        released = _invoke(runner, "release-lock", "-w", str(module_dir), *FILL)
        assert released.exit_code == 0, released.output
        assert "Lock released" in released.output

        applied = _invoke(runner, "apply", "-w", str(module_dir), *FILL, "--mock", "--non-interactive")
        assert applied.exit_code == 0, applied.output

    def test_acquire_creates_lock_table(self, runner, module_dir, fake_dynamodb):
        _invoke(runner, "acquire-lock", "-w", str(module_dir), *FILL)
        assert TABLE in fake_dynamodb.tables

    def test_second_acquire_names_holder(self, runner, module_dir):
        _invoke(runner, "acquire-lock", "-w", str(module_dir), *FILL, "--holder", "alice@laptop")
        result = _invoke(runner, "acquire-lock", "-w", str(module_dir), *FILL, "--holder", "bob@ci")
        assert result.exit_code == 1
        assert "alice@laptop" in result.output

    def test_release_someone_elses_lock(self, runner, module_dir):
        _invoke(runner, "acquire-lock", "-w", str(module_dir), *FILL, "--holder", "alice@laptop")
        result = _invoke(runner, "release-lock", "-w", str(module_dir), *FILL, "--holder", "bob@ci")
        assert result.exit_code == 0
        assert "held by alice@laptop" in result.output

    def test_force_release(self, runner, module_dir, fake_dynamodb):
        _invoke(runner, "acquire-lock", "-w", str(module_dir), *FILL, "--holder", "alice@laptop")
        result = _invoke(
            runner, "release-lock", "-w", str(module_dir), *FILL, "--holder", "bob@ci", "--force"
        )
        assert result.exit_code == 0
        assert "alice@laptop" in result.output
        assert fake_dynamodb.tables[TABLE]["items"] == {}

    def test_release_when_not_held(self, runner, module_dir, fake_dynamodb):
        fake_dynamodb.add_table(TABLE)
        result = _invoke(runner, "release-lock", "-w", str(module_dir), *FILL)
        assert result.exit_code == 0
        assert "No lock held" in result.output

    def test_json(self, runner, module_dir):
        result = _invoke(runner, "acquire-lock", "-w", str(module_dir), *FILL, "--holder", "h", "--json")
        data = json.loads(result.output)
        assert data["state_id"] == f"{BUCKET}/my-app/terraform.tfstate"
        assert data["holder"] == "h"
        assert data["changed"] is True

    def test_module_without_remote_state(self, runner, tmp_path, write_module):
        module = write_module(tmp_path / "local", "lock:\n  max_lock_retries: 0\n")
        result = _invoke(runner, "acquire-lock", "-w", str(module))
        assert result.exit_code == 1
        assert "no remote_state" in result.output


# ── Stack commands ──────────────────────────────────────────────


@pytest.fixture
def stack_root(tmp_path: Path, write_module, remote_state_root) -> Path:
    include = "include:\n  path: ${find_in_parent_folders()}\n"
    root = tmp_path / "mgmt"
    write_module(root, remote_state_root, templates=False)
    write_module(root / "vpc", include)
    write_module(root / "bastion-host", include + "dependencies:\n  paths: [../vpc]\n")
    return root.resolve()


class TestStackCommands:
    def test_stack_apply_then_destroy(self, runner, stack_root):
        applied = _invoke(
            runner, "stack-apply", "-w", str(stack_root), *FILL, "--mock", "--non-interactive", "--json"
        )
        assert applied.exit_code == 0, applied.output
        assert json.loads(applied.output)["order"] == ["vpc", "bastion-host"]

        destroyed = _invoke(
            runner, "stack-destroy", "-w", str(stack_root), *FILL, "--mock", "--non-interactive", "--json"
        )
        assert destroyed.exit_code == 0, destroyed.output
        assert json.loads(destroyed.output)["order"] == ["bastion-host", "vpc"]

    def test_human_output(self, runner, stack_root):
        result = _invoke(runner, "stack-apply", "-w", str(stack_root), *FILL, "--mock", "--non-interactive")
        assert result.exit_code == 0, result.output
        assert "✓ vpc" in result.output
        assert "✓ bastion-host" in result.output
        assert "2/2 succeeded" in result.output

    def test_cycle_reported(self, runner, tmp_path, write_module):
        write_module(tmp_path / "a", "dependencies:\n  paths: [../b]\n")
        write_module(tmp_path / "b", "dependencies:\n  paths: [../a]\n")
        result = _invoke(runner, "stack-apply", "-w", str(tmp_path), "--mock", "--non-interactive")
        assert result.exit_code == 1
        assert "Cyclic dependency" in result.output

    def test_no_modules(self, runner, tmp_path):
        result = _invoke(runner, "stack-apply", "-w", str(tmp_path), "--mock", "--non-interactive")
        assert result.exit_code == 1
        assert "No modules" in result.output

    def test_locked_module_stops_stack(self, runner, stack_root):
        _invoke(runner, "acquire-lock", "-w", str(stack_root / "vpc"), *FILL, "--holder", "ops")
        result = _invoke(runner, "stack-apply", "-w", str(stack_root), *FILL, "--mock", "--non-interactive")
        assert result.exit_code == 1
        assert "✗ vpc" in result.output
        assert "bastion-host (not attempted)" in result.output.replace("⊘ ", "")

    def test_stack_audit_entry(self, runner, stack_root):
        _invoke(runner, "stack-apply", "-w", str(stack_root), *FILL, "--mock", "--non-interactive")
        entries = AuditWriter(default_audit_path(stack_root)).read_all()
        assert entries[-1].operation_type == "stack"
        assert entries[-1].modules_affected == ["vpc", "bastion-host"]
        assert entries[-1].modules_succeeded == 2


# ── Cleanup ─────────────────────────────────────────────────────


class TestCleanupCommand:
    def test_cleanup_deletes_bucket_and_table(self, runner, module_dir, fake_s3, fake_dynamodb):
        _invoke(runner, "apply", "-w", str(module_dir), *FILL, "--mock", "--non-interactive")
        fake_s3.put_versions(BUCKET, "my-app/terraform.tfstate", count=2, delete_marker=True)

        result = _invoke(runner, "cleanup", "-w", str(module_dir), *FILL, "--yes")
        assert result.exit_code == 0, result.output
        assert BUCKET not in fake_s3.buckets
        assert TABLE not in fake_dynamodb.tables

    def test_keep_lock_table(self, runner, module_dir, fake_s3, fake_dynamodb):
        _invoke(runner, "apply", "-w", str(module_dir), *FILL, "--mock", "--non-interactive")
        result = _invoke(runner, "cleanup", "-w", str(module_dir), *FILL, "--yes", "--keep-lock-table")
        assert result.exit_code == 0
        assert TABLE in fake_dynamodb.tables

    def test_confirmation_required(self, runner, module_dir, fake_s3):
        fake_s3.add_bucket(BUCKET)
        result = runner.invoke(cli, ["cleanup", "-w", str(module_dir), *FILL], input="n\n")
        assert result.exit_code == 1
        assert BUCKET in fake_s3.buckets

    def test_missing_bucket(self, runner, module_dir):
        result = _invoke(runner, "cleanup", "-w", str(module_dir), *FILL, "--yes", "--json")
        data = json.loads(result.output)
        assert data["bucket_deleted"] is False
        assert data["lock_table_deleted"] is False
