"""
CLI command for tearing down a module's remote state infrastructure.
"""

from __future__ import annotations

from pathlib import Path

import click

from terrastack.ui.cli.common import (
    config_option,
    echo_json,
    fail,
    json_option,
    parse_substitutions,
    report_error,
    substitute_option,
    working_dir_option,
)


@click.command("cleanup")
@working_dir_option
@config_option
@substitute_option
@click.option("--keep-lock-table", is_flag=True, help="Delete the bucket only.")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation.")
@json_option
def cleanup(
    working_dir: Path | None,
    config_path: Path | None,
    substitutions: tuple[str, ...],
    keep_lock_table: bool,
    yes: bool,
    as_json: bool,
) -> None:
    """Delete the state bucket (every object version) and the lock table."""
    from terrastack.core.use_cases.cleanup import cleanup_remote_state

    if not yes:
        click.confirm(
            "This permanently deletes all terraform state in the bucket. Continue?",
            abort=True,
        )

    result = cleanup_remote_state(
        working_dir=working_dir,
        config_path=config_path,
        keep_lock_table=keep_lock_table,
        substitutions=parse_substitutions(substitutions),
    )

    if as_json:
        echo_json(result.to_dict())
        if not result.ok:
            fail()
        return

    if result.error:
        report_error(result.error)
        fail()

    if result.bucket_deleted:
        click.secho(f"🗑️  Deleted bucket {result.bucket}", fg="green")
    else:
        click.echo(f"   Bucket {result.bucket} did not exist")

    if result.lock_table:
        if result.lock_table_deleted:
            click.secho(f"🗑️  Deleted lock table {result.lock_table}", fg="green")
        else:
            click.echo(f"   Lock table {result.lock_table} did not exist")
