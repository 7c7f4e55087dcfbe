"""
CLI commands for holding a module's state lock by hand.

Thin wrappers over ``terrastack.core.use_cases.locks``.
"""

from __future__ import annotations

from pathlib import Path

import click

from terrastack.ui.cli.common import (
    config_option,
    echo_json,
    fail,
    holder_option,
    json_option,
    parse_substitutions,
    report_error,
    substitute_option,
    working_dir_option,
)


@click.command("acquire-lock")
@working_dir_option
@config_option
@substitute_option
@holder_option
@json_option
def acquire_lock(
    working_dir: Path | None,
    config_path: Path | None,
    substitutions: tuple[str, ...],
    holder: str | None,
    as_json: bool,
) -> None:
    """Acquire the module's state lock and keep it until release-lock."""
    from terrastack.core.use_cases.locks import acquire_lock as _acquire

    result = _acquire(
        working_dir=working_dir,
        config_path=config_path,
        holder=holder,
        substitutions=parse_substitutions(substitutions),
    )

    if as_json:
        echo_json(result.to_dict())
        if not result.ok:
            fail()
        return

    if result.error:
        report_error(result.error, result.config_path)
        fail()

    click.secho(f"🔒 Lock acquired for {result.state_id}", fg="green", bold=True)
    click.echo(f"   Holder: {result.holder}")
    click.echo(f"   Table:  {result.lock_table}")
    click.echo("   Release with: terrastack release-lock")


@click.command("release-lock")
@working_dir_option
@config_option
@substitute_option
@holder_option
@click.option(
    "--force",
    is_flag=True,
    help="Remove the lock whoever holds it (for locks left by crashed runs).",
)
@json_option
def release_lock(
    working_dir: Path | None,
    config_path: Path | None,
    substitutions: tuple[str, ...],
    holder: str | None,
    force: bool,
    as_json: bool,
) -> None:
    """Release the module's state lock."""
    from terrastack.core.use_cases.locks import release_lock as _release

    result = _release(
        working_dir=working_dir,
        config_path=config_path,
        holder=holder,
        force=force,
        substitutions=parse_substitutions(substitutions),
    )

    if as_json:
        echo_json(result.to_dict())
        if not result.ok:
            fail()
        return

    if result.error:
        report_error(result.error, result.config_path)
        fail()

    if result.changed:
        click.secho(f"🔓 Lock released for {result.state_id}", fg="green", bold=True)
        if force and result.record is not None:
            click.echo(f"   Was held by {result.record.holder} since {result.record.acquired_at}")
    elif result.current is not None:
        click.secho(
            f"⚠️  Lock for {result.state_id} is held by {result.current.holder}, not {result.holder}",
            fg="yellow",
        )
        click.echo("   Use --force to remove it anyway.")
    else:
        click.echo(f"   No lock held for {result.state_id}")
