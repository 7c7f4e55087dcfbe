"""
terrastack — CLI entrypoint.

Usage:
    terrastack --help
    terrastack apply -- -var env=qa
    terrastack acquire-lock --working-dir live/qa/my-app
    terrastack stack-apply --working-dir live/mgmt
"""

from __future__ import annotations

import signal
from pathlib import Path
from types import FrameType

import click

from terrastack import __version__
from terrastack.core.observability.logging_config import configure_from_environment
from terrastack.ui.cli.common import (
    config_option,
    confirm_prompt,
    echo_json,
    fail,
    holder_option,
    json_option,
    mock_option,
    non_interactive_option,
    parse_substitutions,
    report_error,
    substitute_option,
    working_dir_option,
)


def _raise_keyboard_interrupt(signum: int, frame: FrameType | None) -> None:
    # Turns SIGTERM into the same unwind as Ctrl-C, so held locks are released
    raise KeyboardInterrupt(f"received signal {signum}")


@click.group()
@click.version_option(version=__version__, prog_name="terrastack")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """terrastack — terraform runs with state locks and dependency ordering."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug

    # ── Logging setup (once, at process start) ──────────────────
    configure_from_environment(debug=debug, verbose=verbose, quiet=quiet)

    signal.signal(signal.SIGTERM, _raise_keyboard_interrupt)


# ── Module commands ─────────────────────────────────────────────


def _run_module_command(
    ctx: click.Context,
    command: str,
    working_dir: Path | None,
    config_path: Path | None,
    substitutions: tuple[str, ...],
    holder: str | None,
    non_interactive: bool,
    mock: bool,
    as_json: bool,
    terraform_args: tuple[str, ...],
) -> None:
    from terrastack.core.use_cases.module import run_module

    result = run_module(
        command=command,
        working_dir=working_dir,
        config_path=config_path,
        extra_args=terraform_args,
        non_interactive=non_interactive,
        mock_mode=mock,
        substitutions=parse_substitutions(substitutions),
        holder=holder,
        confirm=confirm_prompt,
    )

    if as_json:
        echo_json(result.to_dict())
        if not result.ok:
            fail()
        return

    if result.error:
        report_error(result.error, result.config_path)
        fail()

    quiet = ctx.obj.get("quiet", False)
    if not quiet and result.output:
        click.echo(result.output.rstrip())

    mode_label = "[mock] " if mock else ""
    click.secho(
        f"✅ {mode_label}{command} — {result.module_path} ({result.duration_ms}ms)",
        fg="green",
    )


def _module_command(command: str, help_text: str) -> click.Command:
    @cli.command(
        command,
        help=help_text,
        context_settings={"ignore_unknown_options": True},
    )
    @working_dir_option
    @config_option
    @substitute_option
    @holder_option
    @non_interactive_option
    @mock_option
    @json_option
    @click.argument("terraform_args", nargs=-1, type=click.UNPROCESSED)
    @click.pass_context
    def _command(
        ctx: click.Context,
        working_dir: Path | None,
        config_path: Path | None,
        substitutions: tuple[str, ...],
        holder: str | None,
        non_interactive: bool,
        mock: bool,
        as_json: bool,
        terraform_args: tuple[str, ...],
    ) -> None:
        _run_module_command(
            ctx,
            command,
            working_dir,
            config_path,
            substitutions,
            holder,
            non_interactive,
            mock,
            as_json,
            terraform_args,
        )

    return _command


apply = _module_command(
    "apply",
    "Apply the module in the working directory (takes the state lock).\n\n"
    "Arguments after -- go to terraform: terrastack apply -- -var env=qa",
)
plan = _module_command(
    "plan",
    "Plan the module in the working directory (no lock).",
)
destroy = _module_command(
    "destroy",
    "Destroy the module in the working directory (takes the state lock).",
)


# ── Register sub-commands from terrastack/ui/cli/ ───────────────

from terrastack.ui.cli.cleanup import cleanup  # noqa: E402
from terrastack.ui.cli.locks import acquire_lock, release_lock  # noqa: E402
from terrastack.ui.cli.stack import stack_apply, stack_destroy  # noqa: E402

cli.add_command(acquire_lock)
cli.add_command(release_lock)
cli.add_command(stack_apply)
cli.add_command(stack_destroy)
cli.add_command(cleanup)


if __name__ == "__main__":
    cli()
