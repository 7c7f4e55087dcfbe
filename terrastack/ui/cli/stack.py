"""
CLI commands for whole-stack operations.

Thin wrappers over ``terrastack.core.use_cases.stack``.
"""

from __future__ import annotations

from pathlib import Path

import click

from terrastack.core.config.loader import DEFAULT_CONFIG_FILE
from terrastack.ui.cli.common import (
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


def _run(
    ctx: click.Context,
    operation: str,
    working_dir: Path | None,
    config_filename: str,
    substitutions: tuple[str, ...],
    holder: str | None,
    non_interactive: bool,
    mock: bool,
    as_json: bool,
    terraform_args: tuple[str, ...],
) -> None:
    from terrastack.core.use_cases.stack import run_stack

    result = run_stack(
        operation=operation,
        root=working_dir,
        extra_args=terraform_args,
        non_interactive=non_interactive,
        mock_mode=mock,
        substitutions=parse_substitutions(substitutions),
        config_filename=config_filename,
        holder=holder,
        confirm=confirm_prompt,
    )

    if as_json:
        echo_json(result.to_dict())
        if not result.ok:
            fail()
        return

    if result.error:
        report_error(result.error)
        fail()

    stack = result.stack
    if stack is None:
        fail()

    mode_label = "[mock] " if mock else ""
    click.secho(f"\n⚡ {mode_label}{operation} — {stack.root}", fg="cyan", bold=True)
    click.echo(f"   Modules: {len(stack.order)}")
    click.echo()

    verbose = ctx.obj.get("verbose", False)
    for path in stack.succeeded:
        receipt = stack.receipts.get(path)
        timing = f" ({receipt.duration_ms}ms)" if receipt and receipt.duration_ms else ""
        click.secho(f"   ✓ {stack.relative(path)}", fg="green", nl=False)
        click.echo(timing)
        if verbose and receipt and receipt.output:
            for line in receipt.output.split("\n")[:10]:
                click.echo(f"     │ {line}")

    if stack.failed is not None:
        click.secho(f"   ✗ {stack.relative(stack.failed)}", fg="red")
        if stack.error is not None:
            for line in str(stack.error).split("\n")[:5]:
                click.echo(f"     │ {line}")

    for path in stack.not_attempted:
        click.secho(f"   ⊘ {stack.relative(path)} ", fg="yellow", nl=False)
        click.echo("(not attempted)")

    click.echo()
    color = "green" if stack.ok else "red"
    click.secho(
        f"   Result: {len(stack.succeeded)}/{len(stack.order)} succeeded",
        fg=color,
        bold=True,
    )

    if not stack.ok:
        fail()

    click.echo()


def _stack_command(operation: str, help_text: str) -> click.Command:
    @click.command(
        f"stack-{operation}",
        help=help_text,
        context_settings={"ignore_unknown_options": True},
    )
    @working_dir_option
    @click.option(
        "--config-name",
        "config_filename",
        default=DEFAULT_CONFIG_FILE,
        show_default=True,
        help="Config file name to look for in each module.",
    )
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
        config_filename: str,
        substitutions: tuple[str, ...],
        holder: str | None,
        non_interactive: bool,
        mock: bool,
        as_json: bool,
        terraform_args: tuple[str, ...],
    ) -> None:
        _run(
            ctx,
            operation,
            working_dir,
            config_filename,
            substitutions,
            holder,
            non_interactive,
            mock,
            as_json,
            terraform_args,
        )

    return _command


stack_apply = _stack_command(
    "apply",
    "Apply every module under the working directory, dependencies first.",
)
stack_destroy = _stack_command(
    "destroy",
    "Destroy every module under the working directory, dependents first.",
)
