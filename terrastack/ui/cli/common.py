"""
Shared CLI plumbing — options every command takes, and result output.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, NoReturn

import click

from terrastack.core.errors import ConfigError, RunnerError, TerrastackError


def working_dir_option(fn: Callable) -> Callable:
    return click.option(
        "--working-dir",
        "-w",
        "working_dir",
        type=click.Path(file_okay=False, path_type=Path),
        default=None,
        help="Module (or stack root) directory (default: cwd).",
    )(fn)


def config_option(fn: Callable) -> Callable:
    return click.option(
        "--config",
        "-c",
        "config_path",
        type=click.Path(dir_okay=False, path_type=Path),
        default=None,
        help="Config file (default: <working-dir>/terrastack.yml).",
    )(fn)


def substitute_option(fn: Callable) -> Callable:
    return click.option(
        "--substitute",
        "-s",
        "substitutions",
        multiple=True,
        metavar="TOKEN=VALUE",
        help="Replace TOKEN with VALUE in every config string (repeatable).",
    )(fn)


def holder_option(fn: Callable) -> Callable:
    return click.option(
        "--holder",
        default=None,
        help="Lock holder identity (default: user@host).",
    )(fn)


def json_option(fn: Callable) -> Callable:
    return click.option(
        "--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."
    )(fn)


def non_interactive_option(fn: Callable) -> Callable:
    return click.option(
        "--non-interactive",
        is_flag=True,
        help="Never prompt; pass -input=false and -auto-approve to terraform.",
    )(fn)


def mock_option(fn: Callable) -> Callable:
    return click.option(
        "--mock", is_flag=True, help="Use the mock runner (terraform is not executed)."
    )(fn)


def parse_substitutions(pairs: tuple[str, ...]) -> dict[str, str]:
    """Turn ``("TOKEN=value", ...)`` into a mapping."""
    result: dict[str, str] = {}
    for pair in pairs:
        token, sep, value = pair.partition("=")
        if not sep or not token:
            raise click.BadParameter(
                f"expected TOKEN=VALUE, got {pair!r}", param_hint="--substitute"
            )
        result[token] = value
    return result


def confirm_prompt(message: str) -> bool:
    return click.confirm(message, default=False)


def echo_json(data: dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2))


def report_error(error: TerrastackError, config_path: Path | None = None) -> None:
    """Print an error in red, with the offending config file when known.

    A ConfigError names its own file; for anything else the module's
    config (``config_path``) is shown.
    """
    click.secho(f"❌ {error}", fg="red", err=True)
    location = error.path if isinstance(error, ConfigError) and error.path else config_path
    if location is not None:
        click.echo(f"   in {location}", err=True)
    if isinstance(error, RunnerError) and error.output:
        for line in error.output.rstrip().split("\n")[-20:]:
            click.echo(f"   │ {line}", err=True)


def fail() -> NoReturn:
    click.echo()
    sys.exit(1)
