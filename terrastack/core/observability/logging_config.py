"""
Logging setup — console (and optional file) handlers for the CLI.

The CLI group calls ``configure_from_environment`` once per process;
library code only ever does ``logging.getLogger(__name__)``.

Console level, highest precedence first:
    --debug, --verbose, --quiet, $TERRASTACK_LOG_LEVEL, WARNING

$TERRASTACK_LOG_FILE adds a file handler at $TERRASTACK_LOG_FILE_LEVEL
(default: the console level).
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Mapping

ENV_LEVEL = "TERRASTACK_LOG_LEVEL"
ENV_FILE = "TERRASTACK_LOG_FILE"
ENV_FILE_LEVEL = "TERRASTACK_LOG_FILE_LEVEL"

# (format, datefmt) by the most verbose level they apply to
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
)
_CONSOLE_DEFAULT = ("%(message)s", None)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(process)d] %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# boto3 logs every request at DEBUG and every retry at INFO
AWS_SDK_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")


def resolve_level(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    env_level: str | None = None,
) -> str:
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return env_level or "WARNING"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Replace the root logger's handlers.

    Safe to call more than once; each call starts from a clean root.

    Args:
        level: Console level name. Unknown names mean WARNING.
        log_file: Also write records to this file.
        log_file_level: Level for ``log_file`` (default: ``level``).
        quiet_third_party: Hold the AWS SDK loggers at WARNING unless
            the console is at DEBUG.
    """
    console_level = _parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level or level)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(file_handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        quiet_aws_sdk()

    # a closed stderr (piped CLI output) must not turn into tracebacks
    logging.raiseExceptions = False


def configure_from_environment(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Set up logging from CLI flags plus TERRASTACK_LOG_* variables.

    Returns:
        The console level that was applied.
    """
    env = os.environ if environ is None else environ
    level = resolve_level(debug, verbose, quiet, env.get(ENV_LEVEL))
    setup_logging(
        level=level,
        log_file=env.get(ENV_FILE),
        log_file_level=env.get(ENV_FILE_LEVEL),
        quiet_third_party=not debug,
    )
    return level


def quiet_aws_sdk(level: int = logging.WARNING) -> None:
    for name in AWS_SDK_LOGGERS:
        logging.getLogger(name).setLevel(level)


def _console_format(level: int) -> tuple[str, str | None]:
    for threshold, fmt, datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            return fmt, datefmt
    return _CONSOLE_DEFAULT


def _parse_level(level: str | None) -> int:
    numeric = logging.getLevelName(level.upper()) if level else logging.WARNING
    return numeric if isinstance(numeric, int) else logging.WARNING
