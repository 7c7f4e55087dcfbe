"""
Configuration loader — reads terrastack.yml and its include chain.

A module's terrastack.yml may point at a parent configuration through
``include.path``. The parent may include its own parent, and so on.
Resolution works in three passes over plain YAML mappings:

    1. walk the include chain (child first), failing on a cycle
    2. merge the chain from the outermost parent down to the child
    3. substitute placeholder tokens, then validate with Pydantic

Merge rules:
    mappings    merged key by key, recursively, child wins
    lists       child replaces the parent's list wholesale
    scalars     child wins
    absent      inherited verbatim from the parent
    include     never inherited (each file names its own parent)
"""

from __future__ import annotations

import copy
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from terrastack.core.errors import ConfigError, ConfigNotFound, CyclicInclude
from terrastack.core.models.config import RECOGNIZED_SECTIONS, TerrastackConfig

logger = logging.getLogger(__name__)

# Default config filename, looked up in every module directory
DEFAULT_CONFIG_FILE = "terrastack.yml"

# Built-in placeholder tokens
PATH_RELATIVE_TO_INCLUDE = "${path_relative_to_include()}"
FIND_IN_PARENT_FOLDERS = "${find_in_parent_folders()}"


@dataclass(frozen=True)
class ResolvedConfig:
    """A configuration file merged with every parent it includes."""

    path: Path
    config: TerrastackConfig
    include_chain: tuple[Path, ...] = field(default_factory=tuple)

    @property
    def module_dir(self) -> Path:
        return self.path.parent

    @property
    def parent_paths(self) -> tuple[Path, ...]:
        """Every included configuration, nearest parent first."""
        return self.include_chain[1:]


def find_config_file(
    start_dir: Path | None = None,
    filename: str = DEFAULT_CONFIG_FILE,
) -> Path | None:
    """Search for a config file starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).
        filename: Config file name to look for.

    Returns:
        Path to the config file, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(50):  # safety limit
        candidate = current / filename
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def find_in_parent_folders(config_path: Path) -> Path:
    """Nearest file named like ``config_path`` in an ancestor directory."""
    start = config_path.resolve().parent.parent
    found = find_config_file(start, config_path.name)
    if found is None:
        raise ConfigNotFound(
            f"No {config_path.name} found in any parent folder of {config_path.parent}",
            path=config_path,
        )
    return found


def read_config_file(path: Path) -> dict[str, Any]:
    """Read one YAML configuration file into a mapping.

    Raises:
        ConfigNotFound: If the file does not exist.
        ConfigError: If the file is unreadable or not a YAML mapping.
    """
    if not path.is_file():
        raise ConfigNotFound(f"Config file not found: {path}", path=path)

    logger.debug("Reading config %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read {path}: {e}", path=path) from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", path=path) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Expected a YAML mapping in {path}, got {type(data).__name__}",
            path=path,
        )

    for key in data:
        if key not in RECOGNIZED_SECTIONS:
            logger.debug("Ignoring unknown section '%s' in %s", key, path)

    return data


# ── Substitution ────────────────────────────────────────────────


def substitute(value: Any, substitutions: Mapping[str, str]) -> Any:
    """Replace placeholder tokens in every string leaf of ``value``.

    All tokens are replaced in a single pass, so a substituted value is
    never scanned again. Tokens with no entry in ``substitutions`` are
    left as they are.
    """
    if not substitutions:
        return copy.deepcopy(value)

    tokens = sorted(substitutions, key=lambda t: (-len(t), t))
    pattern = re.compile("|".join(re.escape(t) for t in tokens))
    return _substitute(value, pattern, substitutions)


def _substitute(value: Any, pattern: re.Pattern[str], substitutions: Mapping[str, str]) -> Any:
    if isinstance(value, str):
        return pattern.sub(lambda m: str(substitutions[m.group(0)]), value)
    if isinstance(value, dict):
        return {k: _substitute(v, pattern, substitutions) for k, v in value.items()}
    if isinstance(value, list):
        return [_substitute(v, pattern, substitutions) for v in value]
    return value


# ── Merge ───────────────────────────────────────────────────────


def merge_configs(parent: Mapping[str, Any], child: Mapping[str, Any]) -> dict[str, Any]:
    """Merge a parent mapping into a child mapping; child wins."""
    merged: dict[str, Any] = {
        key: copy.deepcopy(value) for key, value in parent.items() if key != "include"
    }
    for key, value in child.items():
        merged[key] = _merge_value(merged.get(key), value)
    return merged


def _merge_value(parent: Any, child: Any) -> Any:
    # An empty section (``lock:`` with nothing under it) keeps the parent's
    if child is None:
        return copy.deepcopy(parent)
    if isinstance(parent, dict) and isinstance(child, dict):
        merged = copy.deepcopy(parent)
        for key, value in child.items():
            merged[key] = _merge_value(parent.get(key), value)
        return merged
    return copy.deepcopy(child)


# ── Resolution ──────────────────────────────────────────────────


def _include_target(
    config_path: Path,
    data: Mapping[str, Any],
    substitutions: Mapping[str, str],
) -> Path | None:
    """Where this file's ``include`` points, or None."""
    include = data.get("include")
    if include is None:
        return None
    if not isinstance(include, dict) or not include.get("path"):
        raise ConfigError(
            f"'include' in {config_path} must be a mapping with a 'path'",
            path=config_path,
        )

    raw_path = substitute(str(include["path"]), substitutions)
    if FIND_IN_PARENT_FOLDERS in raw_path:
        parent = find_in_parent_folders(config_path)
        raw_path = raw_path.replace(FIND_IN_PARENT_FOLDERS, str(parent))

    target = Path(raw_path)
    if not target.is_absolute():
        target = config_path.parent / target
    return target.resolve()


def load_include_chain(
    path: Path,
    substitutions: Mapping[str, str] | None = None,
) -> list[tuple[Path, dict[str, Any]]]:
    """Read ``path`` and every configuration it includes, child first.

    Raises:
        CyclicInclude: If a file is reached twice along the chain.
    """
    substitutions = substitutions or {}
    chain: list[tuple[Path, dict[str, Any]]] = []
    in_progress: list[Path] = []

    current: Path | None = path.resolve()
    while current is not None:
        if current in in_progress:
            raise CyclicInclude(in_progress + [current])
        in_progress.append(current)

        try:
            data = read_config_file(current)
        except ConfigNotFound as e:
            if chain:
                raise ConfigNotFound(
                    f"{e} (included from {chain[-1][0]})", path=current
                ) from e
            raise

        chain.append((current, data))
        current = _include_target(current, data, substitutions)

    return chain


def resolve_config(
    path: Path,
    substitutions: Mapping[str, str] | None = None,
) -> ResolvedConfig:
    """Load a configuration, merge its include chain, and validate it.

    Args:
        path: Path to a terrastack.yml.
        substitutions: Extra ``{token: value}`` pairs to fill in, e.g.
            ``{"__FILL_IN_BUCKET_NAME__": "my-bucket"}``.

    Returns:
        The merged, validated configuration.

    Raises:
        ConfigNotFound: If ``path`` or an included file is missing.
        CyclicInclude: If the include chain loops.
        ConfigError: If a file is not valid YAML or fails validation.
    """
    path = path.resolve()
    caller_tokens = dict(substitutions or {})
    chain = load_include_chain(path, caller_tokens)

    merged: dict[str, Any] = {}
    for _, data in reversed(chain):
        merged = merge_configs(merged, data)

    outermost_dir = chain[-1][0].parent
    relative = Path(os.path.relpath(path.parent, outermost_dir)).as_posix()
    tokens = {PATH_RELATIVE_TO_INCLUDE: relative, **caller_tokens}
    merged = substitute(merged, tokens)

    try:
        config = TerrastackConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}", path=path) from e

    include_chain = tuple(p for p, _ in chain)
    if len(include_chain) > 1:
        logger.debug(
            "Resolved %s through %d parent(s): %s",
            path,
            len(include_chain) - 1,
            ", ".join(str(p) for p in include_chain[1:]),
        )
    return ResolvedConfig(path=path, config=config, include_chain=include_chain)
