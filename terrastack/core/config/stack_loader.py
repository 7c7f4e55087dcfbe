"""
Stack loader — discovers the modules under a directory tree.

A module is any directory holding a terrastack.yml. Expects structure::

    live/
        terrastack.yml         # shared settings, included by children
        mgmt/
            vpc/
                terrastack.yml # include: ../../terrastack.yml
                main.tf
            bastion/
                terrastack.yml # dependencies: [../vpc]
                main.tf

Resolution:
    1. Walk the tree and collect every config file (hidden dirs skipped)
    2. Resolve each one through its include chain
    3. Drop configs that are only include parents and hold no templates
    4. Turn dependency paths into absolute module paths

Ordering is done separately (see ``terrastack.core.engine.graph``).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from terrastack.core.config.loader import DEFAULT_CONFIG_FILE, ResolvedConfig, resolve_config
from terrastack.core.errors import NoModulesFound
from terrastack.core.models.module import Module

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIXES = (".tf", ".tf.json")


def find_config_files(root: Path, config_filename: str = DEFAULT_CONFIG_FILE) -> list[Path]:
    """Every config file under ``root``, sorted, hidden dirs skipped."""
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        # Prune in place so os.walk doesn't descend (.terraform, .git, ...)
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        if config_filename in filenames:
            found.append(Path(dirpath) / config_filename)
    return sorted(found)


def has_templates(directory: Path) -> bool:
    """Whether a directory holds terraform templates."""
    return any(
        child.is_file() and child.name.endswith(TEMPLATE_SUFFIXES)
        for child in directory.iterdir()
    )


def load_module(resolved: ResolvedConfig) -> Module:
    """Build a Module from a resolved config."""
    module_dir = resolved.module_dir
    dependencies = tuple(
        (module_dir / dep).resolve() for dep in resolved.config.dependency_paths
    )
    return Module(
        path=module_dir,
        config_path=resolved.path,
        config=resolved.config,
        dependencies=dependencies,
    )


def discover_modules(
    root: Path,
    config_filename: str = DEFAULT_CONFIG_FILE,
    substitutions: Mapping[str, str] | None = None,
) -> list[Module]:
    """Discover and resolve every module under ``root``.

    Returns:
        Modules sorted by path (not yet in dependency order).

    Raises:
        NoModulesFound: If the tree holds no modules.
        ConfigError: If any config fails to resolve.
    """
    root = root.resolve()
    if not root.is_dir():
        raise NoModulesFound(root, config_filename)

    resolved = [resolve_config(p, substitutions) for p in find_config_files(root, config_filename)]

    include_parents = {parent for r in resolved for parent in r.parent_paths}

    modules: list[Module] = []
    for r in resolved:
        if r.path in include_parents and not has_templates(r.module_dir):
            logger.debug("Skipping %s: include parent without templates", r.path)
            continue
        modules.append(load_module(r))

    if not modules:
        raise NoModulesFound(root, config_filename)

    logger.info(
        "Discovered %d module(s) under %s: %s",
        len(modules),
        root,
        [m.relative_to(root) for m in modules],
    )
    return modules
