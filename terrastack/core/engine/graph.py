"""
Dependency graph — topological ordering of a stack's modules.

Depth-first search with two marks per node:

    in progress  on the current DFS path; reaching it again is a cycle
    done         already placed in the output

Modules and their dependencies are visited in path order, so the same
tree always produces the same order.
"""

from __future__ import annotations

import logging
from pathlib import Path

from terrastack.core.errors import CyclicDependency, UnresolvedDependency
from terrastack.core.models.module import Module

logger = logging.getLogger(__name__)

_IN_PROGRESS = "in_progress"
_DONE = "done"


def check_dependencies(modules: list[Module]) -> None:
    """Every declared dependency must be a module in the same scan.

    Raises:
        UnresolvedDependency: On the first dependency that isn't.
    """
    known = {m.path for m in modules}
    for module in sorted(modules, key=lambda m: m.path):
        for dep in module.dependencies:
            if dep not in known:
                raise UnresolvedDependency(module.path, dep)


def order_modules(modules: list[Module]) -> list[Module]:
    """Order modules so every dependency comes before its dependents.

    Raises:
        UnresolvedDependency: A dependency is not among ``modules``.
        CyclicDependency: No topological order exists.
    """
    check_dependencies(modules)

    by_path = {m.path: m for m in modules}
    marks: dict[Path, str] = {}
    path_stack: list[Path] = []
    ordered: list[Module] = []

    def visit(module: Module) -> None:
        mark = marks.get(module.path)
        if mark == _DONE:
            return
        if mark == _IN_PROGRESS:
            start = path_stack.index(module.path)
            raise CyclicDependency(path_stack[start:] + [module.path])

        marks[module.path] = _IN_PROGRESS
        path_stack.append(module.path)
        for dep in sorted(module.dependencies):
            visit(by_path[dep])
        path_stack.pop()
        marks[module.path] = _DONE
        ordered.append(module)

    for module in sorted(modules, key=lambda m: m.path):
        visit(module)

    logger.debug("Module order: %s", [str(m.path) for m in ordered])
    return ordered
