"""
Dependency closure resolver implementation.
"""

import logging
from collections import deque
from typing import Deque, Iterable, Mapping, Optional, Set

from cxbootstrap.bootstrap_models import DependencyClosure, Module
from cxbootstrap.cxbootstrap_exceptions import UnknownDependency
from cxbootstrap.cxbootstrap_logger import BootstrapLogger

REQUESTED = "<requested>"
ALWAYS_INCLUDED = "<always-included>"


class DependencyClosureResolver:
    """
    Computes the transitive set of modules required by a project.

    Module graphs are ordinary graphs, not trees: a visited set guards the
    breadth-first walk so cyclic declarations terminate.
    """

    def __init__(self, logger: Optional[BootstrapLogger] = None):
        self.logger = logger or BootstrapLogger()

    def resolve(
        self,
        requested: Iterable[str],
        all_modules: Mapping[str, Module],
        always_included: Iterable[str] = (),
    ) -> DependencyClosure:
        """
        Resolve the dependency closure.

        Args:
            requested: Module ids requested by the project
            all_modules: The module table, keyed by module id
            always_included: Extra module ids that ship regardless of the request

        Returns:
            The closure of requested and always-included modules

        Raises:
            UnknownDependency: If any requested or declared dependency is not in the module table
        """
        requested = frozenset(requested)
        always = frozenset(always_included) | frozenset(
            m.id for m in all_modules.values() if m.always_included
        )

        for module_id in sorted(requested):
            if module_id not in all_modules:
                raise UnknownDependency(REQUESTED, module_id)
        for module_id in sorted(always):
            if module_id not in all_modules:
                raise UnknownDependency(ALWAYS_INCLUDED, module_id)

        visited: Set[str] = set()
        queue: Deque[str] = deque()
        for module_id in sorted(requested | always):
            visited.add(module_id)
            queue.append(module_id)

        while queue:
            module = all_modules[queue.popleft()]
            for dep in sorted(module.requires):
                if dep not in all_modules:
                    raise UnknownDependency(module.id, dep)
                if dep not in visited:
                    visited.add(dep)
                    queue.append(dep)

        closure = DependencyClosure(
            modules=frozenset(visited),
            requested=requested,
            always_included=always,
        )
        self.logger.log(
            f"Resolved {len(requested)} requested and {len(always)} always-included modules "
            f"to a closure of {len(closure)} modules",
            logging.INFO,
        )
        return closure
