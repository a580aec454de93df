"""
Dependency closure resolution.

This package handles:
1. Expanding requested modules with the always-included set
2. Walking declared module dependencies breadth first (cycles allowed)
3. Failing the whole resolution on the first unknown module
"""

from .resolver import DependencyClosureResolver

__all__ = ["DependencyClosureResolver"]
