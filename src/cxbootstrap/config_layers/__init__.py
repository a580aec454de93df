"""
Layered configuration.

This package handles:
1. Exposing ordered configuration layers as sortable aliases (symlinks, or copies when unsupported)
2. Creating the developer's own highest-priority layer exactly once
3. Generating local.properties and reading the effective last-write-wins configuration
"""

from .properties import generate_local_properties, load_effective_properties, parse_properties
from .resolver import ConfigLayerResolver, Copy, Indirection

__all__ = [
    "ConfigLayerResolver",
    "Indirection",
    "Copy",
    "generate_local_properties",
    "load_effective_properties",
    "parse_properties",
]
