"""
Manifest and module descriptor reading.

This package handles:
1. Loading the project manifest (manifest.json, optionally localextensions.xml)
2. Loading an explicit module table from JSON or TOML
3. Deriving the module table from extensioninfo.xml descriptors inside indexed archives
"""

from .reader import ManifestReader

__all__ = ["ManifestReader"]
