"""
Data models for sparse platform bootstrapping.

This package provides the Pydantic (and dataclass) models shared by the
manifest reader, the dependency resolver, the archive index, the sparse
extractor, the artifact cache and the configuration layer resolver.
"""

from .archive import SHARED, ArchiveEntry, ArchiveSource
from .closure import DependencyClosure
from .layers import ConfigLayer, DeveloperLayer
from .manifest import ExtensionPack, Manifest, Module, ModuleTable
from .reports import (
    AliasRecord,
    ArtifactStatus,
    CachedArtifact,
    CleanReport,
    ExtractionReport,
    FetchOptions,
    LayerReport,
    LinkMode,
)

__all__ = [
    # Manifest
    "Manifest",
    "ExtensionPack",
    "Module",
    "ModuleTable",
    "DependencyClosure",
    # Archives
    "SHARED",
    "ArchiveSource",
    "ArchiveEntry",
    # Layers
    "ConfigLayer",
    "DeveloperLayer",
    # Reports
    "ExtractionReport",
    "CleanReport",
    "FetchOptions",
    "CachedArtifact",
    "ArtifactStatus",
    "LayerReport",
    "AliasRecord",
    "LinkMode",
]
