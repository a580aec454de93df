"""
Archive indexing.

This package handles:
1. Listing entries of zip and tar archives without extracting payloads
2. Assigning each entry to its owning module through an injectable ownership rule
3. Merging several archives (platform + extension packs) into one index
"""

from .index import ArchiveIndex, ArchiveIndexer
from .ownership import Ownership, PatternOwnership, PrefixOwnership, hybris_ownership

__all__ = [
    "ArchiveIndex",
    "ArchiveIndexer",
    "Ownership",
    "PatternOwnership",
    "PrefixOwnership",
    "hybris_ownership",
]
