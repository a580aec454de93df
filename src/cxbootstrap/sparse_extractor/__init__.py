"""
Sparse extraction of indexed archives.

This package handles:
1. Selecting the entries owned by closure modules (plus shared entries)
2. Writing them beneath a target tree, skipping unchanged files
3. Cleaning a target subtree before a fresh extraction
"""

from .extractor import SparseExtractor

__all__ = ["SparseExtractor"]
