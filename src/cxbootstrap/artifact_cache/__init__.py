"""
Artifact caching.

This package handles:
1. Fetching remote artifacts with conditional requests and freshness tokens
2. Coalescing concurrent fetches of the same url
3. Planning which distribution archives a manifest needs
4. Downloading planned artifacts and summarising the results
"""

from .cache import ArtifactCache, FreshnessRecord
from .downloader import ArtifactDownloader
from .planner import ArtifactPlanner, DownloadPlan, DownloadStatus, resolve_solr_version

__all__ = [
    "ArtifactCache",
    "FreshnessRecord",
    "ArtifactDownloader",
    "ArtifactPlanner",
    "DownloadPlan",
    "DownloadStatus",
    "resolve_solr_version",
]
