"""
Result models returned by the core operations.
"""

from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class CleanReport(BaseModel):
    """Outcome of a clean pass over an extraction target."""

    target_root: Path
    glob: str
    removed: List[str] = Field(default_factory=list)


class ExtractionReport(BaseModel):
    """Outcome of one sparse extraction run."""

    target_root: Path
    written: int = 0
    unchanged: int = 0
    excluded: int = 0
    skipped_modules: int = Field(0, description="Entries skipped because their module is outside the closure")
    bytes_written: int = 0
    modules: List[str] = Field(default_factory=list, description="Closure modules that contributed entries")
    clean: Optional[CleanReport] = Field(None, description="Clean pass run before this extraction, if any")


class FetchOptions(BaseModel):
    """
    Options controlling a single artifact fetch.

    Credentials are passed per request and never persisted.
    """

    overwrite: bool = False
    only_if_modified: bool = False
    use_freshness_token: bool = False
    auth: Optional[Tuple[str, str]] = Field(None, repr=False, description="(user, password) for basic authentication")
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(60.0, gt=0, description="Connect/read timeout in seconds")
    deadline: float = Field(1800.0, gt=0, description="Total time budget in seconds")
    expected_size: Optional[int] = None
    expected_sha256: Optional[str] = None

    class Config:
        frozen = True


class ArtifactStatus(str, Enum):
    DOWNLOADED = "downloaded"
    NOT_MODIFIED = "not_modified"
    CACHED = "cached"


class CachedArtifact(BaseModel):
    """A (source url, local path, freshness token) triple plus transfer details."""

    url: str
    path: Path
    freshness_token: Optional[str] = None
    last_modified: Optional[str] = None
    status: ArtifactStatus = ArtifactStatus.CACHED
    bytes_transferred: int = 0
    size: int = 0


class LinkMode(str, Enum):
    INDIRECTION = "indirection"
    COPY = "copy"
    OWNED = "owned"


class AliasRecord(BaseModel):
    alias: str
    source: Optional[Path] = None
    mode: LinkMode


class LayerReport(BaseModel):
    """Outcome of materializing configuration layers."""

    layer_root: Path
    aliases: List[AliasRecord] = Field(default_factory=list)
    developer_layer: Optional[Path] = None
    developer_layer_created: bool = False
    degraded: bool = False
    removed: List[str] = Field(default_factory=list, description="Stale aliases removed from an earlier run")
    warnings: List[str] = Field(default_factory=list)
