"""
Data models describing source archives and the entries listed from them.
"""

import dataclasses
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

# Ownership marker for entries that belong to no single module (platform core,
# cloud hot folders, licenses, ...). Shared entries are always extracted.
SHARED = "<shared>"


class ArchiveSource(BaseModel):
    """
    An addressable archive file. ``location`` is a local path or a downloadable url.
    """

    location: str = Field(..., description="Local path or http(s) url")
    name: Optional[str] = Field(None, description="Display name, defaults to the file name")

    class Config:
        frozen = True

    def is_remote(self) -> bool:
        return self.location.startswith(("http://", "https://"))

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return self.location.rstrip("/").rsplit("/", 1)[-1]

    @property
    def path(self) -> Path:
        return Path(self.location)


@dataclasses.dataclass(frozen=True)
class ArchiveEntry:
    """
    A file entry listed from a source archive. Directory entries are never indexed.
    """

    path: str
    size: int
    module: str
    archive: str
    mtime: float

    @property
    def is_shared(self) -> bool:
        return self.module == SHARED
