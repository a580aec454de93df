"""
Thin readers over zip and tar archives.

Both expose the same two operations: list file entries without touching
payloads, and stream the payloads of a chosen subset of entries.
"""

import pathlib
import tarfile
import time
import zipfile
from typing import IO, Iterator, Set, Tuple

from cxbootstrap.cxbootstrap_exceptions import ArchiveReadError

ListedEntry = Tuple[str, int, float]


class ZipArchiveReader:
    def __init__(self, path: pathlib.Path):
        self.path = path
        self._zip = zipfile.ZipFile(path)

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> "ZipArchiveReader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def list_entries(self) -> Iterator[ListedEntry]:
        for info in self._zip.infolist():
            if info.is_dir():
                continue
            yield info.filename, info.file_size, time.mktime(info.date_time + (0, 0, -1))

    def iter_payloads(self, wanted: Set[str]) -> Iterator[Tuple[str, IO[bytes]]]:
        remaining = set(wanted)
        for info in self._zip.infolist():
            if info.filename in remaining and not info.is_dir():
                remaining.discard(info.filename)
                with self._zip.open(info) as payload:
                    yield info.filename, payload


class TarArchiveReader:
    def __init__(self, path: pathlib.Path):
        self.path = path
        self._tar = tarfile.open(path, "r:*")

    def close(self) -> None:
        self._tar.close()

    def __enter__(self) -> "TarArchiveReader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def list_entries(self) -> Iterator[ListedEntry]:
        for member in self._tar:
            if member.isfile():
                yield member.name, member.size, float(member.mtime)

    def iter_payloads(self, wanted: Set[str]) -> Iterator[Tuple[str, IO[bytes]]]:
        # Members are visited in stream order so compressed tars are decoded once.
        remaining = set(wanted)
        for member in self._tar:
            if member.isfile() and member.name in remaining:
                remaining.discard(member.name)
                payload = self._tar.extractfile(member)
                if payload is None:
                    continue
                with payload:
                    yield member.name, payload


def open_archive(path: pathlib.Path):
    """
    Open a zip or tar archive for reading.

    Raises:
        ArchiveReadError: If the file is missing, unreadable or not a supported archive
    """
    path = pathlib.Path(path)
    if not path.is_file():
        raise ArchiveReadError(f"Archive not found: {path}", reason="not-found", subject=str(path))
    try:
        if zipfile.is_zipfile(path):
            return ZipArchiveReader(path)
        if tarfile.is_tarfile(str(path)):
            return TarArchiveReader(path)
    except (OSError, zipfile.BadZipFile, tarfile.TarError) as e:
        raise ArchiveReadError(f"Cannot open archive {path}: {e}", reason="unreadable", subject=str(path)) from e
    raise ArchiveReadError(f"Unsupported archive format: {path}", reason="unsupported-format", subject=str(path))
