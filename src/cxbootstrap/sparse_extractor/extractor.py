"""
Sparse extractor implementation.

I/O and disk usage scale with the dependency closure, not with the size of
the source archives. Extraction is resumable, not transactional: entries
already written stay in place when a later entry fails.
"""

import logging
import os
import pathlib
import shutil
import tarfile
import threading
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from cxbootstrap.archive_index.index import ArchiveIndex, group_by_archive
from cxbootstrap.archive_index.readers import open_archive
from cxbootstrap.bootstrap_models import ArchiveEntry, CleanReport, DependencyClosure, ExtractionReport
from cxbootstrap.cxbootstrap_exceptions import (
    ArchiveReadError,
    BootstrapCancelled,
    ExtractionError,
    ExtractionReason,
    LockTimeout,
)
from cxbootstrap.cxbootstrap_logger import BootstrapLogger
from cxbootstrap.cxbootstrap_utils import CancellationToken, FileUtils, GlobUtils

COPY_BUFFER_SIZE = 1024 * 1024


@dataclass
class _Selection:
    planned: Dict[str, Tuple[ArchiveEntry, pathlib.Path]]
    excluded: int
    skipped_modules: int


class SparseExtractor:
    """
    Extracts exactly the entries belonging to a dependency closure.
    """

    def __init__(
        self,
        logger: Optional[BootstrapLogger] = None,
        max_workers: int = 4,
        lock_timeout: float = 300.0,
    ):
        """
        Initialize the extractor.

        Args:
            logger: Logger for progress and error messages
            max_workers: Upper bound on archives extracted concurrently
            lock_timeout: Seconds to wait for the target directory lock
        """
        self.logger = logger or BootstrapLogger()
        self.max_workers = max(1, max_workers)
        self.lock_timeout = lock_timeout

    def extract(
        self,
        index: ArchiveIndex,
        closure: DependencyClosure,
        target_root: str,
        exclude_globs: Iterable[str] = (),
        include_globs: Optional[Sequence[str]] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ExtractionReport:
        """
        Extract the entries of closure modules and shared entries beneath ``target_root``.

        Args:
            index: The archive index
            closure: Modules whose entries are extracted
            target_root: Directory the relative entry paths are written under
            exclude_globs: Entries matching any of these are never written
            include_globs: When given, only entries matching one of these are written
            cancel: Optional cancellation signal

        Returns:
            ExtractionReport with written/unchanged/excluded counts

        Raises:
            ExtractionError: On unsafe paths, path collisions or write failures
            ArchiveReadError: If a source archive cannot be read back
            BootstrapCancelled: If cancellation is observed
        """
        root = pathlib.Path(target_root)
        exclude_globs = list(exclude_globs)
        self._check_globs(exclude_globs + list(include_globs or []))
        selection = self._select(index, closure, root, exclude_globs, include_globs)

        report = ExtractionReport(
            target_root=root,
            excluded=selection.excluded,
            skipped_modules=selection.skipped_modules,
            modules=sorted({e.module for e, _ in selection.planned.values() if not e.is_shared}),
        )

        try:
            with FileUtils.locked(FileUtils.lock_path_for(root), self.lock_timeout):
                root.mkdir(parents=True, exist_ok=True)
                self._write_all(index, selection, report, cancel)
        except LockTimeout as e:
            raise ExtractionError(e.message, reason=ExtractionReason.LOCK_TIMEOUT, subject=str(root)) from e
        except OSError as e:
            raise self._root_error(root, e) from e

        self.logger.log(
            f"Extracted {report.written} entries ({report.bytes_written} bytes) into {root}; "
            f"{report.unchanged} unchanged, {report.excluded} excluded, "
            f"{report.skipped_modules} skipped outside the closure",
            logging.INFO,
        )
        return report

    def clean(
        self,
        target_root: str,
        glob: str,
        cancel: Optional[CancellationToken] = None,
    ) -> CleanReport:
        """
        Delete every file or directory under ``target_root`` whose relative path matches ``glob``.

        This is a separate operation from extraction; extraction itself never deletes.
        """
        root = pathlib.Path(target_root)
        self._check_globs([glob])
        report = CleanReport(target_root=root, glob=glob)
        if not root.is_dir():
            return report

        try:
            with FileUtils.locked(FileUtils.lock_path_for(root), self.lock_timeout):
                for dirpath, dirnames, filenames in os.walk(root, topdown=True):
                    if cancel is not None:
                        cancel.raise_if_cancelled(dirpath)
                    rel_dir = pathlib.PurePosixPath(pathlib.Path(dirpath).relative_to(root).as_posix())
                    kept = []
                    for name in dirnames:
                        rel = (rel_dir / name).as_posix()
                        if GlobUtils.matches(rel, glob):
                            self._remove(pathlib.Path(dirpath) / name, rel)
                            report.removed.append(rel)
                        else:
                            kept.append(name)
                    dirnames[:] = kept
                    for name in filenames:
                        rel = (rel_dir / name).as_posix()
                        if GlobUtils.matches(rel, glob):
                            self._remove(pathlib.Path(dirpath) / name, rel)
                            report.removed.append(rel)
        except LockTimeout as e:
            raise ExtractionError(e.message, reason=ExtractionReason.LOCK_TIMEOUT, subject=str(root)) from e
        except OSError as e:
            raise self._root_error(root, e) from e

        self.logger.log(f"Cleaned {len(report.removed)} paths matching {glob} under {root}", logging.INFO)
        return report

    def _select(
        self,
        index: ArchiveIndex,
        closure: DependencyClosure,
        root: pathlib.Path,
        exclude_globs: List[str],
        include_globs: Optional[Sequence[str]],
    ) -> _Selection:
        planned: Dict[str, Tuple[ArchiveEntry, pathlib.Path]] = {}
        excluded = 0
        selected = index.entries_for(closure)
        skipped_modules = len(index) - len(selected)

        for entry in selected:
            if include_globs is not None and not GlobUtils.matches_any(entry.path, include_globs):
                excluded += 1
                continue
            if GlobUtils.matches_any(entry.path, exclude_globs):
                excluded += 1
                continue

            relative = FileUtils.safe_relative_path(entry.path)
            if relative is None:
                raise ExtractionError(
                    f"Entry {entry.path} of {entry.archive} escapes the target root",
                    reason=ExtractionReason.UNSAFE_PATH,
                    subject=entry.path,
                )
            key = relative.as_posix()
            previous = planned.get(key)
            if previous is not None:
                raise ExtractionError(
                    f"Entries from {previous[0].archive} and {entry.archive} both write {key}",
                    reason=ExtractionReason.PATH_COLLISION,
                    subject=key,
                )
            planned[key] = (entry, root.joinpath(*relative.parts))

        return _Selection(planned=planned, excluded=excluded, skipped_modules=skipped_modules)

    def _write_all(
        self,
        index: ArchiveIndex,
        selection: _Selection,
        report: ExtractionReport,
        cancel: Optional[CancellationToken],
    ) -> None:
        pending: Dict[str, pathlib.Path] = {}
        entries: List[ArchiveEntry] = []
        for entry, destination in selection.planned.values():
            if self._is_unchanged(entry, destination):
                report.unchanged += 1
            else:
                pending[f"{entry.archive}\0{entry.path}"] = destination
                entries.append(entry)

        failed = threading.Event()
        lock = threading.Lock()

        def work(group: Tuple[str, List[ArchiveEntry]]) -> None:
            archive, group_entries = group
            written, written_bytes = self._write_archive(index, archive, group_entries, pending, failed, cancel)
            with lock:
                report.written += written
                report.bytes_written += written_bytes

        groups = group_by_archive(entries)
        errors: List[BaseException] = []
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cxbootstrap-extract") as pool:
            futures = [pool.submit(work, g) for g in groups]
            for future in futures:
                error = future.exception()
                if error is not None:
                    errors.append(error)

        if errors:
            # Prefer the root failure over workers that merely stopped because of it.
            for error in errors:
                if not isinstance(error, BootstrapCancelled) or (cancel is not None and cancel.cancelled):
                    raise error
            raise errors[0]

    def _write_archive(
        self,
        index: ArchiveIndex,
        archive: str,
        entries: List[ArchiveEntry],
        pending: Dict[str, pathlib.Path],
        failed: threading.Event,
        cancel: Optional[CancellationToken],
    ) -> Tuple[int, int]:
        by_path = {e.path: e for e in entries}
        source = index.source_for(entries[0])
        written = 0
        written_bytes = 0
        try:
            with open_archive(source.path) as reader:
                for path, payload in reader.iter_payloads(set(by_path)):
                    if failed.is_set():
                        raise BootstrapCancelled(path)
                    if cancel is not None:
                        cancel.raise_if_cancelled(path)
                    entry = by_path[path]
                    written_bytes += self._write_entry(entry, payload, pending[f"{archive}\0{path}"])
                    written += 1
        except (OSError, zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
            failed.set()
            raise ArchiveReadError(
                f"Cannot read entries of {source.location}: {e}",
                reason="unreadable",
                subject=source.location,
            ) from e
        except BaseException:
            failed.set()
            raise
        return written, written_bytes

    def _write_entry(self, entry: ArchiveEntry, payload, destination: pathlib.Path) -> int:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with open(destination, "wb") as out:
                shutil.copyfileobj(payload, out, COPY_BUFFER_SIZE)
            os.utime(destination, (entry.mtime, entry.mtime))
        except PermissionError as e:
            raise ExtractionError(
                f"Permission denied writing {entry.path} from {entry.archive}: {e}",
                reason=ExtractionReason.PERMISSION,
                subject=entry.path,
            ) from e
        except OSError as e:
            raise ExtractionError(
                f"Failed writing {entry.path} from {entry.archive}: {e}",
                reason=ExtractionReason.WRITE_FAILURE,
                subject=entry.path,
            ) from e
        return entry.size

    @staticmethod
    def _check_globs(patterns: Iterable[str]) -> None:
        for pattern in patterns:
            try:
                GlobUtils.compile(pattern)
            except ValueError as e:
                raise ExtractionError(str(e), reason=ExtractionReason.INVALID_GLOB, subject=pattern) from e

    @staticmethod
    def _root_error(root: pathlib.Path, error: OSError) -> ExtractionError:
        reason = ExtractionReason.PERMISSION if isinstance(error, PermissionError) else ExtractionReason.WRITE_FAILURE
        return ExtractionError(f"Cannot prepare target root {root}: {error}", reason=reason, subject=str(root))

    @staticmethod
    def _is_unchanged(entry: ArchiveEntry, destination: pathlib.Path) -> bool:
        try:
            stat = destination.stat()
        except OSError:
            return False
        return (
            destination.is_file()
            and stat.st_size == entry.size
            and int(stat.st_mtime) == int(entry.mtime)
        )

    @staticmethod
    def _remove(path: pathlib.Path, relative: str) -> None:
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except PermissionError as e:
            raise ExtractionError(
                f"Permission denied removing {relative}: {e}",
                reason=ExtractionReason.PERMISSION,
                subject=relative,
            ) from e
        except OSError as e:
            raise ExtractionError(
                f"Failed removing {relative}: {e}",
                reason=ExtractionReason.WRITE_FAILURE,
                subject=relative,
            ) from e
