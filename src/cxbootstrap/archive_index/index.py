"""
Archive index implementation.

Builds an in-memory map of module id -> archive entries from one or more
source archives, listing entries only.
"""

import logging
import tarfile
import zipfile
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from cxbootstrap.archive_index.ownership import Ownership, hybris_ownership
from cxbootstrap.archive_index.readers import open_archive
from cxbootstrap.bootstrap_models import SHARED, ArchiveEntry, ArchiveSource, DependencyClosure
from cxbootstrap.cxbootstrap_exceptions import ArchiveReadError, CxBootstrapException
from cxbootstrap.cxbootstrap_logger import BootstrapLogger
from cxbootstrap.cxbootstrap_utils import CancellationToken


class ArchiveIndex:
    """
    Module id -> entries, across every indexed archive.

    Entries of one module contributed by several archives are all kept, in
    archive order; later archives add but never remove entries.
    """

    def __init__(self, sources: Sequence[ArchiveSource]):
        self.sources: List[ArchiveSource] = list(sources)
        self._by_source: Dict[str, ArchiveSource] = {s.location: s for s in self.sources}
        self._by_module: Dict[str, List[ArchiveEntry]] = {}

    def add(self, entry: ArchiveEntry) -> None:
        self._by_module.setdefault(entry.module, []).append(entry)

    def modules(self) -> Set[str]:
        """
        Get the ids of all modules that own at least one entry.
        """
        return {m for m in self._by_module if m != SHARED}

    def entries_for_module(self, module_id: str) -> List[ArchiveEntry]:
        return list(self._by_module.get(module_id, []))

    def entries_for(self, closure: DependencyClosure) -> List[ArchiveEntry]:
        """
        Get the entries of every closure module plus the shared entries.
        """
        return [entry for entry in self.entries() if entry.is_shared or entry.module in closure]

    @property
    def shared(self) -> List[ArchiveEntry]:
        return list(self._by_module.get(SHARED, []))

    def entries(self) -> Iterator[ArchiveEntry]:
        for entries in self._by_module.values():
            yield from entries

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._by_module.values())

    def source_for(self, entry: ArchiveEntry) -> ArchiveSource:
        return self._by_source[entry.archive]

    def read_entries(self, entries: Iterable[ArchiveEntry]) -> Dict[ArchiveEntry, bytes]:
        """
        Read the payloads of several small entries, opening each archive once.

        Raises:
            ArchiveReadError: If an archive cannot be read or an entry is missing from it
        """
        payloads: Dict[ArchiveEntry, bytes] = {}
        for archive, group in group_by_archive(entries):
            source = self._by_source[archive]
            by_path = {entry.path: entry for entry in group}
            try:
                with open_archive(source.path) as reader:
                    for path, payload in reader.iter_payloads(set(by_path)):
                        payloads[by_path[path]] = payload.read()
            except (OSError, zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
                raise ArchiveReadError(
                    f"Cannot read entries of {source.location}: {e}",
                    reason="unreadable",
                    subject=source.location,
                ) from e
            missing = sorted(path for path, entry in by_path.items() if entry not in payloads)
            if missing:
                raise ArchiveReadError(
                    f"Entry {missing[0]} is missing from {source.location}",
                    reason="unreadable",
                    subject=f"{source.location}:{missing[0]}",
                )
        return payloads


class ArchiveIndexer:
    """
    Scans source archives into an ArchiveIndex.

    Archives are listed concurrently (bounded by ``max_workers``) and merged
    in the declared order.
    """

    def __init__(
        self,
        ownership: Optional[Ownership] = None,
        logger: Optional[BootstrapLogger] = None,
        max_workers: int = 4,
    ):
        """
        Initialize the indexer.

        Args:
            ownership: Callable mapping an entry path to its module id or SHARED
            logger: Logger for progress and error messages
            max_workers: Upper bound on archives listed concurrently
        """
        self.ownership = ownership or hybris_ownership()
        self.logger = logger or BootstrapLogger()
        self.max_workers = max(1, max_workers)

    def index(
        self,
        sources: Iterable[ArchiveSource],
        cancel: Optional[CancellationToken] = None,
    ) -> ArchiveIndex:
        """
        Index the given archives.

        Args:
            sources: Local archives, in precedence order
            cancel: Optional cancellation signal

        Returns:
            The merged ArchiveIndex

        Raises:
            ArchiveReadError: If any archive cannot be opened; no partial index is returned
        """
        sources = list(sources)
        locations = [s.location for s in sources]
        for source in sources:
            if source.is_remote():
                raise ArchiveReadError(
                    f"Remote archive {source.location} must be fetched before indexing",
                    reason="remote-source",
                    subject=source.location,
                )
            if locations.count(source.location) > 1:
                raise ArchiveReadError(
                    f"Archive {source.location} is listed more than once",
                    reason="duplicate-source",
                    subject=source.location,
                )

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cxbootstrap-index") as pool:
            listings = list(pool.map(lambda s: self._scan(s, cancel), sources))

        index = ArchiveIndex(sources)
        for source, entries in zip(sources, listings):
            for entry in entries:
                index.add(entry)
            self.logger.log(f"Indexed {len(entries)} entries from {source.location}", logging.INFO)

        self.logger.log(
            f"Archive index holds {len(index)} entries for {len(index.modules())} modules",
            logging.INFO,
        )
        return index

    def _scan(self, source: ArchiveSource, cancel: Optional[CancellationToken]) -> List[ArchiveEntry]:
        entries: List[ArchiveEntry] = []
        seen: Set[str] = set()
        try:
            with open_archive(source.path) as reader:
                for path, size, mtime in reader.list_entries():
                    if cancel is not None:
                        cancel.raise_if_cancelled(source.location)
                    if path in seen:
                        continue
                    seen.add(path)
                    entries.append(
                        ArchiveEntry(
                            path=path,
                            size=size,
                            module=self.ownership(path),
                            archive=source.location,
                            mtime=mtime,
                        )
                    )
        except CxBootstrapException:
            raise
        except (OSError, zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
            raise ArchiveReadError(
                f"Cannot list archive {source.location}: {e}",
                reason="unreadable",
                subject=source.location,
            ) from e
        return entries


def group_by_archive(entries: Iterable[ArchiveEntry]) -> List[Tuple[str, List[ArchiveEntry]]]:
    groups: Dict[str, List[ArchiveEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.archive, []).append(entry)
    return list(groups.items())
