"""
This file contains various utility functions like glob matching, advisory locking, platform detection, etc.
"""

import functools
import logging
import os
import re
import threading
import time
import uuid
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, Optional, Pattern

from cxbootstrap.cxbootstrap_exceptions import BootstrapCancelled, LockTimeout

try:
    import fcntl as _fcntl

    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False
    logging.getLogger("cxbootstrap.locking").warning(
        "fcntl not available (non-POSIX). Advisory locking is disabled. "
        "Do not run concurrent bootstrap invocations against the same directories on this platform."
    )


class CancellationToken:
    """
    External cancellation signal observed by long running operations.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, subject: str = "") -> None:
        if self._event.is_set():
            raise BootstrapCancelled(subject)


class GlobUtils:
    """
    Utility functions for ant/java style glob patterns (``*``, ``**``, ``?``, ``{a,b}``)
    matched against posix relative paths.
    """

    @staticmethod
    @functools.lru_cache(maxsize=256)
    def compile(pattern: str) -> Pattern[str]:
        """
        Compiles a glob pattern, with or without the ``glob:`` prefix, into a regex.
        """
        if pattern.startswith("glob:"):
            pattern = pattern[len("glob:"):]

        regex = []
        in_group = False
        i = 0
        while i < len(pattern):
            c = pattern[i]
            if c == "*":
                if pattern.startswith("**", i):
                    regex.append(".*")
                    i += 2
                    continue
                regex.append("[^/]*")
            elif c == "?":
                regex.append("[^/]")
            elif c == "{" and not in_group:
                regex.append("(?:")
                in_group = True
            elif c == "}" and in_group:
                regex.append(")")
                in_group = False
            elif c == "," and in_group:
                regex.append("|")
            else:
                regex.append(re.escape(c))
            i += 1

        if in_group:
            raise ValueError(f"Unbalanced '{{' in glob pattern: {pattern}")
        return re.compile("".join(regex), re.DOTALL)

    @staticmethod
    def matches(path: str, pattern: str) -> bool:
        return GlobUtils.compile(pattern).fullmatch(path) is not None

    @staticmethod
    def matches_any(path: str, patterns: Iterable[str]) -> bool:
        return any(GlobUtils.matches(path, p) for p in patterns)


class FileUtils:
    """
    Utility functions for files and directories
    """

    @staticmethod
    def safe_relative_path(entry_path: str) -> Optional[PurePosixPath]:
        """
        Returns the normalized relative path of an archive entry, or None if the entry
        is absolute or would escape the directory it is extracted into.
        """
        normalized = entry_path.replace("\\", "/")
        path = PurePosixPath(normalized)
        if path.is_absolute() or re.match(r"^[A-Za-z]:", normalized):
            return None
        parts = [p for p in path.parts if p not in ("", ".")]
        if not parts or ".." in parts:
            return None
        return PurePosixPath(*parts)

    @staticmethod
    def temporary_sibling(path: Path) -> Path:
        """
        Returns a unique temporary path in the same directory, so that os.replace stays atomic.
        """
        return path.with_name(f".{path.name}.{uuid.uuid4().hex}.part")

    @staticmethod
    def lock_path_for(path: Path) -> Path:
        path = Path(path)
        return path.with_name(f".{path.name}.lock")

    @staticmethod
    @contextmanager
    def locked(lock_path: Path, timeout: float, poll_interval: float = 0.05) -> Iterator[None]:
        """
        Holds an exclusive advisory lock on ``lock_path`` for the duration of the block.

        Raises:
            LockTimeout: If the lock is not acquired within ``timeout`` seconds
        """
        lock_path = Path(lock_path)
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(lock_path, "a+") as fh:
            if _HAS_FCNTL:
                deadline = time.monotonic() + timeout
                while True:
                    try:
                        _fcntl.flock(fh, _fcntl.LOCK_EX | _fcntl.LOCK_NB)
                        break
                    except BlockingIOError:
                        if time.monotonic() >= deadline:
                            raise LockTimeout(
                                f"Timed out after {timeout}s waiting for lock {lock_path}",
                                reason="lock-timeout",
                                subject=str(lock_path),
                            )
                        time.sleep(poll_interval)
            try:
                yield
            finally:
                if _HAS_FCNTL:
                    _fcntl.flock(fh, _fcntl.LOCK_UN)


class PlatformUtils:
    """
    This class provides utilities for platform detection and identification.
    """

    @staticmethod
    def supports_symlinks(directory: Path) -> bool:
        """
        Probes whether relative symbolic links can be created inside ``directory``.
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        probe = directory / f".symlink-probe-{uuid.uuid4().hex}"
        try:
            os.symlink("probe-target", probe)
        except (OSError, NotImplementedError):
            return False
        else:
            probe.unlink()
            return True
