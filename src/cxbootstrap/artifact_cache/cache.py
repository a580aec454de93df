"""
Idempotent artifact cache implementation.

Remote artifacts are fetched into local storage at most once per change of
the remote content. Freshness tokens (entity tags) are persisted in a
sidecar file next to each cached artifact; credentials never are.
"""

import hashlib
import json
import logging
import os
import pathlib
import shutil
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeout
from email.utils import formatdate, parsedate_to_datetime
from typing import Dict, Optional

import requests
from pydantic import BaseModel, Field, ValidationError

from cxbootstrap.bootstrap_models import ArtifactStatus, CachedArtifact, FetchOptions
from cxbootstrap.cxbootstrap_exceptions import FetchError, FetchReason, LockTimeout
from cxbootstrap.cxbootstrap_logger import BootstrapLogger
from cxbootstrap.cxbootstrap_utils import CancellationToken, FileUtils

TOKEN_SUFFIX = ".etag.json"
CHUNK_SIZE = 1024 * 1024


class FreshnessRecord(BaseModel):
    """Sidecar content: what the remote reported when the artifact was last fetched."""

    url: str
    etag: Optional[str] = None
    last_modified: Optional[str] = Field(None, alias="lastModified")

    class Config:
        populate_by_name = True


class ArtifactCache:
    """
    Fetches remote artifacts into local storage, skipping unchanged copies.

    At most one fetch per url is in flight inside one cache instance:
    concurrent callers for the same url wait for and share the first
    fetch's result, and a caller with another destination receives a local
    copy. Unrelated urls never wait on each other. Across processes, each
    destination is guarded by an advisory lock.

    No retries are performed; every failure is a FetchError carrying a reason code.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        logger: Optional[BootstrapLogger] = None,
        lock_timeout: float = 600.0,
        chunk_size: int = CHUNK_SIZE,
    ):
        """
        Initialize the artifact cache.

        Args:
            session: HTTP session used for all requests
            logger: Logger for progress and error messages
            lock_timeout: Seconds to wait for another process holding a destination
            chunk_size: Download chunk size in bytes
        """
        self._session = session or requests.Session()
        self.logger = logger or BootstrapLogger()
        self.lock_timeout = lock_timeout
        self.chunk_size = chunk_size
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()

    def fetch(
        self,
        url: str,
        destination: str,
        options: Optional[FetchOptions] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> CachedArtifact:
        """
        Fetch ``url`` into ``destination``.

        Args:
            url: Remote artifact url
            destination: Local file path
            options: Overwrite / conditional request / verification options
            cancel: Optional cancellation signal

        Returns:
            CachedArtifact describing the local copy and how many bytes were transferred

        Raises:
            FetchError: On network, auth, timeout, checksum or write failures
        """
        options = options or FetchOptions()

        with self._inflight_lock:
            future = self._inflight.get(url)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[url] = future

        if not owner:
            self.logger.log(f"Waiting for in-flight fetch of {url}", logging.DEBUG)
            try:
                shared = future.result(timeout=options.deadline)
            except FuturesTimeout:
                raise FetchError(
                    f"Timed out after {options.deadline}s waiting for in-flight fetch of {url}",
                    reason=FetchReason.TIMEOUT,
                    subject=url,
                ) from None
            return self._share(shared, pathlib.Path(destination))

        try:
            artifact = self._fetch_locked(url, pathlib.Path(destination), options, cancel)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(artifact)
            return artifact
        finally:
            with self._inflight_lock:
                self._inflight.pop(url, None)

    def _share(self, shared: CachedArtifact, destination: pathlib.Path) -> CachedArtifact:
        """
        Hand the result of another caller's fetch of the same url to a waiter.

        A waiter asking for a different destination gets its own copy of the
        shared file, together with the freshness record; nothing is transferred.
        """
        if os.path.abspath(shared.path) == os.path.abspath(destination):
            return shared

        url = shared.url
        try:
            with FileUtils.locked(FileUtils.lock_path_for(destination), self.lock_timeout):
                destination.parent.mkdir(parents=True, exist_ok=True)
                tmp = FileUtils.temporary_sibling(destination)
                try:
                    shutil.copy2(shared.path, tmp)
                    os.replace(tmp, destination)
                finally:
                    if tmp.exists():
                        tmp.unlink()
                record = self.read_freshness_record(shared.path)
                if record is not None and record.url == url:
                    self.write_freshness_record(destination, record)
        except LockTimeout as e:
            raise FetchError(e.message, reason=FetchReason.TIMEOUT, subject=url) from e
        except OSError as e:
            raise FetchError(
                f"Cannot copy {shared.path} to {destination} for {url}: {e}",
                reason=FetchReason.WRITE_FAILURE,
                subject=url,
            ) from e

        self.logger.log(f"Copied in-flight result of {url} to {destination}", logging.INFO)
        return shared.model_copy(update={"path": destination, "bytes_transferred": 0})

    def _fetch_locked(
        self,
        url: str,
        destination: pathlib.Path,
        options: FetchOptions,
        cancel: Optional[CancellationToken],
    ) -> CachedArtifact:
        try:
            with FileUtils.locked(FileUtils.lock_path_for(destination), self.lock_timeout):
                return self._fetch(url, destination, options, cancel)
        except LockTimeout as e:
            raise FetchError(e.message, reason=FetchReason.TIMEOUT, subject=url) from e
        except OSError as e:
            raise FetchError(
                f"Cannot write {destination} for {url}: {e}",
                reason=FetchReason.WRITE_FAILURE,
                subject=url,
            ) from e

    def _fetch(
        self,
        url: str,
        destination: pathlib.Path,
        options: FetchOptions,
        cancel: Optional[CancellationToken],
    ) -> CachedArtifact:
        exists = destination.is_file()
        record = self.read_freshness_record(destination)

        if exists and not options.overwrite and not options.only_if_modified:
            self.logger.log(f"{destination} already present, not downloading {url}", logging.INFO)
            return self._existing(url, destination, record, ArtifactStatus.CACHED)

        # A local copy without a record of the same url has unknown provenance.
        trusted = exists and record is not None and record.url == url
        headers = dict(options.headers)
        if trusted and options.only_if_modified:
            if options.use_freshness_token and record.etag:
                headers["If-None-Match"] = record.etag
            headers["If-Modified-Since"] = formatdate(destination.stat().st_mtime, usegmt=True)

        if cancel is not None and cancel.cancelled:
            raise FetchError(f"Fetch of {url} cancelled", reason=FetchReason.CANCELLED, subject=url)

        deadline = time.monotonic() + options.deadline
        self.logger.log(f"Requesting {url}", logging.INFO)
        response = self._request(url, headers, options)
        try:
            if response.status_code == 304 and trusted:
                self.logger.log(f"{url} not modified, reusing {destination}", logging.INFO)
                return self._existing(url, destination, record, ArtifactStatus.NOT_MODIFIED)
            if response.status_code in (401, 403):
                raise FetchError(
                    f"Authentication failed for {url} (HTTP {response.status_code})",
                    reason=FetchReason.AUTH,
                    subject=url,
                )
            if response.status_code != 200:
                raise FetchError(
                    f"Unexpected HTTP {response.status_code} for {url}",
                    reason=FetchReason.HTTP_STATUS,
                    subject=url,
                )
            transferred = self._download(url, response, destination, options, deadline, cancel)
        finally:
            response.close()

        etag = response.headers.get("ETag")
        last_modified = response.headers.get("Last-Modified")
        self._apply_last_modified(destination, last_modified)
        self.write_freshness_record(destination, FreshnessRecord(url=url, etag=etag, last_modified=last_modified))

        self.logger.log(f"Downloaded {transferred} bytes from {url} to {destination}", logging.INFO)
        return CachedArtifact(
            url=url,
            path=destination,
            freshness_token=etag,
            last_modified=last_modified,
            status=ArtifactStatus.DOWNLOADED,
            bytes_transferred=transferred,
            size=destination.stat().st_size,
        )

    def _request(self, url: str, headers: Dict[str, str], options: FetchOptions):
        try:
            return self._session.get(
                url,
                headers=headers,
                auth=options.auth,
                stream=True,
                timeout=options.timeout,
            )
        except requests.Timeout as e:
            raise FetchError(f"Timed out requesting {url}: {e}", reason=FetchReason.TIMEOUT, subject=url) from e
        except requests.RequestException as e:
            raise FetchError(f"Network error requesting {url}: {e}", reason=FetchReason.NETWORK, subject=url) from e

    def _download(
        self,
        url: str,
        response,
        destination: pathlib.Path,
        options: FetchOptions,
        deadline: float,
        cancel: Optional[CancellationToken],
    ) -> int:
        """
        Stream the body into a temporary sibling and atomically move it into place.

        A half-written file is never observable at ``destination``.
        """
        expected_size = options.expected_size
        if expected_size is None and response.headers.get("Content-Encoding", "identity") == "identity":
            content_length = response.headers.get("Content-Length")
            expected_size = int(content_length) if content_length and content_length.isdigit() else None

        tmp = FileUtils.temporary_sibling(destination)
        digest = hashlib.sha256()
        transferred = 0
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "wb") as out:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if cancel is not None and cancel.cancelled:
                        raise FetchError(f"Fetch of {url} cancelled", reason=FetchReason.CANCELLED, subject=url)
                    if time.monotonic() > deadline:
                        raise FetchError(
                            f"Fetch of {url} exceeded its {options.deadline}s deadline",
                            reason=FetchReason.TIMEOUT,
                            subject=url,
                        )
                    if not chunk:
                        continue
                    out.write(chunk)
                    digest.update(chunk)
                    transferred += len(chunk)

            if expected_size is not None and transferred != expected_size:
                raise FetchError(
                    f"Size mismatch for {url}: expected {expected_size} bytes, received {transferred}",
                    reason=FetchReason.CHECKSUM_MISMATCH,
                    subject=url,
                )
            if options.expected_sha256 and digest.hexdigest() != options.expected_sha256.lower():
                raise FetchError(
                    f"SHA-256 mismatch for {url}: expected {options.expected_sha256}, got {digest.hexdigest()}",
                    reason=FetchReason.CHECKSUM_MISMATCH,
                    subject=url,
                )
            os.replace(tmp, destination)
        except requests.Timeout as e:
            raise FetchError(f"Timed out downloading {url}: {e}", reason=FetchReason.TIMEOUT, subject=url) from e
        except requests.RequestException as e:
            raise FetchError(f"Network error downloading {url}: {e}", reason=FetchReason.NETWORK, subject=url) from e
        except OSError as e:
            raise FetchError(
                f"Cannot write {destination} for {url}: {e}",
                reason=FetchReason.WRITE_FAILURE,
                subject=url,
            ) from e
        finally:
            if tmp.exists():
                tmp.unlink()
        return transferred

    def _existing(
        self,
        url: str,
        destination: pathlib.Path,
        record: Optional[FreshnessRecord],
        status: ArtifactStatus,
    ) -> CachedArtifact:
        return CachedArtifact(
            url=url,
            path=destination,
            freshness_token=record.etag if record is not None else None,
            last_modified=record.last_modified if record is not None else None,
            status=status,
            bytes_transferred=0,
            size=destination.stat().st_size,
        )

    @staticmethod
    def token_path_for(destination: pathlib.Path) -> pathlib.Path:
        destination = pathlib.Path(destination)
        return destination.with_name(destination.name + TOKEN_SUFFIX)

    def read_freshness_record(self, destination: pathlib.Path) -> Optional[FreshnessRecord]:
        path = self.token_path_for(destination)
        if not path.is_file():
            return None
        try:
            return FreshnessRecord(**json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, TypeError, ValidationError) as e:
            self.logger.log(f"Ignoring unreadable freshness token {path}: {e}", logging.WARNING)
            return None

    def write_freshness_record(self, destination: pathlib.Path, record: FreshnessRecord) -> None:
        path = self.token_path_for(destination)
        tmp = FileUtils.temporary_sibling(path)
        try:
            tmp.write_text(record.model_dump_json(by_alias=True, indent=2) + "\n", encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise FetchError(
                f"Cannot persist freshness token {path}: {e}",
                reason=FetchReason.WRITE_FAILURE,
                subject=record.url,
            ) from e
        finally:
            if tmp.exists():
                tmp.unlink()

    @staticmethod
    def _apply_last_modified(destination: pathlib.Path, last_modified: Optional[str]) -> None:
        if not last_modified:
            return
        try:
            timestamp = parsedate_to_datetime(last_modified).timestamp()
        except (TypeError, ValueError):
            return
        os.utime(destination, (timestamp, timestamp))
