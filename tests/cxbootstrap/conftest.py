"""
Shared fixtures for cxbootstrap tests: archive builders and a fake requests session.
"""

import io
import tarfile
import threading
import time
import zipfile
from typing import Callable, Dict, List, Optional

import pytest
import requests


def make_zip(path, entries: Dict[str, bytes]):
    """Write a zip archive holding ``entries`` (name -> payload)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, payload in entries.items():
            zf.writestr(zipfile.ZipInfo(name, date_time=(2024, 1, 2, 3, 4, 6)), payload)
    return path


def make_tar(path, entries: Dict[str, bytes], mtime: int = 1_700_000_000):
    """Write a gzip compressed tar archive holding ``entries``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(path, "w:gz") as tf:
        for name, payload in entries.items():
            info = tarfile.TarInfo(name)
            info.size = len(payload)
            info.mtime = mtime
            tf.addfile(info, io.BytesIO(payload))
    return path


def extension_info(name: str, *requires: str) -> bytes:
    required = "".join(f'<requires-extension name="{r}"/>' for r in requires)
    return f'<extensioninfo><extension name="{name}">{required}</extension></extensioninfo>'.encode()


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        chunks: Optional[List[bytes]] = None,
        error_after: Optional[Exception] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.headers = dict(headers or {})
        self.chunks = chunks
        self.error_after = error_after
        self.closed = False

    def iter_content(self, chunk_size: int = 1024):
        chunks = self.chunks if self.chunks is not None else [
            self.body[i:i + chunk_size] for i in range(0, len(self.body), chunk_size)
        ]
        for chunk in chunks:
            yield chunk
        if self.error_after is not None:
            raise self.error_after

    def close(self):
        self.closed = True


class FakeSession:
    """
    Stand-in for requests.Session. ``responder`` maps (url, headers) to a
    FakeResponse or raises a requests exception.
    """

    def __init__(self, responder: Callable[[str, Dict[str, str]], FakeResponse], delay: float = 0.0):
        self.responder = responder
        self.delay = delay
        self.calls: List[Dict] = []
        self._lock = threading.Lock()

    def get(self, url, headers=None, auth=None, stream=False, timeout=None):
        with self._lock:
            self.calls.append({"url": url, "headers": dict(headers or {}), "auth": auth, "timeout": timeout})
        if self.delay:
            time.sleep(self.delay)
        return self.responder(url, dict(headers or {}))


def ok(body: bytes, etag: Optional[str] = None, last_modified: Optional[str] = None) -> FakeResponse:
    headers = {"Content-Length": str(len(body))}
    if etag:
        headers["ETag"] = etag
    if last_modified:
        headers["Last-Modified"] = last_modified
    return FakeResponse(200, body, headers)


@pytest.fixture
def platform_zip(tmp_path):
    """A platform archive with two module folders and one shared file."""
    return make_zip(
        tmp_path / "archives" / "platform.zip",
        {
            "moduleA/x.jar": b"x" * 10,
            "moduleB/y.jar": b"y" * 20,
            "shared/z.cfg": b"z=1\n",
        },
    )


@pytest.fixture
def hybris_zip(tmp_path):
    """A hybris style distribution with extensioninfo.xml descriptors."""
    return make_zip(
        tmp_path / "archives" / "hybris-commerce-suite-2211.15.zip",
        {
            "hybris/bin/platform/build.xml": b"<project/>",
            "hybris/bin/modules/core/core/extensioninfo.xml": extension_info("core"),
            "hybris/bin/modules/core/core/lib/core.jar": b"core",
            "hybris/bin/modules/web/storefront/extensioninfo.xml": extension_info("storefront", "core"),
            "hybris/bin/modules/web/storefront/web/index.jsp": b"<html/>",
            "hybris/bin/modules/search/solrserver/extensioninfo.xml": extension_info("solrserver"),
            "hybris/bin/modules/search/solrserver/bin/solr.sh": b"#!/bin/sh",
            "hybris/bin/modules/b2b/b2bcommerce/extensioninfo.xml": extension_info("b2bcommerce", "core"),
            "hybris/bin/modules/b2b/b2bcommerce/lib/b2b.jar": b"b2b",
        },
    )


@pytest.fixture
def requests_timeout():
    return requests.Timeout("read timed out")
