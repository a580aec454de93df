"""
Tests for glob matching, path safety, locking and cancellation utilities.
"""

import threading

import pytest

from cxbootstrap.cxbootstrap_exceptions import BootstrapCancelled, LockTimeout
from cxbootstrap.cxbootstrap_utils import CancellationToken, FileUtils, GlobUtils


class TestGlobUtils:
    """Tests for ant style glob matching."""

    @pytest.mark.parametrize(
        "path, pattern, expected",
        [
            ("hybris/bin/platform/build.xml", "hybris/**", True),
            ("cloudhotfolder/a.txt", "hybris/**", False),
            ("a/b.txt", "a/*.txt", True),
            ("a/c/b.txt", "a/*.txt", False),
            ("a/c/b.txt", "a/**.txt", True),
            ("a/b1.txt", "a/b?.txt", True),
            ("a/b12.txt", "a/b?.txt", False),
            ("hybris/bin/modules", "glob:**hybris/bin/{modules**,platform**,cloudhotfolders**}", True),
            ("hybris/bin/platform/ext/core", "glob:**hybris/bin/{modules**,platform**,cloudhotfolders**}", True),
            ("hybris/bin/custom", "glob:**hybris/bin/{modules**,platform**,cloudhotfolders**}", False),
            ("a+b/c.txt", "a+b/*.txt", True),
        ],
    )
    def test_matches(self, path, pattern, expected):
        assert GlobUtils.matches(path, pattern) is expected

    def test_matches_any(self):
        assert GlobUtils.matches_any("x/y.jar", ["*.txt", "x/*.jar"])
        assert not GlobUtils.matches_any("x/y.jar", [])

    def test_unbalanced_group(self):
        with pytest.raises(ValueError):
            GlobUtils.compile("a/{b,c")


class TestFileUtils:
    """Tests for path safety and locking."""

    @pytest.mark.parametrize(
        "entry, expected",
        [
            ("a/b.txt", "a/b.txt"),
            ("./a//b.txt", "a/b.txt"),
            ("a\\b.txt", "a/b.txt"),
            ("../evil.txt", None),
            ("a/../../evil.txt", None),
            ("/etc/passwd", None),
            ("C:/windows/evil.dll", None),
            ("", None),
        ],
    )
    def test_safe_relative_path(self, entry, expected):
        result = FileUtils.safe_relative_path(entry)
        assert (result.as_posix() if result is not None else None) == expected

    def test_temporary_sibling(self, tmp_path):
        target = tmp_path / "artifact.zip"
        tmp = FileUtils.temporary_sibling(target)
        assert tmp.parent == tmp_path
        assert tmp.name.startswith(".artifact.zip.")
        assert tmp != FileUtils.temporary_sibling(target)

    def test_lock_path_for(self, tmp_path):
        assert FileUtils.lock_path_for(tmp_path / "platform") == tmp_path / ".platform.lock"

    def test_lock_timeout(self, tmp_path):
        """A second holder of the same lock gives up after its timeout."""
        lock_path = tmp_path / ".target.lock"
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with FileUtils.locked(lock_path, timeout=5):
                acquired.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert acquired.wait(5)
            with pytest.raises(LockTimeout):
                with FileUtils.locked(lock_path, timeout=0.2):
                    pass
        finally:
            release.set()
            thread.join()

        with FileUtils.locked(lock_path, timeout=1):
            pass


class TestCancellationToken:
    def test_cancel(self):
        token = CancellationToken()
        token.raise_if_cancelled("x")
        token.cancel()
        assert token.cancelled
        with pytest.raises(BootstrapCancelled) as exc_info:
            token.raise_if_cancelled("moduleA/x.jar")
        assert exc_info.value.subject == "moduleA/x.jar"
