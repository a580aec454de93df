"""
Tests for archive indexing and module ownership.
"""

import pytest

from conftest import make_tar, make_zip
from cxbootstrap.archive_index import ArchiveIndexer, PatternOwnership, PrefixOwnership, hybris_ownership
from cxbootstrap.archive_index import index as index_module
from cxbootstrap.bootstrap_models import SHARED, ArchiveSource, DependencyClosure
from cxbootstrap.cxbootstrap_exceptions import ArchiveReadError, BootstrapCancelled
from cxbootstrap.cxbootstrap_utils import CancellationToken


@pytest.fixture
def prefix_ownership():
    return PrefixOwnership({"moduleA": "A", "moduleB": "B"})


class TestOwnership:
    """Tests for the ownership rules."""

    def test_prefix_ownership(self, prefix_ownership):
        assert prefix_ownership("moduleA/x.jar") == "A"
        assert prefix_ownership("moduleAB/x.jar") == SHARED
        assert prefix_ownership("shared/z.cfg") == SHARED

    def test_longest_prefix_wins(self):
        ownership = PrefixOwnership({"bin": "platform", "bin/ext/web": "web"})
        assert ownership("bin/ext/web/a.jsp") == "web"
        assert ownership("bin/ext/core/a.jar") == "platform"

    def test_hybris_ownership(self):
        ownership = hybris_ownership()
        assert ownership("hybris/bin/modules/web/storefront/web/index.jsp") == "storefront"
        assert ownership("hybris/bin/ext-accelerator/acceleratorcore/lib/a.jar") == "acceleratorcore"
        assert ownership("hybris/bin/platform/build.xml") == SHARED
        assert ownership("cloudhotfolder/readme.txt") == SHARED

    def test_pattern_ownership(self):
        ownership = PatternOwnership([r"^custom/([^/]+)/"])
        assert ownership("custom/mycore/lib/a.jar") == "mycore"
        assert ownership("custom") == SHARED


class TestArchiveIndexer:
    """Tests for ArchiveIndexer.index."""

    def test_index_zip(self, platform_zip, prefix_ownership):
        index = ArchiveIndexer(prefix_ownership).index([ArchiveSource(location=str(platform_zip))])

        assert index.modules() == {"A", "B"}
        assert [e.path for e in index.entries_for_module("A")] == ["moduleA/x.jar"]
        assert [e.path for e in index.shared] == ["shared/z.cfg"]
        assert index.entries_for_module("A")[0].size == 10
        assert index.entries_for_module("A")[0].archive == str(platform_zip)
        assert len(index) == 3

    def test_entries_for_closure(self, platform_zip, prefix_ownership):
        index = ArchiveIndexer(prefix_ownership).index([ArchiveSource(location=str(platform_zip))])
        selected = index.entries_for(DependencyClosure(modules=frozenset({"A"})))
        assert sorted(e.path for e in selected) == ["moduleA/x.jar", "shared/z.cfg"]

    def test_index_tar(self, tmp_path, prefix_ownership):
        archive = make_tar(tmp_path / "pack.tgz", {"moduleB/extra.jar": b"e" * 5})
        index = ArchiveIndexer(prefix_ownership).index([ArchiveSource(location=str(archive))])
        entry = index.entries_for_module("B")[0]
        assert entry.path == "moduleB/extra.jar"
        assert entry.mtime == 1_700_000_000
        assert index.read_entries([entry]) == {entry: b"eeeee"}

    def test_directories_are_not_indexed(self, tmp_path, prefix_ownership):
        archive = make_zip(tmp_path / "dirs.zip", {"moduleA/": b"", "moduleA/x.jar": b"x"})
        index = ArchiveIndexer(prefix_ownership).index([ArchiveSource(location=str(archive))])
        assert [e.path for e in index.entries()] == ["moduleA/x.jar"]

    def test_multi_archive_merge(self, tmp_path, platform_zip, prefix_ownership):
        """A module's entries from several archives are all kept, in archive order."""
        pack = make_zip(tmp_path / "archives" / "pack.zip", {"moduleA/extra.jar": b"e", "moduleC/c.jar": b"c"})
        index = ArchiveIndexer(prefix_ownership).index(
            [ArchiveSource(location=str(platform_zip)), ArchiveSource(location=str(pack))]
        )
        assert [(e.archive, e.path) for e in index.entries_for_module("A")] == [
            (str(platform_zip), "moduleA/x.jar"),
            (str(pack), "moduleA/extra.jar"),
        ]
        assert index.modules() == {"A", "B"}
        assert len(index.shared) == 2

    def test_missing_archive(self, tmp_path, platform_zip, prefix_ownership):
        """No partial index is produced when one archive cannot be read."""
        with pytest.raises(ArchiveReadError) as exc_info:
            ArchiveIndexer(prefix_ownership).index(
                [ArchiveSource(location=str(platform_zip)), ArchiveSource(location=str(tmp_path / "missing.zip"))]
            )
        assert exc_info.value.reason == "not-found"
        assert exc_info.value.subject.endswith("missing.zip")

    def test_unsupported_archive(self, tmp_path, prefix_ownership):
        path = tmp_path / "notes.zip"
        path.write_text("not an archive")
        with pytest.raises(ArchiveReadError) as exc_info:
            ArchiveIndexer(prefix_ownership).index([ArchiveSource(location=str(path))])
        assert exc_info.value.reason == "unsupported-format"

    def test_remote_sources_are_rejected(self, prefix_ownership):
        with pytest.raises(ArchiveReadError) as exc_info:
            ArchiveIndexer(prefix_ownership).index([ArchiveSource(location="https://example.com/a.zip")])
        assert exc_info.value.reason == "remote-source"

    def test_same_file_name_in_different_directories(self, tmp_path, platform_zip, prefix_ownership):
        other = make_zip(tmp_path / "other" / "platform.zip", {"moduleC/c.jar": b"c", "moduleB/w.jar": b"w"})
        index = ArchiveIndexer(prefix_ownership).index(
            [ArchiveSource(location=str(platform_zip)), ArchiveSource(location=str(other))]
        )
        entries = index.entries_for_module("B")
        assert [(e.archive, e.path) for e in entries] == [
            (str(platform_zip), "moduleB/y.jar"),
            (str(other), "moduleB/w.jar"),
        ]
        assert index.source_for(entries[1]).location == str(other)
        assert index.read_entries(entries) == {entries[0]: b"y" * 20, entries[1]: b"w"}

    def test_same_archive_listed_twice(self, platform_zip, prefix_ownership):
        with pytest.raises(ArchiveReadError) as exc_info:
            ArchiveIndexer(prefix_ownership).index(
                [ArchiveSource(location=str(platform_zip)), ArchiveSource(location=str(platform_zip))]
            )
        assert exc_info.value.reason == "duplicate-source"

    def test_read_entries_opens_each_tar_once(self, tmp_path, prefix_ownership, monkeypatch):
        archive = make_tar(tmp_path / "pack.tgz", {"moduleA/a.xml": b"a", "moduleB/b.xml": b"b", "moduleB/c": b"c"})
        index = ArchiveIndexer(prefix_ownership).index([ArchiveSource(location=str(archive))])
        opened = []
        original = index_module.open_archive

        def counting_open(path):
            opened.append(path)
            return original(path)

        monkeypatch.setattr(index_module, "open_archive", counting_open)
        wanted = [e for e in index.entries() if e.path.endswith(".xml")]

        payloads = index.read_entries(wanted)

        assert sorted(payloads.values()) == [b"a", b"b"]
        assert len(opened) == 1

    def test_cancelled(self, platform_zip, prefix_ownership):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(BootstrapCancelled):
            ArchiveIndexer(prefix_ownership).index([ArchiveSource(location=str(platform_zip))], cancel=token)
