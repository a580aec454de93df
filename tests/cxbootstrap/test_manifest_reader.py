"""
Tests for the manifest reader and the manifest models.
"""

import json

import pytest

from conftest import make_zip, extension_info
from cxbootstrap.archive_index import ArchiveIndexer, hybris_ownership
from cxbootstrap.bootstrap_models import ArchiveSource, Manifest
from cxbootstrap.cxbootstrap_exceptions import ManifestError
from cxbootstrap.manifest_reader import ManifestReader


@pytest.fixture
def reader():
    return ManifestReader()


class TestManifest:
    """Tests for the Manifest model."""

    def test_aliases(self):
        manifest = Manifest(
            commerceSuiteVersion="2211.15",
            solrVersion="9.2",
            extensionPacks=[{"name": "hybris-commerce-integrations", "version": "2211.15"}],
            extensions=["storefront"],
        )
        assert manifest.commerce_suite_version == "2211.15"
        assert manifest.solr_version == "9.2"
        assert manifest.extension_pack("hybris-commerce-integrations").version == "2211.15"
        assert manifest.extension_pack("missing") is None
        assert manifest.requested() == {"storefront"}

    def test_populate_by_name(self):
        manifest = Manifest(commerce_suite_version="2211")
        assert manifest.extensions == []
        assert manifest.solr_version is None

    def test_manifest_is_immutable(self):
        manifest = Manifest(commerceSuiteVersion="2211")
        with pytest.raises(Exception):
            manifest.commerce_suite_version = "1905"


class TestReadManifest:
    """Tests for ManifestReader.read_manifest."""

    def test_read_manifest(self, tmp_path, reader):
        path = tmp_path / "manifest.json"
        path.write_text(
            json.dumps(
                {
                    "commerceSuiteVersion": "2211.15",
                    "extensions": ["storefront", {"name": "b2bcommerce"}],
                    "aspects": [],
                }
            )
        )
        manifest = reader.read_manifest(str(path))
        assert manifest.extensions == ["storefront", "b2bcommerce"]

    def test_read_manifest_from_localextensions(self, tmp_path, reader):
        """Without an extensions list the manifest points at localextensions.xml."""
        config = tmp_path / "hybris" / "config"
        config.mkdir(parents=True)
        (config / "localextensions.xml").write_text(
            "<hybrisconfig><extensions>"
            '<extension name="storefront"/>'
            '<extension dir="${HYBRIS_BIN_DIR}/custom/mycore"/>'
            '<extension name="storefront"/>'
            "</extensions></hybrisconfig>"
        )
        path = tmp_path / "manifest.json"
        path.write_text(
            json.dumps(
                {
                    "commerceSuiteVersion": "2211.15",
                    "useConfig": {"extensions": {"location": "hybris/config/localextensions.xml"}},
                }
            )
        )
        manifest = reader.read_manifest(str(path))
        assert manifest.extensions == ["storefront", "mycore"]

    def test_missing_manifest(self, tmp_path, reader):
        with pytest.raises(ManifestError) as exc_info:
            reader.read_manifest(str(tmp_path / "manifest.json"))
        assert exc_info.value.reason == "unreadable"

    def test_malformed_manifest(self, tmp_path, reader):
        path = tmp_path / "manifest.json"
        path.write_text("{not json")
        with pytest.raises(ManifestError) as exc_info:
            reader.read_manifest(str(path))
        assert exc_info.value.reason == "invalid"

    def test_manifest_without_version(self, tmp_path, reader):
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps({"extensions": ["a"]}))
        with pytest.raises(ManifestError):
            reader.read_manifest(str(path))


class TestReadModuleTable:
    """Tests for explicit module tables."""

    def test_json_table(self, tmp_path, reader):
        path = tmp_path / "modules.json"
        path.write_text(
            json.dumps({"modules": {"A": {"requires": ["B"]}, "B": {}, "S": {"alwaysIncluded": True}}})
        )
        modules = reader.read_module_table(str(path))
        assert modules["A"].requires == {"B"}
        assert modules["B"].requires == frozenset()
        assert modules["S"].always_included

    def test_toml_table(self, tmp_path, reader):
        path = tmp_path / "modules.toml"
        path.write_text('[modules.A]\nrequires = ["B"]\n\n[modules.B]\nrequires = []\n')
        modules = reader.read_module_table(str(path))
        assert set(modules) == {"A", "B"}
        assert modules["A"].requires == {"B"}

    def test_table_without_modules(self, tmp_path, reader):
        path = tmp_path / "modules.json"
        path.write_text(json.dumps({"A": {}}))
        with pytest.raises(ManifestError):
            reader.read_module_table(str(path))


class TestModulesFromIndex:
    """Tests for module descriptors read from extensioninfo.xml entries."""

    def test_descriptors(self, hybris_zip, reader):
        index = ArchiveIndexer(hybris_ownership()).index([ArchiveSource(location=str(hybris_zip))])
        modules = reader.modules_from_index(index, always_included=["solrserver"])

        assert set(modules) == {"core", "storefront", "solrserver", "b2bcommerce"}
        assert modules["storefront"].requires == {"core"}
        assert modules["solrserver"].always_included
        assert not modules["core"].always_included

    def test_descriptors_are_merged_across_archives(self, tmp_path, hybris_zip, reader):
        pack = make_zip(
            tmp_path / "archives" / "integrations.zip",
            {
                "hybris/bin/modules/integration/kymaintegration/extensioninfo.xml": extension_info(
                    "kymaintegration", "core"
                ),
            },
        )
        index = ArchiveIndexer(hybris_ownership()).index(
            [ArchiveSource(location=str(hybris_zip)), ArchiveSource(location=str(pack))]
        )
        modules = reader.modules_from_index(index)
        assert modules["kymaintegration"].requires == {"core"}

    def test_malformed_descriptor(self, tmp_path, reader):
        archive = make_zip(
            tmp_path / "broken.zip",
            {"hybris/bin/modules/core/core/extensioninfo.xml": b"<extensioninfo"},
        )
        index = ArchiveIndexer(hybris_ownership()).index([ArchiveSource(location=str(archive))])
        with pytest.raises(ManifestError) as exc_info:
            reader.modules_from_index(index)
        assert "extensioninfo.xml" in exc_info.value.subject
