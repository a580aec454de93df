"""
Tests for configuration layer materialization and properties handling.
"""

import datetime
import os

import pytest

from cxbootstrap.bootstrap_models import ConfigLayer, DeveloperLayer, LinkMode
from cxbootstrap.config_layers import (
    ConfigLayerResolver,
    generate_local_properties,
    load_effective_properties,
    parse_properties,
)
from cxbootstrap.cxbootstrap_exceptions import LayerError
from cxbootstrap.cxbootstrap_utils import PlatformUtils


@pytest.fixture
def sources(tmp_path):
    """common (10), dev-persona (20) and local-dev (50) layer sources."""
    cloud = tmp_path / "hybris" / "config" / "cloud"
    (cloud / "persona").mkdir(parents=True)
    (cloud / "common.properties").write_text("k=common\nonly.common=yes\n")
    (cloud / "persona" / "development.properties").write_text("k=dev\n")
    (cloud / "local-dev.properties").write_text("k=local\n")
    return [
        ConfigLayer(name="common", priority=10, source=cloud / "common.properties"),
        ConfigLayer(name="dev-persona", priority=20, source=cloud / "persona" / "development.properties"),
        ConfigLayer(name="local-dev", priority=50, source=cloud / "local-dev.properties"),
    ]


@pytest.fixture
def layer_root(tmp_path):
    return tmp_path / "hybris" / "config" / "local-config"


needs_symlinks = pytest.mark.skipif(
    os.name == "nt", reason="symbolic links usually require elevated privileges on Windows"
)


class TestConfigLayerResolver:
    """Tests for ConfigLayerResolver.materialize."""

    def test_last_write_wins(self, sources, layer_root):
        """common k=common, dev-persona k=dev, local-dev k=local: the effective value is local."""
        ConfigLayerResolver().materialize(sources, str(layer_root))

        effective = load_effective_properties(str(layer_root))
        assert effective["k"] == "local"
        assert effective["only.common"] == "yes"

    def test_aliases_sort_by_priority(self, sources, layer_root):
        report = ConfigLayerResolver().materialize(list(reversed(sources)), str(layer_root))

        assert [a.alias for a in report.aliases] == [
            "10-local.properties",
            "20-local.properties",
            "50-local.properties",
            "99-local.properties",
        ]
        assert report.aliases[-1].mode == LinkMode.OWNED

    @needs_symlinks
    def test_indirection_propagates_edits(self, sources, layer_root):
        if not PlatformUtils.supports_symlinks(layer_root):
            pytest.skip("symbolic links not supported here")
        report = ConfigLayerResolver().materialize(sources, str(layer_root))

        assert not report.degraded
        alias = layer_root / "50-local.properties"
        assert alias.is_symlink()
        assert not os.path.isabs(os.readlink(alias))

        sources[2].source.write_text("k=edited\n")
        assert load_effective_properties(str(layer_root))["k"] == "edited"

    def test_degraded_copies(self, sources, layer_root):
        """Without indirection support the layers are copied and the run is flagged degraded."""
        report = ConfigLayerResolver(allow_indirection=False).materialize(sources, str(layer_root))

        assert report.degraded
        assert report.warnings and report.warnings[0].startswith("indirection-unsupported-degraded")
        assert all(a.mode == LinkMode.COPY for a in report.aliases[:3])
        assert not (layer_root / "10-local.properties").is_symlink()
        assert load_effective_properties(str(layer_root))["k"] == "local"

    def test_developer_layer_is_created_once(self, sources, layer_root):
        resolver = ConfigLayerResolver()
        first = resolver.materialize(sources, str(layer_root))
        developer = layer_root / "99-local.properties"

        assert first.developer_layer_created
        assert developer.read_text().startswith("#my.properties")

        developer.write_text("k=mine\n")
        second = resolver.materialize(sources, str(layer_root))

        assert not second.developer_layer_created
        assert developer.read_text() == "k=mine\n"
        assert load_effective_properties(str(layer_root))["k"] == "mine"

    def test_rematerialize_replaces_aliases(self, sources, layer_root):
        resolver = ConfigLayerResolver(allow_indirection=False)
        resolver.materialize(sources, str(layer_root))
        sources[0].source.write_text("k=common2\nonly.common=no\n")

        resolver.materialize(sources, str(layer_root))

        assert load_effective_properties(str(layer_root))["only.common"] == "no"

    def test_without_developer_layer(self, sources, layer_root):
        report = ConfigLayerResolver().materialize(sources, str(layer_root), developer_layer=None)
        assert report.developer_layer is None
        assert not (layer_root / "99-local.properties").exists()

    def test_duplicate_priority(self, sources, layer_root):
        clash = ConfigLayer(name="other", priority=20, source=sources[0].source)
        with pytest.raises(LayerError) as exc_info:
            ConfigLayerResolver().materialize(sources + [clash], str(layer_root))
        assert exc_info.value.reason == "alias-collision"
        assert not layer_root.exists()

    def test_developer_layer_must_be_highest(self, sources, layer_root):
        with pytest.raises(LayerError) as exc_info:
            ConfigLayerResolver().materialize(sources, str(layer_root), developer_layer=DeveloperLayer(priority=30))
        assert exc_info.value.reason == "alias-collision"

    def test_missing_source(self, sources, layer_root, tmp_path):
        missing = ConfigLayer(name="ghost", priority=30, source=tmp_path / "ghost.properties")
        with pytest.raises(LayerError) as exc_info:
            ConfigLayerResolver().materialize(sources + [missing], str(layer_root))
        assert exc_info.value.reason == "source-missing"
        assert exc_info.value.subject.endswith("ghost.properties")

    def test_layer_root_is_a_file(self, sources, tmp_path):
        blocker = tmp_path / "local-config"
        blocker.write_text("in the way")
        with pytest.raises(LayerError) as exc_info:
            ConfigLayerResolver().materialize(sources, str(blocker))
        assert exc_info.value.reason == "write-failure"
        assert exc_info.value.subject == str(blocker)

    @needs_symlinks
    def test_stale_aliases_are_removed(self, sources, layer_root):
        """A layer moved to another priority no longer takes part through its old alias."""
        if not PlatformUtils.supports_symlinks(layer_root):
            pytest.skip("symbolic links not supported here")
        resolver = ConfigLayerResolver()
        resolver.materialize(sources, str(layer_root))
        (layer_root / "70-local.properties").write_text("k=owned by the developer\n")
        moved = sources[:1] + [sources[1].model_copy(update={"priority": 30})] + sources[2:]

        report = resolver.materialize(moved, str(layer_root))

        assert report.removed == ["20-local.properties"]
        assert not os.path.lexists(layer_root / "20-local.properties")
        assert (layer_root / "30-local.properties").is_symlink()
        assert (layer_root / "70-local.properties").exists()
        assert (layer_root / "99-local.properties").exists()

    def test_wide_priorities(self, sources, layer_root):
        """Priorities above 99 widen every alias so that name order stays numeric order."""
        wide = [s.model_copy(update={"priority": p}) for s, p in zip(sources, (5, 20, 150))]
        report = ConfigLayerResolver().materialize(wide, str(layer_root), developer_layer=DeveloperLayer(priority=999))
        assert [a.alias for a in report.aliases] == [
            "005-local.properties",
            "020-local.properties",
            "150-local.properties",
            "999-local.properties",
        ]


class TestProperties:
    """Tests for properties parsing and local.properties generation."""

    def test_parse_properties(self):
        content = (
            "# comment\n"
            "! other comment\n"
            "a=1\n"
            "b : 2\n"
            "c 3\n"
            "d=line one \\\n"
            "    line two\n"
            "e=caf\\u00e9\n"
            "f\\=g=h\n"
            "empty=\n"
            "a=override\n"
        )
        assert parse_properties(content) == {
            "a": "override",
            "b": "2",
            "c": "3",
            "d": "line one line two",
            "e": "café",
            "f=g": "h",
            "empty": "",
        }

    def test_generate_local_properties(self, tmp_path):
        config_dir = tmp_path / "hybris" / "config"
        optional = config_dir / "local-config"
        now = datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)

        path = generate_local_properties(str(config_dir), str(optional), now=now)

        lines = path.read_text(encoding="latin-1").splitlines()
        assert lines[0] == "#GENERATED AT 2024-01-02T03:04:05+00:00"
        assert parse_properties(path.read_text(encoding="latin-1")) == {
            "hybris.optional.config.dir": str(optional.resolve()),
        }
        assert optional.is_dir()

    def test_dangling_alias_is_skipped(self, tmp_path):
        root = tmp_path / "layers"
        root.mkdir()
        (root / "10-local.properties").write_text("k=1\n")
        try:
            os.symlink("missing.properties", root / "20-local.properties")
        except (OSError, NotImplementedError):
            pytest.skip("symbolic links not supported here")
        assert load_effective_properties(str(root)) == {"k": "1"}
