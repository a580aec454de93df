"""
Manifest reader implementation.

Parses the project's requested module list and the platform's module
dependency declarations into the pydantic models used by the resolver.
"""

import json
import logging
import pathlib
import xml.etree.ElementTree as ET
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import ValidationError

from cxbootstrap.bootstrap_models import Manifest, Module, ModuleTable
from cxbootstrap.cxbootstrap_exceptions import ManifestError
from cxbootstrap.cxbootstrap_logger import BootstrapLogger

try:
    import tomllib
except ModuleNotFoundError:
    # Python < 3.11
    import tomli as tomllib

if TYPE_CHECKING:
    from cxbootstrap.archive_index import ArchiveIndex

EXTENSION_DESCRIPTOR = "extensioninfo.xml"


class ManifestReader:
    """
    Reads manifests and module descriptors.
    """

    def __init__(self, logger: Optional[BootstrapLogger] = None):
        self.logger = logger or BootstrapLogger()

    def read_manifest(self, manifest_path: str) -> Manifest:
        """
        Load a CCV2 style manifest.json.

        When the manifest lists no ``extensions`` but points to a
        localextensions.xml via ``useConfig.extensions.location``, the
        requested modules are read from that file instead.

        Args:
            manifest_path: Path to manifest.json

        Returns:
            The immutable Manifest

        Raises:
            ManifestError: If the file is missing or malformed
        """
        path = pathlib.Path(manifest_path)
        data = self._load_json(path)

        extensions = data.get("extensions")
        if not extensions:
            location = ((data.get("useConfig") or {}).get("extensions") or {}).get("location")
            extensions = self.read_localextensions(str(path.parent / location)) if location else []

        data = dict(data)
        data["extensions"] = [self._extension_name(e, path) for e in extensions]

        try:
            manifest = Manifest(**data)
        except ValidationError as e:
            raise ManifestError(f"Invalid manifest {path}: {e}", reason="invalid", subject=str(path)) from e

        self.logger.log(
            f"Loaded manifest {path} (version {manifest.commerce_suite_version}, "
            f"{len(manifest.extensions)} extensions, {len(manifest.extension_packs)} extension packs)",
            logging.INFO,
        )
        return manifest

    def read_localextensions(self, localextensions_path: str) -> List[str]:
        """
        Read extension names from a localextensions.xml file.

        Both ``<extension name="..."/>`` and ``<extension dir="..."/>`` forms are
        supported; for the latter the directory's base name is the module id.
        """
        path = pathlib.Path(localextensions_path)
        root = self._parse_xml(path.read_bytes() if path.is_file() else None, str(path))

        names: List[str] = []
        for element in root.iter("extension"):
            name = element.get("name")
            if not name and element.get("dir"):
                name = element.get("dir").replace("\\", "/").rstrip("/").rsplit("/", 1)[-1]
            if name and name not in names:
                names.append(name)
        return names

    def read_module_table(self, table_path: str) -> ModuleTable:
        """
        Load an explicit module table.

        Expected structure (JSON or TOML)::

            {"modules": {"A": {"requires": ["B"], "alwaysIncluded": false}}}

        Raises:
            ManifestError: If the table is missing or malformed
        """
        path = pathlib.Path(table_path)
        if path.suffix.lower() == ".toml":
            try:
                with open(path, "rb") as f:
                    data = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ManifestError(f"Cannot read module table {path}: {e}", reason="unreadable", subject=str(path)) from e
        else:
            data = self._load_json(path)

        modules_data = data.get("modules")
        if not isinstance(modules_data, dict):
            raise ManifestError(f"'modules' in {path} must be a mapping", reason="invalid", subject=str(path))

        table: ModuleTable = {}
        for module_id, declaration in modules_data.items():
            declaration = declaration or {}
            try:
                table[module_id] = Module(
                    id=module_id,
                    requires=frozenset(declaration.get("requires", [])),
                    always_included=bool(declaration.get("alwaysIncluded", declaration.get("always_included", False))),
                )
            except (ValidationError, AttributeError, TypeError) as e:
                raise ManifestError(f"Invalid module {module_id} in {path}: {e}", reason="invalid", subject=module_id) from e
        return table

    def modules_from_index(self, index: "ArchiveIndex", always_included: Optional[List[str]] = None) -> ModuleTable:
        """
        Derive the module table from the extensioninfo.xml descriptors of an archive index.

        Descriptors of shared (platform) extensions are registered too, so
        that dependencies on platform extensions resolve; their entries are
        extracted regardless of the closure.

        Args:
            index: The archive index to read descriptors from
            always_included: Module ids to flag as always included

        Returns:
            The module table, keyed by module id
        """
        always = set(always_included or [])
        table: ModuleTable = {}
        descriptors = [e for e in index.entries() if e.path.rsplit("/", 1)[-1] == EXTENSION_DESCRIPTOR]
        payloads = index.read_entries(descriptors)
        for entry in descriptors:
            root = self._parse_xml(payloads[entry], f"{entry.archive}:{entry.path}")
            extension = root.find("extension")
            if extension is None or not extension.get("name"):
                continue
            module_id = extension.get("name")
            requires = frozenset(
                r.get("name") for r in extension.iter("requires-extension") if r.get("name")
            )
            previous = table.get(module_id)
            if previous is not None:
                # The same extension shipped by more than one archive: union the declarations.
                requires = requires | previous.requires
            table[module_id] = Module(id=module_id, requires=requires, always_included=module_id in always)

        self.logger.log(f"Read {len(table)} module descriptors from archive index", logging.INFO)
        return table

    def _load_json(self, path: pathlib.Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise ManifestError(f"Cannot read {path}: {e}", reason="unreadable", subject=str(path)) from e
        except json.JSONDecodeError as e:
            raise ManifestError(f"Malformed JSON in {path}: {e}", reason="invalid", subject=str(path)) from e
        if not isinstance(data, dict):
            raise ManifestError(f"{path} must contain a JSON object", reason="invalid", subject=str(path))
        return data

    @staticmethod
    def _parse_xml(payload: Optional[bytes], subject: str) -> ET.Element:
        if payload is None:
            raise ManifestError(f"Cannot read {subject}", reason="unreadable", subject=subject)
        try:
            return ET.fromstring(payload)
        except ET.ParseError as e:
            raise ManifestError(f"Malformed XML in {subject}: {e}", reason="invalid", subject=subject) from e

    @staticmethod
    def _extension_name(extension: Any, path: pathlib.Path) -> str:
        if isinstance(extension, str):
            return extension
        if isinstance(extension, dict) and extension.get("name"):
            return str(extension["name"])
        raise ManifestError(f"Invalid extension entry {extension!r} in {path}", reason="invalid", subject=str(path))
