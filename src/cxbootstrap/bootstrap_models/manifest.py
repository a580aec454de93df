"""
Pydantic data models for the project manifest and the platform module table.

The manifest follows the CCV2 ``manifest.json`` layout: it names the commerce
suite version, the search server version, optional extension packs and the
extensions (modules) the project requests.
"""

from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field


class ExtensionPack(BaseModel):
    """An additional distribution archive layered on top of the commerce suite."""

    name: str = Field(..., description="Extension pack name, e.g. hybris-commerce-integrations")
    version: str = Field(..., description="Extension pack version")

    class Config:
        frozen = True
        extra = "ignore"


class Manifest(BaseModel):
    """
    Requested modules plus platform metadata.

    Immutable once loaded; one instance per bootstrap invocation.
    """

    commerce_suite_version: str = Field(..., alias="commerceSuiteVersion")
    solr_version: Optional[str] = Field(None, alias="solrVersion")
    extension_packs: List[ExtensionPack] = Field(default_factory=list, alias="extensionPacks")
    extensions: List[str] = Field(default_factory=list, description="Requested module ids, in declared order")

    class Config:
        frozen = True
        extra = "ignore"
        populate_by_name = True

    def extension_pack(self, name: str) -> Optional[ExtensionPack]:
        """
        Get a declared extension pack by name.

        Args:
            name: The extension pack name

        Returns:
            The first matching ExtensionPack or None if not declared
        """
        for pack in self.extension_packs:
            if pack.name == name:
                return pack
        return None

    def requested(self) -> FrozenSet[str]:
        return frozenset(self.extensions)


class Module(BaseModel):
    """
    An independently extractable, dependency-declaring unit of the platform.
    """

    id: str = Field(..., description="Module identifier (extension name)")
    requires: FrozenSet[str] = Field(default_factory=frozenset, description="Direct dependencies")
    always_included: bool = Field(False, alias="alwaysIncluded")

    class Config:
        frozen = True
        populate_by_name = True


ModuleTable = Dict[str, Module]
