"""
Configuration parameters for cxbootstrap.

Settings are read from a ``cxbootstrap.toml`` file next to the project's
manifest. Repository credentials are only ever taken from the environment
(``CXDEV_ARTEFACT_BASEURL``, ``CXDEV_ARTEFACT_USER``,
``CXDEV_ARTEFACT_PASSWORD``) and are never written anywhere.
"""

import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from cxbootstrap.bootstrap_models import ConfigLayer, DeveloperLayer
from cxbootstrap.cxbootstrap_exceptions import CxBootstrapException

try:
    import tomllib
except ModuleNotFoundError:
    # Python < 3.11
    import tomli as tomllib

CONFIG_FILE_NAME = "cxbootstrap.toml"

DEFAULT_BOOTSTRAP_INCLUDE = [
    "hybris/**",
    "azurecloudhotfolder/**",
    "cloudcommons/**",
    "cloudhotfolder/**",
]

# npm package folder with UTF-8 file names that break extraction on linux
DEFAULT_BOOTSTRAP_EXCLUDE = [
    "hybris/bin/ext-content/npmancillary/resources/npm/node_modules/http-server/node_modules/ecstatic/test/**",
]

DEFAULT_CLEAN_GLOB = "glob:**hybris/bin/{modules**,platform**,cloudhotfolders**}"

DEFAULT_LAYERS = [
    {"name": "common", "priority": 10, "source": "hybris/config/cloud/common.properties"},
    {"name": "dev-persona", "priority": 20, "source": "hybris/config/cloud/persona/development.properties"},
    {"name": "local-dev", "priority": 50, "source": "hybris/config/cloud/local-dev.properties"},
]


class ConfigurationError(CxBootstrapException):
    """Raised when cxbootstrap.toml is invalid."""

    kind = "configuration"


@dataclass
class ArtifactRepositoryConfig:
    """Where the commerce suite and extension pack archives are downloaded from."""

    base_url: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    timeout: float = 60.0
    deadline: float = 1800.0

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.user and self.password)

    @property
    def auth(self):
        return (self.user, self.password) if self.configured else None


@dataclass
class BootstrapConfig:
    """
    Configuration for one bootstrap invocation.
    """

    project_dir: str = "."
    manifest: str = "manifest.json"
    module_table: Optional[str] = None
    dependency_dir: str = "../dependencies"
    platform_dir: str = "."
    sparse: bool = True
    always_included: List[str] = field(default_factory=lambda: ["solrserver"])
    include: List[str] = field(default_factory=lambda: list(DEFAULT_BOOTSTRAP_INCLUDE))
    exclude: List[str] = field(default_factory=lambda: list(DEFAULT_BOOTSTRAP_EXCLUDE))
    clean_glob: str = DEFAULT_CLEAN_GLOB
    archives: List[str] = field(default_factory=list)
    max_workers: int = 4
    lock_timeout: float = 300.0
    config_dir: str = "hybris/config"
    local_config_dir: str = "hybris/config/local-config"
    layers: List[ConfigLayer] = field(default_factory=lambda: [ConfigLayer(**layer) for layer in DEFAULT_LAYERS])
    developer_layer: DeveloperLayer = field(default_factory=DeveloperLayer)
    repository: ArtifactRepositoryConfig = field(default_factory=ArtifactRepositoryConfig)

    @classmethod
    def from_dict(cls, config_dict: Mapping[str, Any], project_dir: str = ".") -> "BootstrapConfig":
        """
        Create a BootstrapConfig from a dictionary (loaded from TOML).

        Args:
            config_dict: Dictionary loaded from cxbootstrap.toml
            project_dir: Directory relative paths are resolved against

        Returns:
            BootstrapConfig instance

        Raises:
            ConfigurationError: If configuration is invalid
        """
        bootstrap = dict(config_dict.get("bootstrap", {}))
        artifacts = dict(config_dict.get("artifacts", {}))

        for key in ("always_included", "include", "exclude", "archives"):
            if key in bootstrap and not isinstance(bootstrap[key], list):
                raise ConfigurationError(f"'bootstrap.{key}' must be a list", reason="invalid-config", subject=key)

        max_workers = bootstrap.get("max_workers", 4)
        if not isinstance(max_workers, int) or max_workers < 1:
            raise ConfigurationError("'bootstrap.max_workers' must be a positive integer", reason="invalid-config", subject="max_workers")

        if "user" in artifacts or "password" in artifacts:
            raise ConfigurationError(
                "Repository credentials must be supplied through CXDEV_ARTEFACT_USER / CXDEV_ARTEFACT_PASSWORD",
                reason="invalid-config",
                subject="artifacts",
            )

        try:
            layers = [ConfigLayer(**layer) for layer in config_dict.get("layers", DEFAULT_LAYERS)]
            developer_layer = DeveloperLayer(**config_dict.get("developer_layer", {}))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid layer configuration: {e}", reason="invalid-config", subject="layers") from e

        config = cls(
            project_dir=str(config_dict.get("project_dir", project_dir)),
            manifest=bootstrap.get("manifest", "manifest.json"),
            module_table=bootstrap.get("module_table"),
            dependency_dir=bootstrap.get("dependency_dir", "../dependencies"),
            platform_dir=bootstrap.get("platform_dir", "."),
            sparse=bool(bootstrap.get("sparse", True)),
            always_included=list(bootstrap.get("always_included", ["solrserver"])),
            include=list(bootstrap.get("include", DEFAULT_BOOTSTRAP_INCLUDE)),
            exclude=list(bootstrap.get("exclude", DEFAULT_BOOTSTRAP_EXCLUDE)),
            clean_glob=bootstrap.get("clean_glob", DEFAULT_CLEAN_GLOB),
            archives=list(bootstrap.get("archives", [])),
            max_workers=max_workers,
            lock_timeout=float(bootstrap.get("lock_timeout", 300.0)),
            config_dir=bootstrap.get("config_dir", "hybris/config"),
            local_config_dir=bootstrap.get("local_config_dir", "hybris/config/local-config"),
            layers=layers,
            developer_layer=developer_layer,
            repository=ArtifactRepositoryConfig(
                base_url=artifacts.get("base_url"),
                timeout=float(artifacts.get("timeout", 60.0)),
                deadline=float(artifacts.get("deadline", 1800.0)),
            ),
        )
        return config

    @classmethod
    def from_toml(cls, config_path: str, project_dir: str = ".") -> "BootstrapConfig":
        try:
            with open(config_path, "rb") as f:
                toml_dict = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Malformed {config_path}: {e}", reason="invalid-config", subject=config_path) from e
        return cls.from_dict(toml_dict, project_dir=project_dir)

    @classmethod
    def load(cls, project_dir: str = ".", environ: Optional[Mapping[str, str]] = None) -> "BootstrapConfig":
        """
        Load ``cxbootstrap.toml`` from ``project_dir`` (defaults apply when it is absent)
        and overlay repository settings from the environment.
        """
        config_path = os.path.join(project_dir, CONFIG_FILE_NAME)
        if os.path.exists(config_path):
            config = cls.from_toml(config_path, project_dir=project_dir)
        else:
            config = cls.from_dict({}, project_dir=project_dir)
        config.apply_environment(os.environ if environ is None else environ)
        return config

    def apply_environment(self, environ: Mapping[str, str]) -> None:
        if environ.get("CXDEV_ARTEFACT_BASEURL"):
            self.repository.base_url = environ["CXDEV_ARTEFACT_BASEURL"]
        if environ.get("CXDEV_ARTEFACT_USER"):
            self.repository.user = environ["CXDEV_ARTEFACT_USER"]
        if environ.get("CXDEV_ARTEFACT_PASSWORD"):
            self.repository.password = environ["CXDEV_ARTEFACT_PASSWORD"]

    def resolve(self, path: str) -> pathlib.Path:
        """Resolve a configured path against the project directory."""
        p = pathlib.Path(path)
        return p if p.is_absolute() else pathlib.Path(self.project_dir) / p

    def resolved_layers(self) -> List[ConfigLayer]:
        return [layer.model_copy(update={"source": self.resolve(str(layer.source))}) for layer in self.layers]
