"""
The cxbootstrap command surface.

Every command runs one core operation and wraps the outcome in a
CommandResult. Typed bootstrap errors never escape a command; they are
reported as ``{"status": "error", "error": {kind, reason, subject, message}}``
so callers (the CLI, IDE integrations, CI scripts) can retry exactly the
unit of work that failed.
"""

import functools
import json
import logging
import pathlib
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from cxbootstrap.archive_index import ArchiveIndex, ArchiveIndexer, Ownership
from cxbootstrap.artifact_cache import ArtifactCache, ArtifactDownloader, ArtifactPlanner
from cxbootstrap.bootstrap_models import (
    ArchiveSource,
    ConfigLayer,
    DependencyClosure,
    DeveloperLayer,
    FetchOptions,
    Module,
)
from cxbootstrap.config_layers import ConfigLayerResolver, generate_local_properties
from cxbootstrap.cxbootstrap_config import BootstrapConfig
from cxbootstrap.cxbootstrap_exceptions import CxBootstrapException, FetchError
from cxbootstrap.cxbootstrap_logger import BootstrapLogger
from cxbootstrap.cxbootstrap_settings import BootstrapSettings
from cxbootstrap.cxbootstrap_utils import CancellationToken
from cxbootstrap.dependency_resolver import DependencyClosureResolver
from cxbootstrap.manifest_reader import ManifestReader
from cxbootstrap.sparse_extractor import SparseExtractor


class CommandError(BaseModel):
    kind: str
    reason: str = ""
    subject: str = ""
    message: str


class CommandResult(BaseModel):
    """
    Outcome of a command: either a value or a typed error, never both.
    """

    command: str
    status: str = "success"
    value: Any = None
    error: Optional[CommandError] = None

    class Config:
        arbitrary_types_allowed = True

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, command: str, value: Any) -> "CommandResult":
        return cls(command=command, value=value)

    @classmethod
    def failure(cls, command: str, error: CxBootstrapException) -> "CommandResult":
        return cls(command=command, status="error", error=CommandError(**error.to_dict()))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.status, "ok": self.ok, "command": self.command}
        if self.ok:
            payload["value"] = to_jsonable(self.value)
        else:
            payload["error"] = self.error.model_dump()
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


def to_jsonable(value: Any) -> Any:
    """Convert command values (models, indexes, paths) into JSON compatible data."""
    if isinstance(value, DependencyClosure):
        return {
            "modules": value.sorted(),
            "requested": sorted(value.requested),
            "always_included": sorted(value.always_included),
        }
    if isinstance(value, ArchiveIndex):
        return {
            "archives": [s.display_name for s in value.sources],
            "entries": len(value),
            "shared": len(value.shared),
            "modules": sorted(value.modules()),
        }
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, pathlib.PurePath):
        return str(value)
    if isinstance(value, Mapping):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    return value


def command(name: str) -> Callable[[Callable[..., Any]], Callable[..., CommandResult]]:
    """
    Decorator turning a function that returns a value (or raises a
    CxBootstrapException) into one that returns a CommandResult.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., CommandResult]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> CommandResult:
            logger = kwargs.get("logger") or BootstrapLogger()
            try:
                value = func(*args, **kwargs)
            except CxBootstrapException as e:
                logger.log(f"{name} failed ({e.kind}/{e.reason}) for {e.subject}: {e.message}", logging.ERROR)
                return CommandResult.failure(name, e)
            return CommandResult.success(name, value)

        return wrapper

    return decorator


def fetch_remote_sources(
    sources: Iterable[ArchiveSource],
    cache: ArtifactCache,
    download_dir: str,
    options: Optional[FetchOptions] = None,
    cancel: Optional[CancellationToken] = None,
) -> List[ArchiveSource]:
    """
    Replace remote archive sources by local copies fetched through ``cache``.

    Local sources are returned unchanged, in their declared order.
    """
    local: List[ArchiveSource] = []
    for source in sources:
        if source.is_remote():
            destination = pathlib.Path(download_dir) / source.display_name
            artifact = cache.fetch(source.location, str(destination), options, cancel)
            source = ArchiveSource(location=str(artifact.path), name=source.display_name)
        local.append(source)
    return local


@command("resolve-closure")
def resolve_closure(
    requested: Iterable[str],
    modules: Mapping[str, Module],
    always_included: Iterable[str] = (),
    logger: Optional[BootstrapLogger] = None,
) -> DependencyClosure:
    return DependencyClosureResolver(logger).resolve(requested, modules, always_included)


@command("index-archives")
def index_archives(
    sources: Sequence[ArchiveSource],
    ownership: Optional[Ownership] = None,
    cache: Optional[ArtifactCache] = None,
    download_dir: Optional[str] = None,
    fetch_options: Optional[FetchOptions] = None,
    max_workers: int = 4,
    cancel: Optional[CancellationToken] = None,
    logger: Optional[BootstrapLogger] = None,
) -> ArchiveIndex:
    """
    Index local archives; remote sources are fetched into ``download_dir`` first.

    Args:
        sources: Archives in precedence order
        ownership: Entry path to module rule, defaults to the hybris layout
        cache: Cache used for remote sources
        download_dir: Where remote sources are stored, defaults to ~/.cxbootstrap/artifacts
        fetch_options: Options (including credentials) for remote sources
        max_workers: Upper bound on concurrent archive scans
        cancel: Optional cancellation signal
    """
    sources = list(sources)
    if any(s.is_remote() for s in sources):
        sources = fetch_remote_sources(
            sources,
            cache or ArtifactCache(logger=logger),
            download_dir or BootstrapSettings.get_artifact_cache_directory(),
            fetch_options,
            cancel,
        )
    return ArchiveIndexer(ownership, logger, max_workers).index(sources, cancel)


@command("extract")
def extract(
    index: ArchiveIndex,
    closure: DependencyClosure,
    target_root: str,
    exclude_globs: Iterable[str] = (),
    include_globs: Optional[Sequence[str]] = None,
    clean_glob: Optional[str] = None,
    max_workers: int = 4,
    lock_timeout: float = 300.0,
    cancel: Optional[CancellationToken] = None,
    logger: Optional[BootstrapLogger] = None,
):
    """
    Extract the closure beneath ``target_root``, after an optional clean pass.
    """
    extractor = SparseExtractor(logger, max_workers=max_workers, lock_timeout=lock_timeout)
    clean_report = extractor.clean(target_root, clean_glob, cancel) if clean_glob else None
    report = extractor.extract(index, closure, target_root, exclude_globs, include_globs, cancel)
    return report.model_copy(update={"clean": clean_report})


@command("fetch")
def fetch(
    url: str,
    destination: str,
    options: Optional[FetchOptions] = None,
    cache: Optional[ArtifactCache] = None,
    cancel: Optional[CancellationToken] = None,
    logger: Optional[BootstrapLogger] = None,
):
    return (cache or ArtifactCache(logger=logger)).fetch(url, destination, options, cancel)


@command("materialize-config")
def materialize_config(
    layers: Sequence[ConfigLayer],
    layer_root: str,
    developer_layer: Optional[DeveloperLayer] = DeveloperLayer(),
    allow_indirection: bool = True,
    logger: Optional[BootstrapLogger] = None,
):
    return ConfigLayerResolver(logger, allow_indirection=allow_indirection).materialize(
        layers, layer_root, developer_layer
    )


@command("setup")
def setup_project(
    config: BootstrapConfig,
    cache: Optional[ArtifactCache] = None,
    clean: bool = False,
    ownership: Optional[Ownership] = None,
    allow_indirection: bool = True,
    cancel: Optional[CancellationToken] = None,
    logger: Optional[BootstrapLogger] = None,
) -> Dict[str, Any]:
    """
    Bootstrap a local development environment for a project.

    Fetches the distribution archives, indexes them, resolves the closure of
    the manifest's extensions, extracts it (optionally after cleaning the
    previous platform tree) and materializes the configuration layers.

    In non-sparse mode every indexed module is extracted, restricted to the
    configured include globs.

    Args:
        config: The project's bootstrap configuration
        cache: Cache used for downloads
        clean: Run the configured clean glob before extracting
        ownership: Entry path to module rule, defaults to the hybris layout
        allow_indirection: Set to False to force configuration copies
        cancel: Optional cancellation signal

    Returns:
        Dictionary with the download summary, index, closure, extraction and layer reports
    """
    logger = logger or BootstrapLogger()
    cache = cache or ArtifactCache(logger=logger)

    manifest = ManifestReader(logger).read_manifest(str(config.resolve(config.manifest)))

    planner = ArtifactPlanner(manifest, config)
    planner.create_download_plan()
    downloader = ArtifactDownloader(planner, cache, logger, max_workers=config.max_workers)
    if not downloader.download_all_pending(cancel):
        failed = downloader.get_failed_downloads()[0]
        raise FetchError(
            f"Download of {failed.artifact_key} failed: {failed.error_message}",
            reason=failed.error_reason or "",
            subject=failed.url,
        )

    sources = [ArchiveSource(location=str(path)) for path in planner.archive_paths()]
    for archive in config.archives:
        location = archive if archive.startswith(("http://", "https://")) else str(config.resolve(archive))
        sources.append(ArchiveSource(location=location))
    sources = fetch_remote_sources(
        sources,
        cache,
        str(config.resolve(config.dependency_dir)),
        FetchOptions(
            only_if_modified=True,
            use_freshness_token=True,
            auth=config.repository.auth,
            timeout=config.repository.timeout,
            deadline=config.repository.deadline,
        ),
        cancel,
    )

    index = ArchiveIndexer(ownership, logger, config.max_workers).index(sources, cancel)

    if config.sparse:
        reader = ManifestReader(logger)
        if config.module_table:
            modules = reader.read_module_table(str(config.resolve(config.module_table)))
        else:
            modules = reader.modules_from_index(index, config.always_included)
        closure = DependencyClosureResolver(logger).resolve(manifest.requested(), modules, config.always_included)
        include_globs = None
    else:
        everything = frozenset(index.modules())
        closure = DependencyClosure(modules=everything, requested=everything)
        include_globs = config.include
        logger.log("Sparse bootstrap disabled, extracting every indexed module", logging.INFO)

    extractor = SparseExtractor(logger, max_workers=config.max_workers, lock_timeout=config.lock_timeout)
    platform_dir = str(config.resolve(config.platform_dir))
    clean_report = extractor.clean(platform_dir, config.clean_glob, cancel) if clean else None
    extraction = extractor.extract(index, closure, platform_dir, config.exclude, include_globs, cancel)

    local_config_dir = config.resolve(config.local_config_dir)
    local_properties = generate_local_properties(str(config.resolve(config.config_dir)), str(local_config_dir))
    layers = ConfigLayerResolver(logger, allow_indirection=allow_indirection).materialize(
        config.resolved_layers(), str(local_config_dir), config.developer_layer
    )

    return {
        "downloads": downloader.get_download_summary(),
        "index": index,
        "closure": closure,
        "extraction": extraction.model_copy(update={"clean": clean_report}),
        "local_properties": local_properties,
        "layers": layers,
    }
