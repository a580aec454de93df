"""
Command line entry point for cxbootstrap.

Each subcommand maps onto one function of ``cxbootstrap.commands`` and prints
its CommandResult as JSON. The exit status is 1 when the command failed.
"""

import argparse
import logging
import os
import sys
from typing import Dict, List, Optional, Tuple

from cxbootstrap import commands
from cxbootstrap.archive_index import PrefixOwnership
from cxbootstrap.bootstrap_models import ArchiveSource, ConfigLayer, DependencyClosure, FetchOptions
from cxbootstrap.commands import CommandResult
from cxbootstrap.cxbootstrap_config import BootstrapConfig
from cxbootstrap.cxbootstrap_exceptions import CxBootstrapException
from cxbootstrap.cxbootstrap_logger import BootstrapLogger
from cxbootstrap.manifest_reader import ManifestReader

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _layer_arg(value: str) -> ConfigLayer:
    try:
        name, priority, source = value.split(":", 2)
        return ConfigLayer(name=name, priority=int(priority), source=source)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected NAME:PRIORITY:SOURCE, got {value!r}") from e


def _prefix_arg(value: str) -> Tuple[str, str]:
    prefix, sep, module = value.partition("=")
    if not sep or not prefix or not module:
        raise argparse.ArgumentTypeError(f"expected PREFIX=MODULE, got {value!r}")
    return prefix, module


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cxbootstrap", description="Sparse commerce platform bootstrap")
    p.add_argument("--project-dir", default=".", help="Directory holding manifest.json and cxbootstrap.toml")
    p.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR)")
    p.add_argument("--max-workers", type=int, default=None, help="Override bootstrap.max_workers")
    sub = p.add_subparsers(dest="command", required=True)

    resolve = sub.add_parser("resolve-closure", help="Resolve the dependency closure of the manifest")
    _add_module_args(resolve)

    index = sub.add_parser("index-archives", help="Index archives and list the modules they contain")
    index.add_argument("archives", nargs="+", help="Archive paths or urls, in precedence order")
    index.add_argument("--prefix", type=_prefix_arg, action="append", default=[], help="PREFIX=MODULE ownership rule")
    index.add_argument("--download-dir", default=None, help="Where remote archives are stored")

    extract = sub.add_parser("extract", help="Extract the closure of the manifest")
    _add_module_args(extract)
    extract.add_argument("--target", default=None, help="Target root, defaults to bootstrap.platform_dir")
    extract.add_argument("--exclude", action="append", default=None, help="Glob of entries never written")
    extract.add_argument("--include", action="append", default=None, help="Glob restricting written entries")
    extract.add_argument("--clean", nargs="?", const="", default=None, help="Clean glob run before extraction")
    extract.add_argument("--all", action="store_true", help="Extract every indexed module (non-sparse)")

    fetch = sub.add_parser("fetch", help="Fetch one artifact into the local cache")
    fetch.add_argument("url")
    fetch.add_argument("destination")
    fetch.add_argument("--overwrite", action="store_true")
    fetch.add_argument("--only-if-modified", action="store_true")
    fetch.add_argument("--use-freshness-token", action="store_true")
    fetch.add_argument("--user", default=None, help="Basic auth user; password from CXDEV_ARTEFACT_PASSWORD")
    fetch.add_argument("--sha256", default=None, help="Expected sha256 of the payload")
    fetch.add_argument("--size", type=int, default=None, help="Expected size of the payload in bytes")
    fetch.add_argument("--timeout", type=float, default=60.0)

    materialize = sub.add_parser("materialize-config", help="Materialize configuration layer aliases")
    materialize.add_argument("--root", default=None, help="Layer root, defaults to bootstrap.local_config_dir")
    materialize.add_argument("--layer", type=_layer_arg, action="append", default=None, help="NAME:PRIORITY:SOURCE")
    materialize.add_argument("--no-developer-layer", action="store_true")
    materialize.add_argument("--copy", action="store_true", help="Copy layer sources instead of linking them")

    setup = sub.add_parser("setup", help="Fetch, index, resolve, extract and configure in one go")
    setup.add_argument("--clean", action="store_true", help="Run the configured clean glob before extraction")
    setup.add_argument("--copy", action="store_true", help="Copy layer sources instead of linking them")

    return p


def _add_module_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--manifest", default=None, help="Manifest path, defaults to bootstrap.manifest")
    parser.add_argument("--modules", default=None, help="Module table (JSON or TOML)")
    parser.add_argument("--archive", action="append", default=None, help="Archive to index, repeatable")
    parser.add_argument("--always-included", action="append", default=None, help="Module always extracted")


def _archive_sources(config: BootstrapConfig, archives: Optional[List[str]]) -> List[ArchiveSource]:
    sources = []
    for archive in archives if archives is not None else config.archives:
        location = archive if archive.startswith(("http://", "https://")) else str(config.resolve(archive))
        sources.append(ArchiveSource(location=location))
    return sources


def _run_resolve(args, config: BootstrapConfig, logger: BootstrapLogger) -> CommandResult:
    reader = ManifestReader(logger)
    manifest = reader.read_manifest(str(config.resolve(args.manifest or config.manifest)))
    always = args.always_included if args.always_included is not None else config.always_included

    index_result = None
    table = args.modules or config.module_table
    if table:
        modules = reader.read_module_table(str(config.resolve(table)))
    else:
        index_result = commands.index_archives(
            _archive_sources(config, args.archive),
            download_dir=str(config.resolve(config.dependency_dir)),
            max_workers=config.max_workers,
            logger=logger,
        )
        if not index_result.ok:
            return index_result
        modules = reader.modules_from_index(index_result.value, always)

    result = commands.resolve_closure(manifest.requested(), modules, always, logger=logger)
    if args.command == "resolve-closure" or not result.ok:
        return result
    return _run_extract(args, config, logger, index_result, result.value)


def _run_extract(
    args,
    config: BootstrapConfig,
    logger: BootstrapLogger,
    index_result: Optional[CommandResult],
    closure: DependencyClosure,
) -> CommandResult:
    if index_result is None:
        index_result = commands.index_archives(
            _archive_sources(config, args.archive),
            download_dir=str(config.resolve(config.dependency_dir)),
            max_workers=config.max_workers,
            logger=logger,
        )
        if not index_result.ok:
            return index_result
    index = index_result.value

    include = args.include
    if args.all:
        everything = frozenset(index.modules())
        closure = DependencyClosure(modules=everything, requested=everything)
        include = include if include is not None else config.include

    clean_glob = None
    if args.clean is not None:
        clean_glob = args.clean or config.clean_glob

    return commands.extract(
        index,
        closure,
        str(config.resolve(args.target or config.platform_dir)),
        exclude_globs=args.exclude if args.exclude is not None else config.exclude,
        include_globs=include,
        clean_glob=clean_glob,
        max_workers=config.max_workers,
        lock_timeout=config.lock_timeout,
        logger=logger,
    )


def _run(args, config: BootstrapConfig, logger: BootstrapLogger) -> CommandResult:
    if args.command == "extract" and args.all:
        return _run_extract(args, config, logger, None, DependencyClosure())
    if args.command in ("resolve-closure", "extract"):
        return _run_resolve(args, config, logger)

    if args.command == "index-archives":
        prefixes: Dict[str, str] = dict(args.prefix)
        return commands.index_archives(
            _archive_sources(config, args.archives),
            ownership=PrefixOwnership(prefixes) if prefixes else None,
            download_dir=args.download_dir,
            fetch_options=FetchOptions(auth=config.repository.auth),
            max_workers=config.max_workers,
            logger=logger,
        )

    if args.command == "fetch":
        password = os.environ.get("CXDEV_ARTEFACT_PASSWORD")
        auth = (args.user, password) if args.user and password else None
        options = FetchOptions(
            overwrite=args.overwrite,
            only_if_modified=args.only_if_modified,
            use_freshness_token=args.use_freshness_token,
            auth=auth,
            timeout=args.timeout,
            expected_size=args.size,
            expected_sha256=args.sha256,
        )
        return commands.fetch(args.url, args.destination, options, logger=logger)

    if args.command == "materialize-config":
        layers = args.layer if args.layer is not None else config.resolved_layers()
        return commands.materialize_config(
            layers,
            str(config.resolve(args.root or config.local_config_dir)),
            developer_layer=None if args.no_developer_layer else config.developer_layer,
            allow_indirection=not args.copy,
            logger=logger,
        )

    return commands.setup_project(config, clean=args.clean, allow_indirection=not args.copy, logger=logger)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format=LOG_FORMAT)
    logger = BootstrapLogger()

    try:
        config = BootstrapConfig.load(args.project_dir)
        if args.max_workers is not None:
            config.max_workers = max(1, args.max_workers)
        result = _run(args, config, logger)
    except CxBootstrapException as e:
        logger.log(f"{args.command} failed: {e.message}", logging.ERROR)
        result = CommandResult.failure(args.command, e)

    print(result.to_json())
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
