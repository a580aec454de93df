"""
Configuration layer resolver implementation.

Each layer is exposed in the layer root under an alias whose sort order is
its precedence, so the platform's loader applies last-write-wins simply by
reading the aliases in sorted order.
"""

import logging
import os
import pathlib
import re
import shutil
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Set, Union

from cxbootstrap.bootstrap_models import (
    AliasRecord,
    ConfigLayer,
    DeveloperLayer,
    LayerReport,
    LinkMode,
)
from cxbootstrap.cxbootstrap_exceptions import LayerError, LayerReason
from cxbootstrap.cxbootstrap_logger import BootstrapLogger
from cxbootstrap.cxbootstrap_utils import FileUtils, PlatformUtils


@dataclass(frozen=True)
class Indirection:
    """The alias is a relative symbolic link to the layer source."""

    target: str

    mode = LinkMode.INDIRECTION

    def apply(self, alias_path: pathlib.Path) -> None:
        tmp = FileUtils.temporary_sibling(alias_path)
        os.symlink(self.target, tmp)
        try:
            os.replace(tmp, alias_path)
        finally:
            if os.path.lexists(tmp):
                os.unlink(tmp)


@dataclass(frozen=True)
class Copy:
    """The alias is a full copy of the layer source (degraded: edits do not propagate)."""

    source: pathlib.Path

    mode = LinkMode.COPY

    def apply(self, alias_path: pathlib.Path) -> None:
        tmp = FileUtils.temporary_sibling(alias_path)
        try:
            shutil.copyfile(self.source, tmp)
            os.replace(tmp, alias_path)
        finally:
            if os.path.lexists(tmp):
                os.unlink(tmp)


Materialization = Union[Indirection, Copy]

ALIAS_PATTERN = re.compile(r"^\d+-(.+)$")


def indirection_for(layer: ConfigLayer, layer_root: pathlib.Path) -> Materialization:
    return Indirection(os.path.relpath(os.path.abspath(layer.source), os.path.abspath(layer_root)))


def copy_for(layer: ConfigLayer, layer_root: pathlib.Path) -> Materialization:
    return Copy(pathlib.Path(layer.source))


class ConfigLayerResolver:
    """
    Materializes ordered configuration layers into a layer root directory.

    The choice between indirection and copy is made once per run from the
    environment's capability; a single algorithm applies whichever variant
    was selected.
    """

    def __init__(self, logger: Optional[BootstrapLogger] = None, allow_indirection: bool = True):
        """
        Initialize the resolver.

        Args:
            logger: Logger for progress and warning messages
            allow_indirection: Set to False to force content copies
        """
        self.logger = logger or BootstrapLogger()
        self.allow_indirection = allow_indirection

    def materialize(
        self,
        layers: Sequence[ConfigLayer],
        layer_root: str,
        developer_layer: Optional[DeveloperLayer] = DeveloperLayer(),
    ) -> LayerReport:
        """
        Materialize aliases for ``layers`` and, first time only, the developer layer.

        Args:
            layers: Configuration layers, in any order
            layer_root: Directory receiving the aliases
            developer_layer: The locally-owned highest-priority layer, or None

        Returns:
            LayerReport; ``degraded`` is True when copies stand in for indirections

        Raises:
            LayerError: On alias collisions, missing sources or write failures
        """
        root = pathlib.Path(layer_root)
        ordered = sorted(layers, key=lambda layer: layer.priority)
        width = self._alias_width(ordered, developer_layer)
        self._validate(ordered, developer_layer, width)

        try:
            root.mkdir(parents=True, exist_ok=True)
            symlinks = self.allow_indirection and PlatformUtils.supports_symlinks(root)
        except OSError as e:
            raise LayerError(
                f"Cannot create layer root {root}: {e}",
                reason=LayerReason.WRITE_FAILURE,
                subject=str(root),
            ) from e
        report = LayerReport(layer_root=root)

        variant_for: Callable[[ConfigLayer, pathlib.Path], Materialization] = indirection_for
        if not symlinks:
            variant_for = copy_for

        for layer in ordered:
            alias_name = layer.alias_name(width)
            alias_path = root / alias_name
            variant = variant_for(layer, root)
            try:
                try:
                    variant.apply(alias_path)
                except (OSError, NotImplementedError):
                    if not isinstance(variant, Indirection):
                        raise
                    # Indirection refused for this alias only; fall back to a copy.
                    variant = copy_for(layer, root)
                    variant.apply(alias_path)
            except OSError as e:
                raise LayerError(
                    f"Cannot materialize {alias_name} for layer {layer.name}: {e}",
                    reason=LayerReason.WRITE_FAILURE,
                    subject=str(alias_path),
                ) from e

            if variant.mode == LinkMode.COPY:
                report.degraded = True
            report.aliases.append(AliasRecord(alias=alias_name, source=layer.source, mode=variant.mode))
            self.logger.log(f"{alias_name} -> {layer.source} ({variant.mode.value})", logging.DEBUG)

        if report.degraded:
            warning = (
                f"{LayerReason.INDIRECTION_UNSUPPORTED.value}: layers in {root} were copied, "
                "edits to their sources are not visible until materialize runs again"
            )
            report.warnings.append(warning)
            self.logger.log(warning, logging.WARNING)

        current = {record.alias for record in report.aliases}
        if developer_layer is not None:
            current.add(developer_layer.alias_name(width))
        self._remove_stale_aliases(root, current, {layer.alias for layer in ordered}, report)

        if developer_layer is not None:
            self._write_developer_layer(developer_layer, root, width, report)

        self.logger.log(
            f"Materialized {len(report.aliases)} configuration layers in {root}",
            logging.INFO,
        )
        return report

    def _remove_stale_aliases(
        self,
        root: pathlib.Path,
        current: Set[str],
        alias_bases: Set[str],
        report: LayerReport,
    ) -> None:
        """
        Remove symbolic link aliases left behind by an earlier run with a different layer set.

        Regular files are never removed: they are either the developer layer or copies
        that cannot be told apart from files the developer owns.
        """
        for path in sorted(root.iterdir()):
            match = ALIAS_PATTERN.match(path.name)
            if match is None or match.group(1) not in alias_bases or path.name in current:
                continue
            if not path.is_symlink():
                continue
            try:
                path.unlink()
            except OSError as e:
                raise LayerError(
                    f"Cannot remove stale alias {path}: {e}",
                    reason=LayerReason.WRITE_FAILURE,
                    subject=str(path),
                ) from e
            report.removed.append(path.name)
            self.logger.log(f"Removed stale alias {path}", logging.INFO)

    @staticmethod
    def _alias_width(layers: List[ConfigLayer], developer_layer: Optional[DeveloperLayer]) -> int:
        priorities = [layer.priority for layer in layers]
        if developer_layer is not None:
            priorities.append(developer_layer.priority)
        return max([2] + [len(str(p)) for p in priorities])

    @staticmethod
    def _validate(layers: List[ConfigLayer], developer_layer: Optional[DeveloperLayer], width: int) -> None:
        seen_priorities = {}
        seen_aliases = {}
        for layer in layers:
            if layer.priority in seen_priorities:
                raise LayerError(
                    f"Layers {seen_priorities[layer.priority]} and {layer.name} share priority {layer.priority}",
                    reason=LayerReason.ALIAS_COLLISION,
                    subject=layer.name,
                )
            seen_priorities[layer.priority] = layer.name

            alias_name = layer.alias_name(width)
            if alias_name in seen_aliases:
                raise LayerError(
                    f"Layers {seen_aliases[alias_name]} and {layer.name} both map to {alias_name}",
                    reason=LayerReason.ALIAS_COLLISION,
                    subject=alias_name,
                )
            seen_aliases[alias_name] = layer.name

            if not pathlib.Path(layer.source).is_file():
                raise LayerError(
                    f"Source {layer.source} of layer {layer.name} does not exist",
                    reason=LayerReason.SOURCE_MISSING,
                    subject=str(layer.source),
                )

        if developer_layer is not None:
            alias_name = developer_layer.alias_name(width)
            if alias_name in seen_aliases or any(p >= developer_layer.priority for p in seen_priorities):
                raise LayerError(
                    f"Developer layer {alias_name} must have the highest priority and a unique alias",
                    reason=LayerReason.ALIAS_COLLISION,
                    subject=alias_name,
                )

    def _write_developer_layer(
        self,
        developer_layer: DeveloperLayer,
        root: pathlib.Path,
        width: int,
        report: LayerReport,
    ) -> None:
        alias_name = developer_layer.alias_name(width)
        path = root / alias_name
        report.developer_layer = path
        try:
            with open(path, "x", encoding="utf-8") as f:
                if developer_layer.comment:
                    f.write(f"#{developer_layer.comment}\n")
        except FileExistsError:
            self.logger.log(f"Keeping existing developer layer {path}", logging.INFO)
            return
        except OSError as e:
            raise LayerError(
                f"Cannot create developer layer {path}: {e}",
                reason=LayerReason.WRITE_FAILURE,
                subject=str(path),
            ) from e
        report.developer_layer_created = True
        report.aliases.append(AliasRecord(alias=alias_name, source=None, mode=LinkMode.OWNED))
        self.logger.log(f"Created developer layer {path}", logging.INFO)
