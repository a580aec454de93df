"""
Java properties files: generation of local.properties and last-write-wins loading.
"""

import datetime
import logging
import pathlib
import re
from typing import Dict, Iterator, List, Optional, Tuple

from cxbootstrap.cxbootstrap_exceptions import LayerError, LayerReason

logger = logging.getLogger(__name__)

OPTIONAL_CONFIG_DIR_PROPERTY = "hybris.optional.config.dir"

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}


def escape_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("\n", "\\n")
    return "\\ " + escaped[1:] if escaped.startswith(" ") else escaped


def _unescape(text: str) -> str:
    out: List[str] = []
    i = 0
    while i < len(text):
        c = text[i]
        if c != "\\" or i + 1 >= len(text):
            out.append(c)
            i += 1
            continue
        nxt = text[i + 1]
        if nxt == "u" and re.fullmatch(r"[0-9a-fA-F]{4}", text[i + 2:i + 6] or ""):
            out.append(chr(int(text[i + 2:i + 6], 16)))
            i += 6
            continue
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(out)


def _logical_lines(content: str) -> Iterator[str]:
    buffer = ""
    for raw in content.splitlines():
        line = raw.lstrip() if buffer else raw
        if not buffer and (not line.strip() or line.lstrip().startswith(("#", "!"))):
            continue
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            buffer += line[:-1]
            continue
        yield buffer + line
        buffer = ""
    if buffer:
        yield buffer


def _split(line: str) -> Tuple[str, str]:
    line = line.lstrip()
    i = 0
    while i < len(line):
        c = line[i]
        if c == "\\":
            i += 2
            continue
        if c in "=: \t\f":
            break
        i += 1
    key = line[:i]
    rest = line[i:].lstrip(" \t\f")
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip(" \t\f")
    return _unescape(key), _unescape(rest)


def parse_properties(content: str) -> Dict[str, str]:
    """
    Parse the content of a java properties file.

    Supports ``=``, ``:`` and whitespace separators, ``#``/``!`` comments,
    line continuations and ``\\uXXXX`` escapes.
    """
    values: Dict[str, str] = {}
    for line in _logical_lines(content):
        key, value = _split(line)
        values[key] = value
    return values


def read_properties(path: pathlib.Path) -> Dict[str, str]:
    return parse_properties(pathlib.Path(path).read_text(encoding="latin-1"))


def load_effective_properties(layer_root: str, pattern: str = "*.properties") -> Dict[str, str]:
    """
    Read every alias in ``layer_root`` in sorted name order; later files override earlier ones.

    This is how the platform applies the optional configuration directory.
    Dangling aliases are skipped with a warning.
    """
    effective: Dict[str, str] = {}
    for path in sorted(pathlib.Path(layer_root).glob(pattern), key=lambda p: p.name):
        if not path.exists():
            logger.warning("Skipping dangling configuration alias %s", path)
            continue
        effective.update(read_properties(path))
    return effective


def generate_local_properties(
    config_dir: str,
    optional_config_dir: str,
    now: Optional[datetime.datetime] = None,
) -> pathlib.Path:
    """
    Write ``local.properties`` pointing the platform at the optional configuration directory.

    The optional directory (the layer root) is created as well. The file is
    regenerated on every call.

    Args:
        config_dir: The platform configuration directory (hybris/config)
        optional_config_dir: Directory holding the layer aliases

    Returns:
        Path of the written local.properties
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    config_path = pathlib.Path(config_dir)
    optional_path = pathlib.Path(optional_config_dir).resolve()
    target = config_path / "local.properties"
    try:
        optional_path.mkdir(parents=True, exist_ok=True)
        config_path.mkdir(parents=True, exist_ok=True)
        target.write_text(
            f"#GENERATED AT {now.isoformat()}\n"
            f"{OPTIONAL_CONFIG_DIR_PROPERTY}={escape_value(str(optional_path))}\n",
            encoding="latin-1",
        )
    except OSError as e:
        raise LayerError(
            f"Cannot write {target}: {e}",
            reason=LayerReason.WRITE_FAILURE,
            subject=str(target),
        ) from e
    logger.info("Generated %s (%s=%s)", target, OPTIONAL_CONFIG_DIR_PROPERTY, optional_path)
    return target
