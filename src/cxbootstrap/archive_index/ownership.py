"""
Module-boundary conventions: map an archive entry path to its owning module.

An ownership rule is any callable ``path -> module id | SHARED``; the
extraction engine never hardcodes the convention.
"""

import re
from typing import Callable, Mapping, Sequence

from cxbootstrap.bootstrap_models import SHARED

Ownership = Callable[[str], str]

# hybris/bin/modules/<group>/<extension>/... and the older hybris/bin/ext-<group>/<extension>/...
HYBRIS_MODULE_PATTERNS = (
    r"^hybris/bin/modules/[^/]+/([^/]+)/",
    r"^hybris/bin/ext-[^/]+/([^/]+)/",
)


class PrefixOwnership:
    """
    Ownership from an explicit prefix table; the longest matching prefix wins.
    """

    def __init__(self, prefixes: Mapping[str, str]):
        self.prefixes = sorted(
            ((p.rstrip("/") + "/", module) for p, module in prefixes.items()),
            key=lambda item: len(item[0]),
            reverse=True,
        )

    def __call__(self, path: str) -> str:
        for prefix, module in self.prefixes:
            if path.startswith(prefix):
                return module
        return SHARED


class PatternOwnership:
    """
    Ownership from regular expressions whose first group captures the module id.
    """

    def __init__(self, patterns: Sequence[str]):
        self.patterns = [re.compile(p) for p in patterns]

    def __call__(self, path: str) -> str:
        for pattern in self.patterns:
            match = pattern.match(path)
            if match:
                return match.group(1)
        return SHARED


def hybris_ownership() -> PatternOwnership:
    return PatternOwnership(HYBRIS_MODULE_PATTERNS)
