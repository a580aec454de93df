"""
This module contains the exceptions raised by the cxbootstrap framework.

Every exception carries the offending identifier (module, path or url) as
``subject`` and a short ``reason`` code, so callers can retry exactly the unit
of work that failed.
"""

from enum import Enum
from typing import Any, Dict


class ExtractionReason(str, Enum):
    PATH_COLLISION = "path-collision"
    WRITE_FAILURE = "write-failure"
    PERMISSION = "permission"
    UNSAFE_PATH = "unsafe-path"
    LOCK_TIMEOUT = "lock-timeout"
    INVALID_GLOB = "invalid-glob"


class FetchReason(str, Enum):
    NETWORK = "network"
    AUTH = "auth"
    TIMEOUT = "timeout"
    CHECKSUM_MISMATCH = "checksum-mismatch"
    HTTP_STATUS = "http-status"
    WRITE_FAILURE = "write-failure"
    CANCELLED = "cancelled"


class LayerReason(str, Enum):
    INDIRECTION_UNSUPPORTED = "indirection-unsupported-degraded"
    ALIAS_COLLISION = "alias-collision"
    SOURCE_MISSING = "source-missing"
    WRITE_FAILURE = "write-failure"


class CxBootstrapException(Exception):
    """
    Base exception for all cxbootstrap errors.
    """

    kind = "bootstrap"

    def __init__(self, message: str, reason: str = "", subject: str = ""):
        """
        Initializes the exception.

        Args:
            message: Human readable description
            reason: Short reason code (see the *Reason enums)
            subject: The offending module id, path or url
        """
        super().__init__(message)
        self.message = message
        self.reason = reason.value if isinstance(reason, Enum) else reason
        self.subject = subject

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "reason": self.reason,
            "subject": self.subject,
            "message": self.message,
        }


class ManifestError(CxBootstrapException):
    """Raised when a manifest or module table cannot be read."""

    kind = "manifest"


class UnknownDependency(CxBootstrapException):
    """Raised when a module declares (or the caller requests) an unknown module."""

    kind = "unknown-dependency"

    def __init__(self, module_id: str, missing: str):
        super().__init__(
            f"Module {module_id} depends on unknown module {missing}",
            reason="unknown-module",
            subject=missing,
        )
        self.module_id = module_id
        self.missing = missing

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnknownDependency):
            return NotImplemented
        return (self.module_id, self.missing) == (other.module_id, other.missing)

    def __hash__(self) -> int:
        return hash((self.module_id, self.missing))


class ArchiveReadError(CxBootstrapException):
    """Raised when a source archive cannot be opened or listed."""

    kind = "archive-read"


class ExtractionError(CxBootstrapException):
    """Raised when an entry cannot be written beneath the target root."""

    kind = "extraction"


class FetchError(CxBootstrapException):
    """Raised when an artifact cannot be fetched into the local cache."""

    kind = "fetch"


class LayerError(CxBootstrapException):
    """Raised when configuration layers cannot be materialized."""

    kind = "layer"


class BootstrapCancelled(CxBootstrapException):
    """Raised when a long running operation observes a cancellation request."""

    kind = "cancelled"

    def __init__(self, subject: str = ""):
        super().__init__(f"Operation cancelled while processing {subject}", reason="cancelled", subject=subject)


class LockTimeout(CxBootstrapException):
    """Raised when an advisory lock cannot be acquired in time."""

    kind = "lock"
