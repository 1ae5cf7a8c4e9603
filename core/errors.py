"""Error taxonomy for the sync and aggregation engine.

Every failure the engine reports is one of these types. Per-store and
per-record errors are collected into run results rather than propagated,
so most of these are raised only to be caught one layer up.
"""

from typing import Optional


class CommerceSyncError(Exception):
    """Base exception for all engine errors."""
    pass


class ConfigError(CommerceSyncError):
    """Missing or invalid configuration / credentials for a store."""
    pass


class TransportError(CommerceSyncError):
    """Network, timeout, HTTP status or malformed payload failure."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        response_body: str = "",
        transient: bool = False,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.transient = transient


class AuthError(TransportError):
    """Token rejected or could not be obtained."""
    pass


class NormalizationWarning(CommerceSyncError):
    """A single raw record could not be mapped and was skipped."""

    def __init__(self, reason: str, record_id: Optional[str] = None):
        super().__init__(f"{record_id or '<unknown>'}: {reason}")
        self.reason = reason
        self.record_id = record_id


class StorageError(CommerceSyncError):
    """Write failure while persisting canonical records."""

    def __init__(self, message: str, written: int = 0):
        super().__init__(message)
        self.written = written


class StorageUnavailableError(StorageError):
    """The backing store cannot be opened or queried."""
    pass


class AggregationInputError(CommerceSyncError):
    """A stored record is malformed and was excluded from an aggregate."""

    def __init__(self, message: str, record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class AdapterError(CommerceSyncError):
    """Failure surfaced by a platform adapter during one phase."""

    def __init__(self, platform: str, phase: str, cause: Exception):
        super().__init__(f"{platform} {phase} failed: {cause}")
        self.platform = platform
        self.phase = phase
        self.cause = cause

    @property
    def is_auth_failure(self) -> bool:
        return isinstance(self.cause, (AuthError, ConfigError))


class SyncInProgressError(CommerceSyncError):
    """A sync run was requested while another one is in flight."""
    pass
