"""Exception hierarchy for the health sync core.

Three families matter to callers:

- ``PermissionDeniedError``: a record kind was never granted.  Expected at
  runtime; the sync paths degrade to an empty result instead of failing.
- ``InvalidResourceStateError``: a programming error (e.g. reconciling a
  sub-resource after remapping).  Never retried.
- ``UpstreamError`` and its subclasses: a read, aggregation or upload failed.
  Aborts the attempt; the caller retries the whole attempt later.
"""

from __future__ import annotations


class HealthSyncError(Exception):
    """Base class for all health sync errors."""


class PermissionDeniedError(HealthSyncError):
    """Raised when reading a record kind whose permission was never granted."""

    def __init__(self, kind: object) -> None:
        self.kind = kind
        super().__init__(f"Read permission not granted for record kind '{kind}'")


class InvalidResourceStateError(HealthSyncError, ValueError):
    """Raised for resource requests that violate the processing contract."""


class UpstreamError(HealthSyncError):
    """A data source or platform operation failed; retry the whole attempt."""


class ReadError(UpstreamError):
    """Reading raw records or the change feed failed."""


class AggregationError(UpstreamError):
    """The data source failed to compute an aggregate."""


class UploadError(UpstreamError):
    """The uploader failed to deliver a payload.

    Attributes:
        status_code: HTTP status code, when the failure came from a response.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
