"""
Error taxonomy.

- `InvalidInputError` is fatal to a whole resolve call and is raised before any network I/O.
- Every other error is isolated to one source (or one sub-query of a source) and reported
  as metadata next to whatever results did succeed.
"""

from __future__ import annotations


class FeatureScopeError(Exception):
    """Base class for featurescope errors."""


class InvalidInputError(FeatureScopeError, ValueError):
    """Caller input is out of range (e.g. latitude outside [-90, 90])."""


class SourceUnavailableError(FeatureScopeError):
    """Transport, HTTP status, or decode failure while querying one source."""

    def __init__(self, source_id: str, message: str, *, status_code: int | None = None):
        super().__init__(f"{source_id}: {message}")
        self.source_id = source_id
        self.status_code = status_code


class SourceErrorResponse(FeatureScopeError):
    """The remote service answered with a structured `error` payload."""

    def __init__(self, source_id: str, error: object):
        code = error.get("code") if isinstance(error, dict) else None
        message = error.get("message") if isinstance(error, dict) else str(error)
        super().__init__(f"{source_id}: service error {code}: {message}")
        self.source_id = source_id
        self.code = code
        self.error = error


class MalformedFeatureError(FeatureScopeError):
    """A feature's geometry is missing or unusable. Always caught and tallied, never propagated."""


class DeadlineExceededError(FeatureScopeError):
    """A per-source timeout or caller deadline passed while a source was still paginating."""
