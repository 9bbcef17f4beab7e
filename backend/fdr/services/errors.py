"""Error taxonomy for the FDR pipeline.

Per-player and per-team failures are caught and counted by the caller; only
ConfigMissing without a usable default aborts a whole run.
"""


class FdrError(Exception):
    """Base class for pipeline errors."""


class SourceUnavailable(FdrError):
    """The FPL API request failed (non-success status, timeout or network error)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(FdrError):
    """A store write or read failed."""


class ConfigMissing(FdrError):
    """Required configuration (current gameweek, team roster) could not be determined."""
