"""Exception types shared by the loader, sync coordinator, store and boundaries.

Per-file problems (SourceReadError) are recovered where they happen; every
other error is operation-level and propagates to the CLI / HTTP boundary.
"""

from __future__ import annotations


class PresetsError(Exception):
    """Base class for all presets errors."""


class SourceReadError(PresetsError):
    """A single source file could not be fetched or parsed."""

    def __init__(self, file_name: str, reason: str) -> None:
        super().__init__(f"{file_name}: {reason}")
        self.file_name = file_name
        self.reason = reason


class ListingError(PresetsError):
    """Enumerating the source failed; the whole load/sync is aborted."""


class StoreUnavailableError(PresetsError):
    """The SQLite record store could not be opened or used."""


class NotReadyError(PresetsError):
    """A query arrived before any successful load or sync."""

    def __init__(self, msg: str = "No data loaded yet. Run a refresh/sync first.") -> None:
        super().__init__(msg)


class InvalidRequestError(PresetsError):
    """A query request is malformed (bad filter, unknown operator, no columns)."""


class RefreshInProgressError(PresetsError):
    """A refresh or sync is already running for this catalog."""

    def __init__(self, msg: str = "A refresh is already in progress.") -> None:
        super().__init__(msg)
