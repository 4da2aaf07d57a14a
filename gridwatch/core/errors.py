from __future__ import annotations


class GridwatchError(Exception):
    """Base class for acquisition-layer failures."""


class ConfigurationError(GridwatchError):
    """The topology document could not be read or parsed."""


class BatchFetchError(GridwatchError):
    """A single historian batch failed; the rest of the cycle carries on."""

    def __init__(self, message: str, *, point_ids: list[int] | None = None) -> None:
        super().__init__(message)
        self.point_ids = list(point_ids or [])


class BatchTimeoutError(BatchFetchError):
    """A historian batch exceeded its deadline."""
