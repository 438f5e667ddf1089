"""Error taxonomy for the PropEdge pipeline.

Per-item problems (``ValidationError``, ``DataUnavailableError``) are caught
inside batch loops and recorded on the run report.  Only
``InvariantViolation`` and ``UpstreamFetchError`` are allowed to escape a run.
"""


class PropEdgeError(Exception):
    """Base class for all PropEdge errors."""


class ValidationError(PropEdgeError):
    """An input record is missing required fields or carries invalid values."""

    def __init__(self, message: str, reason: str = "invalid_record"):
        super().__init__(message)
        self.reason = reason


class DataUnavailableError(PropEdgeError):
    """Supporting data (history, defense row, game log, final score) is missing."""

    def __init__(self, message: str, reason: str = "no_data"):
        super().__init__(message)
        self.reason = reason


class InvariantViolation(PropEdgeError):
    """A logic defect was detected, e.g. a duplicate player inside one wager."""


class UpstreamFetchError(PropEdgeError):
    """An upstream feed could not be reached; the whole run is aborted."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
