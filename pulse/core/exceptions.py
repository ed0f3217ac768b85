# ==============================================================================
# Engine Exceptions
# ==============================================================================
"""
Errors raised by the engine.

Expected outcomes (capacity drops, rejected payloads, unknown sessions) are
returned as result values, see core/results.py. These exceptions cover the
cases a caller cannot continue from.
"""


class PulseError(Exception):
    """Base class for engine errors."""


class QueryTimeoutError(PulseError):
    """A merged analytics query ran past its time budget."""

    def __init__(self, timeout_seconds: float, stage: str):
        self.timeout_seconds = timeout_seconds
        self.stage = stage
        super().__init__(f"Query exceeded {timeout_seconds:.1f}s budget during {stage}")


class StorageNotConnectedError(PulseError):
    """A repository was used before connect() or after close()."""

    def __init__(self, store: str):
        self.store = store
        super().__init__(f"{store} is not connected. Call connect() first.")
