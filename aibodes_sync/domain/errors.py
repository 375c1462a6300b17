# aibodes_sync/domain/errors.py
from __future__ import annotations


class SyncEngineError(Exception):
    """Base for every error value the engine produces."""


class TransientSourceError(SyncEngineError):
    """One adapter's fetch failed. Isolated: the cycle goes on without it."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class TotalSyncFailure(SyncEngineError):
    """Every registered adapter failed in one cycle. The store keeps its data."""

    def __init__(self, failed_sources: list[str]) -> None:
        super().__init__(f"all {len(failed_sources)} sources failed: {', '.join(failed_sources)}")
        self.failed_sources = list(failed_sources)


class PushConnectionError(SyncEngineError):
    """
    Transport / auth / read failure on the push channel.
    stage is one of: connect, auth, read, closed.
    """

    def __init__(self, stage: str, reason: str) -> None:
        super().__init__(f"{stage}: {reason}")
        self.stage = stage
        self.reason = reason


class RetriesExhausted(SyncEngineError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"gave up after {attempts} consecutive failures; manual reconnect required")
        self.attempts = attempts
