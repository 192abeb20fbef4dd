"""Exceptions raised by the offline sync client."""
from __future__ import annotations

from typing import Optional


class OfflineSyncError(Exception):
    """Base class for offline sync errors."""


class InvalidActionKind(OfflineSyncError, ValueError):
    def __init__(self, kind: object) -> None:
        super().__init__(f"Unsupported action kind: {kind!r}")
        self.kind = kind


class SyncFailure(OfflineSyncError):
    """A single action could not be replayed against the API."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransientSyncFailure(SyncFailure):
    """Network error, timeout or 5xx: the action stays queued and blocks later ones."""


class TerminalSyncFailure(SyncFailure):
    """The server rejected the action; retrying it unchanged will never succeed."""


__all__ = [
    "InvalidActionKind",
    "OfflineSyncError",
    "SyncFailure",
    "TerminalSyncFailure",
    "TransientSyncFailure",
]
