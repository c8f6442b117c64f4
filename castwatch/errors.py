"""
Failure classes for the monitor.

CastwatchError (base)
├── ConnectivityFailure   health probe failed, cycle skipped
├── FetchFailure          one data source failed, prior value kept
├── ValidationFailure     file rejected before any network call
├── UploadFailure         backend refused the upload or transport broke
└── TrainFailure          backend refused training or transport broke

None of these is fatal. The poller and the upload orchestrator catch them,
log them and keep the last known good state.
"""

from typing import Optional


class CastwatchError(Exception):
    """Base class for every failure the monitor reports."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConnectivityFailure(CastwatchError):
    pass


class FetchFailure(CastwatchError):
    """A single data source failed within a poll cycle."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.reason = message


class ValidationFailure(CastwatchError):
    pass


class UploadFailure(CastwatchError):
    """
    Upload rejected or not delivered.

    `backend_message` is set only when the backend answered with its own
    text, so callers can prefer it over a generic string.
    """

    def __init__(self, message: str, backend_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.backend_message = backend_message


class TrainFailure(CastwatchError):
    def __init__(self, message: str, backend_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.backend_message = backend_message
