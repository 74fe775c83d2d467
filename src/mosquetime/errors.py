from __future__ import annotations

from typing import Sequence


class MosqueTimeError(Exception):
    """Base class for every error raised by the package."""


class RecordValidationError(MosqueTimeError, ValueError):
    def __init__(self, issues: Sequence[str]) -> None:
        self.issues = list(issues)
        message = "\n".join(self.issues) or "No valid prayer time records"
        super().__init__(message)


class RecordNotFoundError(MosqueTimeError, KeyError):
    def __init__(self, date_key: str) -> None:
        self.date_key = date_key
        super().__init__(f"Prayer time for date {date_key} not found")

    def __str__(self) -> str:
        return self.args[0]


class NetworkError(MosqueTimeError):
    """The remote store could not be reached or rejected the request."""


class AuthenticationError(NetworkError):
    """Anonymous sign-in or token refresh failed."""


class PersistenceError(MosqueTimeError):
    """Local key-value storage could not be read or written."""


class SchedulingError(MosqueTimeError):
    """A single alarm could not be armed."""
