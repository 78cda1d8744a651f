"""Typed failures shared by the scheduler, lifecycle, and membership components.

Every error carries an ErrorKind so the HTTP boundary can translate it into
a response with a single lookup (see api/v1/router.py). Backend failures are
split into BackendUnavailableError (transport error or timeout, retryable)
and BackendRejectedError (explicit FAILED response, not retryable as-is).
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Category of a ConferenceError."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    POLICY_VIOLATION = "policy_violation"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    BACKEND_REJECTED = "backend_rejected"
    INVALID_REQUEST = "invalid_request"


class ConferenceError(Exception):
    """Base class for all scheduler errors."""

    kind: ErrorKind = ErrorKind.INVALID_REQUEST

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ── Not Found ────────────────────────────────────────────────────────────────


class ServerNotFoundError(ConferenceError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, server_id: int) -> None:
        self.server_id = server_id
        super().__init__(f"Server not found: {server_id}")


class MeetingNotFoundError(ConferenceError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, external_id: str) -> None:
        self.external_id = external_id
        super().__init__(f"Meeting not found: {external_id}")


class MembershipNotFoundError(ConferenceError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, membership_id: int) -> None:
        self.membership_id = membership_id
        super().__init__(f"Membership not found: {membership_id}")


# ── Conflict ─────────────────────────────────────────────────────────────────


class MeetingConflictError(ConferenceError):
    """A Running meeting already uses this external id."""

    kind = ErrorKind.CONFLICT

    def __init__(self, external_id: str) -> None:
        self.external_id = external_id
        super().__init__(f"Meeting already running: {external_id}")


class MeetingEndedError(ConferenceError):
    """The meeting is in the terminal Ended state."""

    kind = ErrorKind.CONFLICT

    def __init__(self, external_id: str) -> None:
        self.external_id = external_id
        super().__init__(f"Meeting has ended: {external_id}")


class ServerBusyError(ConferenceError):
    """Server still hosts running meetings and cannot be removed."""

    kind = ErrorKind.CONFLICT

    def __init__(self, server_id: int, running_meetings: int) -> None:
        self.server_id = server_id
        self.running_meetings = running_meetings
        super().__init__(
            f"Server {server_id} still hosts {running_meetings} running meeting(s)"
        )


# ── Capacity ─────────────────────────────────────────────────────────────────


class NoCapableServerError(ConferenceError):
    kind = ErrorKind.CAPACITY_EXCEEDED

    def __init__(self) -> None:
        super().__init__("No server has free capacity")


# ── Backend ──────────────────────────────────────────────────────────────────


class BackendUnavailableError(ConferenceError):
    """Transport error or timeout talking to the conferencing backend."""

    kind = ErrorKind.BACKEND_UNAVAILABLE


class BackendRejectedError(ConferenceError):
    """The backend refused the call: a FAILED return code or a 4xx answer."""

    kind = ErrorKind.BACKEND_REJECTED

    def __init__(self, call: str, message_key: str | None, message: str | None) -> None:
        self.call = call
        self.message_key = message_key
        self.backend_message = message
        super().__init__(
            f"Backend rejected {call}: {message_key or 'unknown'}"
            + (f" ({message})" if message else "")
        )


class InvalidRequestError(ConferenceError):
    kind = ErrorKind.INVALID_REQUEST
