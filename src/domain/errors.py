"""
Typed failures raised by the tracking domain and services.

Every error carries a stable ``code`` and an HTTP ``status_code`` so the
API layer can render it without knowing the concrete class.
``ProviderError`` never leaves the provider layer: it is converted into a
failed ``ProviderResult`` and the affected batch falls back to great-circle.
"""

from __future__ import annotations


class TrackingError(Exception):
    code = "TRACKING_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TrackingError):
    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class NotFoundError(TrackingError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, identifier: object):
        super().__init__(f"{resource} {identifier} not found")


class PermissionDeniedError(TrackingError):
    code = "PERMISSION_DENIED"
    status_code = 403


# ── State errors ──────────────────────────────────────────────────────


class StateError(TrackingError):
    code = "INVALID_STATE"
    status_code = 409


class AlreadyClosedError(StateError):
    code = "ALREADY_CLOSED"

    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} is already checked out")


class SessionNotOpenError(StateError):
    code = "SESSION_NOT_OPEN"

    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} is not open")


class SessionStillOpenError(StateError):
    code = "SESSION_STILL_OPEN"

    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} has not been checked out")


class CheckInInProgressError(StateError):
    code = "CHECK_IN_IN_PROGRESS"

    def __init__(self, user_id: int):
        super().__init__(f"Another check-in for user {user_id} is in progress")


# ── Infrastructure errors ─────────────────────────────────────────────


class ProviderError(TrackingError):
    code = "PROVIDER_ERROR"
    status_code = 502


class PersistenceError(TrackingError):
    code = "PERSISTENCE_ERROR"
    status_code = 500
