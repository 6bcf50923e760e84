"""Domain errors raised by service modules; routers map them to HTTP statuses."""

from __future__ import annotations


class KomicError(Exception):
    status_code = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(KomicError):
    status_code = 400


class InvalidStateError(KomicError):
    """Item exists but is not in a state that allows the operation (e.g. not pending)."""

    status_code = 400


class PermissionDeniedError(KomicError):
    status_code = 403


class NotFoundError(KomicError):
    status_code = 404


class ConflictError(KomicError):
    status_code = 409
