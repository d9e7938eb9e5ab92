"""Application errors and their HTTP status codes."""

from __future__ import annotations


class AppError(Exception):
    """Base class for failures converted to a structured response at the request boundary."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(AppError):
    status_code = 404


class InvalidInput(AppError):
    status_code = 400


class Unauthenticated(AppError):
    status_code = 401


class Conflict(AppError):
    status_code = 409


class PayloadTooLarge(AppError):
    status_code = 413


class RangeUnsatisfiable(AppError):
    """Malformed, inverted or out-of-bounds byte range."""

    status_code = 416

    def __init__(self, message: str, file_size: int) -> None:
        super().__init__(message)
        self.file_size = file_size


class StorageFailure(AppError):
    """The metadata document could not be written."""

    status_code = 500
