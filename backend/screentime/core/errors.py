from dataclasses import dataclass
from enum import StrEnum


class ErrorCode(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass(slots=True)
class ApiError(Exception):
    status_code: int
    error_code: ErrorCode
    message: str


class PipelineError(Exception):
    """Base class for failures raised by the weekly summary pipeline."""


class InputError(PipelineError):
    """Missing or malformed request fields. Rejected without side effects."""


class AuthError(PipelineError):
    """Missing or invalid credential.

    The message is shown to callers, so it must never reveal whether an
    account exists.
    """


class StoreError(PipelineError):
    def __init__(self, message: str, *, user_id: str | None = None) -> None:
        super().__init__(message)
        self.user_id = user_id


class StoreReadError(StoreError):
    pass


class StoreWriteError(StoreError):
    pass


class UpstreamUnavailable(PipelineError):
    """The record store could not be reached at all."""


def map_status_to_error_code(status_code: int) -> ErrorCode:
    if status_code in (400, 422):
        return ErrorCode.VALIDATION_ERROR
    if status_code == 401:
        return ErrorCode.UNAUTHORIZED
    if status_code == 403:
        return ErrorCode.FORBIDDEN
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if status_code == 409:
        return ErrorCode.CONFLICT
    if status_code in (502, 503, 504):
        return ErrorCode.UPSTREAM_UNAVAILABLE
    return ErrorCode.INTERNAL_ERROR


def build_error_payload(error_code: ErrorCode, message: str, request_id: str) -> dict:
    return {
        "error_code": error_code.value,
        "message": message,
        "request_id": request_id,
    }
