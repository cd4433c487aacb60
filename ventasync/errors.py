from __future__ import annotations

from fastapi import HTTPException, status

from ventasync.schemas import ErrorCode, ErrorDetail, ErrorResponse


class SyncError(Exception):
    """Base class for every failure raised by the sync layer."""


class NetworkError(SyncError):
    """Backend call rejected, unreachable or answered non-2xx."""

    def __init__(self, message: str, *, path: str = "", status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.status_code = status_code


class RequestTimeout(NetworkError):
    pass


class PayloadError(NetworkError):
    """Response body was not valid JSON."""


class MutationRejected(SyncError):
    """Backend answered 2xx but with {"success": false}."""

    def __init__(self, message: str, *, path: str = ""):
        super().__init__(message)
        self.message = message
        self.path = path


class UnknownResource(SyncError):
    def __init__(self, resource: str):
        super().__init__(f"unknown resource: {resource}")
        self.resource = resource


def http_error(
    code: ErrorCode, message: str, http_status=status.HTTP_400_BAD_REQUEST, hint: str | None = None
):
    detail = ErrorDetail(code=code, message=message, hint=hint)
    return HTTPException(status_code=http_status, detail=detail.model_dump(mode="json"))


def http_error_from_sync(exc: SyncError) -> HTTPException:
    """Map a sync-layer failure onto the gateway's error envelope."""
    if isinstance(exc, UnknownResource):
        return http_error(ErrorCode.UNKNOWN_RESOURCE, str(exc), status.HTTP_404_NOT_FOUND)
    if isinstance(exc, RequestTimeout):
        return http_error(
            ErrorCode.UPSTREAM_TIMEOUT,
            exc.message,
            status.HTTP_504_GATEWAY_TIMEOUT,
            hint="backend did not answer in time",
        )
    if isinstance(exc, PayloadError):
        return http_error(ErrorCode.MALFORMED_PAYLOAD, exc.message, status.HTTP_502_BAD_GATEWAY)
    if isinstance(exc, NetworkError):
        hint = f"backend status {exc.status_code}" if exc.status_code else None
        return http_error(ErrorCode.UPSTREAM_ERROR, exc.message, status.HTTP_502_BAD_GATEWAY, hint)
    if isinstance(exc, MutationRejected):
        return http_error(ErrorCode.MUTATION_REJECTED, exc.message, status.HTTP_409_CONFLICT)
    return http_error(ErrorCode.INTERNAL_ERROR, str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)


def envelope_from_http_exception(exc: HTTPException) -> ErrorResponse:
    d = exc.detail
    if isinstance(d, dict) and "code" in d and "message" in d:
        return ErrorResponse(error=d)  # already our shape
    # Fallback to INTERNAL_ERROR envelope
    return ErrorResponse(
        error=ErrorDetail(code=ErrorCode.INTERNAL_ERROR, message=str(d), hint=None).model_dump()
    )
