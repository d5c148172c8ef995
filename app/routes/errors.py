from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
import structlog

from ..domain.exceptions import RideServiceError
from ..schemas.ride import ErrorResponse

logger = structlog.get_logger()

# HTTP status per error kind
STATUS_BY_KIND = {
    "NotFound": status.HTTP_404_NOT_FOUND,
    "Unauthorized": status.HTTP_403_FORBIDDEN,
    "InvalidState": status.HTTP_409_CONFLICT,
    "Conflict": status.HTTP_409_CONFLICT,
    "ValidationError": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "Unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


# Documented error responses for routers that raise RideServiceError
ERROR_RESPONSES = {
    status_code: {"model": ErrorResponse}
    for status_code in sorted(set(STATUS_BY_KIND.values()))
    if status_code != status.HTTP_422_UNPROCESSABLE_ENTITY
}


def error_body(kind: str, code: str, message: str) -> dict:
    return ErrorResponse(error=kind, code=code, message=message).model_dump()


async def ride_service_error_handler(request: Request, exc: RideServiceError):
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    log = logger.error if status_code >= 500 else logger.warning
    log("Request rejected", path=request.url.path, kind=exc.kind, code=exc.code, reason=exc.message)
    return JSONResponse(status_code=status_code, content=error_body(exc.kind, exc.code, exc.message))


async def unexpected_error_handler(request: Request, exc: Exception):
    # Internal details stay in the log
    logger.error("Unexpected error occurred", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("InternalError", "INTERNAL_ERROR", "An unexpected error occurred"),
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(RideServiceError, ride_service_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
