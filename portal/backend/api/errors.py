import logging
from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from ..services.errors import (
    ServiceError, Unauthorized, Unauthenticated, Forbidden, InvalidInput, MalformedCode, UnknownCode,
    InactiveCode, NotFound, AlreadyMarked, AlreadyCheckedIn, CheckOutTooEarly, NoOpenSession,
    IdentityConflict, PersistenceError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    Unauthorized: status.HTTP_401_UNAUTHORIZED,
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    Forbidden: status.HTTP_403_FORBIDDEN,
    InvalidInput: status.HTTP_400_BAD_REQUEST,
    MalformedCode: status.HTTP_400_BAD_REQUEST,
    UnknownCode: status.HTTP_400_BAD_REQUEST,
    InactiveCode: status.HTTP_400_BAD_REQUEST,
    IdentityConflict: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    AlreadyMarked: status.HTTP_409_CONFLICT,
    AlreadyCheckedIn: status.HTTP_409_CONFLICT,
    CheckOutTooEarly: status.HTTP_409_CONFLICT,
    NoOpenSession: status.HTTP_409_CONFLICT,
    PersistenceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error: ServiceError) -> int:
    for error_type in type(error).__mro__:
        if error_type in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[error_type]
    return status.HTTP_400_BAD_REQUEST


def to_http_exception(error: ServiceError) -> HTTPException:
    """Translates a service error into the HTTPException the routers raise."""
    return HTTPException(status_code=status_for(error), detail=str(error))


def error_response(error: ServiceError) -> JSONResponse:
    """The '{error}' body returned by the privileged admin operations."""
    code = status_for(error)
    if code >= 500:
        logger.error(f"Privileged operation failed: {error}")
    return JSONResponse(status_code=code, content={"error": str(error)})
