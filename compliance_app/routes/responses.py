import logging
from typing import Any

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from compliance_app.exceptions import (
    DocumentNotFoundError,
    EmailAlreadyRegisteredError,
    GenerativeEndpointError,
    InvalidCredentialsError,
    InvalidPhaseError,
    MissingBusinessDataError,
    NoActiveSessionError,
    StructuredPayloadError,
    UnauthenticatedError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (UnauthenticatedError, status.HTTP_401_UNAUTHORIZED),
    (InvalidCredentialsError, status.HTTP_401_UNAUTHORIZED),
    (DocumentNotFoundError, status.HTTP_404_NOT_FOUND),
    (NoActiveSessionError, status.HTTP_404_NOT_FOUND),
    (InvalidPhaseError, status.HTTP_409_CONFLICT),
    (MissingBusinessDataError, status.HTTP_400_BAD_REQUEST),
    (EmailAlreadyRegisteredError, status.HTTP_400_BAD_REQUEST),
    (ValueError, status.HTTP_400_BAD_REQUEST),
    (GenerativeEndpointError, status.HTTP_502_BAD_GATEWAY),
    (StructuredPayloadError, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: Exception) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def success(data: Any = None, status_code: int = status.HTTP_200_OK, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": True, "data": data, **extra}),
    )


def failure(exc: Exception, **extra: Any) -> JSONResponse:
    """Error envelope; the exception's own message is what the client sees."""
    status_code = status_for(exc)
    if status_code == status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.exception("Unhandled error: %s", exc)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": False, "error": str(exc), **extra}),
    )
