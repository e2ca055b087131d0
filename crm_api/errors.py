"""
Maps the CrmError hierarchy onto HTTP responses.

    not found, link expired                    -> 404
    validation, invalid state, duplicate       -> 400
    authentication                             -> 401
    persistence and anything else              -> 500

Bodies are ``{"error": <code>, "message": <text>}``.
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crm_kernel.exceptions import (
    AuthenticationError,
    CrmError,
    DuplicateSubmissionError,
    InvalidStateError,
    LinkExpiredError,
    NotFoundError,
    ValidationError,
)
from crm_kernel.logging_config import get_logger

logger = get_logger("api.errors")

_STATUS_BY_TYPE: tuple[tuple[type[CrmError], int], ...] = (
    (NotFoundError, 404),
    (LinkExpiredError, 404),
    (AuthenticationError, 401),
    (ValidationError, 400),
    (InvalidStateError, 400),
    (DuplicateSubmissionError, 400),
)


def status_for(exc: CrmError) -> int:
    for exc_type, status in _STATUS_BY_TYPE:
        if isinstance(exc, exc_type):
            return status
    return 500


def _crm_error_handler(request: Request, exc: CrmError) -> JSONResponse:
    status = status_for(exc)
    log = logger.error if status >= 500 else logger.info
    log(
        "api_request_failed",
        extra={
            "path": request.url.path,
            "status": status,
            "error": exc.code,
            "reason": str(exc),
        },
    )
    return JSONResponse(status_code=status, content={"error": exc.code, "message": str(exc)})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CrmError, _crm_error_handler)
