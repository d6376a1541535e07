"""Translate booking errors into JSON responses."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .errors import BookingError, RejectionError

logger = logging.getLogger(__name__)


def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if not isinstance(exc, RejectionError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, **exc.extra()})


def apply_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
