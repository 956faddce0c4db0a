"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import BillingError, GatewayError, InvalidInput, InvalidState, NotFound

logger = logging.getLogger(__name__)

# Most specific first
BILLING_ERROR_STATUS = (
    (NotFound, 404, ErrorCodes.NOT_FOUND),
    (InvalidState, 400, ErrorCodes.INVALID_STATE),
    (InvalidInput, 400, ErrorCodes.INVALID_INPUT),
    (GatewayError, 502, ErrorCodes.GATEWAY_ERROR),
)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _json(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, _request_id(request)).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        for error_type, status_code, code in BILLING_ERROR_STATUS:
            if isinstance(exc, error_type):
                if status_code >= 500:
                    logger.warning("%s on %s: %s", code, request.url.path, exc)
                return _json(request, status_code, code, str(exc))

        logger.exception("Unmapped billing error")
        return _json(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _json(request, 422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
