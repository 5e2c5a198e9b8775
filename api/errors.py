"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import (
    DuplicateInvoiceNumberError,
    ImmutableFieldError,
    InvalidAmountError,
    InvalidStateError,
    InvalidTransitionError,
    InvoiceError,
    InvoiceNotFoundError,
    PaymentFailedError,
)

logger = logging.getLogger(__name__)

# Most specific class wins (Starlette walks the exception's MRO)
_INVOICE_ERRORS: dict[type[InvoiceError], tuple[int, str]] = {
    InvoiceError: (400, ErrorCodes.INVALID_REQUEST),
    InvoiceNotFoundError: (404, ErrorCodes.NOT_FOUND),
    InvalidAmountError: (400, ErrorCodes.INVALID_AMOUNT),
    ImmutableFieldError: (409, ErrorCodes.INVOICE_IMMUTABLE),
    InvalidStateError: (409, ErrorCodes.INVALID_INVOICE_STATE),
    InvalidTransitionError: (409, ErrorCodes.INVALID_STATUS_TRANSITION),
    DuplicateInvoiceNumberError: (503, ErrorCodes.SERVICE_UNAVAILABLE),
}


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _error(request: Request, status_code: int, code: str, message: str, reference: str | None = None):
    return JSONResponse(
        status_code=status_code,
        content=error_response(
            code, message, reference=reference, request_id=_request_id(request),
        ).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    async def invoice_error_handler(request: Request, exc: InvoiceError):
        status_code, code = next(
            _INVOICE_ERRORS[cls] for cls in type(exc).__mro__ if cls in _INVOICE_ERRORS
        )
        if status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc}")
        return _error(request, status_code, code, str(exc))

    for exc_class in _INVOICE_ERRORS:
        app.add_exception_handler(exc_class, invoice_error_handler)

    @app.exception_handler(PaymentFailedError)
    async def payment_failed_handler(request: Request, exc: PaymentFailedError):
        # Gateway detail stays in the logs; the payer gets a reference id
        logger.warning(f"Payment failed: {exc} (issue={exc.issue}, debug_id={exc.debug_id})")
        return _error(
            request, 402, ErrorCodes.PAYMENT_FAILED,
            "Payment could not be completed. Please try again or contact support.",
            reference=exc.debug_id,
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        message = str(exc)
        if "not found" in message.lower():
            return _error(request, 404, ErrorCodes.NOT_FOUND, message)
        return _error(request, 400, ErrorCodes.INVALID_REQUEST, message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(request, 422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _error(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
