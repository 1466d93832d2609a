"""
Global exception handlers and custom exception classes.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
import logging

from .core.storage import StoreCorruptedError
from .registration.exceptions import RegistrationError
from .verification.exceptions import VerificationError

# Set up logging
logger = logging.getLogger(__name__)

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handler for request validation exceptions.

    Args:
        request: The request that caused the exception
        exc: The validation exception instance

    Returns:
        JSONResponse: Standardized error response with validation details
    """
    logger.error(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content={
            "detail": "Validation error",
            "errors": jsonable_encoder(exc.errors())
        }
    )


async def registration_error_handler(request: Request, exc: Exception):
    """
    Handler for unexpected registration engine failures.

    Storage corruption and programmer misuse end up here. The user gets a
    generic retry message; the entered data stays in the store.
    """
    logger.exception(f"Registration engine failure on {request.method} {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Something went wrong, please retry"}
    )


# Register exception handlers with FastAPI app
def register_exception_handlers(app):
    """
    Register all exception handlers with the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RegistrationError, registration_error_handler)
    app.add_exception_handler(VerificationError, registration_error_handler)
    app.add_exception_handler(StoreCorruptedError, registration_error_handler)
