"""Global exception handlers.

GenerationError subclasses become ``{"error_code": ..., "message": ...}``
responses with the status code declared on the error class. Request-shape
validation failures are reported as INVALID_REQUEST.
"""

import structlog
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from photoforge.services.exceptions import GenerationError, InvalidRequest

logger = structlog.get_logger(__name__)


async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request.failed",
        method=request.method,
        path=request.url.path,
        status_code=exc.status_code,
        **exc.log_fields(),
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
        },
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()]
    error = InvalidRequest(f"Invalid request: {', '.join(fields) or 'malformed body'}")
    return await generation_error_handler(request, error)
