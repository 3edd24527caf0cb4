"""Exception handlers mapping errors to the JSON error envelope."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from subca.errors import PKIError

logger = logging.getLogger("subca")


async def pki_error_handler(request: Request, exc: PKIError) -> JSONResponse:
    """Render a PKIError with its own code and HTTP status."""
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are input errors like any other."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or None
    message = first.get("msg", "Invalid request")
    body = {
        "success": False,
        "code": "VALIDATION_ERROR",
        "error": f"{field}: {message}" if field else message,
        "details": {"field": field},
    }
    return JSONResponse(status_code=400, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PKIError, pki_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
