"""HTTP error mapping for the Delivery API.

Protean's generic handlers are registered first; the delivery-specific
handlers below take precedence for their subclasses because Starlette
resolves handlers along the exception's MRO.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.integrations.fastapi import register_exception_handlers

from delivery.errors import ConcurrentUpdateError, InvalidTransitionError, PreconditionFailedError

logger = structlog.get_logger(__name__)

_STATUS_BY_ERROR = (
    (InvalidTransitionError, 409, "invalid_transition"),
    (ConcurrentUpdateError, 409, "conflict"),
    (PreconditionFailedError, 422, "precondition_failed"),
    (ObjectNotFoundError, 404, "not_found"),
    (ValidationError, 400, "validation_failed"),
)


def _error_body(error: str, exc: Exception) -> dict:
    details = getattr(exc, "messages", None)
    if details is None and exc.args:
        # ObjectNotFoundError keeps its payload in args only
        details = exc.args[0] if isinstance(exc.args[0], dict) else {"_entity": [str(exc.args[0])]}
    return {"error": error, "details": details or {}}


def _handler_for(status_code: int, error: str):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        logger.info(
            "Request rejected",
            path=request.url.path,
            status_code=status_code,
            error=error,
        )
        return JSONResponse(status_code=status_code, content=_error_body(error, exc))

    return handler


async def _internal_failure(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path, error_type=type(exc).__name__)
    return JSONResponse(status_code=500, content={"error": "internal_failure", "details": {}})


def register_delivery_exception_handlers(app: FastAPI) -> None:
    """Map delivery errors to status codes with an ``{"error", "details"}`` body."""
    register_exception_handlers(app)
    for exc_class, status_code, error in _STATUS_BY_ERROR:
        app.add_exception_handler(exc_class, _handler_for(status_code, error))
    app.add_exception_handler(Exception, _internal_failure)
