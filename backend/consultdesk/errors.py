"""
Error envelope.

Every failure leaves the API as a problem-details body::

    {"type": "about:blank", "title": ..., "status": ..., "detail": ...,
     "instance": <path>, "code": <machine code>, "errors": <details>}

``code`` and ``errors`` are omitted when there is nothing to report.
"""

from http import HTTPStatus
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.exceptions import DomainException, RepositoryException

logger = logging.getLogger(__name__)


def problem_response(
    request: Request,
    status: int,
    detail: str = "",
    *,
    code: Optional[str] = None,
    errors: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    try:
        title = HTTPStatus(status).phrase
    except ValueError:
        title = "Error"
    body: Dict[str, Any] = {
        "type": "about:blank",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": request.url.path,
    }
    if code:
        body["code"] = code
    if errors:
        body["errors"] = jsonable_encoder(errors)
    return JSONResponse(body, status_code=status, headers=headers)


async def _domain_error(request: Request, exc: DomainException) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, "%s on %s: %s", exc.code, request.url.path, exc.message)
    headers = None
    if exc.retry_after_seconds is not None:
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return problem_response(
        request, exc.status_code, exc.message, code=exc.code, errors=exc.details, headers=headers
    )


async def _repository_error(request: Request, exc: RepositoryException) -> JSONResponse:
    logger.error("Repository error on %s: %s", request.url.path, exc)
    return problem_response(request, 500, "A database error occurred", code="DATABASE_ERROR")


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else ""
    errors = exc.detail if isinstance(exc.detail, dict) else None
    return problem_response(
        request, exc.status_code, detail, errors=errors, headers=getattr(exc, "headers", None)
    )


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return problem_response(
        request,
        422,
        "Request validation failed",
        code="REQUEST_VALIDATION_ERROR",
        errors=exc.errors(),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainException, _domain_error)
    app.add_exception_handler(RepositoryException, _repository_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
