"""Uniform error responses.

Every error is returned as ``{error, message, request_id, details}``. Storage
failures map to 5xx; backend identity and raw bodies are only included for
admin callers.
"""

from __future__ import annotations

import logging
from typing import cast

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gallery_backend.integrations.storage.errors import (
    PayloadIntegrityError,
    StorageConfigError,
    StorageProviderError,
)
from gallery_backend.schemas.errors import ErrorResponse

logger = logging.getLogger(__name__)


def _map_http_status_to_error(status_code: int) -> str:
    mapping: dict[int, str] = {
        400: "bad_request",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        413: "payload_too_large",
        416: "range_not_satisfiable",
        422: "validation_error",
        502: "upstream_error",
    }
    return mapping.get(status_code, f"http_{status_code}")


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _is_admin(request: Request) -> bool:
    return bool(getattr(request.state, "is_admin", False))


async def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)

    details: object | None = None
    message = str(http_exc.detail)
    if isinstance(http_exc.detail, dict):
        msg = http_exc.detail.get("message")
        if isinstance(msg, str):
            message = msg
            details = http_exc.detail.get("details")
        else:
            details = http_exc.detail
    elif isinstance(http_exc.detail, list):
        details = http_exc.detail

    payload = ErrorResponse(
        error=_map_http_status_to_error(http_exc.status_code),
        message=message,
        request_id=_request_id(request),
        details=details,
    )
    headers = getattr(http_exc, "headers", None)
    return JSONResponse(
        status_code=http_exc.status_code,
        content=jsonable_encoder(payload, exclude_none=True),
        headers=headers,
    )


async def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    validation_exc = cast(RequestValidationError, exc)
    payload = ErrorResponse(
        error="validation_error",
        message="Request validation error",
        request_id=_request_id(request),
        details=validation_exc.errors(),
    )
    return JSONResponse(status_code=422, content=jsonable_encoder(payload, exclude_none=True))


async def _storage_provider_error_handler(request: Request, exc: Exception) -> JSONResponse:
    provider_exc = cast(StorageProviderError, exc)
    logger.error(
        "storage provider error request_id=%s provider=%s status=%s message=%s",
        _request_id(request),
        provider_exc.provider,
        provider_exc.status_code,
        provider_exc.message,
    )
    details: object | None = None
    message = "Storage backend error"
    if _is_admin(request):
        message = provider_exc.message
        details = {
            "provider": provider_exc.provider,
            "status_code": provider_exc.status_code,
            "body": provider_exc.body,
        }
    payload = ErrorResponse(
        error="upstream_error",
        message=message,
        request_id=_request_id(request),
        details=details,
    )
    return JSONResponse(status_code=502, content=jsonable_encoder(payload, exclude_none=True))


async def _storage_internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "storage error request_id=%s path=%s error=%s",
        _request_id(request),
        request.url.path,
        exc,
    )
    error = "integrity_error" if isinstance(exc, PayloadIntegrityError) else "storage_misconfigured"
    payload = ErrorResponse(
        error=error,
        message=str(exc) if _is_admin(request) else "Storage error",
        request_id=_request_id(request),
    )
    return JSONResponse(status_code=500, content=jsonable_encoder(payload, exclude_none=True))


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    logger.exception(
        "unhandled exception request_id=%s method=%s path=%s",
        request_id,
        request.method,
        request.url.path,
        exc_info=exc,
    )
    payload = ErrorResponse(
        error="internal_error",
        message="Internal server error",
        request_id=request_id,
    )
    return JSONResponse(status_code=500, content=jsonable_encoder(payload, exclude_none=True))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StorageProviderError, _storage_provider_error_handler)
    app.add_exception_handler(StorageConfigError, _storage_internal_error_handler)
    app.add_exception_handler(PayloadIntegrityError, _storage_internal_error_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
