from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from psagate.core.errors import GatewayError


logger = logging.getLogger(__name__)


def error_payload(message: str, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {"error": message}
    payload.update({key: value for key, value in extra.items() if value is not None})
    return payload


def _detail_message(detail: Any) -> str:
    if isinstance(detail, str):
        return detail
    if isinstance(detail, dict) and detail.get("message"):
        return str(detail["message"])
    return "Request failed"


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    # Server-side failures are logged; client-correctable ones are just returned.
    if exc.status_code >= 500:
        logger.warning(
            "gateway_error path=%s status=%s error=%s",
            request.url.path,
            exc.status_code,
            exc.message,
        )
    return JSONResponse(content=error_payload(exc.message), status_code=exc.status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        content=error_payload(_detail_message(exc.detail)),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        content=error_payload(_detail_message(exc.detail)),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Malformed bodies and params are bad input, not unprocessable entities.
    return JSONResponse(
        content=error_payload("Validation error", details=exc.errors()),
        status_code=400,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces to clients.
    logger.exception("unhandled_exception path=%s", request.url.path)
    return JSONResponse(content=error_payload("Internal Server Error"), status_code=500)
