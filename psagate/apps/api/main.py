from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from psagate.apps.api.errors import (
    gateway_error_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from psagate.apps.api.routes.health import router as health_router
from psagate.apps.api.routes.integrations import router as integrations_router
from psagate.apps.api.routes.matching import router as matching_router
from psagate.apps.api.routes.proxy import router as proxy_router
from psagate.apps.api.routes.psa import router as psa_router
from psagate.apps.api.routes.scan import router as scan_router
from psagate.core.config import get_settings
from psagate.core.errors import GatewayError
from psagate.core.logging import configure_logging
from psagate.services.gateway import GatewayState
from psagate.services.telemetry import record_request


def create_app(*, gateway: GatewayState | None = None) -> FastAPI:
    configure_logging()
    state = gateway or GatewayState(settings=get_settings())

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await state.aclose()

    app = FastAPI(title="psagate", lifespan=lifespan)
    # Stores live on the app so each app instance (and each test) is isolated.
    app.state.gateway = state

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health_router)
    app.include_router(psa_router)
    app.include_router(scan_router)
    app.include_router(matching_router)
    app.include_router(integrations_router)
    # Proxy families are mounted last; their catch-all paths must not shadow the routes above.
    app.include_router(proxy_router)
    return app


app = create_app()
