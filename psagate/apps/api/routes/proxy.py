from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from psagate.apps.api.deps import get_db, get_gateway_state, get_tenant_id
from psagate.services.credentials import CredentialResolver
from psagate.services.gateway import GatewayState
from psagate.services.proxy import ProxyRequest
from psagate.services.upstreams import UPSTREAMS, UpstreamName


router = APIRouter(tags=["proxy"])

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def _make_endpoint(name: UpstreamName) -> Callable[..., Any]:
    upstream = UPSTREAMS[name]

    async def forward(
        path: str,
        request: Request,
        tenant_id: str = Depends(get_tenant_id),
        db: AsyncSession = Depends(get_db),
        gateway: GatewayState = Depends(get_gateway_state),
    ) -> Response:
        try:
            credentials = await CredentialResolver(db, settings=gateway.settings).resolve(tenant_id, name)
        except SQLAlchemyError as exc:
            raise HTTPException(status_code=500, detail="Database error while loading credentials") from exc
        body = await request.body()
        result = await gateway.proxy_for(name).forward(
            ProxyRequest(
                method=request.method,
                path=path,
                query=list(request.query_params.multi_items()),
                body=body or None,
                content_type=request.headers.get("content-type"),
            ),
            tenant_id=tenant_id,
            credentials=credentials,
        )
        # Pass the upstream body through untouched.
        return Response(
            content=result.body,
            status_code=result.status_code,
            headers={"content-type": result.content_type, upstream.cache_header: result.cache_status},
        )

    forward.__name__ = f"proxy_{name.value}"
    return forward


for _name in UPSTREAMS:
    router.add_api_route(
        f"/{_name.value}/{{path:path}}",
        _make_endpoint(_name),
        methods=PROXY_METHODS,
        name=f"proxy_{_name.value}",
    )
