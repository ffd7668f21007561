from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import httpx

from psagate.core.errors import UpstreamError, UpstreamTransientError
from psagate.domain.signals import KIND_ADDITION, KIND_CONFIGURATION, Asset, ContractLine, Signal
from psagate.providers.psa.base import (
    CompanyRef,
    PsaAdapterContext,
    PsaAdapterResult,
    PsaKind,
    collect_terms,
    error_message,
    first_present,
    surface_failure,
)


logger = logging.getLogger(__name__)

CONTRACT_LINE_FIELDS = (
    "plan_name",
    "requesttype_name",
    "category_1",
    "category_2",
    "category_3",
    "category_4",
    "chargerate_name",
)
ASSET_FIELDS = ("name", "devicename", "hostname", "model", "manufacturer", "vend", "type_name")


def _as_list(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, list):
        return [row for row in value if isinstance(row, dict)]
    if isinstance(value, dict):
        return [value]
    return []


def _client_rows(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict):
        payload = payload.get("clients")
    if not isinstance(payload, list):
        return []
    return [row for row in payload if isinstance(row, dict)]


def client_ref(row: dict[str, Any]) -> CompanyRef | None:
    # Contracts are listed by client_id, so the numeric id is what a scan needs.
    reference = first_present(row, "ref", "reference")
    identifier = first_present(row, "id", "client_id", "clientId", "ref", "reference")
    if identifier is None or identifier == "":
        return None
    name = first_present(row, "name", "client_name", "display_name", "reference")
    if name is None:
        name = f"Client #{identifier}"
    if name == "":
        return None
    return CompanyRef(
        identifier=str(identifier),
        name=str(name),
        subtitle=f"Ref: {reference}" if reference else None,
    )


def _contract_rows(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, list):
        return [row for row in payload if isinstance(row, dict)]
    # Some Halo builds wrap list responses in an object.
    if isinstance(payload, dict):
        for value in payload.values():
            if isinstance(value, list):
                return [row for row in value if isinstance(row, dict)]
    return []


class HaloAdapter:
    kind = PsaKind.HALO

    async def _contract_detail(self, ctx: PsaAdapterContext, contract: dict[str, Any]) -> dict[str, Any] | None:
        contract_id = first_present(contract, "id", "contract_id", "contractheader_id")
        if not contract_id:
            return None
        try:
            response = await ctx.client.get(
                f"{ctx.origin}/halo/ClientContract/{quote(str(contract_id), safe='')}",
                params={"includedetails": "true"},
                headers=ctx.headers,
            )
            if not response.is_success:
                raise UpstreamTransientError(f"Halo contract detail returned {response.status_code}")
            detail = response.json()
        except (httpx.HTTPError, ValueError, UpstreamTransientError) as exc:
            logger.warning(
                "halo_contract_detail_skipped company=%s contract_id=%s error=%s",
                ctx.company_identifier,
                contract_id,
                type(exc).__name__,
            )
            return None
        if not isinstance(detail, dict):
            return None
        return {
            "id": contract_id,
            "name": detail.get("name") or contract.get("name") or contract.get("contract_name") or f"Contract #{contract_id}",
            "billingplans": _as_list(detail.get("billingplans")),
            "configuration_items": _as_list(detail.get("configuration_items")),
        }

    async def fetch_company_entities(self, ctx: PsaAdapterContext) -> PsaAdapterResult:
        try:
            response = await ctx.client.get(
                f"{ctx.origin}/halo/ClientContract",
                params={"client_id": ctx.company_identifier, "includeinactive": "false"},
                headers=ctx.headers,
            )
        except httpx.HTTPError as exc:
            raise UpstreamError("Halo list contracts failed", status_code=500) from exc
        if not response.is_success:
            raise surface_failure(response, f"Halo list contracts failed {response.status_code}")
        try:
            contracts = _contract_rows(response.json())
        except ValueError as exc:
            raise UpstreamError("Halo contract list was not JSON", status_code=500) from exc

        # Detail fetches are independent; a failed one contributes nothing.
        details = await asyncio.gather(*(self._contract_detail(ctx, contract) for contract in contracts))

        entities: list[ContractLine | Asset] = []
        lines = 0
        assets = 0
        agreements = 0
        for detail in details:
            if detail is None:
                continue
            agreements += 1
            for plan in detail["billingplans"]:
                entities.append(ContractLine(data=plan, contract_id=detail["id"], contract_name=detail["name"]))
                lines += 1
            for item in detail["configuration_items"]:
                entities.append(Asset(data=item, contract_id=detail["id"], contract_name=detail["name"]))
                assets += 1

        return PsaAdapterResult(
            entities=list(entities),
            meta={"agreements": agreements, "additions": lines, "configurations": assets},
        )

    async def _client_search(self, ctx: PsaAdapterContext, query: str, page_size: int) -> httpx.Response:
        return await ctx.client.get(
            f"{ctx.origin}/halo/Client",
            params={"search": query, "pageSize": page_size},
            headers=ctx.headers,
        )

    async def search_companies(self, ctx: PsaAdapterContext, query: str, *, page_size: int) -> list[CompanyRef]:
        try:
            response = await self._client_search(ctx, query, page_size)
        except httpx.HTTPError as exc:
            raise UpstreamError("Halo client search failed", status_code=500) from exc
        if not response.is_success:
            raise UpstreamError(error_message(response, "Halo client search failed"), status_code=response.status_code)
        try:
            rows = _client_rows(response.json())
        except ValueError as exc:
            raise UpstreamError("Halo client search was not JSON", status_code=500) from exc
        return [ref for ref in (client_ref(row) for row in rows) if ref is not None]

    async def resolve_company_name(self, ctx: PsaAdapterContext, identifier: str) -> str | None:
        """Direct lookup by id first; fall back to a search matched on id or reference."""
        try:
            direct = await ctx.client.get(
                f"{ctx.origin}/halo/Client/{quote(identifier, safe='')}",
                headers=ctx.headers,
            )
            if direct.is_success:
                row = direct.json()
                name = first_present(row, "name", "client_name", "display_name", "reference")
                if name:
                    return str(name)

            search = await self._client_search(ctx, identifier, 25)
            if not search.is_success:
                return None
            rows = _client_rows(search.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.info("halo_client_resolve_failed identifier=%s error=%s", identifier, type(exc).__name__)
            return None

        for row in rows:
            ids = (
                first_present(row, "id", "client_id", "clientId"),
                first_present(row, "ref", "reference", "id"),
            )
            if identifier in {str(value) for value in ids if value is not None}:
                name = first_present(row, "name", "client_name", "display_name", "reference")
                return str(name or identifier)
        return None

    def extract_signals(self, result: PsaAdapterResult) -> list[Signal]:
        signals: list[Signal] = []
        for index, entity in enumerate(result.entities):
            if isinstance(entity, ContractLine):
                data = entity.data
                terms = collect_terms(data.get(name) for name in CONTRACT_LINE_FIELDS)
                # Billing-plan seq numbers restart in each contract, so an exclusion or
                # mapping on (addition, seq) applies to that line in every contract.
                entity_id = first_present(data, "seq", "id")
                if entity_id is None:
                    entity_id = terms[0] if terms else f"contract-line-{index}"
                categories = [data.get(f"category_{n}") for n in range(1, 5)]
                signals.append(
                    Signal(
                        id=entity_id,
                        name=str(data.get("plan_name") or data.get("requesttype_name") or entity_id),
                        terms=terms,
                        kind=KIND_ADDITION,
                        meta={
                            "source": "contract_line",
                            "contractId": entity.contract_id,
                            "contractName": entity.contract_name,
                            "planName": data.get("plan_name"),
                            "categories": " • ".join(str(c) for c in categories if c) or None,
                        },
                    )
                )
            elif isinstance(entity, Asset):
                data = entity.data
                terms = collect_terms(data.get(name) for name in ASSET_FIELDS)
                entity_id = first_present(data, "id", "device_id")
                if entity_id is None:
                    entity_id = terms[0] if terms else f"asset-{index}"
                signals.append(
                    Signal(
                        id=entity_id,
                        name=str(first_present(data, "name", "devicename", "hostname") or entity_id),
                        terms=terms,
                        kind=KIND_CONFIGURATION,
                        meta={
                            "source": "asset",
                            "contractId": entity.contract_id,
                            "contractName": entity.contract_name,
                            "typeName": first_present(data, "type_name", "model", "manufacturer"),
                        },
                    )
                )
        return signals
