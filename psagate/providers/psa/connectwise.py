from __future__ import annotations

import logging
from typing import Any

import httpx

from psagate.core.config import get_settings
from psagate.core.errors import UpstreamError, UpstreamTransientError
from psagate.domain.signals import KIND_ADDITION, KIND_CONFIGURATION, Addition, Configuration, Signal
from psagate.providers.psa.base import (
    CompanyRef,
    PsaAdapterContext,
    PsaAdapterResult,
    PsaKind,
    collect_terms,
    error_message,
    first_present,
    lookup,
    surface_failure,
)


logger = logging.getLogger(__name__)

BUNDLE_PATH = "connectwise/system/bundles"
COMPANIES_PATH = "connectwise/company/companies"
BUNDLE_VERSION = "2020.1"
PAGE = {"page": 1, "pageSize": 1000}

# Identifiers that help on any entity type.
_GENERIC_FIELDS = ("item.identifier", "item.name", "sku", "manufacturerPartNumber", "vendorSku")


def _quote(value: str) -> str:
    return value.replace('"', '\\"')


def company_bundle(company_identifier: str) -> list[dict[str, Any]]:
    company = _quote(company_identifier)
    return [
        {
            "Version": BUNDLE_VERSION,
            "SequenceNumber": 1,
            "ResourceType": "agreement",
            "ApiRequest": {
                "filters": {
                    "conditions": (
                        f'company/identifier="{company}" and agreementStatus="Active" and cancelledFlag=false'
                    )
                },
                "page": dict(PAGE),
            },
        },
        {
            "Version": BUNDLE_VERSION,
            "SequenceNumber": 2,
            "ResourceType": "configuration",
            "ApiRequest": {
                "filters": {"conditions": f'company/identifier="{company}" and status/name="Active"'},
                "page": dict(PAGE),
            },
        },
    ]


def company_search_params(query: str, page_size: int) -> dict[str, Any]:
    term = _quote(query)
    return {
        "conditions": (
            f'(name like "%{term}%" or identifier like "%{term}%")'
            " and status/name in ('Active','Special Info') and deletedFlag=false"
        ),
        "childConditions": 'types/name contains "customer" or types/name contains "client"',
        "pageSize": page_size,
        "orderBy": "name asc",
    }


def addition_requests(agreement_ids: list[int]) -> list[dict[str, Any]]:
    return [
        {
            "Version": BUNDLE_VERSION,
            "SequenceNumber": agreement_id,
            "ResourceType": "addition",
            "ApiRequest": {
                "parentId": agreement_id,
                "filters": {"conditions": "cancelledDate=null"},
                "page": dict(PAGE),
            },
        }
        for agreement_id in agreement_ids
    ]


def _bundle_results(payload: Any) -> list[dict[str, Any]]:
    results = payload.get("results") if isinstance(payload, dict) else None
    if not isinstance(results, list):
        return []
    return [result for result in results if isinstance(result, dict)]


def _result_entities(result: dict[str, Any]) -> list[dict[str, Any]]:
    entities = result.get("entities")
    if isinstance(entities, list):
        return [entity for entity in entities if isinstance(entity, dict)]
    data = result.get("data")
    if isinstance(data, dict):
        return [data]
    return []


def _sequence(results: list[dict[str, Any]], number: int) -> list[dict[str, Any]]:
    for result in results:
        if result.get("sequenceNumber") == number:
            return _result_entities(result)
    return []


class ConnectWiseAdapter:
    kind = PsaKind.CONNECTWISE

    def __init__(self, *, chunk_size: int | None = None) -> None:
        self._chunk_size = chunk_size

    @property
    def chunk_size(self) -> int:
        return max(1, self._chunk_size or get_settings().scan_chunk_size)

    async def _post_bundle(self, ctx: PsaAdapterContext, requests: list[dict[str, Any]]) -> httpx.Response:
        return await ctx.client.post(
            f"{ctx.origin}/{BUNDLE_PATH}",
            json={"requests": requests},
            headers=ctx.headers,
        )

    async def _addition_chunk(
        self,
        ctx: PsaAdapterContext,
        chunk: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        try:
            response = await self._post_bundle(ctx, chunk)
        except httpx.HTTPError as exc:
            raise UpstreamTransientError("ConnectWise addition bundle failed") from exc
        if not response.is_success:
            raise UpstreamTransientError(f"ConnectWise addition bundle returned {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamTransientError("ConnectWise addition bundle was not JSON") from exc
        return [entity for result in _bundle_results(payload) for entity in _result_entities(result)]

    async def fetch_company_entities(self, ctx: PsaAdapterContext) -> PsaAdapterResult:
        try:
            response = await self._post_bundle(ctx, company_bundle(ctx.company_identifier))
        except httpx.HTTPError as exc:
            raise UpstreamError("ConnectWise bundle request failed", status_code=500) from exc
        if not response.is_success:
            raise surface_failure(response, "ConnectWise bundle request failed")
        try:
            first = response.json()
        except ValueError as exc:
            raise UpstreamError("ConnectWise bundle response was not JSON", status_code=500) from exc

        results = _bundle_results(first)
        agreements = _sequence(results, 1)
        configurations = [Configuration(data=row) for row in _sequence(results, 2)]

        agreement_names: dict[int, str] = {}
        agreement_ids: list[int] = []
        for agreement in agreements:
            agreement_id = agreement.get("id")
            if isinstance(agreement_id, int) and not isinstance(agreement_id, bool):
                agreement_ids.append(agreement_id)
                agreement_names[agreement_id] = agreement.get("name") or ""

        additions: list[Addition] = []
        requests = addition_requests(agreement_ids)
        for start in range(0, len(requests), self.chunk_size):
            chunk = requests[start:start + self.chunk_size]
            try:
                rows = await self._addition_chunk(ctx, chunk)
            except UpstreamTransientError as exc:
                # A failed chunk costs its additions, not the scan.
                logger.warning(
                    "connectwise_addition_chunk_skipped company=%s offset=%s error=%s",
                    ctx.company_identifier,
                    start,
                    exc.message,
                )
                continue
            for row in rows:
                additions.append(Addition(data=row, agreement_name=agreement_names.get(row.get("agreementId"))))

        return PsaAdapterResult(
            entities=[*configurations, *additions],
            meta={
                "agreements": len(agreements),
                "additions": len(additions),
                "configurations": len(configurations),
            },
        )

    async def search_companies(self, ctx: PsaAdapterContext, query: str, *, page_size: int) -> list[CompanyRef]:
        try:
            response = await ctx.client.get(
                f"{ctx.origin}/{COMPANIES_PATH}",
                params=company_search_params(query, page_size),
                headers=ctx.headers,
            )
        except httpx.HTTPError as exc:
            raise UpstreamError("ConnectWise company search failed", status_code=500) from exc
        if not response.is_success:
            raise UpstreamError(
                error_message(response, "ConnectWise company search failed"),
                status_code=response.status_code,
            )
        try:
            rows = response.json()
        except ValueError as exc:
            raise UpstreamError("ConnectWise company search was not JSON", status_code=500) from exc

        companies: list[CompanyRef] = []
        for row in rows if isinstance(rows, list) else []:
            if not isinstance(row, dict) or not row.get("identifier"):
                continue
            identifier = str(row["identifier"])
            status = lookup(row, "status.name")
            companies.append(
                CompanyRef(
                    identifier=identifier,
                    name=str(row.get("name") or identifier),
                    subtitle=f"Status: {status}" if status else None,
                )
            )
        return companies

    async def resolve_company_name(self, ctx: PsaAdapterContext, identifier: str) -> str | None:
        try:
            response = await ctx.client.get(
                f"{ctx.origin}/{COMPANIES_PATH}",
                params={"conditions": f'identifier="{_quote(identifier)}"', "pageSize": 1},
                headers=ctx.headers,
            )
            if not response.is_success:
                return None
            rows = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.info("connectwise_company_resolve_failed identifier=%s error=%s", identifier, type(exc).__name__)
            return None
        row = rows[0] if isinstance(rows, list) and rows and isinstance(rows[0], dict) else {}
        # An unknown identifier still resolves to itself.
        return str(row.get("name") or identifier)

    def extract_signals(self, result: PsaAdapterResult) -> list[Signal]:
        signals: list[Signal] = []
        for index, entity in enumerate(result.entities):
            if isinstance(entity, Configuration):
                signals.append(self._configuration_signal(entity, index))
            elif isinstance(entity, Addition):
                signals.append(self._addition_signal(entity, index))
        return signals

    def _configuration_signal(self, entity: Configuration, index: int) -> Signal:
        data = entity.data
        terms = collect_terms(
            [
                data.get("name"),
                lookup(data, "type.name"),
                lookup(data, "manufacturer.name"),
                lookup(data, "vendor.name"),
                data.get("modelNumber"),
                data.get("deviceIdentifier"),
                data.get("manufacturerPartNumber"),
                *(lookup(data, path) for path in _GENERIC_FIELDS),
            ]
        )
        entity_id = _entity_id(data, terms, f"configuration-{index}")
        return Signal(
            id=entity_id,
            name=str(first_present(data, "name", "type.name") or entity_id),
            terms=terms,
            kind=KIND_CONFIGURATION,
            meta={
                "source": "configuration",
                "typeName": lookup(data, "type.name"),
                "vendorName": lookup(data, "vendor.name"),
                "manufacturerName": lookup(data, "manufacturer.name"),
                "modelNumber": data.get("modelNumber"),
            },
        )

    def _addition_signal(self, entity: Addition, index: int) -> Signal:
        data = entity.data
        product_identifier = first_present(data, "product.identifier", "catalogItem.identifier")
        product_name = first_present(data, "product.name", "catalogItem.name")
        terms = collect_terms(
            [
                product_identifier,
                data.get("invoiceDescription"),
                data.get("description"),
                product_name,
                data.get("integrationXRef"),
                *(lookup(data, path) for path in _GENERIC_FIELDS),
            ]
        )
        entity_id = _entity_id(data, terms, f"addition-{index}")
        return Signal(
            id=entity_id,
            name=str(data.get("name") or product_name or entity_id),
            terms=terms,
            kind=KIND_ADDITION,
            meta={
                "source": "addition",
                "productIdentifier": product_identifier,
                "description": data.get("description"),
                "invoiceDescription": data.get("invoiceDescription"),
                "vendorSku": data.get("vendorSku"),
                "manufacturerPartNumber": data.get("manufacturerPartNumber"),
                "agreementId": data.get("agreementId"),
                "agreementName": entity.agreement_name,
            },
        )


def _entity_id(data: dict[str, Any], terms: tuple[str, ...], fallback: str) -> Any:
    value = first_present(data, "id", "identifier")
    if value is not None:
        return value
    return terms[0] if terms else fallback
