from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Protocol

import httpx

from psagate.core.errors import UpstreamError
from psagate.domain.signals import RawEntity, Signal


class PsaKind(str, Enum):
    CONNECTWISE = "connectwise"
    HALO = "halo"


@dataclass(frozen=True)
class PsaAdapterContext:
    # Base URL of this gateway; adapters call its proxy routes so caching and auth are shared.
    origin: str
    # Inbound identity headers (tenant, cookie) forwarded on every loopback call.
    headers: dict[str, str]
    client: httpx.AsyncClient
    # Empty for company lookups that run before a company is picked.
    company_identifier: str = ""


@dataclass(frozen=True)
class CompanyRef:
    """A PSA company as shown in the company picker."""

    identifier: str
    name: str
    subtitle: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"identifier": self.identifier, "name": self.name, "subtitle": self.subtitle}


@dataclass
class PsaAdapterResult:
    entities: list[RawEntity] = field(default_factory=list)
    meta: dict[str, int] = field(default_factory=dict)


class PsaAdapter(Protocol):
    kind: PsaKind

    async def fetch_company_entities(self, ctx: PsaAdapterContext) -> PsaAdapterResult:
        ...

    def extract_signals(self, result: PsaAdapterResult) -> list[Signal]:
        ...

    async def search_companies(self, ctx: PsaAdapterContext, query: str, *, page_size: int) -> list[CompanyRef]:
        ...

    async def resolve_company_name(self, ctx: PsaAdapterContext, identifier: str) -> str | None:
        ...


def lookup(data: Any, dotted: str) -> Any:
    """Read ``a.b.c`` from nested dicts, returning None on any gap."""
    current = data
    for part in dotted.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def first_present(data: Any, *paths: str) -> Any:
    for path in paths:
        value = lookup(data, path)
        if value is not None:
            return value
    return None


def collect_terms(values: Iterable[Any]) -> tuple[str, ...]:
    # Lower-case non-blank strings; first occurrence wins.
    seen: dict[str, None] = {}
    for value in values:
        if isinstance(value, str) and value.strip():
            seen.setdefault(value.lower(), None)
    return tuple(seen)


def error_message(response: httpx.Response, fallback: str) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or fallback
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return fallback


def surface_failure(response: httpx.Response, fallback: str) -> UpstreamError:
    # Client-correctable statuses pass through; everything else is reported as 500.
    status = response.status_code if response.status_code in {400, 401} else 500
    return UpstreamError(error_message(response, fallback), status_code=status)
