from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union


KIND_ADDITION = "addition"
KIND_CONFIGURATION = "configuration"

SignalKind = Literal["addition", "configuration"]


@dataclass(frozen=True)
class Addition:
    # ConnectWise agreement addition (billable line item under an agreement).
    data: dict[str, Any]
    agreement_name: str | None = None


@dataclass(frozen=True)
class Configuration:
    # ConnectWise configuration item.
    data: dict[str, Any]


@dataclass(frozen=True)
class ContractLine:
    # Halo billing-plan row under a client contract.
    data: dict[str, Any]
    contract_id: Any = None
    contract_name: str | None = None


@dataclass(frozen=True)
class Asset:
    # Halo configuration item attached to a client contract.
    data: dict[str, Any]
    contract_id: Any = None
    contract_name: str | None = None


RawEntity = Union[Addition, Configuration, ContractLine, Asset]


@dataclass(frozen=True)
class Signal:
    """A normalized, matchable unit derived from one raw PSA entity."""

    id: Any
    name: str
    terms: tuple[str, ...] = ()
    kind: SignalKind = KIND_ADDITION
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def entity_key(self) -> tuple[str, str]:
        # Exclusions and mappings key on (entity_type, str(entity_id)).
        return (self.kind, str(self.id))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "terms": list(self.terms),
            "kind": self.kind,
            "meta": dict(self.meta),
        }


@dataclass(frozen=True)
class CatalogProduct:
    id: int | None
    slug: str
    name: str
    vendor: str | None = None
    category: str | None = None
    description: str | None = None
    match_terms: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "vendor": self.vendor,
            "category": self.category,
            "description": self.description,
        }


@dataclass(frozen=True)
class MatchOverride:
    product_slug: str
    terms: tuple[str, ...]
    company_identifier: str | None = None


@dataclass(frozen=True)
class MatchExclusion:
    company_identifier: str
    entity_type: str
    entity_id: int | str


@dataclass(frozen=True)
class EntityMapping:
    company_identifier: str
    entity_type: str
    entity_id: int | str
    product_slug: str
