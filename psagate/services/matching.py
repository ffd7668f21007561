from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from psagate.domain.signals import CatalogProduct, EntityMapping, MatchExclusion, MatchOverride, Signal


REASON_MAPPING = "mapping"
REASON_NAME = "name"
REASON_TERM = "term"
REASON_TOKEN = "token"

_DASHES = re.compile("[\u2010-\u2015]")
_BRACKETS = re.compile(r"[()\[\]{}]")
_DISALLOWED = re.compile(r"[^a-z0-9\s.\-]")
_WHITESPACE = re.compile(r"\s+")
_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")

MIN_TOKEN_LENGTH = 2
# Two-letter codes (mx, s1) are too ambiguous to claim free text; they still match exactly.
MIN_CODE_TOKEN_LENGTH = 3


def normalize_term(value: Any) -> str:
    """Canonical form used for every comparison in the matcher."""
    if value is None:
        return ""
    text = str(value).lower()
    text = _DASHES.sub("-", text)
    text = _BRACKETS.sub(" ", text)
    text = _DISALLOWED.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def tokenize(normalized: str) -> list[str]:
    return [token for token in _TOKEN_SPLIT.split(normalized) if len(token) >= MIN_TOKEN_LENGTH]


@dataclass(frozen=True)
class MatchedSignal:
    signal: Signal
    product: CatalogProduct
    reason: str


@dataclass
class MatchReport:
    matched: list[MatchedSignal] = field(default_factory=list)
    unmatched: list[Signal] = field(default_factory=list)
    # Kept for counts only; excluded signals never appear in matched or unmatched.
    excluded: list[Signal] = field(default_factory=list)


def _applies(scope: str | None, company_identifier: str | None) -> bool:
    # Tenant-wide rows apply everywhere; company rows only to their company.
    return scope is None or scope == company_identifier


class _CatalogIndex:
    def __init__(
        self,
        catalog: list[CatalogProduct],
        override_terms: dict[str, list[str]],
    ) -> None:
        self.by_slug: dict[str, CatalogProduct] = {}
        self.by_name: dict[str, CatalogProduct] = {}
        self.by_term: dict[str, CatalogProduct] = {}
        self.tokens: list[tuple[CatalogProduct, set[str]]] = []
        # Products are indexed in catalog order and the first product to claim a key keeps it.
        for product in catalog:
            self.by_slug.setdefault(product.slug, product)
            name = normalize_term(product.name)
            slug = normalize_term(product.slug)
            for key in (name, slug):
                if key:
                    self.by_name.setdefault(key, product)
            terms = [*product.match_terms, *override_terms.get(product.slug, []), product.name, product.slug]
            product_tokens: set[str] = set(tokenize(name)) | set(tokenize(slug))
            for raw in terms:
                term = normalize_term(raw)
                if not term:
                    continue
                self.by_term.setdefault(term, product)
                term_tokens = tokenize(term)
                # Single-token terms are short codes worth matching inside free text.
                if len(term_tokens) == 1 and len(term_tokens[0]) >= MIN_CODE_TOKEN_LENGTH:
                    product_tokens.add(term_tokens[0])
            self.tokens.append((product, product_tokens))

    def token_hit(self, terms: list[str]) -> CatalogProduct | None:
        for term in terms:
            signal_tokens = tokenize(term)
            if not signal_tokens:
                continue
            for product, product_tokens in self.tokens:
                if any(token in product_tokens for token in signal_tokens):
                    return product
        return None


def match(
    signals: Iterable[Signal],
    catalog: Iterable[CatalogProduct],
    overrides: Iterable[MatchOverride],
    exclusions: Iterable[MatchExclusion],
    *,
    company_identifier: str | None,
    entity_mappings: Iterable[EntityMapping] | None = None,
) -> MatchReport:
    """Resolve each signal to at most one catalog product.

    Order per signal, first hit wins: exclusion, explicit entity mapping,
    exact name or slug, exact term, token overlap. Ties go to the earliest
    product in catalog order.
    """
    catalog = list(catalog)

    # Tenant-wide and company override terms are a plain union per product.
    override_terms: dict[str, list[str]] = {}
    for override in overrides:
        if _applies(override.company_identifier, company_identifier):
            override_terms.setdefault(override.product_slug, []).extend(override.terms)

    excluded_keys = {
        (exclusion.entity_type, str(exclusion.entity_id))
        for exclusion in exclusions
        if exclusion.company_identifier == company_identifier
    }
    mapped_slugs = {
        (mapping.entity_type, str(mapping.entity_id)): mapping.product_slug
        for mapping in entity_mappings or ()
        if mapping.company_identifier == company_identifier
    }

    index = _CatalogIndex(catalog, override_terms)
    report = MatchReport()

    for signal in signals:
        if signal.entity_key in excluded_keys:
            report.excluded.append(signal)
            continue

        terms = [term for term in (normalize_term(raw) for raw in signal.terms) if term]
        if not terms:
            report.unmatched.append(signal)
            continue

        mapped = mapped_slugs.get(signal.entity_key)
        if mapped is not None and mapped in index.by_slug:
            report.matched.append(MatchedSignal(signal, index.by_slug[mapped], REASON_MAPPING))
            continue

        name = normalize_term(signal.name)
        if name and name in index.by_name:
            report.matched.append(MatchedSignal(signal, index.by_name[name], REASON_NAME))
            continue

        hit = next((index.by_term[term] for term in terms if term in index.by_term), None)
        if hit is not None:
            report.matched.append(MatchedSignal(signal, hit, REASON_TERM))
            continue

        hit = index.token_hit(terms)
        if hit is not None:
            report.matched.append(MatchedSignal(signal, hit, REASON_TOKEN))
            continue

        report.unmatched.append(signal)

    return report
