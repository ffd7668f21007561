from __future__ import annotations

from psagate.core.errors import NotConfiguredError
from psagate.providers.psa.base import PsaAdapter, PsaKind
from psagate.providers.psa.connectwise import ConnectWiseAdapter
from psagate.providers.psa.halo import HaloAdapter


_ADAPTERS: dict[PsaKind, PsaAdapter] = {}


def register_adapter(adapter: PsaAdapter) -> None:
    _ADAPTERS[adapter.kind] = adapter


def get_adapter(kind: PsaKind | str) -> PsaAdapter:
    try:
        return _ADAPTERS[PsaKind(kind)]
    except (KeyError, ValueError) as exc:
        raise NotConfiguredError(f"Unsupported PSA: {kind}") from exc


register_adapter(ConnectWiseAdapter())
register_adapter(HaloAdapter())
