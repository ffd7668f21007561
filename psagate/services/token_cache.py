from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class TokenCacheEntry:
    access_token: str
    expires_at: float


class TokenCache:
    """Per-tenant access tokens for one OAuth-backed upstream."""

    def __init__(self, *, skew_s: float = 5.0, time_source: Callable[[], float] | None = None) -> None:
        self._entries: dict[str, TokenCacheEntry] = {}
        self._skew_s = skew_s
        self._time = time_source or time.time

    def get(self, tenant_id: str) -> str | None:
        entry = self._entries.get(tenant_id)
        if entry is None:
            return None
        # Tokens about to expire are treated as already expired.
        if entry.expires_at > self._time() + self._skew_s:
            return entry.access_token
        return None

    def set(self, tenant_id: str, access_token: str, expires_in_s: float) -> TokenCacheEntry:
        entry = TokenCacheEntry(access_token=access_token, expires_at=self._time() + max(0.0, expires_in_s))
        self._entries[tenant_id] = entry
        return entry

    def invalidate(self, tenant_id: str) -> None:
        self._entries.pop(tenant_id, None)

    def __len__(self) -> int:
        return len(self._entries)
