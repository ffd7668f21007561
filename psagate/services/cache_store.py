from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterable
from urllib.parse import quote


NOCACHE_PARAM = "nocache"


@dataclass(frozen=True)
class CacheEntry:
    status: int
    body: str
    content_type: str
    normalized_path: str
    tenant_id: str | None
    expires_at: float


def normalize_path(path: str) -> str:
    return (path or "").strip().lstrip("/")


def stable_query_string(params: Iterable[tuple[str, str]]) -> str:
    # Drop nocache and sort by key only; sort is stable so repeated keys keep their order.
    pairs = [(key, value) for key, value in params if key.lower() != NOCACHE_PARAM]
    pairs.sort(key=lambda pair: pair[0])
    return "&".join(f"{quote(key, safe='')}={quote(value, safe='')}" for key, value in pairs)


def build_cache_key(
    method: str,
    normalized_path: str,
    params: Iterable[tuple[str, str]],
    *,
    tenant_id: str | None = None,
) -> str:
    qs = stable_query_string(params)
    key = f"{method.upper()}:{normalized_path}{f'?{qs}' if qs else ''}"
    if tenant_id is not None:
        return f"{tenant_id}:{key}"
    return key


class CacheStore:
    """In-memory response cache for one upstream.

    Methods never await, so they are atomic under asyncio's cooperative
    scheduling. Threaded callers must wrap the store in a lock.
    """

    def __init__(self, *, time_source: Callable[[], float] | None = None) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._time = time_source or time.time

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at > self._time():
            return entry
        # Expired entries are dropped lazily on read.
        self._entries.pop(key, None)
        return None

    def set(
        self,
        key: str,
        *,
        status: int,
        body: str,
        content_type: str,
        normalized_path: str,
        ttl_s: float,
        tenant_id: str | None = None,
    ) -> CacheEntry:
        entry = CacheEntry(
            status=status,
            body=body,
            content_type=content_type,
            normalized_path=normalized_path,
            tenant_id=tenant_id,
            expires_at=self._time() + ttl_s,
        )
        self._entries[key] = entry
        return entry

    def invalidate_by_path(self, normalized_path: str, *, tenant_id: str | None = None) -> int:
        """Delete every entry for a path regardless of query string.

        With ``tenant_id`` set, only that tenant's partition is touched.
        """
        doomed = [
            key
            for key, entry in self._entries.items()
            if entry.normalized_path == normalized_path
            and (tenant_id is None or entry.tenant_id == tenant_id)
        ]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
