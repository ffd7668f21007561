from __future__ import annotations

from psagate.services.token_cache import TokenCache


def test_token_requires_skew_headroom() -> None:
    # A token inside the skew window is treated as expired.
    now = [100.0]
    cache = TokenCache(skew_s=5, time_source=lambda: now[0])
    cache.set("t1", "abc", 10)
    assert cache.get("t1") == "abc"
    now[0] = 104.9
    assert cache.get("t1") == "abc"
    now[0] = 105.0
    assert cache.get("t1") is None


def test_tokens_are_per_tenant_and_invalidatable() -> None:
    cache = TokenCache(time_source=lambda: 0.0)
    cache.set("t1", "one", 3600)
    cache.set("t2", "two", 3600)
    cache.invalidate("t1")
    assert cache.get("t1") is None
    assert cache.get("t2") == "two"
    assert len(cache) == 1
