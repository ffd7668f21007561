from __future__ import annotations

from psagate.services.cache_store import CacheStore, build_cache_key, normalize_path, stable_query_string


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_cache_key_ignores_param_order_and_nocache() -> None:
    # Semantically identical requests must collapse to one key.
    first = build_cache_key("get", "company/companies", [("b", "2"), ("a", "1")])
    second = build_cache_key("GET", "company/companies", [("a", "1"), ("nocache", "false"), ("b", "2")])
    assert first == second == "GET:company/companies?a=1&b=2"


def test_cache_key_keeps_repeated_values_in_order() -> None:
    # Sorting is by key only, so repeated keys keep their relative order.
    qs = stable_query_string([("z", "1"), ("tag", "b"), ("tag", "a"), ("NoCache", "1")])
    assert qs == "tag=b&tag=a&z=1"


def test_cache_key_encodes_values_and_prefixes_tenant() -> None:
    key = build_cache_key("GET", "reviews/", [("q", "a b&c")], tenant_id="t1")
    assert key == "t1:GET:reviews/?q=a%20b%26c"
    assert build_cache_key("GET", "reviews/", []) == "GET:reviews/"


def test_normalize_path_strips_leading_slashes() -> None:
    assert normalize_path("//system/info ") == "system/info"
    assert normalize_path("") == ""


def test_entries_expire_lazily() -> None:
    # Expired entries are invisible and dropped on read.
    clock = FakeClock()
    store = CacheStore(time_source=clock)
    store.set("k", status=200, body="{}", content_type="application/json", normalized_path="p", ttl_s=10)
    assert store.get("k") is not None
    clock.now += 10
    assert store.get("k") is None
    assert len(store) == 0


def test_invalidate_by_path_drops_every_query_variant() -> None:
    store = CacheStore(time_source=FakeClock())
    for key, path, tenant in (
        ("t1:GET:a?x=1", "a", "t1"),
        ("t1:GET:a?x=2", "a", "t1"),
        ("t2:GET:a", "a", "t2"),
        ("t1:GET:b", "b", "t1"),
    ):
        store.set(key, status=200, body="", content_type="text/plain", normalized_path=path, ttl_s=60, tenant_id=tenant)

    assert store.invalidate_by_path("a", tenant_id="t1") == 2
    assert store.get("t2:GET:a") is not None
    assert store.invalidate_by_path("a") == 1
    assert store.get("t1:GET:b") is not None
