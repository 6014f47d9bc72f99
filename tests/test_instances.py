"""
Tests for mirror registries, working-instance memory and the API key pool.
"""

import httpx
import pytest

from conftest import mock_client
from mirrortube.instances import (
    ApiKeyPool,
    WorkingInstanceMemory,
    build_registry,
    fetch_remote_host_list,
    registries_snapshot,
)
from mirrortube.storage import working_instances_key, working_instances_ts_key

HOSTS = ["https://one.test", "https://two.test", "https://three.test", "https://four.test"]


def test_promote_moves_host_to_front_without_duplicates(store, clock):
    registry = build_registry("invidious", HOSTS, store, ttl=600, cap=8, clock=clock)
    registry.promote("https://three.test")
    registry.promote("https://two.test")
    registry.promote("https://three.test")

    assert registry.working_hosts() == ["https://three.test", "https://two.test"]
    assert registry.ordered_hosts() == [
        "https://three.test", "https://two.test", "https://one.test", "https://four.test",
    ]


def test_memory_is_capped(store, clock):
    memory = WorkingInstanceMemory("piped", store, ttl=300, cap=3, clock=clock)
    for host in HOSTS:
        memory.promote(host)
    assert memory.current() == ["https://four.test", "https://three.test", "https://two.test"]


def test_memory_expires_after_ttl(store, clock):
    registry = build_registry("invidious", HOSTS, store, ttl=600, cap=8, clock=clock)
    registry.promote("https://four.test")
    assert registry.ordered_hosts()[0] == "https://four.test"

    clock.advance(599)
    assert registry.ordered_hosts()[0] == "https://four.test"

    clock.advance(2)
    assert registry.ordered_hosts() == HOSTS
    assert registry.working_hosts() == []


def test_backend_specific_ttls(store, clock):
    invidious = build_registry("invidious", HOSTS, store, ttl=600, cap=8, clock=clock)
    piped = build_registry("piped", HOSTS, store, ttl=300, cap=3, clock=clock)
    invidious.promote("https://two.test")
    piped.promote("https://two.test")

    clock.advance(400)
    assert invidious.working_hosts() == ["https://two.test"]
    assert piped.working_hosts() == []


def test_memory_persists_through_store(store, clock):
    WorkingInstanceMemory("invidious", store, ttl=600, clock=clock).promote("https://one.test")
    assert store.get_json(working_instances_key("invidious")) == ["https://one.test"]
    assert store.get_timestamp(working_instances_ts_key("invidious")) == clock.now

    fresh = WorkingInstanceMemory("invidious", store, ttl=600, clock=clock)
    assert fresh.current() == ["https://one.test"]


def test_memory_ignores_corrupt_state(store, clock):
    store.set_item(working_instances_key("invidious"), "[broken")
    memory = WorkingInstanceMemory("invidious", store, ttl=600, clock=clock)
    assert memory.ordered_hosts(HOSTS) == HOSTS


def test_replace_hosts_keeps_only_http_urls(store, clock):
    registry = build_registry("min_tube", HOSTS, store, ttl=600, cap=8, clock=clock)
    registry.replace_hosts(["https://new.test/", "ftp://old.test", 5, "https://new.test"])
    assert registry.hosts == ["https://new.test"]

    registry.replace_hosts(["not a url"])
    assert registry.hosts == ["https://new.test"]


def test_registries_snapshot(store, clock):
    registry = build_registry("piped", HOSTS, store, ttl=300, cap=3, clock=clock)
    registry.promote("https://one.test")
    snapshot = registries_snapshot({"piped": registry})
    assert snapshot == {"piped": {"hosts": HOSTS, "working": ["https://one.test"]}}


# ─── API key pool ────────────────────────────────────────────────────────────

def test_key_pool_rotates_and_wraps():
    pool = ApiKeyPool(["k1", "", "k2", "k3"])
    assert len(pool) == 3
    assert [pool.next_key() for _ in range(4)] == ["k1", "k2", "k3", "k1"]
    assert pool.cursor == 1


def test_key_pools_do_not_share_rotation():
    first, second = ApiKeyPool(["a", "b"]), ApiKeyPool(["a", "b"])
    first.next_key()
    assert second.next_key() == "a"


def test_empty_key_pool():
    assert ApiKeyPool([]).next_key() is None


# ─── Remote host lists ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fetch_remote_host_list():
    def handler(request):
        return httpx.Response(200, json=["https://a.test", 3, "https://b.test"])

    async with mock_client(handler) as client:
        hosts = await fetch_remote_host_list(client, "https://lists.test/servers.json", 2)
    assert hosts == ["https://a.test", "https://b.test"]


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, json=["https://a.test"]),
    httpx.Response(200, json={"servers": []}),
    httpx.Response(200, json=[]),
    httpx.Response(200, text="<html>"),
])
async def test_fetch_remote_host_list_unusable(response):
    async with mock_client(lambda request: response) as client:
        assert await fetch_remote_host_list(client, "https://lists.test/servers.json", 2) is None
