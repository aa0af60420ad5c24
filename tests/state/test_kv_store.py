"""Tests for the in-memory TTL backend"""

import pytest

from bridge_server.state.kv_store import MemoryBackend


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend(clock):
    return MemoryBackend(clock=clock)


@pytest.mark.asyncio
async def test_set_and_get(backend):
    await backend.set("session:a", "{}", ttl=60)
    assert await backend.get("session:a") == "{}"
    assert await backend.get("session:b") is None


@pytest.mark.asyncio
async def test_keys_expire(backend, clock):
    await backend.set("session:a", "{}", ttl=60)
    clock.now += 60
    assert await backend.get("session:a") is None


@pytest.mark.asyncio
async def test_set_refreshes_ttl(backend, clock):
    await backend.set("session:a", "1", ttl=60)
    clock.now += 50
    await backend.set("session:a", "2", ttl=60)
    clock.now += 50
    assert await backend.get("session:a") == "2"
    assert await backend.ttl("session:a") == pytest.approx(10)


@pytest.mark.asyncio
async def test_non_positive_ttl_rejected(backend):
    with pytest.raises(ValueError):
        await backend.set("k", "v", ttl=0)


@pytest.mark.asyncio
async def test_delete(backend):
    await backend.set("k", "v", ttl=10)
    assert await backend.delete("k") is True
    assert await backend.delete("k") is False


@pytest.mark.asyncio
async def test_keys_by_prefix_skips_expired(backend, clock):
    await backend.set("session:a", "1", ttl=10)
    await backend.set("session:b", "1", ttl=100)
    await backend.set("players:a", "[]", ttl=100)
    clock.now += 20
    assert await backend.keys("session:") == ["session:b"]


@pytest.mark.asyncio
async def test_purge_expired(backend, clock):
    await backend.set("a", "1", ttl=10)
    await backend.set("b", "1", ttl=10)
    await backend.set("c", "1", ttl=100)
    clock.now += 30
    assert await backend.purge_expired() == 2
    assert len(backend) == 1
    assert await backend.purge_expired() == 0
