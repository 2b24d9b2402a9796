# tests/test_expiring_store.py
import asyncio
import json
from datetime import datetime, timedelta

import pytest

from relaybot.services.expiring_store import Entry, ExpiringStore
from relaybot.storage.backend import BackendError, MemoryBackend


def _encode(entry):
    return json.dumps({
        "value": entry.value,
        "created_at": entry.created_at.isoformat(),
        "expires_at": entry.expires_at.isoformat(),
        "owner_id": entry.owner_id,
    }).encode()


def _decode(raw):
    data = json.loads(raw)
    return Entry(
        value=data["value"],
        created_at=datetime.fromisoformat(data["created_at"]),
        expires_at=datetime.fromisoformat(data["expires_at"]),
        owner_id=data["owner_id"],
    )


def linked_store(backend, clock, ttl=timedelta(hours=1)):
    return ExpiringStore(ttl=ttl, name="test", backend=backend, prefix="things",
                         encode=_encode, decode=_decode, clock=clock)


class FailingBackend(MemoryBackend):
    async def put(self, key, body, metadata=None):
        raise BackendError("backend down")

    async def delete(self, key):
        raise BackendError("backend down")


@pytest.mark.asyncio
async def test_put_then_get(clock):
    # A value written with put() is readable until its TTL runs out.
    s = ExpiringStore(ttl=timedelta(minutes=5), clock=clock)
    entry = await s.put("k", "v", owner_id=3)
    assert await s.get("k") == "v"
    assert entry.expires_at - entry.created_at == timedelta(minutes=5)
    assert entry.owner_id == 3


@pytest.mark.asyncio
async def test_expiry_boundary(clock):
    # Live for every t < t0 + ttl, absent from t0 + ttl on.
    s = ExpiringStore(ttl=timedelta(minutes=5), clock=clock)
    await s.put("k", "v")
    clock.advance(minutes=5, microseconds=-1)
    assert await s.get("k") == "v"
    clock.advance(microseconds=1)
    assert await s.get("k") is None


@pytest.mark.asyncio
async def test_expired_entry_is_deleted_on_read(clock):
    # Reading an expired entry removes it from memory right away.
    s = ExpiringStore(ttl=timedelta(minutes=1), clock=clock)
    await s.put("k", "v")
    clock.advance(minutes=2)
    assert "k" in s
    assert await s.get("k") is None
    assert "k" not in s


@pytest.mark.asyncio
async def test_put_overwrites_and_resets_expiry(clock):
    # After N puts to the same key exactly one entry exists, it holds the last value,
    # and its expiry is measured from the last write.
    s = ExpiringStore(ttl=timedelta(minutes=30), clock=clock)
    for i in range(5):
        await s.put("user_1", f"v{i}")
        clock.advance(minutes=20)
    assert len(s) == 1
    assert await s.get("user_1") == "v4"
    clock.advance(minutes=10)
    assert await s.get("user_1") is None


@pytest.mark.asyncio
async def test_delete_is_idempotent(clock, backend):
    # Deleting twice (or deleting a missing key) is not an error.
    s = linked_store(backend, clock)
    await s.put("k", "v")
    await s.delete("k")
    await s.delete("k")
    await s.delete("never-existed")
    assert await s.get("k") is None
    assert "things/k.json" not in backend


@pytest.mark.asyncio
async def test_get_entry_returns_a_copy(clock):
    # Callers get frozen entries; mutating them is impossible.
    s = ExpiringStore(ttl=timedelta(minutes=5), clock=clock)
    await s.put("k", "v")
    entry = await s.get_entry("k")
    with pytest.raises(Exception):
        entry.value = "changed"
    assert await s.get("k") == "v"


def test_ttl_must_be_positive(clock):
    with pytest.raises(ValueError):
        ExpiringStore(ttl=timedelta(0), clock=clock)


def test_backend_needs_codec(clock, backend):
    with pytest.raises(ValueError):
        ExpiringStore(ttl=timedelta(minutes=1), backend=backend, clock=clock)


@pytest.mark.asyncio
async def test_write_through_to_backend(clock, backend):
    # put() mirrors the entry to "<prefix>/<key>.json".
    s = linked_store(backend, clock)
    await s.put("abc", "payload", owner_id=1)
    stored = json.loads(await backend.get("things/abc.json"))
    assert stored["value"] == "payload"
    assert stored["owner_id"] == 1


@pytest.mark.asyncio
async def test_backend_failure_does_not_roll_back_memory(clock, caplog_info):
    # A backend outage is logged; the in-memory write still happens.
    s = linked_store(FailingBackend(), clock)
    await s.put("k", "v")
    assert await s.get("k") == "v"
    await s.delete("k")
    assert await s.get("k") is None
    assert "failed to persist" in caplog_info.text


@pytest.mark.asyncio
async def test_read_through_populates_memory(clock, backend):
    # A fresh store (as after a restart) finds the entry in the backend.
    first = linked_store(backend, clock)
    await first.put("k", "v")
    second = linked_store(backend, clock)
    assert "k" not in second
    entry = await second.load("k")
    assert entry is not None and entry.value == "v"
    assert "k" in second


@pytest.mark.asyncio
async def test_read_through_expired_deletes_backend_copy(clock, backend):
    first = linked_store(backend, clock)
    await first.put("k", "v")
    clock.advance(hours=2)
    second = linked_store(backend, clock)
    assert await second.load("k") is None
    assert "things/k.json" not in backend


@pytest.mark.asyncio
async def test_read_through_ignores_malformed_object(clock, backend, caplog_info):
    s = linked_store(backend, clock)
    await backend.put("things/bad.json", b"{not json")
    assert await s.load("bad") is None
    assert "malformed" in caplog_info.text


@pytest.mark.asyncio
async def test_sweep_removes_expired_from_memory_and_backend(clock, backend):
    s = linked_store(backend, clock, ttl=timedelta(minutes=10))
    await s.put("old", "1")
    clock.advance(minutes=5)
    await s.put("new", "2")
    clock.advance(minutes=6)
    removed = await s.sweep()
    assert removed == 1
    assert "old" not in s and "new" in s
    assert "things/old.json" not in backend
    assert "things/new.json" in backend


@pytest.mark.asyncio
async def test_sweep_continues_when_backend_fails(clock):
    s = linked_store(FailingBackend(), clock, ttl=timedelta(minutes=1))
    await s.put("a", "1")
    await s.put("b", "2")
    clock.advance(minutes=2)
    assert await s.sweep() == 2
    assert len(s) == 0


@pytest.mark.asyncio
async def test_load_all_from_backend(clock, backend):
    # Live objects are loaded, expired ones deleted, foreign keys ignored.
    s = linked_store(backend, clock, ttl=timedelta(minutes=10))
    await s.put("expired", "x")
    clock.advance(minutes=8)
    await s.put("live", "y")
    await backend.put("things/nested/key.json", b"{}")
    clock.advance(minutes=5)

    fresh = linked_store(backend, clock, ttl=timedelta(minutes=10))
    assert await fresh.load_all_from_backend() == 1
    assert await fresh.get("live") == "y"
    assert "things/expired.json" not in backend


@pytest.mark.asyncio
async def test_entries_for_owner(clock):
    s = ExpiringStore(ttl=timedelta(minutes=5), clock=clock)
    await s.put("a", "1", owner_id=1)
    await s.put("b", "2", owner_id=2)
    await s.put("c", "3", owner_id=1)
    assert sorted(await s.entries_for_owner(1)) == ["a", "c"]


@pytest.mark.asyncio
async def test_sweeper_task_runs_and_cancels(clock, monkeypatch):
    # run_sweeper loops until cancelled and sweeps on every tick.
    s = ExpiringStore(ttl=timedelta(minutes=1), clock=clock)
    await s.put("k", "v")
    clock.advance(minutes=2)

    real_sleep = asyncio.sleep

    async def fast_sleep(_seconds):
        await real_sleep(0)

    monkeypatch.setattr("relaybot.services.expiring_store.asyncio.sleep", fast_sleep)
    task = asyncio.create_task(s.run_sweeper(timedelta(minutes=10)))
    for _ in range(5):
        await real_sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(s) == 0


@pytest.mark.asyncio
async def test_concurrent_puts_and_gets(clock):
    # Concurrent writers and readers on one store never corrupt it.
    s = ExpiringStore(ttl=timedelta(minutes=5), clock=clock)

    async def writer(i):
        await s.put(f"k{i % 3}", f"v{i}")

    async def reader(i):
        await s.get(f"k{i % 3}")

    await asyncio.gather(*(writer(i) for i in range(30)), *(reader(i) for i in range(30)))
    assert len(s) == 3


@pytest.mark.asyncio
async def test_explicit_zero_ttl_is_rejected(clock):
    s = ExpiringStore(ttl=timedelta(minutes=5), clock=clock)
    with pytest.raises(ValueError):
        await s.put("k", "v", ttl=timedelta(0))
    assert "k" not in s


@pytest.mark.asyncio
async def test_len_counts_live_entries_only(clock):
    s = ExpiringStore(ttl=timedelta(minutes=5), clock=clock)
    await s.put("short", "1", ttl=timedelta(minutes=1))
    await s.put("long", "2")
    assert len(s) == 2
    clock.advance(minutes=2)
    # "short" is still held until swept, but no longer counted
    assert "short" in s
    assert len(s) == 1


@pytest.mark.asyncio
async def test_read_through_ignores_timezone_less_timestamps(clock, backend, caplog_info):
    s = linked_store(backend, clock)
    naive = json.dumps({
        "value": "v",
        "created_at": "2024-05-01T12:00:00",
        "expires_at": "2024-05-01T16:00:00",
        "owner_id": None,
    }).encode()
    await backend.put("things/naive.json", naive)
    assert await s.load("naive") is None
    assert await s.load_all_from_backend() == 0
    assert "without a timezone" in caplog_info.text
