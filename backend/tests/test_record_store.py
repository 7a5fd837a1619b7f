"""
Record store tests — queries, partial updates and live subscriptions.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from app.services.record_store import (
    PATIENTS,
    DocumentNotFound,
    InvalidField,
    StoreError,
    utc_timestamp,
)


def _patient(**overrides):
    fields = {
        "name": "A",
        "age": "40",
        "blood_pressure": "120/80",
        "disease": "flu",
        "prescription": "rest",
        "doctor_id": "D1",
        "created_at": "2025-01-01T00:00:00.000Z",
        "last_visit_date": "2025-01-01T00:00:00.000Z",
    }
    fields.update(overrides)
    return fields


def test_utc_timestamp_format():
    stamp = utc_timestamp(datetime(2025, 1, 31, 9, 15, 2, 123456, tzinfo=timezone.utc))
    assert stamp == "2025-01-31T09:15:02.123Z"


def test_utc_timestamp_treats_naive_as_utc():
    assert utc_timestamp(datetime(2025, 1, 31, 9, 15, 2)) == "2025-01-31T09:15:02.000Z"


@pytest.mark.asyncio
async def test_add_assigns_id_when_absent(store):
    record = await store.add(PATIENTS, _patient())

    assert record["id"]
    assert await store.get(PATIENTS, record["id"]) == record


@pytest.mark.asyncio
async def test_add_rejects_duplicate_id(store):
    await store.add(PATIENTS, _patient(), record_id="P123")

    with pytest.raises(StoreError):
        await store.add(PATIENTS, _patient(), record_id="P123")


@pytest.mark.asyncio
async def test_query_by_fields_scopes_on_every_filter(store):
    await store.add(PATIENTS, _patient(doctor_id="D1"), record_id="P123")
    await store.add(PATIENTS, _patient(doctor_id="D2"), record_id="P456")

    assert [r["id"] for r in await store.query_by_fields(PATIENTS, {"doctor_id": "D1", "id": "P123"})] == ["P123"]
    assert await store.query_by_fields(PATIENTS, {"doctor_id": "D2", "id": "P123"}) == []
    assert await store.query_by_fields(PATIENTS, {"doctor_id": "D1", "id": "P999"}) == []


@pytest.mark.asyncio
async def test_query_rejects_unknown_field(store):
    with pytest.raises(InvalidField):
        await store.query_by_fields(PATIENTS, {"colour": "blue"})


@pytest.mark.asyncio
async def test_unknown_collection(store):
    with pytest.raises(StoreError):
        await store.get("invoices", "X")


@pytest.mark.asyncio
async def test_update_partial_touches_only_given_fields(store):
    await store.add(PATIENTS, _patient(), record_id="P123")

    updated = await store.update_partial(PATIENTS, "P123", {"name": "B"})

    assert updated["name"] == "B"
    assert updated["disease"] == "flu"
    assert (await store.get(PATIENTS, "P123"))["name"] == "B"


@pytest.mark.asyncio
async def test_update_partial_refuses_to_change_id(store):
    await store.add(PATIENTS, _patient(), record_id="P123")

    with pytest.raises(InvalidField):
        await store.update_partial(PATIENTS, "P123", {"id": "P999"})
    assert await store.get(PATIENTS, "P123") is not None


@pytest.mark.asyncio
async def test_update_partial_missing_record(store):
    with pytest.raises(DocumentNotFound):
        await store.update_partial(PATIENTS, "P999", {"name": "B"})


@pytest.mark.asyncio
async def test_subscribe_delivers_current_then_changes(store):
    await store.add(PATIENTS, _patient(), record_id="P123")
    seen = []

    sub = await store.subscribe(PATIENTS, "P123", lambda snap: seen.append(snap["name"]))
    await store.update_partial(PATIENTS, "P123", {"name": "B"})
    await store.update_partial(PATIENTS, "P123", {"name": "C"})

    assert seen == ["A", "B", "C"]
    sub.unsubscribe()
    await store.update_partial(PATIENTS, "P123", {"name": "D"})
    assert seen == ["A", "B", "C"]
    assert store.feed.listener_count() == 0


@pytest.mark.asyncio
async def test_subscribe_to_missing_record(store):
    with pytest.raises(DocumentNotFound):
        await store.subscribe(PATIENTS, "P999", lambda snap: None)
    assert store.feed.listener_count() == 0


@pytest.mark.asyncio
async def test_record_locks_are_dropped_when_idle(store):
    await store.add(PATIENTS, _patient(), record_id="P123")
    sub = await store.subscribe(PATIENTS, "P123", lambda snap: None)
    await store.update_partial(PATIENTS, "P123", {"name": "B"})
    with pytest.raises(DocumentNotFound):
        await store.update_partial(PATIENTS, "P999", {"name": "B"})

    assert store._locks == {}
    assert store._lock_users == {}
    sub.unsubscribe()


@pytest.mark.asyncio
async def test_record_lock_serialises_concurrent_writers(store):
    await store.add(PATIENTS, _patient(), record_id="P123")
    seen = []
    gate = asyncio.Event()

    async def slow_listener(snap):
        seen.append(snap["name"])
        if snap["name"] == "B":
            await gate.wait()

    await store.subscribe(PATIENTS, "P123", slow_listener)
    first = asyncio.create_task(store.update_partial(PATIENTS, "P123", {"name": "B"}))
    second = asyncio.create_task(store.update_partial(PATIENTS, "P123", {"name": "C"}))
    while "B" not in seen:
        await asyncio.sleep(0)

    assert len(store._locks) == 1
    gate.set()
    await asyncio.gather(first, second)

    assert seen == ["A", "B", "C"]
    assert store._locks == {}
