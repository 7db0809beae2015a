"""Tests for the document store backends and change feed."""

import threading
from unittest.mock import MagicMock

import pytest

from clinic_scheduler.core.exceptions import NotFoundException
from clinic_scheduler.core.redis_client import RedisEventPublisher
from clinic_scheduler.store.base import Query
from clinic_scheduler.store.feed import ChangeFeed, RawChangeEvent
from clinic_scheduler.store.memory import InMemoryDocumentStore

COLLECTION = "appointments"


def _doc(**overrides):
    data = {
        "user_id": "user-1",
        "doctor_id": "D1",
        "date": "Monday, 13 Jan 2025",
        "time_slot": "9:30 AM",
        "status": "Booked",
    }
    data.update(overrides)
    return data


@pytest.fixture(params=["memory", "sql"])
def any_store(request):
    """Run each test against both store backends."""
    if request.param == "memory":
        return InMemoryDocumentStore()
    return request.getfixturevalue("sql_store")


@pytest.mark.asyncio
async def test_create_and_get_document(any_store):
    """Test created documents get an id and can be read back."""
    created = await any_store.create_document(COLLECTION, _doc())
    assert created["id"]
    assert created["created_at"] is not None

    fetched = await any_store.get_document(COLLECTION, created["id"])
    assert fetched["doctor_id"] == "D1"
    assert fetched["status"] == "Booked"


@pytest.mark.asyncio
async def test_get_missing_document_raises(any_store):
    """Test missing documents raise NotFoundException."""
    with pytest.raises(NotFoundException):
        await any_store.get_document(COLLECTION, "missing")


@pytest.mark.asyncio
async def test_update_document_is_partial(any_store):
    """Test updates only touch the given fields."""
    created = await any_store.create_document(COLLECTION, _doc())

    updated = await any_store.update_document(
        COLLECTION,
        created["id"],
        {"status": "Confirmed", "confirmed_by": "doctor"},
    )

    assert updated["status"] == "Confirmed"
    assert updated["confirmed_by"] == "doctor"
    assert updated["time_slot"] == "9:30 AM"


@pytest.mark.asyncio
async def test_update_missing_document_raises(any_store):
    """Test updating a missing document raises NotFoundException."""
    with pytest.raises(NotFoundException):
        await any_store.update_document(COLLECTION, "missing", {"status": "Confirmed"})


@pytest.mark.asyncio
async def test_delete_document(any_store):
    """Test deletion removes the document."""
    created = await any_store.create_document(COLLECTION, _doc())
    await any_store.delete_document(COLLECTION, created["id"])

    with pytest.raises(NotFoundException):
        await any_store.get_document(COLLECTION, created["id"])
    with pytest.raises(NotFoundException):
        await any_store.delete_document(COLLECTION, created["id"])


@pytest.mark.asyncio
async def test_list_documents_filters(any_store):
    """Test equality, not-equal and id exclusion filters."""
    first = await any_store.create_document(COLLECTION, _doc())
    await any_store.create_document(COLLECTION, _doc(time_slot="10:00 AM"))
    await any_store.create_document(COLLECTION, _doc(time_slot="11:00 AM", status="Cancelled"))
    await any_store.create_document(COLLECTION, _doc(doctor_id="D2"))

    response = await any_store.list_documents(
        COLLECTION,
        [
            Query.equal("doctor_id", "D1"),
            Query.not_equal("status", "Cancelled"),
        ],
    )
    assert response.total == 2
    assert {doc["time_slot"] for doc in response.documents} == {"9:30 AM", "10:00 AM"}

    response = await any_store.list_documents(
        COLLECTION,
        [
            Query.equal("doctor_id", "D1"),
            Query.not_equal("status", "Cancelled"),
            Query.not_equal("$id", first["id"]),
        ],
    )
    assert [doc["time_slot"] for doc in response.documents] == ["10:00 AM"]


@pytest.mark.asyncio
async def test_not_equal_matches_absent_fields(any_store):
    """Test documents without a field count as not equal to a value."""
    await any_store.create_document(COLLECTION, _doc())

    response = await any_store.list_documents(
        COLLECTION,
        [Query.not_equal("cancelled_by", "patient")],
    )
    assert response.total == 1


@pytest.mark.asyncio
async def test_list_documents_or_order_and_paging(any_store):
    """Test logical OR, ordering, limit and offset."""
    for count, status in enumerate(["Booked", "Confirmed", "Completed", "Cancelled"]):
        await any_store.create_document(
            COLLECTION,
            _doc(time_slot=f"{count + 8}:00 AM", status=status, reschedule_count=count),
        )

    response = await any_store.list_documents(
        COLLECTION,
        [
            Query.or_(Query.equal("status", "Booked"), Query.equal("status", "Completed")),
            Query.order_desc("reschedule_count"),
        ],
    )
    assert [doc["status"] for doc in response.documents] == ["Completed", "Booked"]

    response = await any_store.list_documents(
        COLLECTION,
        [
            Query.greater_than_equal("reschedule_count", 1),
            Query.order_asc("reschedule_count"),
            Query.limit(2),
            Query.offset(1),
        ],
    )
    assert response.total == 3
    assert [doc["reschedule_count"] for doc in response.documents] == [2, 3]

    response = await any_store.list_documents(COLLECTION, [Query.less_than("reschedule_count", 1)])
    assert [doc["status"] for doc in response.documents] == ["Booked"]


@pytest.mark.asyncio
async def test_unknown_sql_attribute_raises(sql_store):
    """Test the SQL backend rejects attributes that are not columns."""
    with pytest.raises(ValueError):
        await sql_store.list_documents(COLLECTION, [Query.equal("favourite_colour", "blue")])


@pytest.mark.asyncio
async def test_writes_publish_change_events(any_store):
    """Test create, update and delete publish raw events to subscribers."""
    received: list[RawChangeEvent] = []
    unsubscribe = any_store.subscribe_to_collection(COLLECTION, received.append)

    created = await any_store.create_document(COLLECTION, _doc())
    await any_store.update_document(COLLECTION, created["id"], {"status": "Confirmed"})
    await any_store.delete_document(COLLECTION, created["id"])

    actions = [event.events[0].rsplit(".", 1)[-1] for event in received]
    assert actions == ["create", "update", "delete"]
    assert received[1].payload["status"] == "Confirmed"
    assert received[0].events[0] == f"collections.{COLLECTION}.documents.{created['id']}.create"

    unsubscribe()
    unsubscribe()
    await any_store.create_document(COLLECTION, _doc())
    assert len(received) == 3


@pytest.mark.asyncio
async def test_feed_isolates_failing_handlers():
    """Test a failing handler does not stop delivery to others."""
    feed = ChangeFeed()
    delivered = []

    def broken(event):
        raise RuntimeError("boom")

    async def working(event):
        delivered.append(event.payload["id"])

    feed.subscribe(COLLECTION, broken)
    feed.subscribe(COLLECTION, working)

    await feed.publish(COLLECTION, "update", {"id": "a1"})

    assert delivered == ["a1"]
    assert feed.subscriber_count(COLLECTION) == 2


@pytest.mark.asyncio
async def test_feed_mirrors_events_to_publisher():
    """Test events are mirrored to the configured publisher."""
    publisher = MagicMock()
    feed = ChangeFeed(publisher)

    event = await feed.publish(COLLECTION, "create", {"id": "a1"})

    publisher.publish.assert_called_once_with(COLLECTION, event)


@pytest.mark.asyncio
async def test_feed_publishes_off_the_event_loop_thread():
    """Test the blocking publisher runs in a worker thread."""
    threads = []
    publisher = MagicMock()
    publisher.publish.side_effect = lambda collection, event: threads.append(threading.get_ident())
    feed = ChangeFeed(publisher)

    await feed.publish(COLLECTION, "create", {"id": "a1"})

    assert len(threads) == 1
    assert threads[0] != threading.get_ident()


def test_redis_publisher_publishes_json():
    """Test RedisEventPublisher publishes serialized events."""
    mock_redis = MagicMock()
    publisher = RedisEventPublisher(redis_client=mock_redis, channel_prefix="clinic:changes")
    event = RawChangeEvent(events=["collections.appointments.documents.a1.update"], payload={"id": "a1"})

    result = publisher.publish(COLLECTION, event)

    assert result is True
    channel, message = mock_redis.publish.call_args.args
    assert channel == "clinic:changes:appointments"
    assert '"id": "a1"' in message


def test_redis_publisher_fails_open():
    """Test Redis errors are swallowed after logging."""
    mock_redis = MagicMock()
    mock_redis.publish.side_effect = ConnectionError("redis down")
    publisher = RedisEventPublisher(redis_client=mock_redis)
    event = RawChangeEvent(events=[], payload={"id": "a1"})

    assert publisher.publish(COLLECTION, event) is False
