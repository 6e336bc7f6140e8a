import asyncio

import pytest
from kungfu import Error, Ok

from cartsync.analytics import AnalyticsBuffer, AnalyticsScope, batch_record, event_from_wire
from cartsync.errors import CartErrors
from cartsync.model import AnalyticsEvent
from cartsync.store import MemoryKeyValueStore

QUEUE_KEY = "glow_cart_events_buffer_v1"


class ReadOnlyKeyValueStore(MemoryKeyValueStore):
    def set(self, key, value):
        return Error(CartErrors.storage("quota exceeded", key=key))


@pytest.fixture
def analytics(service, kv, clock):
    return AnalyticsBuffer(service, kv, flush_delay=0.01, clock=clock)


def event_names(record):
    return [e["name"] for e in record["events"]]


@pytest.mark.asyncio
async def test_anonymous_events_go_to_offline_queue(analytics, service, kv):
    analytics.emit("cart_add", {"productId": "p1"})
    analytics.emit("cart_remove", {"productId": "p1"})

    result = await analytics.flush()

    assert result.value == 0
    assert service.batches == {}
    assert [e["name"] for e in kv.get(QUEUE_KEY).value] == ["cart_add", "cart_remove"]


@pytest.mark.asyncio
async def test_sign_in_delivers_offline_queue_before_buffer(analytics, service, kv):
    analytics.emit("cart_add")
    await analytics.flush()
    analytics.emit("cart_apply_promo")

    await analytics.set_identity("u1")

    (record,) = service.batches["u1"]
    assert event_names(record) == ["cart_add", "cart_apply_promo"]
    assert record["count"] == 2
    assert kv.get(QUEUE_KEY).value is None
    assert analytics.buffered == []


@pytest.mark.asyncio
async def test_failed_write_requeues_in_front(analytics, service):
    await analytics.set_identity("u1")
    analytics.emit("cart_add")
    service.fail("write_batch")

    assert isinstance(await analytics.flush(), Error)

    analytics.emit("cart_remove")
    result = await analytics.flush()

    assert result.value == 2
    assert event_names(service.batches["u1"][0]) == ["cart_add", "cart_remove"]


@pytest.mark.asyncio
async def test_emit_schedules_a_single_flush(analytics, service):
    await analytics.set_identity("u1")

    analytics.emit("cart_add")
    analytics.emit("cart_add")
    assert analytics.flush_scheduled

    await asyncio.sleep(0.05)

    assert len(service.batches["u1"]) == 1
    assert service.batches["u1"][0]["count"] == 2


def test_emit_without_loop_only_buffers(service, kv, clock):
    analytics = AnalyticsBuffer(service, kv, clock=clock)

    analytics.emit("cart_add")

    assert not analytics.flush_scheduled
    assert [e.name for e in analytics.buffered] == ["cart_add"]


def test_scope_is_stamped_on_payloads(service, kv, clock):
    analytics = AnalyticsBuffer(service, kv, clock=clock)
    analytics.set_scope(AnalyticsScope(seller_user_id="seller-1", site_id="site-1"))

    analytics.emit("cart_add", {"productId": "p1"})

    assert analytics.buffered[0].payload == {
        "productId": "p1",
        "sellerUserId": "seller-1",
        "siteId": "site-1",
    }


@pytest.mark.asyncio
async def test_offline_write_failure_keeps_events_in_memory(service, clock):
    analytics = AnalyticsBuffer(service, ReadOnlyKeyValueStore(), clock=clock)
    analytics.emit("cart_add")

    assert isinstance(await analytics.flush(), Ok)

    assert [e.name for e in analytics.buffered] == ["cart_add"]


@pytest.mark.asyncio
async def test_sign_out_returns_to_offline_queue(analytics, service, kv):
    await analytics.set_identity("u1")
    await analytics.set_identity(None)

    analytics.emit("cart_clear")
    await analytics.flush()

    assert "u1" not in service.batches
    assert len(kv.get(QUEUE_KEY).value) == 1


def test_batch_record_shape():
    events = [AnalyticsEvent("cart_add", {"qty": 1}, 5)]

    record = batch_record(events, created_at=10)

    assert record == {
        "events": [{"name": "cart_add", "payload": {"qty": 1}, "ts": 5}],
        "count": 1,
        "createdAt": 10,
        "version": 1,
    }
    assert event_from_wire(record["events"][0]) == events[0]
