"""
AnalyticsBuffer — batched, at-least-once cart telemetry.

    emit()  → append, schedule one flush if none is scheduled
    flush() → drain everything:
                signed in  → one batch record; on failure requeue at the front
                anonymous  → append to the durable offline queue
    set_identity(uid) → pull the offline queue in front of the buffer, flush

Events survive the anonymous → signed-in transition; a failed write followed
by a retry may deliver a batch twice.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from kungfu import Error, Ok, Result

from cartsync._types import Clock, now_ms
from cartsync.errors import CartError
from cartsync.model import AnalyticsEvent, Payload
from cartsync.observability import get_logger
from cartsync.store import KeyValueStore
from cartsync.timers import Debouncer

logger = get_logger("cartsync.analytics")

BATCH_RECORD_VERSION = 1

# ═══════════════════════════════════════════════════════════════════════════════
# Wire Shapes
# ═══════════════════════════════════════════════════════════════════════════════


def event_to_wire(event: AnalyticsEvent) -> Payload:
    return {"name": event.name, "payload": dict(event.payload), "ts": event.timestamp}


def event_from_wire(data: Mapping[str, Any]) -> AnalyticsEvent:
    return AnalyticsEvent(
        name=str(data["name"]),
        payload=dict(data.get("payload") or {}),
        timestamp=int(data.get("ts") or 0),
    )


def batch_record(events: Sequence[AnalyticsEvent], created_at: int) -> Payload:
    """The remote record one flush writes."""
    return {
        "events": [event_to_wire(e) for e in events],
        "count": len(events),
        "createdAt": created_at,
        "version": BATCH_RECORD_VERSION,
    }


# ═══════════════════════════════════════════════════════════════════════════════
# Collaborators
# ═══════════════════════════════════════════════════════════════════════════════


class EventSink(Protocol):
    """Remote destination for event batches (one record per call)."""

    async def write_batch(
        self, user_id: str, events: Sequence[AnalyticsEvent]
    ) -> Result[None, CartError]:
        ...


@dataclass(frozen=True, slots=True)
class AnalyticsScope:
    """Multi-tenant context stamped onto every payload."""

    seller_user_id: str | None = None
    site_id: str | None = None

    def enrich(self, payload: Mapping[str, Any] | None) -> dict[str, Any]:
        return {
            **(payload or {}),
            "sellerUserId": self.seller_user_id,
            "siteId": self.site_id,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Buffer
# ═══════════════════════════════════════════════════════════════════════════════


class AnalyticsBuffer:
    """
    Example:
        analytics = AnalyticsBuffer(sink, kv, flush_delay=2.0)
        analytics.emit("cart_add", {"productId": "p1", "qty": 1})
        await analytics.set_identity("u1")   # offline queue + buffer → sink
    """

    def __init__(
        self,
        sink: EventSink,
        kv: KeyValueStore,
        *,
        storage_key: str = "glow_cart_events_buffer_v1",
        flush_delay: float = 2.0,
        clock: Clock = now_ms,
        context: AnalyticsScope | None = None,
    ) -> None:
        self._sink = sink
        self._kv = kv
        self._storage_key = storage_key
        self._clock = clock
        self._scope = context or AnalyticsScope()
        self._buffer: list[AnalyticsEvent] = []
        self._user_id: str | None = None
        self._timer = Debouncer(flush_delay, self._flush_scheduled, name="analytics.flush")

    @property
    def identity(self) -> str | None:
        return self._user_id

    @property
    def scope(self) -> AnalyticsScope:
        return self._scope

    @property
    def buffered(self) -> list[AnalyticsEvent]:
        return list(self._buffer)

    @property
    def flush_scheduled(self) -> bool:
        return self._timer.pending

    def set_scope(self, scope: AnalyticsScope) -> None:
        self._scope = scope

    # ─── Emit ──────────────────────────────────────────────────────────────────

    def emit(self, name: str, payload: Mapping[str, Any] | None = None) -> None:
        self._buffer.append(
            AnalyticsEvent(name=name, payload=self._scope.enrich(payload), timestamp=self._clock())
        )
        if self._timer.pending:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet: the event stays buffered until the next flush.
            return
        self._timer.schedule()

    # ─── Flush ─────────────────────────────────────────────────────────────────

    async def _flush_scheduled(self) -> None:
        await self.flush()

    async def flush(self) -> Result[int, CartError]:
        """Drain the buffer. Ok(n) is the number of events sent to the sink."""
        self._timer.cancel()
        events, self._buffer = self._buffer, []
        if not events:
            return Ok(0)

        if self._user_id is None:
            self._queue_offline(events)
            return Ok(0)

        match await self._sink.write_batch(self._user_id, events):
            case Ok(_):
                logger.debug("analytics.flushed", count=len(events))
                return Ok(len(events))
            case Error(e):
                self._buffer[:0] = events
                logger.warning("analytics.flush_failed", count=len(events), error=str(e))
                return Error(e)

    # ─── Identity ──────────────────────────────────────────────────────────────

    async def set_identity(self, user_id: str | None) -> None:
        """Sign in (load offline queue, flush) or sign out (None)."""
        self._user_id = user_id
        if user_id is None:
            return
        queued = self._take_offline()
        if queued:
            self._buffer[:0] = queued
            logger.info("analytics.offline_queue_loaded", count=len(queued))
        if self._buffer:
            await self.flush()

    # ─── Offline Queue ─────────────────────────────────────────────────────────

    def _read_offline(self) -> list[AnalyticsEvent]:
        match self._kv.get(self._storage_key):
            case Ok(list(raw)):
                events: list[AnalyticsEvent] = []
                for item in raw:
                    try:
                        events.append(event_from_wire(item))
                    except (KeyError, TypeError, ValueError):
                        logger.warning("analytics.offline_event_malformed")
                return events
            case Ok(_):
                return []
            case Error(e):
                logger.warning("analytics.offline_read_failed", error=str(e))
                return []

    def _take_offline(self) -> list[AnalyticsEvent]:
        events = self._read_offline()
        if events:
            self._kv.delete(self._storage_key)
        return events

    def _queue_offline(self, events: list[AnalyticsEvent]) -> None:
        queued = [event_to_wire(e) for e in (*self._read_offline(), *events)]
        match self._kv.set(self._storage_key, queued):
            case Ok(_):
                logger.debug("analytics.queued_offline", count=len(events))
            case Error(e):
                # Keep them in memory rather than lose them.
                self._buffer[:0] = events
                logger.warning("analytics.offline_write_failed", error=str(e))


__all__ = (
    "BATCH_RECORD_VERSION",
    "event_to_wire",
    "event_from_wire",
    "batch_record",
    "EventSink",
    "AnalyticsScope",
    "AnalyticsBuffer",
)
