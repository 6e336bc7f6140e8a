"""
Analytics — buffered cart telemetry with an offline queue.

    from cartsync import analytics as A

    buffer = A.AnalyticsBuffer(sink, kv)
    buffer.emit("cart_add", {"productId": "p1"})
"""

from __future__ import annotations

from cartsync.analytics._buffer import (
    BATCH_RECORD_VERSION,
    event_to_wire,
    event_from_wire,
    batch_record,
    EventSink,
    AnalyticsScope,
    AnalyticsBuffer,
)

__all__ = (
    "BATCH_RECORD_VERSION",
    "event_to_wire",
    "event_from_wire",
    "batch_record",
    "EventSink",
    "AnalyticsScope",
    "AnalyticsBuffer",
)
