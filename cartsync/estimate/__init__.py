"""
Estimate — debounced shipping/tax estimates and the abandoned-cart heartbeat.

    from cartsync import estimate as E

    estimates = E.EstimateDebouncer(api, store, delay=0.6)
    estimates.start()
"""

from __future__ import annotations

from cartsync.estimate._estimate import (
    EstimateRequest,
    Estimate,
    NO_ESTIMATE,
    EstimateApi,
    HeartbeatApi,
    EstimateDebouncer,
    HeartbeatMonitor,
)

__all__ = (
    "EstimateRequest",
    "Estimate",
    "NO_ESTIMATE",
    "EstimateApi",
    "HeartbeatApi",
    "EstimateDebouncer",
    "HeartbeatMonitor",
)
