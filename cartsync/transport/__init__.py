"""
Transport — the cart service over HTTP, and an in-process stand-in.

    from cartsync import transport as T

    api = T.HttpCartApi(settings)
    service = T.InMemoryCartService(products=[...])
"""

from __future__ import annotations

from cartsync.transport._http import (
    Envelope,
    SyncResponse,
    ValidateResponse,
    EstimateResponse,
    OrderResponse,
    SessionResponse,
    SellerAccountResponse,
    HttpCartApi,
)
from cartsync.transport._memory import TOMBSTONE_HISTORY, StoredOrder, InMemoryCartService

__all__ = (
    # HTTP
    "Envelope",
    "SyncResponse",
    "ValidateResponse",
    "EstimateResponse",
    "OrderResponse",
    "SessionResponse",
    "SellerAccountResponse",
    "HttpCartApi",
    # In-process
    "TOMBSTONE_HISTORY",
    "StoredOrder",
    "InMemoryCartService",
)
