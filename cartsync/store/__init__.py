"""
Store — local cart state and durable key-value persistence.

    from cartsync import store as S

    kv = S.SQLAlchemyKeyValueStore.from_url("sqlite:///cart.db")
    cart = S.LocalCartStore(kv, events=analytics)
    cart.load()
    cart.add_item(product, quantity=2)
"""

from __future__ import annotations

from cartsync.store._kv import (
    KeyValueStore,
    MemoryKeyValueStore,
    FileKeyValueStore,
    KeyValueEntry,
    SQLAlchemyKeyValueStore,
)
from cartsync.store._cart import (
    STORAGE_SCHEMA,
    ChangeOrigin,
    CartState,
    CartChange,
    Listener,
    client_id,
    LocalCartStore,
)

__all__ = (
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
    "KeyValueEntry",
    "SQLAlchemyKeyValueStore",
    "STORAGE_SCHEMA",
    "ChangeOrigin",
    "CartState",
    "CartChange",
    "Listener",
    "client_id",
    "LocalCartStore",
)
