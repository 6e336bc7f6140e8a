"""
SyncCoordinator — local store ↔ remote versioned document.

    Idle ──local change──▶ PendingPush ──debounce──▶ Pushing ──▶ Idle
                              ▲   │ (reschedule replaces)
                              └───┘

Pushes never overlap: a push requested while one is in flight waits for its
ack, then sends the latest state against the acknowledged version.

Independently, a Subscribed pull channel delivers snapshots:
- own echo while a push awaits its echo → discarded, once per push
- version <= last seen               → dropped
- otherwise                          → adopted (origin REMOTE)

Conflict rule: last writer wins by version. Two tabs editing between pushes
can lose one tab's intermediate change; no merge-on-conflict is attempted.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import Protocol

from kungfu import Error, Ok, Result

from cartsync._types import EventEmitter, LineKey, Unsubscribe
from cartsync.errors import CartError, CartErrors
from cartsync.model import (
    CartSnapshot,
    DiscountCode,
    LineItem,
    Payload,
    discount_to_wire,
    line_to_wire,
)
from cartsync.observability import get_logger
from cartsync.store import CartChange, ChangeOrigin, LocalCartStore
from cartsync.sync._merge import MergeKind, MergeOutcome, adopt_remote_lines, resolve_merge
from cartsync.timers import Debouncer

logger = get_logger("cartsync.sync")

# ═══════════════════════════════════════════════════════════════════════════════
# Collaborators
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SyncRequest:
    """Push payload, built at send time from the latest local state."""

    user_id: str
    client_id: str
    items: tuple[LineItem, ...]
    removed_keys: tuple[LineKey, ...]
    discounts: tuple[DiscountCode, ...]
    currency: str
    base_version: int

    def to_payload(self) -> Payload:
        return {
            "userId": self.user_id,
            "clientId": self.client_id,
            "items": [line_to_wire(i) for i in self.items],
            "removedKeys": list(self.removed_keys),
            "discounts": [discount_to_wire(d) for d in self.discounts],
            "currency": self.currency,
            "baseVersion": self.base_version,
        }


class CartApi(Protocol):
    """`POST /cart/sync` — returns the server's merged snapshot."""

    async def sync(self, request: SyncRequest) -> Result[CartSnapshot, CartError]:
        ...


type SnapshotCallback = Callable[[CartSnapshot], None]


class DocumentChannel(Protocol):
    """Realtime view of the remote cart document for one identity."""

    def subscribe(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        ...

    async def fetch(self, user_id: str) -> Result[CartSnapshot | None, CartError]:
        ...


class SyncState(Enum):
    IDLE = auto()
    PENDING_PUSH = auto()
    PUSHING = auto()


# ═══════════════════════════════════════════════════════════════════════════════
# SyncCoordinator
# ═══════════════════════════════════════════════════════════════════════════════


class SyncCoordinator:
    """
    Example:
        sync = SyncCoordinator(store, api, channel, client_id="c_ab12", push_delay=0.7)
        await sync.merge_on_sign_in("u1")
        sync.attach("u1")
        store.add_item(product)     # → one push ~0.7s later
        sync.detach()
    """

    def __init__(
        self,
        store: LocalCartStore,
        api: CartApi,
        channel: DocumentChannel,
        *,
        client_id: str,
        push_delay: float = 0.7,
        events: EventEmitter | None = None,
    ) -> None:
        self._store = store
        self._api = api
        self._channel = channel
        self._client_id = client_id
        self._events = events
        self._push = Debouncer(push_delay, self._push_scheduled, name="cart.push")

        self._user_id: str | None = None
        self._last_seen = store.state.server_version
        self._echoes_pending = 0
        self._push_lock = asyncio.Lock()
        self._merged_for: str | None = None
        self._unsub_store: Unsubscribe | None = None
        self._unsub_channel: Unsubscribe | None = None

    # ─── Introspection ─────────────────────────────────────────────────────────

    @property
    def state(self) -> SyncState:
        if self._push_lock.locked():
            return SyncState.PUSHING
        if self._push.pending:
            return SyncState.PENDING_PUSH
        return SyncState.IDLE

    @property
    def subscribed(self) -> bool:
        return self._unsub_channel is not None

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def last_seen_version(self) -> int:
        return self._last_seen

    @property
    def echo_pending(self) -> bool:
        return self._echoes_pending > 0

    # ─── Lifecycle ─────────────────────────────────────────────────────────────

    def attach(self, user_id: str) -> None:
        """Start pushing local changes and pulling remote ones for `user_id`."""
        if self._user_id == user_id and self.subscribed:
            return
        if self._user_id is not None:
            self.detach()

        self._user_id = user_id
        self._unsub_store = self._store.subscribe(self._on_store_change)
        self._unsub_channel = self._channel.subscribe(user_id, self.on_remote)
        logger.info("cart.sync.attached", user_id=user_id, last_seen=self._last_seen)

    def detach(self) -> None:
        """Stop both directions, drop any pending push, forget the merge."""
        self._push.cancel()
        if self._unsub_store is not None:
            self._unsub_store()
            self._unsub_store = None
        if self._unsub_channel is not None:
            self._unsub_channel()
            self._unsub_channel = None
        if self._user_id is not None:
            logger.info("cart.sync.detached", user_id=self._user_id)
        self._user_id = None
        self._merged_for = None
        self._echoes_pending = 0

    # ─── Push ──────────────────────────────────────────────────────────────────

    def _on_store_change(self, change: CartChange) -> None:
        pushed = change.origin in (ChangeOrigin.LOCAL, ChangeOrigin.VALIDATION)
        if pushed and self._user_id is not None:
            self._push.schedule()

    async def _push_scheduled(self) -> None:
        await self.push_now()

    async def push_now(
        self,
        *,
        user_id: str | None = None,
        base_version: int | None = None,
    ) -> Result[CartSnapshot, CartError]:
        """
        Push the current local state now.

        Waits for any push already in flight. The payload is built once the
        previous ack is in, so it always reflects the latest state and the
        acknowledged version. Failures put the removal keys back; the next
        local change retries.
        """
        uid = user_id or self._user_id
        if uid is None:
            return Error(CartErrors.invalid("push without identity"))

        async with self._push_lock:
            self._push.cancel()
            state = self._store.state
            removed = self._store.take_removed_keys()
            request = SyncRequest(
                user_id=uid,
                client_id=self._client_id,
                items=state.items,
                removed_keys=tuple(removed),
                discounts=state.discounts,
                currency=state.currency,
                base_version=self._last_seen if base_version is None else base_version,
            )

            self._echoes_pending += 1
            logger.debug(
                "cart.push.sent",
                base_version=request.base_version,
                items=len(request.items),
                removed=len(request.removed_keys),
            )
            result = await self._api.sync(request)

        match result:
            case Ok(snapshot):
                if snapshot.version > self._last_seen:
                    self._last_seen = snapshot.version
                    self._store.set_server_version(snapshot.version)
                logger.info("cart.push.acknowledged", version=snapshot.version)
                self._emit("cart_synced", {"itemCount": len(state.items), "version": snapshot.version})
                return Ok(snapshot)
            case Error(e):
                self._echoes_pending = max(0, self._echoes_pending - 1)
                self._store.restore_removed_keys(removed)
                logger.warning("cart.push.failed", error=str(e))
                return Error(e)

    # ─── Pull ──────────────────────────────────────────────────────────────────

    def on_remote(self, snapshot: CartSnapshot) -> bool:
        """Handle one pulled snapshot. Returns True if it was adopted."""
        if self._echoes_pending and snapshot.last_writer_client_id == self._client_id:
            self._echoes_pending -= 1
            logger.debug("cart.pull.echo_suppressed", version=snapshot.version)
            return False

        if snapshot.version <= self._last_seen:
            logger.debug(
                "cart.pull.dropped_stale",
                version=snapshot.version,
                last_seen=self._last_seen,
            )
            return False

        self._last_seen = snapshot.version
        self._store.replace(
            items=adopt_remote_lines(snapshot.items, self._store.state.items),
            discounts=snapshot.discounts,
            currency=snapshot.currency,
            server_version=snapshot.version,
            origin=ChangeOrigin.REMOTE,
        )
        logger.info("cart.pull.adopted", version=snapshot.version, writer=snapshot.last_writer_client_id)
        return True

    # ─── Merge ─────────────────────────────────────────────────────────────────

    async def merge_on_sign_in(self, user_id: str) -> Result[MergeOutcome, CartError]:
        """
        Reconcile the guest cart with the server cart, once per user.

        A failed fetch leaves local state untouched and does not count as
        the merge, so the next sign-in tries again.
        """
        state = self._store.state
        if self._merged_for == user_id:
            return Ok(MergeOutcome(MergeKind.NOOP, state.items, state.discounts, self._last_seen))

        match await self._channel.fetch(user_id):
            case Error(e):
                logger.warning("cart.merge.fetch_failed", user_id=user_id, error=str(e))
                return Error(e)
            case Ok(remote):
                pass

        outcome = resolve_merge(
            state.items,
            remote,
            local_discounts=state.discounts,
            clock=self._store.clock,
        )
        self._merged_for = user_id
        self._last_seen = max(self._last_seen, outcome.base_version)

        match outcome.kind:
            case MergeKind.NOOP:
                logger.debug("cart.merge.noop", user_id=user_id)
            case MergeKind.RELOAD_ECHO:
                self._store.replace(
                    items=outcome.items,
                    discounts=outcome.discounts,
                    currency=remote.currency if remote is not None else None,
                    server_version=outcome.base_version,
                    origin=ChangeOrigin.MERGE,
                )
                self._emit("cart_merge_skipped_duplicate", {"lineCount": len(outcome.items)})
                logger.info("cart.merge.reload_echo", user_id=user_id, lines=len(outcome.items))
            case MergeKind.MERGED:
                self._store.replace(
                    items=outcome.items,
                    discounts=outcome.discounts,
                    server_version=outcome.base_version,
                    origin=ChangeOrigin.MERGE,
                )
                self._emit(
                    "cart_merged_guest_to_user",
                    {
                        "serverCount": len(remote.items) if remote is not None else 0,
                        "guestCount": len(state.items),
                        "mergedCount": len(outcome.items),
                    },
                )
                logger.info("cart.merge.merged", user_id=user_id, lines=len(outcome.items))
                await self.push_now(user_id=user_id, base_version=outcome.base_version)

        return Ok(outcome)

    def _emit(self, name: str, payload: Payload) -> None:
        if self._events is not None:
            self._events.emit(name, payload)


__all__ = (
    "SyncRequest",
    "CartApi",
    "SnapshotCallback",
    "DocumentChannel",
    "SyncState",
    "SyncCoordinator",
)
