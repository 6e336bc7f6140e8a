"""
Secondary network calls driven by cart state, independent of sync.

EstimateDebouncer — shipping/tax estimate, one request per settled change
                    of (subtotal, discount, currency, weight, tax codes).
HeartbeatMonitor  — abandoned-cart ping every interval while non-empty.

Both degrade quietly: a failed estimate keeps the stale one, a failed
heartbeat is skipped.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from kungfu import Error, Ok, Result

from cartsync._types import EventEmitter, Unsubscribe
from cartsync.errors import CartError
from cartsync.model import Payload
from cartsync.observability import get_logger
from cartsync.store import CartChange, CartState, LocalCartStore
from cartsync.timers import Debouncer, Interval

logger = get_logger("cartsync.estimate")

# ═══════════════════════════════════════════════════════════════════════════════
# Types & Collaborators
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class EstimateRequest:
    """Also the change signature: equal requests never trigger a new call."""

    subtotal: int
    discount_amount: int
    currency: str
    total_weight: int
    tax_codes: tuple[str, ...]

    @classmethod
    def of(cls, state: CartState) -> EstimateRequest:
        totals = state.totals
        return cls(
            subtotal=totals.subtotal,
            discount_amount=totals.discount_amount,
            currency=state.currency,
            total_weight=sum(
                (i.weight_grams or 0) * i.quantity for i in state.items
            ),
            tax_codes=tuple(dict.fromkeys(i.tax_code for i in state.items if i.tax_code)),
        )

    def to_payload(self) -> Payload:
        return {
            "subtotal": self.subtotal,
            "discountAmount": self.discount_amount,
            "currency": self.currency,
            "totalWeight": self.total_weight,
            "taxCodes": list(self.tax_codes),
        }


@dataclass(frozen=True, slots=True)
class Estimate:
    shipping: int = 0
    tax: int = 0


NO_ESTIMATE = Estimate()


class EstimateApi(Protocol):
    async def estimate(self, request: EstimateRequest) -> Result[Estimate, CartError]:
        ...


class HeartbeatApi(Protocol):
    async def heartbeat(self, user_id: str | None) -> Result[None, CartError]:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# EstimateDebouncer
# ═══════════════════════════════════════════════════════════════════════════════


class EstimateDebouncer:
    """
    Example:
        estimates = EstimateDebouncer(api, store, delay=0.6)
        estimates.start()
        store.add_item(product)      # → one estimate() ~0.6s later
        estimates.estimate           # Estimate(shipping=500, tax=80)
    """

    def __init__(
        self,
        api: EstimateApi,
        store: LocalCartStore,
        *,
        delay: float = 0.6,
        events: EventEmitter | None = None,
    ) -> None:
        self._api = api
        self._store = store
        self._events = events
        self._timer = Debouncer(delay, self._request, name="cart.estimate")
        self._signature: EstimateRequest | None = None
        self._estimate = NO_ESTIMATE
        self._unsubscribe: Unsubscribe | None = None

    @property
    def estimate(self) -> Estimate:
        return self._estimate

    @property
    def pending(self) -> bool:
        return self._timer.pending

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._store.subscribe(self._on_change)
        self.observe(self._store.state)

    def stop(self) -> None:
        self._timer.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, change: CartChange) -> None:
        self.observe(change.state)

    def observe(self, state: CartState) -> None:
        """Reschedule if the estimate signature changed; reset on empty."""
        if state.is_empty:
            self._timer.cancel()
            self._signature = None
            self._estimate = NO_ESTIMATE
            return

        signature = EstimateRequest.of(state)
        if signature == self._signature:
            return
        self._signature = signature
        self._timer.schedule()

    async def _request(self) -> None:
        request = self._signature
        if request is None:
            return

        match await self._api.estimate(request):
            case Ok(estimate):
                if request != self._signature:
                    logger.debug("cart.estimate.superseded")
                    return
                self._estimate = estimate
                if self._events is not None:
                    self._events.emit(
                        "cart_estimate_updated",
                        {"shipping": estimate.shipping, "tax": estimate.tax},
                    )
            case Error(e):
                logger.warning("cart.estimate.failed", error=str(e))


# ═══════════════════════════════════════════════════════════════════════════════
# HeartbeatMonitor
# ═══════════════════════════════════════════════════════════════════════════════


class HeartbeatMonitor:
    """
    Example:
        beat = HeartbeatMonitor(api, store, interval=60.0, user_id_provider=lambda: uid)
        beat.start()    # ticks only while the cart has lines
    """

    def __init__(
        self,
        api: HeartbeatApi,
        store: LocalCartStore,
        *,
        interval: float = 60.0,
        events: EventEmitter | None = None,
        user_id_provider: Callable[[], str | None] = lambda: None,
    ) -> None:
        self._api = api
        self._store = store
        self._events = events
        self._user_id_provider = user_id_provider
        self._interval = Interval(interval, self.tick, name="cart.heartbeat")
        self._unsubscribe: Unsubscribe | None = None

    @property
    def running(self) -> bool:
        return self._interval.running

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._store.subscribe(self._on_change)
        self.observe(self._store.state)

    def stop(self) -> None:
        self._interval.stop()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, change: CartChange) -> None:
        self.observe(change.state)

    def observe(self, state: CartState) -> None:
        if state.is_empty:
            self._interval.stop()
        else:
            self._interval.start()

    async def tick(self) -> None:
        state = self._store.state
        if state.is_empty:
            return
        match await self._api.heartbeat(self._user_id_provider()):
            case Ok(_):
                if self._events is not None:
                    self._events.emit("cart_abandoned_heartbeat", {"itemCount": len(state.items)})
            case Error(e):
                logger.debug("cart.heartbeat.failed", error=str(e))


__all__ = (
    "EstimateRequest",
    "Estimate",
    "NO_ESTIMATE",
    "EstimateApi",
    "HeartbeatApi",
    "EstimateDebouncer",
    "HeartbeatMonitor",
)
