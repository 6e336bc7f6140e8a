"""
LocalCartStore — authoritative in-memory cart with a durable mirror.

Every mutation is synchronous:
    update state → record removal keys → emit one analytics event →
    persist mirror → publish CartChange to subscribers

`replace()` is the door for external state (sync pull, merge, validation):
it persists and publishes, but emits no mutation event.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace as dc_replace
from enum import Enum, auto
from typing import Any

from kungfu import Error, Ok, Result

from cartsync._types import (
    Clock,
    EventEmitter,
    IdFactory,
    LineKey,
    Unsubscribe,
    new_client_id,
    new_line_id,
    now_ms,
)
from cartsync.errors import CartError, CartErrors
from cartsync.model import (
    DiscountCode,
    LineItem,
    Product,
    discount_from_wire,
    discount_to_storage,
    line_from_storage,
    line_key,
    line_to_storage,
)
from cartsync.observability import get_logger
from cartsync.pricing import DiscountCatalog, Totals, compute_totals
from cartsync.store._kv import KeyValueStore

logger = get_logger("cartsync.store")

STORAGE_SCHEMA = 1

# ═══════════════════════════════════════════════════════════════════════════════
# State & Change
# ═══════════════════════════════════════════════════════════════════════════════


class ChangeOrigin(Enum):
    """
    Who changed the cart.

    LOCAL: shopper mutation. Pushed.
    REMOTE: adopted pulled snapshot. Never pushed.
    MERGE: sign-in merge result. The merge pushes it itself.
    VALIDATION: adopted server-validated cart at checkout. Pushed.
    """

    LOCAL = auto()
    REMOTE = auto()
    MERGE = auto()
    VALIDATION = auto()


@dataclass(frozen=True, slots=True)
class CartState:
    """Immutable cart state. `server_version` is the last adopted remote version."""

    items: tuple[LineItem, ...] = ()
    discounts: tuple[DiscountCode, ...] = ()
    currency: str = "USD"
    server_version: int = 0

    @property
    def totals(self) -> Totals:
        return compute_totals(self.items, self.discounts)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def line(self, line_id: str) -> LineItem | None:
        return next((i for i in self.items if i.line_id == line_id), None)

    def by_key(self, key: LineKey) -> LineItem | None:
        return next((i for i in self.items if i.key == key), None)


@dataclass(frozen=True, slots=True)
class CartChange:
    state: CartState
    origin: ChangeOrigin
    previous: CartState = field(default_factory=CartState)


type Listener = Callable[[CartChange], None]


# ═══════════════════════════════════════════════════════════════════════════════
# client_id() — per-install identity
# ═══════════════════════════════════════════════════════════════════════════════


def client_id(kv: KeyValueStore, key: str = "glow_cart_client_id") -> str:
    """
    Stable per-install client id (`c_<random>`), created on first use.

    A storage failure still yields an id; it just won't survive a restart.
    """
    match kv.get(key):
        case Ok(str(existing)) if existing:
            return existing
        case Error(e):
            logger.warning("client_id.read_failed", error=str(e))

    fresh = new_client_id()
    match kv.set(key, fresh):
        case Error(e):
            logger.warning("client_id.write_failed", error=str(e))
    return fresh


# ═══════════════════════════════════════════════════════════════════════════════
# LocalCartStore
# ═══════════════════════════════════════════════════════════════════════════════


class LocalCartStore:
    """
    Cart state container with observer interface.

    Example:
        store = LocalCartStore(kv, events=analytics)
        store.load()
        unsubscribe = store.subscribe(lambda change: print(change.state.totals))

        match store.add_item(Product("p1", "Mug", price=1000), quantity=2):
            case Ok(line):
                store.update_quantity(line.line_id, 3)
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        storage_key: str = "glow_cart_v1",
        default_currency: str = "USD",
        events: EventEmitter | None = None,
        clock: Clock = now_ms,
        id_factory: IdFactory = new_line_id,
    ) -> None:
        self._kv = kv
        self._storage_key = storage_key
        self._default_currency = default_currency
        self._events = events
        self._clock = clock
        self._id_factory = id_factory
        self._state = CartState(currency=default_currency)
        self._listeners: list[Listener] = []
        self._removed_keys: dict[LineKey, None] = {}

    # ─── Observation ───────────────────────────────────────────────────────────

    @property
    def state(self) -> CartState:
        return self._state

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def id_factory(self) -> IdFactory:
        return self._id_factory

    def subscribe(self, listener: Listener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def take_removed_keys(self) -> list[LineKey]:
        """Drain the removal keys recorded since the last drain."""
        keys = list(self._removed_keys)
        self._removed_keys.clear()
        return keys

    def restore_removed_keys(self, keys: list[LineKey]) -> None:
        """Put back keys from a failed push (skipping lines re-added since)."""
        present = {item.key for item in self._state.items}
        for key in keys:
            if key not in present:
                self._removed_keys[key] = None

    # ─── Mutations ─────────────────────────────────────────────────────────────

    def add_item(
        self,
        product: Product,
        *,
        quantity: int = 1,
        variant_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Result[LineItem, CartError]:
        """
        Add `quantity` of a product; merges into the line with the same
        (product, variant). Quantity is clamped to the known stock ceiling.
        """
        if product.stock is not None and product.stock < 1:
            return Error(CartErrors.invalid("out of stock", productId=product.product_id))

        qty = max(1, quantity)
        now = self._clock()
        key = line_key(product.product_id, variant_id)
        existing = self._state.by_key(key)

        if existing is not None:
            ceiling = product.stock if product.stock is not None else existing.stock_ceiling
            total = existing.quantity + qty
            line = dc_replace(
                existing,
                quantity=min(total, ceiling) if ceiling is not None else total,
                stock_ceiling=ceiling,
                unit_price=product.price,
                last_updated_at=now,
            )
            items = tuple(line if i.key == key else i for i in self._state.items)
        else:
            meta = dict(metadata or {})
            if product.category and "category" not in meta:
                meta["category"] = product.category
            line = LineItem(
                line_id=self._id_factory(),
                product_id=product.product_id,
                variant_id=variant_id,
                title=product.title or "Untitled",
                image=product.image,
                unit_price=product.price,
                quantity=min(qty, product.stock) if product.stock is not None else qty,
                last_updated_at=now,
                stock_ceiling=product.stock,
                metadata=meta,
                weight_grams=product.weight_grams,
                tax_code=product.tax_code,
            )
            items = (*self._state.items, line)

        self._removed_keys.pop(key, None)
        self._commit(
            dc_replace(self._state, items=items),
            "cart_add",
            {"productId": product.product_id, "variantId": variant_id, "qty": qty},
        )
        return Ok(line)

    def update_quantity(self, line_id: str, quantity: int) -> Result[LineItem, CartError]:
        current = self._state.line(line_id)
        if current is None:
            return Error(CartErrors.invalid("unknown line", lineId=line_id))

        qty = max(1, quantity)
        if current.stock_ceiling is not None:
            qty = min(qty, current.stock_ceiling)
        line = current.with_quantity(qty, self._clock())

        self._commit(
            dc_replace(
                self._state,
                items=tuple(line if i.line_id == line_id else i for i in self._state.items),
            ),
            "cart_update_quantity",
            {"lineId": line_id, "qty": qty},
        )
        return Ok(line)

    def remove_item(self, line_id: str) -> Result[LineItem, CartError]:
        """Remove a line; the returned line can be handed to `re_add_item`."""
        removed = self._state.line(line_id)
        if removed is None:
            return Error(CartErrors.invalid("unknown line", lineId=line_id))

        self._removed_keys[removed.key] = None
        self._commit(
            dc_replace(
                self._state,
                items=tuple(i for i in self._state.items if i.line_id != line_id),
            ),
            "cart_remove",
            {"lineId": line_id, "productId": removed.product_id},
        )
        return Ok(removed)

    def re_add_item(self, removed: LineItem) -> LineItem:
        """Undo a removal. Keeps the line id unless the key was re-added meanwhile."""
        now = self._clock()
        existing = self._state.by_key(removed.key)

        if existing is not None:
            total = existing.quantity + removed.quantity
            ceiling = existing.stock_ceiling
            line = existing.with_quantity(
                min(total, ceiling) if ceiling is not None else total, now
            )
            items = tuple(line if i.key == removed.key else i for i in self._state.items)
        else:
            line = dc_replace(removed, last_updated_at=now)
            items = (*self._state.items, line)

        self._removed_keys.pop(removed.key, None)
        self._commit(
            dc_replace(self._state, items=items),
            "cart_undo_remove",
            {"productId": removed.product_id, "variantId": removed.variant_id},
        )
        return line

    def clear_cart(self) -> None:
        """Remove every line and every applied code."""
        for item in self._state.items:
            self._removed_keys[item.key] = None
        self._commit(
            dc_replace(self._state, items=(), discounts=()),
            "cart_clear",
            {"itemCount": len(self._state.items)},
        )

    def apply_code(
        self, catalog: DiscountCatalog, code: str
    ) -> Result[DiscountCode, CartError]:
        """Apply a catalog code. Rejections leave the cart untouched."""
        match catalog.apply_code(self._state.discounts, code):
            case Ok(discounts):
                applied = discounts[-1]
                self._commit(
                    dc_replace(self._state, discounts=discounts),
                    "cart_apply_promo",
                    {"code": applied.code, "type": applied.kind.value},
                )
                return Ok(applied)
            case Error(e):
                logger.info("cart.promo.rejected", code=code, reason=e.reason)
                return Error(e)

    def remove_code(self, code: str) -> bool:
        remaining = tuple(d for d in self._state.discounts if not d.same_code(code))
        if len(remaining) == len(self._state.discounts):
            return False
        self._commit(
            dc_replace(self._state, discounts=remaining),
            "cart_remove_promo",
            {"code": code},
        )
        return True

    def set_currency(self, currency: str) -> None:
        if currency == self._state.currency:
            return
        self._commit(
            dc_replace(self._state, currency=currency),
            "cart_set_currency",
            {"currency": currency},
        )

    # ─── External state ────────────────────────────────────────────────────────

    def replace(
        self,
        *,
        items: tuple[LineItem, ...] | None = None,
        discounts: tuple[DiscountCode, ...] | None = None,
        currency: str | None = None,
        server_version: int | None = None,
        origin: ChangeOrigin = ChangeOrigin.REMOTE,
    ) -> CartState:
        """Adopt external state. Omitted fields keep their current value."""
        current = self._state
        next_state = CartState(
            items=current.items if items is None else items,
            discounts=current.discounts if discounts is None else discounts,
            currency=currency or current.currency,
            server_version=(
                current.server_version if server_version is None else server_version
            ),
        )
        self._apply(next_state, origin)
        return next_state

    def adopt_validated(
        self,
        items: tuple[LineItem, ...],
        discounts: tuple[DiscountCode, ...],
    ) -> CartState:
        """
        Adopt the server-validated cart. Lines it dropped are recorded as
        removals so the next push deletes them from the remote document.
        """
        kept = {item.key for item in items}
        for item in self._state.items:
            if item.key not in kept:
                self._removed_keys[item.key] = None
        return self.replace(items=items, discounts=discounts, origin=ChangeOrigin.VALIDATION)

    def set_server_version(self, version: int) -> None:
        """Record an acknowledged push version. Persisted, not published."""
        if version == self._state.server_version:
            return
        self._state = dc_replace(self._state, server_version=version)
        self._persist()

    # ─── Persistence ───────────────────────────────────────────────────────────

    def load(self) -> CartState:
        """
        Restore the persisted mirror. Unreadable or foreign-schema payloads are
        ignored (logged) and the store keeps its empty state.
        """
        match self._kv.get(self._storage_key):
            case Error(e):
                logger.warning("cart.load.read_failed", error=str(e))
                return self._state
            case Ok(None):
                return self._state
            case Ok(doc):
                pass

        if not isinstance(doc, dict) or doc.get("schema") != STORAGE_SCHEMA:
            logger.warning("cart.load.foreign_schema", key=self._storage_key)
            return self._state

        try:
            self._state = CartState(
                items=tuple(line_from_storage(i) for i in doc.get("items") or []),
                discounts=tuple(discount_from_wire(d) for d in doc.get("discounts") or []),
                currency=str(doc.get("currency") or self._default_currency),
                server_version=int(doc.get("version") or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("cart.load.malformed", error=str(e))
        return self._state

    def _persist(self) -> None:
        state = self._state
        document = {
            "schema": STORAGE_SCHEMA,
            "version": state.server_version,
            "items": [line_to_storage(i) for i in state.items],
            "discounts": [discount_to_storage(d) for d in state.discounts],
            "currency": state.currency,
        }
        match self._kv.set(self._storage_key, document):
            case Error(e):
                logger.warning("cart.persist.failed", error=str(e))

    # ─── Internals ─────────────────────────────────────────────────────────────

    def _commit(self, next_state: CartState, event: str, payload: dict[str, Any]) -> None:
        if self._events is not None:
            self._events.emit(event, payload)
        self._apply(next_state, ChangeOrigin.LOCAL)

    def _apply(self, next_state: CartState, origin: ChangeOrigin) -> None:
        previous = self._state
        self._state = next_state
        self._persist()
        change = CartChange(state=next_state, origin=origin, previous=previous)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("cart.listener_failed", origin=origin.name)


__all__ = (
    "STORAGE_SCHEMA",
    "ChangeOrigin",
    "CartState",
    "CartChange",
    "Listener",
    "client_id",
    "LocalCartStore",
)
