"""
InMemoryCartService — the whole backend in one process.

Plays every collaborator role: the realtime document channel, `/cart/sync`,
validate/estimate/heartbeat, orders and payment sessions, the analytics sink,
discount codes and the product catalog. Documents are kept in wire shape, so
what a subscriber sees went through the same codecs as the HTTP path.

Sync write semantics (per-line timestamps with removal tombstones):
    version += 1
    removedKeys → tombstone at server time (newer wins, last 200 kept)
    incoming line wins if lineUpdatedAt > stored line's
    any line with tombstone >= its lineUpdatedAt is dropped
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from kungfu import Error, Ok, Result

from cartsync._types import Clock, IdFactory, Unsubscribe, new_line_id, now_ms
from cartsync.analytics import batch_record
from cartsync.checkout import (
    Adjustment,
    CheckoutSession,
    OrderReceipt,
    OrderRequest,
    PaymentProvider,
    Rejection,
    SessionRequest,
    ValidatedLine,
    ValidateRequest,
    ValidationReport,
)
from cartsync.errors import CartError, CartErrors
from cartsync.estimate import Estimate, EstimateRequest
from cartsync.model import (
    AnalyticsEvent,
    CartSnapshot,
    CrossSellCandidate,
    DiscountCode,
    LineItem,
    Payload,
    Product,
    snapshot_from_document,
    wire_key,
)
from cartsync.observability import get_logger
from cartsync.pricing import compute_totals, round_half_up
from cartsync.sync import SnapshotCallback, SyncRequest

logger = get_logger("cartsync.transport.memory")

TOMBSTONE_HISTORY = 200
FREE_SHIPPING_FROM = 50_000

# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class StoredOrder:
    order_id: str
    user_id: str | None
    total: int
    payload: Payload
    status: str = "pending_payment"


@dataclass(slots=True)
class _Tombstone:
    key: str
    removed_at: int


@dataclass(slots=True)
class _Document:
    data: Payload
    tombstones: dict[str, _Tombstone] = field(default_factory=dict[str, _Tombstone])


# ═══════════════════════════════════════════════════════════════════════════════
# InMemoryCartService
# ═══════════════════════════════════════════════════════════════════════════════


class InMemoryCartService:
    """
    Example:
        service = InMemoryCartService(products=[Product("p1", "Mug", 1200, category="kitchen")])
        service.fail("sync")                 # next sync returns Error(NETWORK)
        await service.sync(request)
        service.document("u1")["version"]    # 1
    """

    def __init__(
        self,
        *,
        products: Iterable[Product] = (),
        global_discounts: Iterable[DiscountCode] = (),
        site_discounts: dict[str, list[DiscountCode]] | None = None,
        connected_sellers: Iterable[str] = (),
        tax_rate: Decimal = Decimal(0),
        clock: Clock = now_ms,
        id_factory: IdFactory = new_line_id,
        deliver_on_subscribe: bool = True,
    ) -> None:
        self._products = {p.product_id: p for p in products}
        self._global_discounts = list(global_discounts)
        self._site_discounts = dict(site_discounts or {})
        self._connected = set(connected_sellers)
        self._tax_rate = tax_rate
        self._clock = clock
        self._id_factory = id_factory
        self._deliver_on_subscribe = deliver_on_subscribe

        self._documents: dict[str, _Document] = {}
        self._subscribers: dict[str, list[SnapshotCallback]] = {}
        self._failures: Counter[str] = Counter()
        self.calls: Counter[str] = Counter()
        self.orders: dict[str, StoredOrder] = {}
        self.batches: dict[str, list[Payload]] = {}
        self.heartbeats: list[str | None] = []

    # ─── Test controls ─────────────────────────────────────────────────────────

    def fail(self, operation: str, times: int = 1) -> None:
        """Make the next `times` calls of `operation` return a network error."""
        self._failures[operation] += times

    def connect_seller(self, seller_user_id: str) -> None:
        self._connected.add(seller_user_id)

    def put_product(self, product: Product) -> None:
        self._products[product.product_id] = product

    def document(self, user_id: str) -> Payload | None:
        stored = self._documents.get(user_id)
        return dict(stored.data) if stored is not None else None

    def write_document(self, user_id: str, document: Payload) -> None:
        """Overwrite a document as another device would, then notify."""
        self._documents[user_id] = _Document(dict(document))
        self._publish(user_id)

    def _check(self, operation: str) -> CartError | None:
        self.calls[operation] += 1
        if self._failures[operation] > 0:
            self._failures[operation] -= 1
            return CartErrors.network(f"{operation} unavailable", operation=operation)
        return None

    # ─── DocumentChannel ───────────────────────────────────────────────────────

    def subscribe(self, user_id: str, callback: SnapshotCallback) -> Unsubscribe:
        listeners = self._subscribers.setdefault(user_id, [])
        listeners.append(callback)
        if self._deliver_on_subscribe and user_id in self._documents:
            callback(self._snapshot(user_id))

        def unsubscribe() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    async def fetch(self, user_id: str) -> Result[CartSnapshot | None, CartError]:
        if (error := self._check("fetch")) is not None:
            return Error(error)
        if user_id not in self._documents:
            return Ok(None)
        return Ok(self._snapshot(user_id))

    def _snapshot(self, user_id: str) -> CartSnapshot:
        return snapshot_from_document(
            self._documents[user_id].data, id_factory=self._id_factory, clock=self._clock
        )

    def _publish(self, user_id: str) -> None:
        snapshot = self._snapshot(user_id)
        for callback in list(self._subscribers.get(user_id, [])):
            callback(snapshot)

    # ─── CartApi ───────────────────────────────────────────────────────────────

    async def sync(self, request: SyncRequest) -> Result[CartSnapshot, CartError]:
        if (error := self._check("sync")) is not None:
            return Error(error)

        payload = request.to_payload()
        now = self._clock()
        stored = self._documents.get(request.user_id) or _Document({})
        lines = {wire_key(li): dict(li) for li in stored.data.get("items") or []}
        tombstones = dict(stored.tombstones)

        for key in payload["removedKeys"]:
            current = tombstones.get(key)
            if current is None or current.removed_at < now:
                tombstones[key] = _Tombstone(key, now)

        for line in payload["items"]:
            key = wire_key(line)
            updated_at = line.get("lineUpdatedAt") or now
            tomb = tombstones.get(key)
            if tomb is not None and tomb.removed_at >= updated_at:
                continue
            existing = lines.get(key)
            if existing is None or updated_at > (existing.get("lineUpdatedAt") or 0):
                lines[key] = {
                    "productId": line["productId"],
                    "variantId": line.get("variantId") or None,
                    "qty": line["qty"],
                    "price": line["price"],
                    "lineUpdatedAt": updated_at,
                }

        for key, tomb in tombstones.items():
            existing = lines.get(key)
            if existing is not None and (
                not existing.get("lineUpdatedAt") or tomb.removed_at >= existing["lineUpdatedAt"]
            ):
                del lines[key]

        kept = list(tombstones.values())[-TOMBSTONE_HISTORY:]
        document = {
            "version": int(stored.data.get("version") or 0) + 1,
            "items": list(lines.values()),
            "discounts": payload["discounts"],
            "currency": payload["currency"] or stored.data.get("currency") or "USD",
            "lastClientId": request.client_id,
            "updatedAt": now,
        }
        self._documents[request.user_id] = _Document(document, {t.key: t for t in kept})
        logger.debug("memory.sync.written", user_id=request.user_id, version=document["version"])
        self._publish(request.user_id)
        return Ok(self._snapshot(request.user_id))

    # ─── Validate / estimate / heartbeat ───────────────────────────────────────

    async def validate(self, request: ValidateRequest) -> Result[ValidationReport, CartError]:
        if (error := self._check("validate")) is not None:
            return Error(error)

        validated: list[ValidatedLine] = []
        removed: list[str] = []
        adjustments: list[Adjustment] = []
        changed = False
        for item in request.items:
            product = self._products.get(item.product_id)
            if product is None or product.stock == 0:
                removed.append(item.line_id)
                adjustments.append(
                    Adjustment(item.product_id, "unavailable", item.variant_id, item.quantity, 0)
                )
                changed = True
                continue
            qty = item.quantity
            if product.stock is not None and qty > product.stock:
                adjustments.append(
                    Adjustment(item.product_id, "stock", item.variant_id, qty, product.stock)
                )
                qty = product.stock
                changed = True
            if product.price != item.unit_price:
                adjustments.append(Adjustment(item.product_id, "price", item.variant_id, qty, qty))
                changed = True
            validated.append(
                ValidatedLine(
                    product_id=product.product_id,
                    variant_id=item.variant_id,
                    quantity=qty,
                    unit_price=product.price,
                    title=product.title,
                    image=product.image,
                    stock=product.stock,
                )
            )

        known = {d.normalized: d for d in self._global_discounts}
        for codes in self._site_discounts.values():
            known.update((d.normalized, d) for d in codes)
        accepted: list[DiscountCode] = []
        rejected: list[Rejection] = []
        for code in request.discounts:
            if code.normalized in known:
                accepted.append(known[code.normalized])
            else:
                rejected.append(Rejection(code.code, "not_found"))
                changed = True

        return Ok(
            ValidationReport(
                changed=changed,
                items=tuple(validated),
                discounts=tuple(accepted),
                removed_item_ids=tuple(removed),
                adjustments=tuple(adjustments),
                rejected=tuple(rejected),
            )
        )

    async def estimate(self, request: EstimateRequest) -> Result[Estimate, CartError]:
        if (error := self._check("estimate")) is not None:
            return Error(error)
        net = max(0, request.subtotal - request.discount_amount)
        if net >= FREE_SHIPPING_FROM:
            shipping = 0
        elif request.total_weight <= 1000:
            shipping = 500
        elif request.total_weight <= 5000:
            shipping = 1500
        else:
            shipping = 3000
        return Ok(Estimate(shipping=shipping, tax=round_half_up(net * self._tax_rate)))

    async def heartbeat(self, user_id: str | None) -> Result[None, CartError]:
        if (error := self._check("heartbeat")) is not None:
            return Error(error)
        self.heartbeats.append(user_id)
        return Ok(None)

    # ─── Checkout ──────────────────────────────────────────────────────────────

    async def create_order(self, request: OrderRequest) -> Result[OrderReceipt, CartError]:
        if (error := self._check("create_order")) is not None:
            return Error(error)
        total = compute_totals(
            [_as_line(v, i) for i, v in enumerate(request.items)], request.discounts
        ).total
        order_id = f"ord_{self._id_factory()}"
        self.orders[order_id] = StoredOrder(order_id, request.user_id, total, request.to_payload())
        return Ok(OrderReceipt(order_id=order_id, total=total))

    async def cancel_order(self, user_id: str | None, order_id: str) -> Result[None, CartError]:
        if (error := self._check("cancel_order")) is not None:
            return Error(error)
        order = self.orders.get(order_id)
        if order is None:
            return Error(CartErrors.invalid("unknown order", order_id=order_id))
        if order.status == "pending_payment":
            order.status = "cancelled"
        return Ok(None)

    async def create_checkout_session(
        self, request: SessionRequest
    ) -> Result[CheckoutSession, CartError]:
        if (error := self._check("create_checkout_session")) is not None:
            return Error(error)
        match request.provider:
            case PaymentProvider.STRIPE:
                return Ok(CheckoutSession(url=f"https://checkout.test/{request.order_id}"))
            case PaymentProvider.PAYPAL:
                return Ok(CheckoutSession(session_id=f"pp_{request.order_id}"))

    async def seller_connected(self, seller_user_id: str) -> Result[bool, CartError]:
        if (error := self._check("seller_connected")) is not None:
            return Error(error)
        return Ok(seller_user_id in self._connected)

    # ─── EventSink ─────────────────────────────────────────────────────────────

    async def write_batch(
        self, user_id: str, events: Sequence[AnalyticsEvent]
    ) -> Result[None, CartError]:
        if (error := self._check("write_batch")) is not None:
            return Error(error)
        self.batches.setdefault(user_id, []).append(batch_record(events, self._clock()))
        return Ok(None)

    # ─── DiscountSource ────────────────────────────────────────────────────────

    async def global_codes(self, user_id: str) -> Result[list[DiscountCode], CartError]:
        if (error := self._check("global_codes")) is not None:
            return Error(error)
        return Ok(list(self._global_discounts))

    async def site_codes(
        self, user_id: str, site_id: str
    ) -> Result[list[DiscountCode], CartError]:
        if (error := self._check("site_codes")) is not None:
            return Error(error)
        return Ok(list(self._site_discounts.get(site_id, [])))

    # ─── ProductCatalog ────────────────────────────────────────────────────────

    async def by_category(self, category: str, limit: int) -> list[CrossSellCandidate]:
        self.calls["by_category"] += 1
        if self._failures["by_category"] > 0:
            self._failures["by_category"] -= 1
            raise ConnectionError(f"catalog unavailable for {category}")
        return [
            CrossSellCandidate(p.product_id, p.title, p.image, p.price, category)
            for p in self._products.values()
            if p.category == category
        ][:limit]


def _as_line(v: ValidatedLine, index: int) -> LineItem:
    return LineItem(
        line_id=f"v{index}",
        product_id=v.product_id,
        variant_id=v.variant_id,
        title=v.title,
        image=v.image,
        unit_price=v.unit_price,
        quantity=v.quantity,
        last_updated_at=0,
    )


__all__ = ("TOMBSTONE_HISTORY", "StoredOrder", "InMemoryCartService")
