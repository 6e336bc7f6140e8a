"""
Checkout types — validation report, order/session requests, outcomes.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from cartsync.errors import CartError
from cartsync.model import (
    DiscountCode,
    LineItem,
    Payload,
    discount_from_wire,
    discount_to_wire,
    line_key,
)

# ═══════════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentProvider(Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"


class CheckoutStatus(Enum):
    REDIRECT = auto()
    BLOCKED = auto()
    FAILED = auto()


class BlockReason(Enum):
    VALIDATION_FAILED = "validation_failed"
    SELLER_NOT_CONNECTED = "seller_not_connected"
    PROVIDER_DISABLED = "provider_disabled"
    VALIDATION_CHANGED = "validation_changed"


# ═══════════════════════════════════════════════════════════════════════════════
# Validation Report
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ValidatedLine:
    """Server-authoritative line (re-priced, stock-clamped)."""

    product_id: str
    variant_id: str | None
    quantity: int
    unit_price: int
    title: str = ""
    image: str = ""
    stock: int | None = None

    @property
    def key(self) -> str:
        return line_key(self.product_id, self.variant_id)

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> ValidatedLine:
        stock = data.get("stock")
        return cls(
            product_id=str(data["productId"]),
            variant_id=data.get("variantId") or None,
            quantity=int(data["qty"]),
            unit_price=int(data.get("price") or 0),
            title=str(data.get("title") or ""),
            image=str(data.get("image") or ""),
            stock=stock if isinstance(stock, int) else None,
        )

    def to_wire(self) -> Payload:
        return {
            "productId": self.product_id,
            "variantId": self.variant_id,
            "qty": self.quantity,
            "price": self.unit_price,
            "title": self.title,
            "image": self.image,
            "stock": self.stock,
        }


@dataclass(frozen=True, slots=True)
class Adjustment:
    product_id: str
    reason: str
    variant_id: str | None = None
    from_qty: int | None = None
    to_qty: int | None = None

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> Adjustment:
        return cls(
            product_id=str(data.get("productId") or ""),
            reason=str(data.get("reason") or "unknown"),
            variant_id=data.get("variantId") or None,
            from_qty=data.get("fromQty"),
            to_qty=data.get("toQty"),
        )

    def to_payload(self) -> Payload:
        return {
            "productId": self.product_id,
            "variantId": self.variant_id,
            "fromQty": self.from_qty,
            "toQty": self.to_qty,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class Rejection:
    code: str
    reason: str


@dataclass(frozen=True, slots=True)
class ValidationReport:
    """`POST /cart/validate` response. `changed` means drift."""

    changed: bool
    items: tuple[ValidatedLine, ...] = ()
    discounts: tuple[DiscountCode, ...] = ()
    removed_item_ids: tuple[str, ...] = ()
    adjustments: tuple[Adjustment, ...] = ()
    rejected: tuple[Rejection, ...] = ()

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> ValidationReport:
        return cls(
            changed=bool(data.get("changed")),
            items=tuple(ValidatedLine.from_wire(i) for i in data.get("items") or []),
            discounts=tuple(discount_from_wire(d) for d in data.get("discounts") or []),
            removed_item_ids=tuple(str(i) for i in data.get("removedItemIds") or []),
            adjustments=tuple(Adjustment.from_wire(a) for a in data.get("adjustments") or []),
            rejected=tuple(
                Rejection(code=str(r.get("code")), reason=str(r.get("reason")))
                for r in data.get("rejected") or []
            ),
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Requests
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ValidateRequest:
    user_id: str | None
    items: tuple[LineItem, ...]
    discounts: tuple[DiscountCode, ...]

    def to_payload(self) -> Payload:
        return {
            "userId": self.user_id,
            "items": [
                {
                    "productId": i.product_id,
                    "variantId": i.variant_id,
                    "qty": i.quantity,
                    "price": i.unit_price,
                }
                for i in self.items
            ],
            "discounts": [{"code": d.code} for d in self.discounts],
        }


@dataclass(frozen=True, slots=True)
class OrderRequest:
    user_id: str | None
    items: tuple[ValidatedLine, ...]
    discounts: tuple[DiscountCode, ...]
    currency: str
    seller_user_id: str | None
    site_id: str | None

    def to_payload(self) -> Payload:
        return {
            "userId": self.user_id,
            "items": [v.to_wire() for v in self.items],
            "discounts": [discount_to_wire(d) for d in self.discounts],
            "currency": self.currency,
            "sellerUserId": self.seller_user_id,
            "siteId": self.site_id,
        }


@dataclass(frozen=True, slots=True)
class OrderReceipt:
    order_id: str
    total: int


@dataclass(frozen=True, slots=True)
class SessionRequest:
    """Payment-provider session for an already created order."""

    provider: PaymentProvider
    order_id: str
    items: tuple[ValidatedLine, ...]
    discounts: tuple[DiscountCode, ...]
    currency: str
    seller_user_id: str | None
    site_id: str | None

    def to_payload(self) -> Payload:
        discounts = [discount_to_wire(d) for d in self.discounts]
        match self.provider:
            case PaymentProvider.STRIPE:
                return {
                    "currency": self.currency,
                    "items": [
                        {"name": v.title, "amount": v.unit_price, "qty": v.quantity}
                        for v in self.items
                    ],
                    "discounts": discounts,
                    "meta": {"orderId": self.order_id},
                    "sellerUserId": self.seller_user_id,
                    "siteId": self.site_id,
                }
            case PaymentProvider.PAYPAL:
                return {
                    "orderId": self.order_id,
                    "items": [
                        {"name": v.title, "unit_amount": v.unit_price, "qty": v.quantity}
                        for v in self.items
                    ],
                    "discounts": discounts,
                    "currency": self.currency,
                    "sellerUserId": self.seller_user_id,
                    "siteId": self.site_id,
                }


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    """Stripe returns a redirect url; PayPal returns its order id."""

    url: str | None = None
    session_id: str | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Context & Outcome
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CheckoutContext:
    """Who is buying from whom, and which payment rails the site allows."""

    user_id: str | None = None
    seller_user_id: str | None = None
    site_id: str | None = None
    allowed_providers: frozenset[PaymentProvider] = frozenset(PaymentProvider)

    @property
    def effective_seller(self) -> str | None:
        return self.seller_user_id or self.user_id


@dataclass(frozen=True, slots=True)
class PendingNotice:
    """Drift surfaced to the shopper; cleared by `acknowledge_notice()`."""

    report: ValidationReport
    kind: str = "validation"


@dataclass(frozen=True, slots=True)
class CheckoutOutcome:
    status: CheckoutStatus
    provider: PaymentProvider
    reason: BlockReason | None = None
    redirect_url: str | None = None
    order_id: str | None = None
    error: CartError | None = None
    detail: dict[str, Any] = field(default_factory=dict[str, Any])

    @classmethod
    def blocked(cls, provider: PaymentProvider, reason: BlockReason, **detail: Any) -> CheckoutOutcome:
        return cls(CheckoutStatus.BLOCKED, provider, reason=reason, detail=detail)


__all__ = (
    "PaymentProvider",
    "CheckoutStatus",
    "BlockReason",
    "ValidatedLine",
    "Adjustment",
    "Rejection",
    "ValidationReport",
    "ValidateRequest",
    "OrderRequest",
    "OrderReceipt",
    "SessionRequest",
    "CheckoutSession",
    "CheckoutContext",
    "PendingNotice",
    "CheckoutOutcome",
)
