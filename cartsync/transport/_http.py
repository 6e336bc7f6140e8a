"""
HttpCartApi — the cart service over HTTP.

One `httpx.AsyncClient`, JSON bodies in, pydantic envelopes out. Every
failure mode (connection error, non-2xx, unparseable body, `ok: false`)
collapses into `Error(CartError(NETWORK))`; callers decide how to degrade.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

import httpx
from combinators import lift as L
from kungfu import Error, Ok, Result
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cartsync._types import new_line_id, now_ms
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
from cartsync.config import CartSettings
from cartsync.errors import CartError, CartErrors
from cartsync.estimate import Estimate, EstimateRequest
from cartsync.model import CartSnapshot, discount_from_wire, snapshot_from_document
from cartsync.observability import get_logger
from cartsync.sync import SyncRequest

logger = get_logger("cartsync.transport.http")

# ═══════════════════════════════════════════════════════════════════════════════
# Response Envelopes
# ═══════════════════════════════════════════════════════════════════════════════


class Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    ok: bool = True
    error: str | None = None


class SyncResponse(Envelope):
    cart: dict[str, Any]


class ValidatedLineDTO(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    product_id: str = Field(alias="productId")
    variant_id: str | None = Field(default=None, alias="variantId")
    qty: int
    price: int = 0
    title: str = ""
    image: str = ""
    stock: int | None = None

    def to_domain(self) -> ValidatedLine:
        return ValidatedLine(
            product_id=self.product_id,
            variant_id=self.variant_id or None,
            quantity=self.qty,
            unit_price=self.price,
            title=self.title,
            image=self.image,
            stock=self.stock,
        )


class AdjustmentDTO(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    product_id: str = Field(default="", alias="productId")
    variant_id: str | None = Field(default=None, alias="variantId")
    from_qty: int | None = Field(default=None, alias="fromQty")
    to_qty: int | None = Field(default=None, alias="toQty")
    reason: str = "unknown"


class RejectionDTO(BaseModel):
    code: str
    reason: str


class ValidateResponse(Envelope):
    changed: bool = False
    items: list[ValidatedLineDTO] = Field(default_factory=list)
    discounts: list[dict[str, Any]] = Field(default_factory=list)
    removed_item_ids: list[str] = Field(default_factory=list, alias="removedItemIds")
    adjustments: list[AdjustmentDTO] = Field(default_factory=list)
    rejected: list[RejectionDTO] = Field(default_factory=list)

    def to_domain(self) -> ValidationReport:
        return ValidationReport(
            changed=self.changed,
            items=tuple(i.to_domain() for i in self.items),
            discounts=tuple(discount_from_wire(d) for d in self.discounts),
            removed_item_ids=tuple(self.removed_item_ids),
            adjustments=tuple(
                Adjustment(
                    product_id=a.product_id,
                    reason=a.reason,
                    variant_id=a.variant_id,
                    from_qty=a.from_qty,
                    to_qty=a.to_qty,
                )
                for a in self.adjustments
            ),
            rejected=tuple(Rejection(r.code, r.reason) for r in self.rejected),
        )


class EstimateResponse(Envelope):
    shipping: int = 0
    tax: int = 0


class OrderResponse(Envelope):
    order_id: str = Field(alias="orderId")
    total: int = 0


class SessionResponse(Envelope):
    url: str | None = None
    id: str | None = None


class SellerAccountResponse(Envelope):
    connected: bool = False


# ═══════════════════════════════════════════════════════════════════════════════
# HttpCartApi
# ═══════════════════════════════════════════════════════════════════════════════


class HttpCartApi:
    """
    Implements CartApi, CheckoutApi, EstimateApi and HeartbeatApi.

    Example:
        api = HttpCartApi(load_settings())
        match await api.estimate(EstimateRequest.of(store.state)):
            case Ok(estimate): ...
        await api.aclose()
    """

    def __init__(self, settings: CartSettings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=settings.api_base_url.rstrip("/"),
            timeout=settings.request_timeout_seconds,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ─── Cart ──────────────────────────────────────────────────────────────────

    async def sync(self, request: SyncRequest) -> Result[CartSnapshot, CartError]:
        match await self._send(
            "POST", "/cart/sync", SyncResponse, lambda r: r.cart, json=request.to_payload()
        ):
            case Ok(document):
                pass
            case Error(e):
                return Error(e)
        try:
            return Ok(
                snapshot_from_document(
                    document,
                    existing=request.items,
                    id_factory=new_line_id,
                    clock=now_ms,
                    default_currency=request.currency,
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            return Error(CartErrors.network("malformed cart document", path="/cart/sync", cause=str(e)))

    async def validate(self, request: ValidateRequest) -> Result[ValidationReport, CartError]:
        return await self._send(
            "POST", "/cart/validate", ValidateResponse, ValidateResponse.to_domain,
            json=request.to_payload(),
        )

    async def estimate(self, request: EstimateRequest) -> Result[Estimate, CartError]:
        return await self._send(
            "POST", "/cart/estimate", EstimateResponse,
            lambda r: Estimate(shipping=r.shipping, tax=r.tax),
            json=request.to_payload(),
        )

    async def heartbeat(self, user_id: str | None) -> Result[None, CartError]:
        """Fire-and-forget ping; any 2xx counts, whatever the body."""
        match await self._request("POST", "/cart/heartbeat", json={"userId": user_id}):
            case Ok(_):
                return Ok(None)
            case Error(e):
                return Error(e)

    # ─── Checkout ──────────────────────────────────────────────────────────────

    async def create_order(self, request: OrderRequest) -> Result[OrderReceipt, CartError]:
        return await self._send(
            "POST",
            "/cart/create-order",
            OrderResponse,
            lambda r: OrderReceipt(order_id=r.order_id, total=r.total),
            json=request.to_payload(),
            headers=_idempotency_header(),
        )

    async def cancel_order(self, user_id: str | None, order_id: str) -> Result[None, CartError]:
        return await self._send(
            "POST",
            "/cart/cancel-order",
            Envelope,
            _discard,
            json={"userId": user_id, "orderId": order_id},
            headers=_idempotency_header(),
        )

    async def create_checkout_session(
        self, request: SessionRequest
    ) -> Result[CheckoutSession, CartError]:
        path = {
            PaymentProvider.STRIPE: "/stripe/cart-checkout",
            PaymentProvider.PAYPAL: "/paypal/create-order",
        }[request.provider]
        return await self._send(
            "POST", path, SessionResponse,
            lambda r: CheckoutSession(url=r.url, session_id=r.id),
            json=request.to_payload(),
        )

    async def seller_connected(self, seller_user_id: str) -> Result[bool, CartError]:
        return await self._send(
            "GET",
            "/connect/stripe/account",
            SellerAccountResponse,
            lambda r: r.connected,
            params={"userId": seller_user_id},
        )

    # ─── Internals ─────────────────────────────────────────────────────────────

    async def _send[M: Envelope, T](
        self,
        method: str,
        path: str,
        model: type[M],
        convert: Callable[[M], T],
        **kwargs: Any,
    ) -> Result[T, CartError]:
        match await self._request(method, path, **kwargs):
            case Error(e):
                return Error(e)
            case Ok(response):
                pass

        try:
            body = model.model_validate_json(response.content)
        except ValidationError as e:
            logger.warning("http.bad_body", method=method, path=path, errors=e.error_count())
            return Error(CartErrors.network(f"{method} {path} returned malformed body", path=path))

        if not body.ok:
            return Error(CartErrors.network(body.error or f"{method} {path} rejected", path=path))
        return Ok(convert(body))

    async def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> Result[httpx.Response, CartError]:
        sent = await L.catching_async(
            lambda: self._client.request(method, path, **kwargs),
            on_error=lambda e: CartErrors.network(f"{method} {path} failed", path=path, cause=str(e)),
        )
        match sent:
            case Error(e):
                logger.warning("http.request_failed", method=method, path=path, error=str(e))
                return Error(e)
            case Ok(response):
                pass

        if response.is_error:
            logger.warning("http.bad_status", method=method, path=path, status=response.status_code)
            return Error(
                CartErrors.network(
                    f"{method} {path} returned {response.status_code}",
                    path=path,
                    status=response.status_code,
                )
            )
        return Ok(response)


def _discard(_: Envelope) -> None:
    return None


def _idempotency_header() -> dict[str, str]:
    return {"Idempotency-Key": uuid.uuid4().hex}


__all__ = (
    "Envelope",
    "SyncResponse",
    "ValidateResponse",
    "EstimateResponse",
    "OrderResponse",
    "SessionResponse",
    "SellerAccountResponse",
    "HttpCartApi",
)
