"""
CheckoutOrchestrator — validate, then order + payment session as a saga.

    clicked → validate → seller/provider gate → drift? → create order → session
                                                  │                       │
                                                  └ adopt, block          └ fail: cancel order
"""

from __future__ import annotations

from typing import Any, Protocol

from kungfu import Error, LazyCoroResult, Ok, Result

from cartsync._types import EventEmitter, LineKey
from cartsync.checkout._saga import CompensationError, SagaStep, run_chain, step
from cartsync.checkout._types import (
    BlockReason,
    CheckoutContext,
    CheckoutOutcome,
    CheckoutSession,
    CheckoutStatus,
    OrderReceipt,
    OrderRequest,
    PaymentProvider,
    PendingNotice,
    SessionRequest,
    ValidateRequest,
    ValidationReport,
)
from cartsync.errors import CartError
from cartsync.model import hydrate_lines
from cartsync.observability import get_logger
from cartsync.store import LocalCartStore
from cartsync.timers import Debouncer

logger = get_logger("cartsync.checkout")


class CheckoutApi(Protocol):
    async def validate(self, request: ValidateRequest) -> Result[ValidationReport, CartError]:
        ...

    async def create_order(self, request: OrderRequest) -> Result[OrderReceipt, CartError]:
        ...

    async def cancel_order(self, user_id: str | None, order_id: str) -> Result[None, CartError]:
        ...

    async def create_checkout_session(
        self, request: SessionRequest
    ) -> Result[CheckoutSession, CartError]:
        ...

    async def seller_connected(self, seller_user_id: str) -> Result[bool, CartError]:
        ...


class CheckoutOrchestrator:
    """
    Example:
        checkout = CheckoutOrchestrator(api, store, context=CheckoutContext(user_id="u1"))
        outcome = await checkout.begin(PaymentProvider.STRIPE)

        match outcome.status:
            case CheckoutStatus.REDIRECT:
                open(outcome.redirect_url)
            case CheckoutStatus.BLOCKED if outcome.reason is BlockReason.VALIDATION_CHANGED:
                show(checkout.pending_notice, checkout.highlight_keys)
    """

    def __init__(
        self,
        api: CheckoutApi,
        store: LocalCartStore,
        *,
        context: CheckoutContext | None = None,
        events: EventEmitter | None = None,
        highlight_clear: float = 5.0,
    ) -> None:
        self._api = api
        self._store = store
        self._context = context or CheckoutContext()
        self._events = events
        self._notice: PendingNotice | None = None
        self._highlight: frozenset[LineKey] = frozenset()
        self._highlight_timer = Debouncer(
            highlight_clear, self._clear_highlight, name="checkout.highlight"
        )

    @property
    def context(self) -> CheckoutContext:
        return self._context

    def set_context(self, context: CheckoutContext) -> None:
        self._context = context

    @property
    def pending_notice(self) -> PendingNotice | None:
        return self._notice

    @property
    def highlight_keys(self) -> frozenset[LineKey]:
        return self._highlight

    def acknowledge_notice(self) -> None:
        self._notice = None

    def close(self) -> None:
        self._highlight_timer.cancel()

    # ─── Flow ──────────────────────────────────────────────────────────────────

    async def begin(self, provider: PaymentProvider) -> CheckoutOutcome:
        ctx = self._context
        state = self._store.state
        totals = state.totals
        self._emit(
            "cart_checkout_clicked",
            {"provider": provider.value, "subtotal": totals.subtotal, "total": totals.total},
        )

        match await self._api.validate(ValidateRequest(ctx.user_id, state.items, state.discounts)):
            case Error(e):
                logger.warning("checkout.validate_failed", provider=provider.value, error=str(e))
                return self._block(provider, BlockReason.VALIDATION_FAILED)
            case Ok(report):
                pass

        for rejection in report.rejected:
            self._emit("cart_promo_rejected", {"code": rejection.code, "reason": rejection.reason})
        if report.changed:
            self._emit("cart_validate_changed", _drift_detail(report))

        if not await self._seller_ready(ctx):
            return self._block(provider, BlockReason.SELLER_NOT_CONNECTED)
        if provider not in ctx.allowed_providers:
            return self._block(provider, BlockReason.PROVIDER_DISABLED)

        if report.changed:
            self._adopt(report, provider)
            return self._block(provider, BlockReason.VALIDATION_CHANGED, **_drift_detail(report))

        return await self._place(provider, report)

    async def _seller_ready(self, ctx: CheckoutContext) -> bool:
        seller = ctx.effective_seller
        if seller is None:
            return False
        match await self._api.seller_connected(seller):
            case Ok(connected):
                return connected
            case Error(e):
                logger.warning("checkout.seller_check_failed", seller=seller, error=str(e))
                return False

    def _adopt(self, report: ValidationReport, provider: PaymentProvider) -> None:
        """Take the server's cart as-is and flag what moved."""
        items = hydrate_lines(
            [v.to_wire() for v in report.items],
            self._store.state.items,
            id_factory=self._store.id_factory,
            clock=self._store.clock,
        )
        self._store.adopt_validated(items, report.discounts)

        self._notice = PendingNotice(report)
        self._highlight = frozenset(v.key for v in report.items)
        self._highlight_timer.schedule()

        for adjustment in report.adjustments:
            self._emit(
                "cart_inventory_adjustment",
                {"provider": provider.value, **adjustment.to_payload()},
            )
        logger.info(
            "checkout.drift_adopted",
            lines=len(items),
            removed=len(report.removed_item_ids),
            adjustments=len(report.adjustments),
        )

    async def _place(self, provider: PaymentProvider, report: ValidationReport) -> CheckoutOutcome:
        ctx = self._context
        seller = ctx.effective_seller
        currency = self._store.state.currency
        order = OrderRequest(
            user_id=ctx.user_id,
            items=report.items,
            discounts=report.discounts,
            currency=currency,
            seller_user_id=seller,
            site_id=ctx.site_id,
        )

        async def create_order() -> Result[OrderReceipt, CartError]:
            result = await self._api.create_order(order)
            match result:
                case Ok(receipt):
                    self._emit(
                        "order_created",
                        {"provider": provider.value, "orderId": receipt.order_id, "total": receipt.total},
                    )
            return result

        async def cancel_order(receipt: OrderReceipt) -> None:
            match await self._api.cancel_order(ctx.user_id, receipt.order_id):
                case Error(e):
                    raise CompensationError(f"cancel {receipt.order_id}: {e}")
            logger.info("checkout.order_cancelled", order_id=receipt.order_id)

        def open_session(
            receipt: OrderReceipt,
        ) -> SagaStep[tuple[OrderReceipt, CheckoutSession], CartError]:
            session = SessionRequest(
                provider=provider,
                order_id=receipt.order_id,
                items=report.items,
                discounts=report.discounts,
                currency=currency,
                seller_user_id=seller,
                site_id=ctx.site_id,
            )

            async def create_session() -> Result[tuple[OrderReceipt, CheckoutSession], CartError]:
                match await self._api.create_checkout_session(session):
                    case Ok(opened):
                        return Ok((receipt, opened))
                    case Error(e):
                        return Error(e)

            return step(LazyCoroResult(create_session))

        chain = step(LazyCoroResult(create_order), compensate=cancel_order).then(open_session)

        match await run_chain(chain):
            case Ok(placed):
                receipt, session = placed.value
                logger.info("checkout.redirect", provider=provider.value, order_id=receipt.order_id)
                return CheckoutOutcome(
                    CheckoutStatus.REDIRECT,
                    provider,
                    redirect_url=session.url,
                    order_id=receipt.order_id,
                    detail={"sessionId": session.session_id} if session.session_id else {},
                )
            case Error(failure):
                error = failure.error
                self._emit("cart_checkout_error", {"provider": provider.value, "message": error.message})
                logger.warning(
                    "checkout.failed",
                    provider=provider.value,
                    step=failure.step_failed,
                    rollback_complete=failure.rollback_complete,
                    error=str(error),
                )
                return CheckoutOutcome(CheckoutStatus.FAILED, provider, error=error)

    # ─── Internals ─────────────────────────────────────────────────────────────

    async def _clear_highlight(self) -> None:
        self._highlight = frozenset()

    def _block(self, provider: PaymentProvider, reason: BlockReason, **detail: Any) -> CheckoutOutcome:
        self._emit("cart_checkout_blocked", {"provider": provider.value, "reason": reason.value, **detail})
        return CheckoutOutcome.blocked(provider, reason, **detail)

    def _emit(self, name: str, payload: dict[str, Any]) -> None:
        if self._events is not None:
            self._events.emit(name, payload)


def _drift_detail(report: ValidationReport) -> dict[str, Any]:
    return {
        "removed": len(report.removed_item_ids),
        "adjustments": len(report.adjustments),
    }


__all__ = ("CheckoutApi", "CheckoutOrchestrator")
