import asyncio
from dataclasses import replace

import pytest
import pytest_asyncio
from kungfu import Error, LazyCoroResult, Ok

from cartsync.checkout import (
    BlockReason,
    CheckoutContext,
    CheckoutOrchestrator,
    CheckoutStatus,
    CompensationError,
    PaymentProvider,
    from_async,
    run_chain,
    step,
)
from cartsync.model import DiscountCode, DiscountKind
from cartsync.pricing import DiscountCatalog

SELLER = CheckoutContext(user_id="u1", seller_user_id="seller-1", site_id="site-1")


@pytest_asyncio.fixture
async def checkout(service, store, events):
    orchestrator = CheckoutOrchestrator(service, store, context=SELLER, events=events, highlight_clear=0.02)
    yield orchestrator
    orchestrator.close()


@pytest.fixture
def filled(store, mug, tea):
    store.add_item(mug)
    store.add_item(tea, quantity=2)
    return store


# ─── Happy path ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_clean_cart_redirects_to_payment(checkout, filled, service, events, save10):
    filled.apply_code(DiscountCatalog.of([save10]), "SAVE10")

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.status is CheckoutStatus.REDIRECT
    assert outcome.redirect_url == f"https://checkout.test/{outcome.order_id}"
    order = service.orders[outcome.order_id]
    assert order.total == 1710
    assert order.status == "pending_payment"
    assert events.named("order_created") == [
        {"provider": "stripe", "orderId": outcome.order_id, "total": 1710}
    ]


@pytest.mark.asyncio
async def test_paypal_redirect_carries_session_id(checkout, filled):
    outcome = await checkout.begin(PaymentProvider.PAYPAL)

    assert outcome.status is CheckoutStatus.REDIRECT
    assert outcome.redirect_url is None
    assert outcome.detail == {"sessionId": f"pp_{outcome.order_id}"}


@pytest.mark.asyncio
async def test_buyer_without_seller_sells_to_self(service, store, events, mug):
    service.connect_seller("u1")
    store.add_item(mug)
    checkout = CheckoutOrchestrator(service, store, context=CheckoutContext(user_id="u1"), events=events)

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.status is CheckoutStatus.REDIRECT
    assert service.orders[outcome.order_id].payload["sellerUserId"] == "u1"


# ─── Drift ─────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_price_drift_is_adopted_and_blocks(checkout, filled, service, events, mug):
    mug_line = filled.state.by_key("p-mug::")
    service.put_product(replace(mug, price=1200))

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.status is CheckoutStatus.BLOCKED
    assert outcome.reason is BlockReason.VALIDATION_CHANGED
    assert outcome.detail == {"removed": 0, "adjustments": 1}
    adopted = filled.state.by_key("p-mug::")
    assert adopted.unit_price == 1200
    assert adopted.line_id == mug_line.line_id
    assert checkout.pending_notice is not None
    assert checkout.highlight_keys == {"p-mug::", "p-tea::"}
    assert [a["reason"] for a in events.named("cart_inventory_adjustment")] == ["price"]
    assert service.orders == {}


@pytest.mark.asyncio
async def test_unavailable_line_is_removed_and_stock_clamped(checkout, filled, service, mug, tea):
    filled.update_quantity(filled.state.by_key("p-mug::").line_id, 5)
    service.put_product(replace(tea, stock=0))
    service.put_product(replace(mug, stock=3))

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.detail == {"removed": 1, "adjustments": 2}
    assert [(i.product_id, i.quantity) for i in filled.state.items] == [("p-mug", 3)]


@pytest.mark.asyncio
async def test_reconfirm_after_drift_succeeds(checkout, filled, service, mug):
    service.put_product(replace(mug, price=1200))
    await checkout.begin(PaymentProvider.STRIPE)
    checkout.acknowledge_notice()

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.status is CheckoutStatus.REDIRECT
    assert checkout.pending_notice is None


@pytest.mark.asyncio
async def test_highlight_clears_after_delay(checkout, filled, service, mug):
    service.put_product(replace(mug, price=1200))
    await checkout.begin(PaymentProvider.STRIPE)

    await asyncio.sleep(0.05)

    assert checkout.highlight_keys == frozenset()


@pytest.mark.asyncio
async def test_unknown_code_is_rejected_and_dropped(checkout, filled, events):
    ghost = DiscountCode("GHOST", DiscountKind.FIXED_AMOUNT, 100)
    filled.apply_code(DiscountCatalog.of([ghost]), "GHOST")

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.reason is BlockReason.VALIDATION_CHANGED
    assert events.named("cart_promo_rejected") == [{"code": "GHOST", "reason": "not_found"}]
    assert filled.state.discounts == ()


# ─── Gates ─────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_validation_failure_blocks(checkout, filled, service, events):
    service.fail("validate")

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.reason is BlockReason.VALIDATION_FAILED
    assert events.named("cart_checkout_blocked") == [
        {"provider": "stripe", "reason": "validation_failed"}
    ]


@pytest.mark.asyncio
async def test_unconnected_seller_blocks(checkout, filled, service):
    checkout.set_context(replace(SELLER, seller_user_id="seller-2"))

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.reason is BlockReason.SELLER_NOT_CONNECTED
    assert service.calls["create_order"] == 0


@pytest.mark.asyncio
async def test_failed_seller_check_counts_as_not_connected(checkout, filled, service):
    service.fail("seller_connected")

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.reason is BlockReason.SELLER_NOT_CONNECTED


@pytest.mark.asyncio
async def test_anonymous_checkout_without_seller_blocks(service, store, mug):
    store.add_item(mug)
    checkout = CheckoutOrchestrator(service, store)

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.reason is BlockReason.SELLER_NOT_CONNECTED
    assert service.calls["seller_connected"] == 0


@pytest.mark.asyncio
async def test_disabled_provider_blocks(checkout, filled):
    checkout.set_context(replace(SELLER, allowed_providers=frozenset({PaymentProvider.STRIPE})))

    outcome = await checkout.begin(PaymentProvider.PAYPAL)

    assert outcome.reason is BlockReason.PROVIDER_DISABLED


# ─── Rollback ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_session_failure_cancels_order(checkout, filled, service, events):
    service.fail("create_checkout_session")

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.status is CheckoutStatus.FAILED
    (order,) = service.orders.values()
    assert order.status == "cancelled"
    assert events.named("cart_checkout_error")[0]["provider"] == "stripe"


@pytest.mark.asyncio
async def test_refused_cancel_leaves_order_pending(checkout, filled, service):
    service.fail("create_checkout_session")
    service.fail("cancel_order")

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.status is CheckoutStatus.FAILED
    (order,) = service.orders.values()
    assert order.status == "pending_payment"


@pytest.mark.asyncio
async def test_order_failure_needs_no_rollback(checkout, filled, service):
    service.fail("create_order")

    outcome = await checkout.begin(PaymentProvider.STRIPE)

    assert outcome.status is CheckoutStatus.FAILED
    assert service.calls["cancel_order"] == 0
    assert service.calls["create_checkout_session"] == 0


# ─── Saga ──────────────────────────────────────────────────────────────────────


def ok(value):
    async def run():
        return Ok(value)

    return LazyCoroResult(run)


def err(error):
    async def run():
        return Error(error)

    return LazyCoroResult(run)


@pytest.mark.asyncio
async def test_saga_runs_both_steps():
    chain = step(ok(2)).then(lambda n: step(ok(n * 10)))

    result = await run_chain(chain)

    assert result.value.value == 20
    assert result.value.steps_executed == 2


@pytest.mark.asyncio
async def test_saga_compensates_first_step_when_second_fails():
    undone = []

    async def undo(value):
        undone.append(value)

    chain = step(ok("order-1"), compensate=undo).then(lambda _: step(err("declined")))

    result = await run_chain(chain)

    assert isinstance(result, Error)
    assert result.value.error == "declined"
    assert result.value.step_failed == 2
    assert result.value.rollback_complete
    assert undone == ["order-1"]


@pytest.mark.asyncio
async def test_saga_reports_failed_compensation():
    async def undo(value):
        raise CompensationError("refused")

    chain = step(ok(1), compensate=undo).then(lambda _: step(err("boom")))

    result = await run_chain(chain)

    assert result.value.compensators_run == 0
    assert result.value.compensators_failed == 1
    assert not result.value.rollback_complete


@pytest.mark.asyncio
async def test_saga_step_from_raising_coroutine():
    async def explode():
        raise RuntimeError("gateway down")

    chain = step(ok(1)).then(lambda _: from_async(explode, on_error=lambda e: str(e)))

    result = await run_chain(chain)

    assert result.value.error == "gateway down"
