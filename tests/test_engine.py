import asyncio
import random
from dataclasses import replace

import pytest
import pytest_asyncio
from kungfu import Error, Ok

from cartsync import CartEngine, load_settings
from cartsync.checkout import BlockReason, CheckoutStatus, PaymentProvider
from cartsync.sync import MergeKind


@pytest.fixture
def settings():
    return load_settings(
        push_debounce_seconds=0.01,
        estimate_debounce_seconds=0.01,
        analytics_flush_seconds=0.01,
        highlight_clear_seconds=0.01,
    )


@pytest_asyncio.fixture
async def engine(service, settings, kv, clock):
    cart = CartEngine.in_memory(service, settings=settings, kv=kv, clock=clock, rng=random.Random(3))
    cart.start()
    yield cart
    await cart.close()


def server_doc(version, *lines):
    return {
        "version": version,
        "items": [
            {"productId": pid, "variantId": None, "qty": qty, "price": price, "lineUpdatedAt": 1}
            for pid, qty, price in lines
        ],
        "discounts": [],
        "currency": "USD",
        "lastClientId": "c_other",
        "updatedAt": 1,
    }


def quantities(engine):
    return {i.product_id: i.quantity for i in engine.store.state.items}


@pytest.mark.asyncio
async def test_guest_cart_merges_into_account_on_sign_in(engine, service, tea):
    engine.store.add_item(tea, quantity=2)
    service.write_document("u1", server_doc(4, ("p-mug", 1, 1000)))

    result = await engine.sign_in("u1")

    assert result.value.kind is MergeKind.MERGED
    assert quantities(engine) == {"p-mug": 1, "p-tea": 2}
    assert service.document("u1")["version"] == 5
    assert engine.user_id == "u1"
    assert engine.sync.subscribed


@pytest.mark.asyncio
async def test_guest_events_reach_sink_after_sign_in(engine, service, tea):
    engine.store.add_item(tea)

    await engine.sign_in("u1")

    names = [e["name"] for batch in service.batches["u1"] for e in batch["events"]]
    assert names[0] == "cart_add"


@pytest.mark.asyncio
async def test_signed_in_mutations_are_pushed(engine, service, lamp):
    await engine.sign_in("u1")

    engine.store.add_item(lamp)
    await asyncio.sleep(0.05)

    items = service.document("u1")["items"]
    assert [(i["productId"], i["qty"]) for i in items] == [("p-lamp", 1)]


@pytest.mark.asyncio
async def test_other_device_changes_show_up(engine, service):
    await engine.sign_in("u1")

    service.write_document("u1", server_doc(9, ("p-pan", 2, 1800)))

    assert quantities(engine) == {"p-pan": 2}


@pytest.mark.asyncio
async def test_discounts_follow_identity_and_site(engine, tea):
    engine.store.add_item(tea)
    engine.set_seller("seller-1", "site-1")

    await engine.sign_in("u1")

    assert {c.code for c in engine.discounts.codes} == {"SAVE10", "FIVEOFF"}
    assert isinstance(engine.apply_code("fiveoff"), Ok)
    assert engine.store.state.totals.discount_amount == 450


@pytest.mark.asyncio
async def test_rejected_code_is_reported(engine):
    await engine.sign_in("u1")

    result = engine.apply_code("NOPE")

    assert isinstance(result, Error)
    rejected = [e for e in engine.analytics.buffered if e.name == "cart_promo_rejected"]
    assert rejected[0].payload["reason"] == "not_found"


@pytest.mark.asyncio
async def test_failed_merge_still_attaches(engine, service, tea):
    engine.store.add_item(tea)
    service.fail("fetch")

    result = await engine.sign_in("u1")

    assert isinstance(result, Error)
    assert engine.sync.subscribed
    assert quantities(engine) == {"p-tea": 1}


@pytest.mark.asyncio
async def test_checkout_through_engine(engine, mug):
    engine.store.add_item(mug)
    engine.set_seller("seller-1", "site-1")
    await engine.sign_in("u1")

    outcome = await engine.checkout.begin(PaymentProvider.STRIPE)

    assert outcome.status is CheckoutStatus.REDIRECT
    assert engine.checkout.context.user_id == "u1"


@pytest.mark.asyncio
async def test_validated_drift_reaches_the_synced_document(engine, service, mug, tea):
    engine.set_seller("seller-1", "site-1")
    await engine.sign_in("u1")
    engine.store.add_item(mug, quantity=5)
    engine.store.add_item(tea, quantity=2)
    await asyncio.sleep(0.05)
    service.put_product(replace(tea, stock=0))
    service.put_product(replace(mug, stock=3))

    outcome = await engine.checkout.begin(PaymentProvider.STRIPE)
    await asyncio.sleep(0.05)

    assert outcome.reason is BlockReason.VALIDATION_CHANGED
    local = {(i.product_id, i.quantity) for i in engine.store.state.items}
    remote = {(i["productId"], i["qty"]) for i in service.document("u1")["items"]}
    assert local == remote == {("p-mug", 3)}

    mug_line = engine.store.state.by_key("p-mug::")
    engine.store.update_quantity(mug_line.line_id, 2)
    await asyncio.sleep(0.05)

    assert [(i["productId"], i["qty"]) for i in service.document("u1")["items"]] == [("p-mug", 2)]


@pytest.mark.asyncio
async def test_sign_out_detaches_and_forgets_codes(engine, service, tea):
    await engine.sign_in("u1")

    await engine.sign_out()
    engine.store.add_item(tea)
    await asyncio.sleep(0.03)

    assert engine.user_id is None
    assert not engine.sync.subscribed
    assert len(engine.discounts) == 0
    assert service.calls["sync"] == 0
    assert engine.checkout.context.user_id is None


@pytest.mark.asyncio
async def test_cart_survives_restart(service, settings, kv, clock, mug):
    first = CartEngine.in_memory(service, settings=settings, kv=kv, clock=clock)
    first.store.add_item(mug, quantity=2)
    await first.close()

    second = CartEngine.in_memory(service, settings=settings, kv=kv, clock=clock)

    assert second.store.state == first.store.state
    assert second.sync.client_id == first.sync.client_id
    await second.close()


@pytest.mark.asyncio
async def test_crosssell_and_estimate_follow_cart(engine, mug):
    engine.store.add_item(mug)
    await asyncio.sleep(0.05)
    await engine.crosssell.settle()

    assert [c.product_id for c in engine.crosssell.latest] == ["p-tea", "p-kettle", "p-pan"]
    assert engine.estimates.estimate.shipping == 500
