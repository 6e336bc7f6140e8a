import asyncio

import pytest
from kungfu import Error, Ok

from cartsync.model import CartSnapshot, LineItem
from cartsync.store import ChangeOrigin
from cartsync.sync import MergeKind, SyncCoordinator, SyncRequest, SyncState, resolve_merge


def line(pid, qty, *, line_id=None, price=100, at=0, ceiling=None):
    return LineItem(
        line_id=line_id or f"l-{pid}",
        product_id=pid,
        variant_id=None,
        title=pid.title(),
        image=f"{pid}.png",
        unit_price=price,
        quantity=qty,
        last_updated_at=at,
        stock_ceiling=ceiling,
    )


def snapshot(*items, version=1, writer="c_other"):
    return CartSnapshot(
        version=version,
        items=tuple(items),
        discounts=(),
        currency="USD",
        last_writer_client_id=writer,
        updated_at=0,
    )


def quantities(items):
    return {i.product_id: i.quantity for i in items}


@pytest.fixture
def coordinator(store, service, events):
    sync = SyncCoordinator(store, service, service, client_id="c_me", push_delay=0.01, events=events)
    yield sync
    sync.detach()


def doc(version, *lines, writer="c_other"):
    return {
        "version": version,
        "items": [
            {"productId": pid, "variantId": None, "qty": qty, "price": price, "lineUpdatedAt": 1}
            for pid, qty, price in lines
        ],
        "discounts": [],
        "currency": "USD",
        "lastClientId": writer,
        "updatedAt": 1,
    }


# ─── resolve_merge ─────────────────────────────────────────────────────────────


def test_merge_sums_shared_lines_and_keeps_both_sides(clock):
    outcome = resolve_merge(
        [line("a", 2)],
        snapshot(line("a", 1, line_id="r-a"), line("b", 3, line_id="r-b"), version=4),
        clock=clock,
    )

    assert outcome.kind is MergeKind.MERGED
    assert quantities(outcome.items) == {"a": 3, "b": 3}
    assert [i.product_id for i in outcome.items] == ["a", "b"]
    assert outcome.items[0].line_id == "l-a"
    assert outcome.base_version == 4


def test_merge_clamps_sum_to_local_ceiling(clock):
    outcome = resolve_merge([line("a", 2, ceiling=3)], snapshot(line("a", 2)), clock=clock)

    assert outcome.items[0].quantity == 3


def test_merge_takes_remote_price(clock):
    outcome = resolve_merge([line("a", 1, price=100)], snapshot(line("a", 2, price=120)), clock=clock)

    assert outcome.items[0].unit_price == 120


def test_identical_carts_are_a_reload_echo(clock):
    local = [line("a", 2), line("b", 1)]

    outcome = resolve_merge(local, snapshot(line("a", 2, line_id="r-a"), line("b", 1)), clock=clock)

    assert outcome.kind is MergeKind.RELOAD_ECHO
    assert quantities(outcome.items) == {"a": 2, "b": 1}
    assert outcome.items[0].line_id == "l-a"


def test_both_empty_is_noop(clock):
    assert resolve_merge([], None, clock=clock).kind is MergeKind.NOOP
    assert resolve_merge([], snapshot(version=3), clock=clock).kind is MergeKind.NOOP


def test_guest_cart_against_missing_document_is_merged(clock):
    outcome = resolve_merge([line("a", 2)], None, clock=clock)

    assert outcome.kind is MergeKind.MERGED
    assert quantities(outcome.items) == {"a": 2}
    assert outcome.base_version == 0


def test_merge_unions_discounts_local_first(clock, save10, five_off):
    remote = CartSnapshot(2, (line("a", 1),), (five_off, save10), "USD", None, 0)

    outcome = resolve_merge([line("b", 1)], remote, local_discounts=(save10,), clock=clock)

    assert [d.code for d in outcome.discounts] == ["SAVE10", "FIVEOFF"]


# ─── Push ──────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_bursts_of_mutations_collapse_into_one_push(coordinator, store, service, tea, mug):
    coordinator.attach("u1")

    store.add_item(tea)
    store.add_item(tea)
    store.add_item(mug)
    assert coordinator.state is SyncState.PENDING_PUSH

    await asyncio.sleep(0.05)

    assert service.calls["sync"] == 1
    document = service.document("u1")
    assert document["version"] == 1
    assert {(i["productId"], i["qty"]) for i in document["items"]} == {("p-tea", 2), ("p-mug", 1)}
    assert coordinator.state is SyncState.IDLE


@pytest.mark.asyncio
async def test_own_echo_is_not_reapplied(coordinator, store, service, tea):
    origins = []
    store.subscribe(lambda change: origins.append(change.origin))
    coordinator.attach("u1")
    store.add_item(tea)

    result = await coordinator.push_now()

    assert isinstance(result, Ok)
    assert origins == [ChangeOrigin.LOCAL]
    assert coordinator.echo_pending is False
    assert coordinator.last_seen_version == 1
    assert store.state.server_version == 1


@pytest.mark.asyncio
async def test_push_payload_carries_removals_and_base_version(coordinator, store, service, tea, mug):
    coordinator.attach("u1")
    tea_line = store.add_item(tea).value
    store.add_item(mug)
    await coordinator.push_now()

    store.remove_item(tea_line.line_id)
    await coordinator.push_now()

    document = service.document("u1")
    assert document["version"] == 2
    assert [i["productId"] for i in document["items"]] == ["p-mug"]


@pytest.mark.asyncio
async def test_failed_push_restores_removals_and_clears_echo(coordinator, store, service, tea):
    coordinator.attach("u1")
    tea_line = store.add_item(tea).value
    store.remove_item(tea_line.line_id)
    service.fail("sync")

    result = await coordinator.push_now()

    assert isinstance(result, Error)
    assert coordinator.echo_pending is False
    assert store.take_removed_keys() == ["p-tea::"]


@pytest.mark.asyncio
async def test_push_without_identity_is_invalid(coordinator):
    assert isinstance(await coordinator.push_now(), Error)


@pytest.mark.asyncio
async def test_detached_store_changes_are_not_pushed(coordinator, store, service, tea):
    coordinator.attach("u1")
    coordinator.detach()

    store.add_item(tea)
    await asyncio.sleep(0.03)

    assert service.calls["sync"] == 0


class GatedCartApi:
    """Holds every sync until `gate` opens; records what was sent."""

    def __init__(self, service):
        self._service = service
        self.requests = []
        self.gate = asyncio.Event()

    async def sync(self, request):
        self.requests.append(request)
        await self.gate.wait()
        return await self._service.sync(request)


@pytest.mark.asyncio
async def test_push_requested_mid_flight_waits_for_the_ack(store, service, tea, mug):
    api = GatedCartApi(service)
    sync = SyncCoordinator(store, api, service, client_id="c_me", push_delay=10)
    origins = []
    store.subscribe(lambda change: origins.append(change.origin))
    sync.attach("u1")

    store.add_item(tea)
    first = asyncio.create_task(sync.push_now())
    await asyncio.sleep(0.01)
    store.add_item(mug)
    second = asyncio.create_task(sync.push_now())
    await asyncio.sleep(0.01)

    assert len(api.requests) == 1
    assert sync.state is SyncState.PUSHING

    api.gate.set()
    await first
    await second
    sync.detach()

    assert [r.base_version for r in api.requests] == [0, 1]
    assert [i.product_id for i in api.requests[1].items] == ["p-tea", "p-mug"]
    assert service.document("u1")["version"] == 2
    assert ChangeOrigin.REMOTE not in origins
    assert sync.echo_pending is False
    assert sync.last_seen_version == 2


# ─── Pull ──────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_remote_change_is_adopted_without_pushing_back(coordinator, store, service, tea):
    coordinator.attach("u1")
    local = store.add_item(tea).value
    await coordinator.push_now()

    service.write_document("u1", doc(5, ("p-tea", 4, 450), ("p-lamp", 1, 3200)))

    assert quantities(store.state.items) == {"p-tea": 4, "p-lamp": 1}
    assert store.state.by_key("p-tea::").line_id == local.line_id
    assert store.state.server_version == 5
    assert coordinator.state is SyncState.IDLE


def test_stale_snapshots_are_dropped(coordinator, store):
    assert coordinator.on_remote(snapshot(line("a", 1), version=3)) is True
    assert coordinator.on_remote(snapshot(line("a", 9), version=2)) is False
    assert coordinator.on_remote(snapshot(line("a", 9), version=3)) is False

    assert quantities(store.state.items) == {"a": 1}
    assert coordinator.last_seen_version == 3


def test_echo_is_discarded_only_once(coordinator, store):
    coordinator._echoes_pending = 1

    assert coordinator.on_remote(snapshot(line("a", 1), version=1, writer="c_me")) is False
    assert coordinator.on_remote(snapshot(line("a", 2), version=2, writer="c_me")) is True


def test_each_push_discards_its_own_echo(coordinator, store):
    coordinator._echoes_pending = 2

    assert coordinator.on_remote(snapshot(line("a", 1), version=1, writer="c_me")) is False
    assert coordinator.on_remote(snapshot(line("a", 2), version=2, writer="c_me")) is False
    assert coordinator.echo_pending is False
    assert coordinator.on_remote(snapshot(line("a", 3), version=3, writer="c_me")) is True


# ─── Sign-in merge ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_sign_in_merge_unions_and_pushes(coordinator, store, service, events, tea):
    store.add_item(tea, quantity=2)
    service.write_document("u1", doc(2, ("p-tea", 1, 450), ("p-lamp", 3, 3200)))

    result = await coordinator.merge_on_sign_in("u1")

    assert result.value.kind is MergeKind.MERGED
    assert quantities(store.state.items) == {"p-tea": 3, "p-lamp": 3}
    document = service.document("u1")
    assert document["version"] == 3
    assert {(i["productId"], i["qty"]) for i in document["items"]} == {("p-tea", 3), ("p-lamp", 3)}
    assert events.named("cart_merged_guest_to_user") == [
        {"serverCount": 2, "guestCount": 1, "mergedCount": 2}
    ]


@pytest.mark.asyncio
async def test_reload_echo_adopts_remote_without_pushing(coordinator, store, service, events, tea):
    store.add_item(tea, quantity=2)
    service.write_document("u1", doc(7, ("p-tea", 2, 450)))

    result = await coordinator.merge_on_sign_in("u1")

    assert result.value.kind is MergeKind.RELOAD_ECHO
    assert quantities(store.state.items) == {"p-tea": 2}
    assert service.calls["sync"] == 0
    assert store.state.server_version == 7
    assert "cart_merge_skipped_duplicate" in events.names()


@pytest.mark.asyncio
async def test_merge_runs_once_per_user(coordinator, store, service, tea):
    store.add_item(tea)

    await coordinator.merge_on_sign_in("u1")
    second = await coordinator.merge_on_sign_in("u1")

    assert second.value.kind is MergeKind.NOOP
    assert service.calls["fetch"] == 1


@pytest.mark.asyncio
async def test_failed_fetch_leaves_cart_and_retries_next_time(coordinator, store, service, tea):
    store.add_item(tea, quantity=2)
    before = store.state
    service.fail("fetch")

    assert isinstance(await coordinator.merge_on_sign_in("u1"), Error)
    assert store.state is before

    assert isinstance(await coordinator.merge_on_sign_in("u1"), Ok)
    assert service.calls["fetch"] == 2


@pytest.mark.asyncio
async def test_attach_after_merge_ignores_own_write(coordinator, store, service, tea):
    store.add_item(tea, quantity=2)
    await coordinator.merge_on_sign_in("u1")
    origins = []
    store.subscribe(lambda change: origins.append(change.origin))

    coordinator.attach("u1")

    assert origins == []
    assert coordinator.subscribed


# ─── Server write semantics ────────────────────────────────────────────────────


def request(*items, removed=(), client="c_me"):
    return SyncRequest(
        user_id="u1",
        client_id=client,
        items=tuple(items),
        removed_keys=tuple(removed),
        discounts=(),
        currency="USD",
        base_version=0,
    )


@pytest.mark.asyncio
async def test_tombstone_beats_stale_line_from_another_device(service, clock):
    added_at = clock()
    await service.sync(request(line("p-tea", 1, at=added_at)))
    await service.sync(request(removed=["p-tea::"]))

    stale = await service.sync(request(line("p-tea", 1, at=added_at), client="c_old"))

    assert stale.value.items == ()
    assert stale.value.version == 3


@pytest.mark.asyncio
async def test_line_newer_than_tombstone_is_restored(service, clock):
    await service.sync(request(line("p-tea", 1, at=clock())))
    await service.sync(request(removed=["p-tea::"]))

    restored = await service.sync(request(line("p-tea", 2, at=clock())))

    assert [(i.product_id, i.quantity) for i in restored.value.items] == [("p-tea", 2)]


@pytest.mark.asyncio
async def test_older_line_does_not_overwrite_newer(service, clock):
    older = clock()
    newer = clock()
    await service.sync(request(line("p-tea", 5, at=newer)))

    result = await service.sync(request(line("p-tea", 1, at=older), client="c_old"))

    assert result.value.items[0].quantity == 5
    assert result.value.last_writer_client_id == "c_old"
