from decimal import Decimal

import pytest
from kungfu import Error, Ok

from cartsync.errors import CartErrorKind
from cartsync.model import DiscountCode, DiscountKind, LineItem
from cartsync.pricing import DiscountCatalog, compute_totals, load_catalog, round_half_up


def line(price, qty, pid="p1"):
    return LineItem(
        line_id=f"l-{pid}",
        product_id=pid,
        variant_id=None,
        title=pid,
        image="",
        unit_price=price,
        quantity=qty,
        last_updated_at=0,
    )


def test_percent_code_on_single_line(save10):
    totals = compute_totals([line(1000, 1)], [save10])

    assert totals.subtotal == 1000
    assert totals.discount_amount == 100
    assert totals.total == 900


def test_stacked_discounts_clamp_to_subtotal():
    big = DiscountCode("BIG", DiscountKind.FIXED_AMOUNT, 800)
    bigger = DiscountCode("BIGGER", DiscountKind.FIXED_AMOUNT, 800)

    totals = compute_totals([line(1000, 1)], [big, bigger])

    assert totals.discount_amount == 1000
    assert totals.total == 0


def test_percent_applies_to_remaining_after_earlier_codes(save10, five_off):
    totals = compute_totals([line(2000, 1)], [five_off, save10])

    # 2000 - 500 = 1500 remaining; 10% of that is 150
    assert totals.discount_amount == 650
    assert totals.total == 1350


def test_percent_rounds_half_up():
    code = DiscountCode("HALF", DiscountKind.PERCENT, 10)

    totals = compute_totals([line(5, 1)], [code])

    assert totals.discount_amount == 1
    assert round_half_up(Decimal("2.5")) == 3


@pytest.mark.parametrize(
    "items, codes",
    [
        ([], []),
        ([line(999, 3)], []),
        ([line(100, 1)], [DiscountCode("ALL", DiscountKind.PERCENT, 100)]),
        ([line(250, 2), line(75, 4, "p2")], [DiscountCode("X", DiscountKind.FIXED_AMOUNT, 10_000)]),
    ],
)
def test_totals_invariants(items, codes):
    totals = compute_totals(items, codes)

    assert totals.subtotal == sum(i.unit_price * i.quantity for i in items)
    assert 0 <= totals.discount_amount <= totals.subtotal
    assert totals.total == max(totals.subtotal - totals.discount_amount, 0)


def test_empty_cart_totals_are_zero(save10):
    totals = compute_totals([], [save10])

    assert (totals.subtotal, totals.discount_amount, totals.total) == (0, 0, 0)


# ─── DiscountCatalog ───────────────────────────────────────────────────────────


def test_apply_code_is_case_insensitive(save10):
    catalog = DiscountCatalog.of([save10])

    match catalog.apply_code((), "  save10 "):
        case Ok(applied):
            assert applied == (save10,)
        case Error(e):
            pytest.fail(str(e))


def test_apply_unknown_code_is_rejected_not_found(save10):
    catalog = DiscountCatalog.of([save10])

    result = catalog.apply_code((), "NOPE")

    assert isinstance(result, Error)
    assert result.value.kind is CartErrorKind.DISCOUNT_REJECTED
    assert result.value.reason == "not_found"


def test_apply_same_code_twice_is_rejected_duplicate(save10):
    catalog = DiscountCatalog.of([save10])

    result = catalog.apply_code((save10,), "Save10")

    assert isinstance(result, Error)
    assert result.value.reason == "duplicate"


def test_catalog_dedupes_later_list_wins(save10):
    override = DiscountCode("save10", DiscountKind.PERCENT, 15)

    catalog = DiscountCatalog.of([save10], [override])

    assert len(catalog) == 1
    assert catalog.find("SAVE10").amount == 15


@pytest.mark.asyncio
async def test_load_catalog_merges_global_and_site(service):
    result = await load_catalog(service, "u1", "site-1")

    assert isinstance(result, Ok)
    assert {c.code for c in result.value.codes} == {"SAVE10", "FIVEOFF"}


@pytest.mark.asyncio
async def test_load_catalog_tolerates_failed_scope(service):
    service.fail("site_codes")

    result = await load_catalog(service, "u1", "site-1")

    assert isinstance(result, Ok)
    assert [c.code for c in result.value.codes] == ["SAVE10"]
