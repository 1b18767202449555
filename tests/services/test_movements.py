"""
MovementService: receive, receive packages, sell with auto-unpack, adjust.

Stock is always re-derived from the ledger, so most assertions read it back
through StockSelector.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from inventory_kernel.domain.dtos import SaleLine
from inventory_kernel.domain.movement import AdjustmentDirection, MovementType
from inventory_kernel.exceptions import (
    ConversionNotFoundError,
    InsufficientPackagesToUnpackError,
    InsufficientStockError,
    InvalidCurrencyError,
    InvalidQuantityError,
    NotAPackagingUnitError,
    ProductNotFoundError,
    ProductNotPhysicalError,
)
from inventory_kernel.models.handling_unit import HandlingUnit
from inventory_kernel.models.ledger import LedgerEntry
from inventory_kernel.services.movement_service import MovementService

WAREHOUSE_A = uuid4()
WAREHOUSE_B = uuid4()


def line(quantity, unit_code="EA") -> SaleLine:
    return SaleLine(quantity=Decimal(str(quantity)), unit_code=unit_code)


def ledger_count(session) -> int:
    return session.execute(select(func.count(LedgerEntry.id))).scalar_one()


def intact_packages(session, product_id) -> int:
    return session.execute(
        select(func.count(HandlingUnit.id)).where(
            HandlingUnit.product_id == product_id,
            HandlingUnit.unpacked_at.is_(None),
        )
    ).scalar_one()


# =============================================================================
# Receive
# =============================================================================


class TestReceive:
    @pytest.mark.parametrize(
        "quantities, unit_code, expected",
        [
            (["1", "2", "3"], "EA", Decimal("6")),
            (["2", "1"], "PK", Decimal("18")),
            (["0.5", "0.25"], "CS", Decimal("18")),
        ],
    )
    def test_sum_of_receipts_in_base_unit(
        self, movement_service, org_id, product_id, on_hand, quantities, unit_code, expected,
    ):
        for quantity in quantities:
            movement_service.receive(org_id, product_id, quantity, unit_code)
        assert on_hand(product_id) == expected

    def test_result(self, movement_service, org_id, product_id):
        result = movement_service.receive(org_id, product_id, 2, "PK", unit_cost="3.10", currency="eur")
        assert result.success
        assert result.quantity_in_base == Decimal("12")
        assert result.unit_code == "EA"
        assert len(result.entry_ids) == 1
        assert result.to_dict()["quantity_in_base"] == Decimal("12")

    def test_entry_keeps_entered_unit(self, movement_service, stock_selector, org_id, product_id):
        movement_service.receive(org_id, product_id, 2, "PK")
        (entry,) = stock_selector.history(org_id, product_id)
        assert entry.movement_type is MovementType.RECEIPT
        assert entry.unit_code == "PK"
        assert entry.quantity_in_entered_unit == Decimal("2")
        assert entry.quantity_in_base == Decimal("12")

    def test_product_override_applies(self, movement_service, create_product, org_id, on_hand):
        """1 PK = 10 EA for this product although the global table says 6."""
        product = create_product(overrides={"PK": "10"})
        movement_service.receive(org_id, product, 3, "PK")
        assert on_hand(product) == Decimal("30")

    @pytest.mark.parametrize("quantity", [0, -1, "NaN", "abc"])
    def test_invalid_quantity(self, movement_service, org_id, product_id, quantity):
        with pytest.raises(InvalidQuantityError):
            movement_service.receive(org_id, product_id, quantity, "EA")

    def test_float_rejected(self, movement_service, org_id, product_id):
        with pytest.raises(InvalidQuantityError):
            movement_service.receive(org_id, product_id, 1.5, "EA")

    def test_invalid_currency(self, movement_service, org_id, product_id):
        with pytest.raises(InvalidCurrencyError):
            movement_service.receive(org_id, product_id, 1, "EA", unit_cost="1", currency="ZZZ")

    def test_unknown_product(self, movement_service, org_id, standard_units):
        with pytest.raises(ProductNotFoundError):
            movement_service.receive(org_id, uuid4(), 1, "EA")

    def test_product_of_other_organization(self, movement_service, product_id):
        with pytest.raises(ProductNotFoundError):
            movement_service.receive(uuid4(), product_id, 1, "EA")

    def test_non_physical_product(self, movement_service, create_product, org_id):
        service = create_product(is_physical=False)
        with pytest.raises(ProductNotPhysicalError):
            movement_service.receive(org_id, service, 1, "EA")

    def test_unconvertible_unit(self, movement_service, org_id, product_id, session):
        with pytest.raises(ConversionNotFoundError):
            movement_service.receive(org_id, product_id, 1, "KGM")
        assert ledger_count(session) == 0


# =============================================================================
# Receive packages
# =============================================================================


class TestReceivePackages:
    def test_packaged_stock_is_tracked_separately(
        self, movement_service, stock_selector, org_id, product_id, session,
    ):
        result = movement_service.receive_packages(org_id, product_id, "PK", 2, codes=["SSCC-1", "SSCC-2"])
        assert result.package_size == Decimal("6")
        assert result.quantity_in_base == Decimal("12")
        assert len(result.handling_unit_ids) == 2

        snapshot = stock_selector.current_stock(org_id, product_id)
        assert snapshot.on_hand == Decimal("0")
        assert snapshot.packaged == Decimal("12")
        assert snapshot.total == Decimal("12")
        assert intact_packages(session, product_id) == 2

    def test_override_sets_package_size(self, movement_service, create_product, org_id):
        product = create_product(overrides={"CS": "20"})
        result = movement_service.receive_packages(org_id, product, "CS", 1)
        assert result.package_size == Decimal("20")

    def test_loose_unit_rejected(self, movement_service, org_id, product_id):
        with pytest.raises(NotAPackagingUnitError):
            movement_service.receive_packages(org_id, product_id, "EA", 1)

    @pytest.mark.parametrize("packages", [0, -1, True, Decimal("1.5")])
    def test_package_count_must_be_positive_integer(self, movement_service, org_id, product_id, packages):
        with pytest.raises(InvalidQuantityError):
            movement_service.receive_packages(org_id, product_id, "PK", packages)

    def test_code_count_must_match(self, movement_service, org_id, product_id):
        with pytest.raises(InvalidQuantityError):
            movement_service.receive_packages(org_id, product_id, "PK", 2, codes=["only-one"])


# =============================================================================
# Sell
# =============================================================================


class TestSellFromLooseStock:
    def test_selling_all_stock_drains_to_zero(self, movement_service, org_id, product_id, on_hand):
        movement_service.receive(org_id, product_id, 12, "EA")
        result = movement_service.sell(org_id, product_id, [line(12)])
        assert result.success
        assert not result.auto_unpacked
        assert on_hand(product_id) == Decimal("0")

    def test_selling_one_more_than_stock_fails_and_writes_nothing(
        self, movement_service, org_id, product_id, on_hand, session,
    ):
        movement_service.receive(org_id, product_id, 12, "EA")
        before = ledger_count(session)
        with pytest.raises(InsufficientStockError) as exc_info:
            movement_service.sell(org_id, product_id, [line(13)])
        assert exc_info.value.requested == Decimal("13")
        assert exc_info.value.available == Decimal("12")
        assert ledger_count(session) == before
        assert on_hand(product_id) == Decimal("12")

    def test_mixed_units_without_physical_packages_fail(
        self, movement_service, org_id, product_id, on_hand, session,
    ):
        """Receive 2 PK loose (12 EA); selling 1 PK + 8 EA (14 EA) fails."""
        movement_service.receive(org_id, product_id, 2, "PK")
        before = ledger_count(session)
        with pytest.raises(InsufficientStockError):
            movement_service.sell(org_id, product_id, [line(1, "PK"), line(8, "EA")])
        assert on_hand(product_id) == Decimal("12")
        assert ledger_count(session) == before

    def test_one_issue_entry_per_line(self, movement_service, stock_selector, org_id, product_id):
        movement_service.receive(org_id, product_id, 30, "EA")
        result = movement_service.sell(org_id, product_id, [line(1, "PK"), line(4, "EA")])
        assert result.quantity_in_base == Decimal("10")
        issues = [e for e in stock_selector.history(org_id, product_id) if e.movement_type is MovementType.ISSUE]
        assert [(e.unit_code, e.quantity_in_base) for e in issues] == [("PK", Decimal("6")), ("EA", Decimal("4"))]

    def test_return_remaining(self, movement_service, org_id, product_id):
        movement_service.receive(org_id, product_id, 10, "EA")
        result = movement_service.sell(org_id, product_id, [line(3)], return_remaining=True)
        assert result.total_qty_remaining == Decimal("7")
        assert movement_service.sell(org_id, product_id, [line(1)]).total_qty_remaining is None

    def test_no_lines(self, movement_service, org_id, product_id):
        with pytest.raises(InvalidQuantityError):
            movement_service.sell(org_id, product_id, [])

    def test_zero_quantity_line(self, movement_service, org_id, product_id):
        movement_service.receive(org_id, product_id, 10, "EA")
        with pytest.raises(InvalidQuantityError):
            movement_service.sell(org_id, product_id, [line(0)])

    def test_warehouse_scope(self, movement_service, org_id, product_id, on_hand):
        movement_service.receive(org_id, product_id, 5, "EA", warehouse_id=WAREHOUSE_A)
        movement_service.receive(org_id, product_id, 5, "EA", warehouse_id=WAREHOUSE_B)
        with pytest.raises(InsufficientStockError):
            movement_service.sell(org_id, product_id, [line(6)], warehouse_id=WAREHOUSE_A)
        movement_service.sell(org_id, product_id, [line(6)])
        assert on_hand(product_id) == Decimal("4")

    def test_organization_wide_sale_then_warehouse_sale(self, movement_service, org_id, product_id, on_hand):
        movement_service.receive(org_id, product_id, 10, "EA", warehouse_id=WAREHOUSE_A)
        movement_service.sell(org_id, product_id, [line(10)])
        assert on_hand(product_id, WAREHOUSE_A) == Decimal("0")
        with pytest.raises(InsufficientStockError):
            movement_service.sell(org_id, product_id, [line(10)], warehouse_id=WAREHOUSE_A)
        assert on_hand(product_id) == Decimal("0")

    def test_warehouse_sale_then_organization_wide_sale(self, movement_service, org_id, product_id, on_hand):
        movement_service.receive(org_id, product_id, 10, "EA", warehouse_id=WAREHOUSE_A)
        movement_service.sell(org_id, product_id, [line(10)], warehouse_id=WAREHOUSE_A)
        with pytest.raises(InsufficientStockError):
            movement_service.sell(org_id, product_id, [line(1)])
        assert on_hand(product_id) == Decimal("0")

    def test_stock_without_warehouse_is_used_first(self, movement_service, org_id, product_id, on_hand):
        movement_service.receive(org_id, product_id, 5, "EA")
        movement_service.receive(org_id, product_id, 5, "EA", warehouse_id=WAREHOUSE_A)
        movement_service.sell(org_id, product_id, [line(3)])
        assert on_hand(product_id, WAREHOUSE_A) == Decimal("5")
        assert on_hand(product_id) == Decimal("7")

    def test_line_spanning_warehouses_is_split_in_base_unit(
        self, movement_service, stock_selector, org_id, product_id, on_hand,
    ):
        movement_service.receive(org_id, product_id, 4, "EA", warehouse_id=WAREHOUSE_A)
        movement_service.receive(org_id, product_id, 4, "EA", warehouse_id=WAREHOUSE_B)
        result = movement_service.sell(org_id, product_id, [line(1, "PK")])

        issues = [e for e in stock_selector.history(org_id, product_id) if e.movement_type is MovementType.ISSUE]
        assert len(result.entry_ids) == 2
        assert sorted(e.quantity_in_base for e in issues) == [Decimal("2"), Decimal("4")]
        assert {e.unit_code for e in issues} == {"EA"}
        assert {e.warehouse_id for e in issues} == {WAREHOUSE_A, WAREHOUSE_B}
        assert on_hand(product_id, WAREHOUSE_A) + on_hand(product_id, WAREHOUSE_B) == Decimal("2")
        assert min(on_hand(product_id, WAREHOUSE_A), on_hand(product_id, WAREHOUSE_B)) == Decimal("0")

    def test_warehouse_sale_capped_by_organization_level(
        self, session, deterministic_clock, movement_service, org_id, product_id,
    ):
        permissive = MovementService(session, deterministic_clock, allow_negative_stock=True)
        permissive.adjust(org_id, None, product_id, 10, "EA", "neg", "write-off before receipt")
        movement_service.receive(org_id, product_id, 10, "EA", warehouse_id=WAREHOUSE_A)
        with pytest.raises(InsufficientStockError) as exc_info:
            movement_service.sell(org_id, product_id, [line(5)], warehouse_id=WAREHOUSE_A)
        assert exc_info.value.available == Decimal("0")


class TestAutoUnpack:
    @pytest.mark.parametrize("sold", ["1", "2.5", "6"])
    def test_one_package_covers_any_sale_up_to_its_size(
        self, movement_service, stock_selector, org_id, product_id, session, sold,
    ):
        movement_service.receive_packages(org_id, product_id, "PK", 1)
        result = movement_service.sell(org_id, product_id, [line(sold)])

        assert result.auto_unpacked
        assert result.unpacked_unit_code == "PK"
        assert result.unpacked_packages == 1
        assert len(result.handling_unit_ids) == 1

        snapshot = stock_selector.current_stock(org_id, product_id)
        assert snapshot.on_hand == Decimal("6") - Decimal(sold)
        assert snapshot.packaged == Decimal("0")
        assert intact_packages(session, product_id) == 0

    def test_unpacks_only_the_minimum(self, movement_service, stock_selector, org_id, product_id, session):
        movement_service.receive(org_id, product_id, 2, "EA")
        movement_service.receive_packages(org_id, product_id, "PK", 5)
        result = movement_service.sell(org_id, product_id, [line(9)])

        # deficit 7 -> ceil(7 / 6) = 2 packages
        assert result.unpacked_packages == 2
        assert intact_packages(session, product_id) == 3
        snapshot = stock_selector.current_stock(org_id, product_id)
        assert snapshot.on_hand == Decimal("5")
        assert snapshot.packaged == Decimal("18")

    def test_disassembly_pair_nets_to_zero(self, movement_service, stock_selector, org_id, product_id):
        movement_service.receive_packages(org_id, product_id, "PK", 2)
        movement_service.sell(org_id, product_id, [line(4)])

        entries = stock_selector.history(org_id, product_id)
        outs = [e for e in entries if e.movement_type is MovementType.DISASSEMBLY_OUT]
        ins = [e for e in entries if e.movement_type is MovementType.DISASSEMBLY_IN]
        assert len(outs) == len(ins) == 1
        assert outs[0].quantity_in_base == ins[0].quantity_in_base == Decimal("6")
        assert outs[0].is_packaged and not ins[0].is_packaged
        assert outs[0].unit_code == "PK"
        assert ins[0].unit_code == "EA"
        # total = 12 received - 4 sold; the pair itself adds nothing
        assert stock_selector.current_stock(org_id, product_id).total == Decimal("8")

    def test_prefers_smallest_package(self, movement_service, org_id, product_id, session):
        movement_service.receive_packages(org_id, product_id, "CS", 1)
        movement_service.receive_packages(org_id, product_id, "PK", 2)
        result = movement_service.sell(org_id, product_id, [line(10)])
        assert (result.unpacked_unit_code, result.unpacked_packages) == ("PK", 2)

    def test_falls_back_to_larger_package(self, movement_service, org_id, product_id, on_hand):
        movement_service.receive_packages(org_id, product_id, "CS", 1)
        movement_service.receive_packages(org_id, product_id, "PK", 1)
        result = movement_service.sell(org_id, product_id, [line(10)])
        assert (result.unpacked_unit_code, result.unpacked_packages) == ("CS", 1)
        assert on_hand(product_id) == Decimal("14")

    def test_not_enough_packages(self, movement_service, org_id, product_id, session):
        movement_service.receive_packages(org_id, product_id, "PK", 1)
        before = ledger_count(session)
        with pytest.raises(InsufficientPackagesToUnpackError) as exc_info:
            movement_service.sell(org_id, product_id, [line(7)])
        assert exc_info.value.unit_code == "PK"
        assert exc_info.value.packages_needed == 2
        assert exc_info.value.packages_available == 1
        assert ledger_count(session) == before
        assert intact_packages(session, product_id) == 1

    def test_override_without_packages_reports_missing_packages(
        self, movement_service, create_product, org_id,
    ):
        product = create_product(overrides={"PK": "10"})
        movement_service.receive(org_id, product, 3, "EA")
        with pytest.raises(InsufficientPackagesToUnpackError):
            movement_service.sell(org_id, product, [line(5)])

    def test_opens_oldest_packages_first(
        self, movement_service, deterministic_clock, org_id, product_id, session,
    ):
        first = movement_service.receive_packages(org_id, product_id, "PK", 1)
        deterministic_clock.advance(hours=1)
        movement_service.receive_packages(org_id, product_id, "PK", 1)
        result = movement_service.sell(org_id, product_id, [line(1)])
        assert result.handling_unit_ids == first.handling_unit_ids

        opened = session.get(HandlingUnit, first.handling_unit_ids[0])
        assert opened.unpacked_at == deterministic_clock.now()

    def test_packages_in_other_warehouse_not_used(self, movement_service, org_id, product_id):
        movement_service.receive_packages(org_id, product_id, "PK", 1, warehouse_id=WAREHOUSE_B)
        with pytest.raises(InsufficientStockError):
            movement_service.sell(org_id, product_id, [line(1)], warehouse_id=WAREHOUSE_A)

    def test_organization_wide_sale_is_booked_in_package_warehouse(
        self, movement_service, stock_selector, org_id, product_id,
    ):
        movement_service.receive_packages(org_id, product_id, "PK", 1, warehouse_id=WAREHOUSE_B)
        movement_service.sell(org_id, product_id, [line(2)])
        warehouse_b = stock_selector.current_stock(org_id, product_id, WAREHOUSE_B)
        assert warehouse_b.packaged == Decimal("0")
        assert warehouse_b.on_hand == Decimal("4")
        assert {e.warehouse_id for e in stock_selector.history(org_id, product_id)} == {WAREHOUSE_B}

    def test_unpacked_stock_sold_organization_wide_cannot_be_sold_again_in_warehouse(
        self, movement_service, on_hand, org_id, product_id,
    ):
        movement_service.receive_packages(org_id, product_id, "PK", 1, warehouse_id=WAREHOUSE_A)
        movement_service.sell(org_id, product_id, [line(6)])
        with pytest.raises(InsufficientStockError):
            movement_service.sell(org_id, product_id, [line(6)], warehouse_id=WAREHOUSE_A)
        assert on_hand(product_id) == Decimal("0")
        assert on_hand(product_id, WAREHOUSE_A) == Decimal("0")

    def test_logs_auto_unpack(self, movement_service, org_id, product_id, captured_logs):
        movement_service.receive_packages(org_id, product_id, "PK", 1)
        movement_service.sell(org_id, product_id, [line(2)])
        events = [r for r in captured_logs() if r["message"] == "auto_unpack_performed"]
        assert len(events) == 1
        assert events[0]["unit_code"] == "PK"
        assert events[0]["packages"] == 1


# =============================================================================
# Adjust
# =============================================================================


class TestAdjust:
    def test_positive(self, movement_service, org_id, product_id, on_hand):
        result = movement_service.adjust(org_id, None, product_id, 1, "PK", "pos", "found in count")
        assert result.direction is AdjustmentDirection.POS
        assert result.quantity_in_base == Decimal("6")
        assert on_hand(product_id) == Decimal("6")

    def test_negative(self, movement_service, org_id, product_id, on_hand):
        movement_service.receive(org_id, product_id, 10, "EA")
        movement_service.adjust(org_id, None, product_id, 4, "EA", AdjustmentDirection.NEG, "breakage")
        assert on_hand(product_id) == Decimal("6")

    def test_negative_below_zero_rejected_by_default(self, movement_service, org_id, product_id, on_hand):
        movement_service.receive(org_id, product_id, 3, "EA")
        with pytest.raises(InsufficientStockError):
            movement_service.adjust(org_id, None, product_id, 4, "EA", "neg", "shrinkage")
        assert on_hand(product_id) == Decimal("3")

    def test_negative_stock_allowed_when_configured(
        self, session, deterministic_clock, org_id, product_id, on_hand,
    ):
        permissive = MovementService(session, deterministic_clock, allow_negative_stock=True)
        permissive.adjust(org_id, None, product_id, 4, "EA", "neg", "count correction")
        assert on_hand(product_id) == Decimal("-4")

    def test_note_combines_reason_notes_and_count(
        self, movement_service, stock_selector, org_id, product_id,
    ):
        count_id = uuid4()
        movement_service.adjust(
            org_id, None, product_id, 2, "EA", "pos", "cycle count",
            notes="aisle 4", physical_count_id=count_id,
        )
        (entry,) = stock_selector.history(org_id, product_id)
        assert entry.movement_type is MovementType.ADJUSTMENT_POS
        assert entry.note == f"cycle count; aisle 4; physical count {count_id}"

    def test_bad_direction(self, movement_service, org_id, product_id):
        with pytest.raises(ValueError):
            movement_service.adjust(org_id, None, product_id, 1, "EA", "sideways", "oops")

    def test_organization_wide_negative_is_taken_from_warehouse(
        self, movement_service, stock_selector, org_id, product_id, on_hand,
    ):
        movement_service.receive(org_id, product_id, 10, "EA", warehouse_id=WAREHOUSE_A)
        result = movement_service.adjust(org_id, None, product_id, 4, "EA", "neg", "breakage")
        assert result.entry_ids == (result.entry_id,)
        assert on_hand(product_id, WAREHOUSE_A) == Decimal("6")
        with pytest.raises(InsufficientStockError):
            movement_service.adjust(org_id, WAREHOUSE_A, product_id, 7, "EA", "neg", "shrinkage")
        assert on_hand(product_id) == Decimal("6")

    def test_warehouse_negative_then_organization_wide_negative(self, movement_service, org_id, product_id, on_hand):
        movement_service.receive(org_id, product_id, 5, "EA", warehouse_id=WAREHOUSE_A)
        movement_service.adjust(org_id, WAREHOUSE_A, product_id, 5, "EA", "neg", "damaged")
        with pytest.raises(InsufficientStockError):
            movement_service.adjust(org_id, None, product_id, 1, "EA", "neg", "damaged")
        assert on_hand(product_id, WAREHOUSE_A) == Decimal("0")

    def test_organization_wide_negative_split_across_warehouses(
        self, movement_service, stock_selector, org_id, product_id, on_hand,
    ):
        movement_service.receive(org_id, product_id, 3, "EA", warehouse_id=WAREHOUSE_A)
        movement_service.receive(org_id, product_id, 3, "EA", warehouse_id=WAREHOUSE_B)
        result = movement_service.adjust(org_id, None, product_id, 1, "PK", "neg", "recount")
        assert len(result.entry_ids) == 2
        assert result.quantity_in_base == Decimal("6")
        assert on_hand(product_id, WAREHOUSE_A) == Decimal("0")
        assert on_hand(product_id, WAREHOUSE_B) == Decimal("0")
        negatives = [
            e for e in stock_selector.history(org_id, product_id)
            if e.movement_type is MovementType.ADJUSTMENT_NEG
        ]
        assert all(e.note == "recount" for e in negatives)


def test_history_is_chronological(movement_service, stock_selector, deterministic_clock, org_id, product_id):
    movement_service.receive(org_id, product_id, 5, "EA")
    deterministic_clock.advance(timedelta(minutes=5).total_seconds())
    movement_service.sell(org_id, product_id, [line(2)])
    types = [e.movement_type for e in stock_selector.history(org_id, product_id)]
    assert types == [MovementType.RECEIPT, MovementType.ISSUE]
