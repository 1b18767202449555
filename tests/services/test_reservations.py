"""
ReservationService lifecycle: create, release, extend, and the read models.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_kernel.exceptions import (
    ConversionNotFoundError,
    HandlingUnitNotFoundError,
    ImmutabilityViolationError,
    InsufficientStockError,
    InvalidReservationError,
    InvalidReservationTransitionError,
    ReservationNotFoundError,
)
from inventory_kernel.models.reservation import Reservation, ReservationType


@pytest.fixture
def stocked_product(movement_service, org_id, product_id):
    movement_service.receive(org_id, product_id, 10, "EA")
    return product_id


@pytest.fixture
def reserve(reservation_service, org_id, stocked_product):
    def _reserve(quantity="2", **kwargs):
        kwargs.setdefault("reference_type", "sales_order_line")
        kwargs.setdefault("reference_id", str(uuid4()))
        return reservation_service.create_reservation(
            org_id, kwargs.pop("product_id", stocked_product), quantity, **kwargs,
        )

    return _reserve


class TestCreate:
    def test_soft_reservation(self, reserve, deterministic_clock, stocked_product):
        info = reserve("3", unit_code="EA", notes="web order")
        assert info.status == "active"
        assert info.reservation_type == "soft"
        assert info.quantity_in_base == Decimal("3")
        assert info.product_id == stocked_product
        assert info.created_at == deterministic_clock.now()
        assert info.expires_at is None
        assert info.released_at is None

    def test_soft_reservation_may_exceed_stock(self, reserve, stock_selector, org_id, stocked_product):
        reserve("25")
        assert stock_selector.available_stock(org_id, stocked_product) == Decimal("-15")

    def test_hard_reservation_reduces_available(self, reserve, stock_selector, org_id, stocked_product):
        reserve("8", reservation_type=ReservationType.HARD)
        assert stock_selector.reserved_quantity(org_id, stocked_product) == Decimal("8")
        assert stock_selector.available_stock(org_id, stocked_product) == Decimal("2")
        # on-hand is untouched; reservations never write the ledger
        assert stock_selector.current_stock(org_id, stocked_product).on_hand == Decimal("10")

    def test_hard_reservation_beyond_available(self, reserve):
        reserve("8", reservation_type="hard")
        with pytest.raises(InsufficientStockError) as exc_info:
            reserve("3", reservation_type="hard")
        assert exc_info.value.available == Decimal("2")

    @pytest.mark.parametrize("quantity", ["0", "-1"])
    def test_quantity_must_be_positive(self, reserve, quantity):
        with pytest.raises(InvalidReservationError):
            reserve(quantity)

    def test_reference_required(self, reserve):
        with pytest.raises(InvalidReservationError):
            reserve(reference_type="")

    def test_deadline_must_be_in_future(self, reserve, deterministic_clock):
        with pytest.raises(InvalidReservationError):
            reserve(expires_at=deterministic_clock.now())

    def test_unit_must_convert_to_base(self, reserve):
        with pytest.raises(ConversionNotFoundError):
            reserve(unit_code="KGM")

    def test_handling_unit_must_exist(self, reserve):
        with pytest.raises(HandlingUnitNotFoundError):
            reserve(handling_unit_id=uuid4())

    def test_handling_unit_of_product(self, reserve, movement_service, org_id, stocked_product):
        receipt = movement_service.receive_packages(org_id, stocked_product, "PK", 1)
        info = reserve("6", handling_unit_id=receipt.handling_unit_ids[0])
        assert info.handling_unit_id == receipt.handling_unit_ids[0]

    def test_logs_creation(self, reserve, captured_logs):
        info = reserve("1")
        events = [r for r in captured_logs() if r["message"] == "reservation_created"]
        assert [e["reservation_id"] for e in events] == [str(info.reservation_id)]


class TestRelease:
    def test_release(self, reserve, reservation_service, stock_selector, deterministic_clock, org_id, stocked_product):
        info = reserve("4", reservation_type="hard")
        released = reservation_service.release_reservation(org_id, info.reservation_id, reason="order cancelled")
        assert released.status == "released"
        assert released.released_at == deterministic_clock.now()
        assert released.release_reason == "order cancelled"
        assert stock_selector.available_stock(org_id, stocked_product) == Decimal("10")

    def test_release_is_idempotent(self, reserve, reservation_service, deterministic_clock, org_id):
        info = reserve()
        first = reservation_service.release_reservation(org_id, info.reservation_id)
        deterministic_clock.advance(hours=1)
        second = reservation_service.release_reservation(org_id, info.reservation_id, reason="again")
        assert second.released_at == first.released_at
        assert second.release_reason == "released"

    def test_release_unknown(self, reservation_service, org_id):
        with pytest.raises(ReservationNotFoundError):
            reservation_service.release_reservation(org_id, uuid4())

    def test_release_from_other_organization(self, reserve, reservation_service):
        info = reserve()
        with pytest.raises(ReservationNotFoundError):
            reservation_service.release_reservation(uuid4(), info.reservation_id)


class TestExpiryAndExtend:
    def test_expired_reservation_stops_counting(
        self, reserve, reservation_selector, stock_selector, deterministic_clock, org_id, stocked_product,
    ):
        info = reserve("5", expires_at=deterministic_clock.now() + timedelta(hours=1))
        deterministic_clock.advance(hours=2)
        assert reservation_selector.get(org_id, info.reservation_id).status == "expired"
        assert stock_selector.reserved_quantity(org_id, stocked_product) == Decimal("0")
        assert reservation_selector.list_active(org_id) == []

    def test_extend(self, reserve, reservation_service, deterministic_clock, org_id):
        deadline = deterministic_clock.now() + timedelta(hours=1)
        info = reserve(expires_at=deadline)
        extended = reservation_service.extend_reservation(
            org_id, info.reservation_id, deadline + timedelta(days=1),
        )
        assert extended.expires_at == deadline + timedelta(days=1)
        assert extended.status == "active"

    def test_extend_into_the_past(self, reserve, reservation_service, deterministic_clock, org_id):
        info = reserve(expires_at=deterministic_clock.now() + timedelta(hours=1))
        with pytest.raises(InvalidReservationError):
            reservation_service.extend_reservation(
                org_id, info.reservation_id, deterministic_clock.now() - timedelta(minutes=1),
            )

    def test_extend_released(self, reserve, reservation_service, deterministic_clock, org_id):
        info = reserve()
        reservation_service.release_reservation(org_id, info.reservation_id)
        with pytest.raises(InvalidReservationTransitionError) as exc_info:
            reservation_service.extend_reservation(
                org_id, info.reservation_id, deterministic_clock.now() + timedelta(days=1),
            )
        assert exc_info.value.current_state == "released"

    def test_extend_expired(self, reserve, reservation_service, deterministic_clock, org_id):
        info = reserve(expires_at=deterministic_clock.now() + timedelta(minutes=5))
        deterministic_clock.advance(minutes=10)
        with pytest.raises(InvalidReservationTransitionError) as exc_info:
            reservation_service.extend_reservation(
                org_id, info.reservation_id, deterministic_clock.now() + timedelta(days=1),
            )
        assert exc_info.value.current_state == "expired"


class TestQueries:
    def test_list_active(self, reserve, reservation_service, reservation_selector, deterministic_clock, org_id):
        kept = reserve()
        deterministic_clock.advance(seconds=1)
        dropped = reserve()
        reservation_service.release_reservation(org_id, dropped.reservation_id)
        active = reservation_selector.list_active(org_id)
        assert [r.reservation_id for r in active] == [kept.reservation_id]

    def test_list_active_by_product(
        self, reserve, reservation_selector, create_product, movement_service, org_id, stocked_product,
    ):
        other = create_product()
        movement_service.receive(org_id, other, 5, "EA")
        reserve(product_id=other)
        mine = reserve()
        active = reservation_selector.list_active(org_id, stocked_product)
        assert [r.reservation_id for r in active] == [mine.reservation_id]

    def test_list_by_reference(self, reserve, reservation_selector, deterministic_clock, org_id):
        order_line = str(uuid4())
        first = reserve(reference_id=order_line)
        deterministic_clock.advance(seconds=1)
        second = reserve(reference_id=order_line)
        reserve()
        found = reservation_selector.list_by_reference(org_id, "sales_order_line", order_line)
        assert [r.reservation_id for r in found] == [first.reservation_id, second.reservation_id]

    def test_list_by_product_includes_released_newest_first(
        self, reserve, reservation_service, reservation_selector, deterministic_clock, org_id, stocked_product,
    ):
        older = reserve()
        reservation_service.release_reservation(org_id, older.reservation_id)
        deterministic_clock.advance(seconds=1)
        newer = reserve()
        found = reservation_selector.list_by_product(org_id, stocked_product)
        assert [r.reservation_id for r in found] == [newer.reservation_id, older.reservation_id]
        assert [r.status for r in found] == ["active", "released"]

    def test_other_organization_sees_nothing(self, reserve, reservation_selector):
        reserve()
        assert reservation_selector.list_active(uuid4()) == []


class TestAppendOnlyRows:
    def test_reservation_cannot_be_deleted(self, reserve, session):
        info = reserve("1")
        row = session.get(Reservation, info.reservation_id)
        session.delete(row)
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "Reservation"

    def test_quantity_is_frozen(self, reserve, session):
        info = reserve("1")
        row = session.get(Reservation, info.reservation_id)
        row.quantity_in_base = Decimal("5")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_release_cannot_be_undone(self, reserve, reservation_service, org_id, session):
        info = reserve("1")
        reservation_service.release_reservation(org_id, info.reservation_id)
        row = session.get(Reservation, info.reservation_id)
        session.refresh(row)
        row.released_at = None
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
