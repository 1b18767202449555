"""
MovementService -- Receive / Sell / Adjust orchestration.

Responsibility:
    Validates stock movement requests, normalizes quantities into the
    product's base unit, consults current stock where a decision depends on
    it, and writes the resulting ledger entries.  Contains the auto-unpack
    algorithm that opens sealed packages when loose stock cannot cover a
    sale.

Architecture position:
    Kernel > Services.  Composes ProductSelector, UnitConversionResolver,
    StockSelector, StockLockService and InventoryLedger.  Called by the
    InventoryFacade inside one transaction per request.

Invariants enforced:
    - Every ledger quantity is > 0; the movement type carries the sign.
    - Sell and negative Adjust lock the stock scope before reading stock,
      so concurrent check-then-act sequences cannot both pass.
    - Auto-unpack never fabricates stock: each disassembly_out is matched
      by a disassembly_in of the same base quantity, and never more than
      ceil(deficit / package size) packages are opened.
    - Outflows never leave a warehouse level that disagrees with the
      organization total: an organization-wide sale or negative adjustment
      is drawn from the warehouses holding the stock, and a
      warehouse-scoped one is also capped by the organization-wide level.
    - Nothing is committed here; any failure leaves the caller's
      transaction to roll back with no partial writes.

Failure modes:
    - ProductNotFoundError / ProductNotPhysicalError on invalid products.
    - ConversionNotFoundError when a unit cannot be converted to base.
    - InvalidQuantityError / InvalidCurrencyError on bad input.
    - InsufficientStockError / InsufficientPackagesToUnpackError on sale.
    - InsufficientStockError on negative adjustment past zero (unless
      negative stock is allowed).
"""

import time
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select

from inventory_kernel.db.types import (
    quantize_quantity,
    require_positive_quantity,
    to_decimal,
    validate_currency,
)
from inventory_kernel.domain.allocation import draw_down
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import LedgerEntryDraft, ProductInfo, SaleLine
from inventory_kernel.domain.movement import AdjustmentDirection, MovementType
from inventory_kernel.domain.unpack import PackagingOption, UnpackPlan, plan_unpack
from inventory_kernel.exceptions import (
    InsufficientPackagesToUnpackError,
    InsufficientStockError,
    InvalidQuantityError,
    NotAPackagingUnitError,
    UnitNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.handling_unit import (
    HandlingUnit,
    HandlingUnitEvent,
    HandlingUnitEventType,
)
from inventory_kernel.models.product import ProductUnitOverride
from inventory_kernel.models.uom import UnitOfMeasure
from inventory_kernel.selectors.product_selector import ProductSelector
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.conversion_resolver import UnitConversionResolver
from inventory_kernel.services.ledger_service import InventoryLedger
from inventory_kernel.services.stock_lock_service import StockLockService

logger = get_logger("services.movement")


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class ReceiveResult:
    product_id: UUID
    quantity_in_base: Decimal
    unit_code: str
    entry_ids: tuple[UUID, ...]
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PackageReceiptResult:
    product_id: UUID
    unit_code: str
    packages: int
    package_size: Decimal
    quantity_in_base: Decimal
    handling_unit_ids: tuple[UUID, ...]
    entry_ids: tuple[UUID, ...]
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SaleResult:
    """
    Outcome of a sale.

    unpacked_packages is 0 when loose stock covered the sale.
    total_qty_remaining is only filled when the caller asked for it.
    """

    product_id: UUID
    unit_code: str
    quantity_in_base: Decimal
    entry_ids: tuple[UUID, ...]
    unpacked_unit_code: str | None = None
    unpacked_packages: int = 0
    handling_unit_ids: tuple[UUID, ...] = ()
    total_qty_remaining: Decimal | None = None
    success: bool = True

    @property
    def auto_unpacked(self) -> bool:
        return self.unpacked_packages > 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AdjustmentResult:
    product_id: UUID
    direction: AdjustmentDirection
    quantity_in_base: Decimal
    unit_code: str
    entry_id: UUID
    entry_ids: tuple[UUID, ...] = ()
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# Service
# =============================================================================


class MovementService(BaseService):
    """
    Stock movement orchestration.

    Contract:
        Each public method performs one business movement and flushes its
        ledger entries in the caller's transaction.

    Guarantees:
        - Base-unit quantities are derived through UnitConversionResolver.
        - Sell is oversell-safe under concurrency (scope lock + re-read).

    Non-goals:
        - Does NOT commit.
        - Does NOT consult reservations on sale; order logic does that
          before it sells.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        allow_negative_stock: bool = False,
        default_currency: str = "USD",
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._allow_negative_stock = allow_negative_stock
        self._default_currency = validate_currency(default_currency)
        self._products = ProductSelector(session)
        self._resolver = UnitConversionResolver(session)
        self._stock = StockSelector(session, self._clock)
        self._ledger = InventoryLedger(session)
        self._locks = StockLockService(session)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _cost(
        self,
        unit_cost: Decimal | str | None,
        currency: str | None,
    ) -> tuple[Decimal | None, str | None]:
        if unit_cost is None:
            return None, validate_currency(currency) if currency else None
        cost = to_decimal(unit_cost)
        if cost < 0:
            raise InvalidQuantityError(unit_cost, "unit cost cannot be negative")
        return cost, validate_currency(currency or self._default_currency)

    def _packaging_unit(self, unit_code: str) -> UnitOfMeasure:
        unit = self.session.execute(
            select(UnitOfMeasure).where(UnitOfMeasure.code == unit_code)
        ).scalar_one_or_none()
        if unit is None:
            raise UnitNotFoundError(unit_code)
        if not unit.is_packaging or not unit.is_active:
            raise NotAPackagingUnitError(unit_code)
        return unit

    def _intact_units_filter(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None,
    ) -> list:
        conditions = [
            HandlingUnit.organization_id == organization_id,
            HandlingUnit.product_id == product_id,
            HandlingUnit.unpacked_at.is_(None),
        ]
        if warehouse_id is not None:
            conditions.append(HandlingUnit.warehouse_id == warehouse_id)
        return conditions

    def _packaging_options(
        self,
        product: ProductInfo,
        warehouse_id: UUID | None,
    ) -> list[PackagingOption]:
        """
        Packaging units of the product with their intact package counts.

        A unit is a candidate when it is an active packaging unit and the
        product either overrides it or holds intact packages in it.
        """
        counts = dict(
            self.session.execute(
                select(HandlingUnit.unit_code, func.count(HandlingUnit.id))
                .where(*self._intact_units_filter(
                    product.organization_id, product.product_id, warehouse_id,
                ))
                .group_by(HandlingUnit.unit_code)
            ).all()
        )

        overridden = select(ProductUnitOverride.unit_code).where(
            ProductUnitOverride.product_id == product.product_id,
        )
        unit_codes = self.session.execute(
            select(UnitOfMeasure.code).where(
                UnitOfMeasure.is_packaging.is_(True),
                UnitOfMeasure.is_active.is_(True),
                UnitOfMeasure.code != product.base_unit_code,
                or_(
                    UnitOfMeasure.code.in_(overridden),
                    UnitOfMeasure.code.in_(list(counts)),
                ),
            )
        ).scalars().all()

        return [
            PackagingOption(
                unit_code=code,
                package_size=self._resolver.to_base(product, 1, code),
                packages_available=int(counts.get(code, 0)),
            )
            for code in unit_codes
        ]

    def _open_packages(
        self,
        product: ProductInfo,
        plan: UnpackPlan,
        warehouse_id: UUID | None,
        source_doc_id: UUID | None = None,
    ) -> list[HandlingUnit]:
        """Lock and stamp the oldest intact packages the plan needs; append an unpacked event for each."""
        units = self.session.execute(
            select(HandlingUnit)
            .where(
                *self._intact_units_filter(
                    product.organization_id, product.product_id, warehouse_id,
                ),
                HandlingUnit.unit_code == plan.unit_code,
            )
            .order_by(HandlingUnit.created_at, HandlingUnit.id)
            .limit(plan.packages)
            .with_for_update()
        ).scalars().all()

        if len(units) < plan.packages:
            raise InsufficientPackagesToUnpackError(
                product.product_id, plan.unit_code, plan.packages, len(units),
            )

        now = self._clock.now()
        for unit in units:
            unit.unpacked_at = now
            self.session.add(HandlingUnitEvent(
                handling_unit_id=unit.id,
                organization_id=unit.organization_id,
                event_type=HandlingUnitEventType.UNPACKED.value,
                warehouse_id=unit.warehouse_id,
                occurred_at=now,
                source_doc_type="auto_unpack",
                source_doc_id=source_doc_id,
                note="Opened to cover sale",
            ))
        self.session.flush()
        return list(units)

    def _disassembly_drafts(
        self,
        product: ProductInfo,
        plan: UnpackPlan,
        opened: list[HandlingUnit],
        sale_warehouse_id: UUID | None,
    ) -> list[LedgerEntryDraft]:
        """
        One disassembly_out/disassembly_in pair per warehouse the opened
        packages came from.  Both sides carry the same base quantity.
        """
        groups: dict[UUID | None, int] = {}
        for unit in opened:
            key = sale_warehouse_id if sale_warehouse_id is not None else unit.warehouse_id
            groups[key] = groups.get(key, 0) + 1

        now = self._clock.now()
        drafts: list[LedgerEntryDraft] = []
        for warehouse_id, packages in groups.items():
            quantity = quantize_quantity(plan.package_size * packages)
            common = dict(
                organization_id=product.organization_id,
                product_id=product.product_id,
                warehouse_id=warehouse_id,
                occurred_at=now,
                quantity_in_base=quantity,
                source_doc_type="auto_unpack",
            )
            drafts.append(LedgerEntryDraft(
                movement_type=MovementType.DISASSEMBLY_OUT,
                unit_code=plan.unit_code,
                quantity_in_entered_unit=Decimal(packages),
                is_packaged=True,
                note=f"Unpacked {packages} {plan.unit_code} to cover sale",
                **common,
            ))
            drafts.append(LedgerEntryDraft(
                movement_type=MovementType.DISASSEMBLY_IN,
                unit_code=product.base_unit_code,
                quantity_in_entered_unit=quantity,
                is_packaged=False,
                note=f"Contents of {packages} {plan.unit_code}",
                **common,
            ))
        return drafts

    def _scoped_on_hand(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID,
    ) -> Decimal:
        """
        Loose stock a warehouse-scoped outflow may take: the warehouse's own
        level, capped by the organization-wide level.
        """
        in_warehouse = self._stock.current_stock(organization_id, product_id, warehouse_id).on_hand
        everywhere = self._stock.current_stock(organization_id, product_id).on_hand
        return min(in_warehouse, everywhere)

    def _outflow_drafts(
        self,
        product: ProductInfo,
        movement_type: MovementType,
        unit_code: str,
        entered: Decimal,
        parts: list[tuple[UUID | None, Decimal]],
        occurred_at,
        **fields: Any,
    ) -> list[LedgerEntryDraft]:
        """
        One entry per (warehouse, base quantity) part.  A single part keeps
        the entered unit; the parts of a split line are booked in the base
        unit.
        """
        if len(parts) == 1:
            ((warehouse_id, in_base),) = parts
            return [LedgerEntryDraft(
                organization_id=product.organization_id,
                product_id=product.product_id,
                warehouse_id=warehouse_id,
                movement_type=movement_type,
                quantity_in_base=in_base,
                unit_code=unit_code,
                quantity_in_entered_unit=entered,
                occurred_at=occurred_at,
                **fields,
            )]
        return [
            LedgerEntryDraft(
                organization_id=product.organization_id,
                product_id=product.product_id,
                warehouse_id=warehouse_id,
                movement_type=movement_type,
                quantity_in_base=quantity,
                unit_code=product.base_unit_code,
                quantity_in_entered_unit=quantity,
                occurred_at=occurred_at,
                **fields,
            )
            for warehouse_id, quantity in parts
        ]

    # -------------------------------------------------------------------------
    # Receive
    # -------------------------------------------------------------------------

    def receive(
        self,
        organization_id: UUID,
        product_id: UUID,
        quantity: Decimal | int | str,
        unit_code: str,
        warehouse_id: UUID | None = None,
        unit_cost: Decimal | str | None = None,
        currency: str | None = None,
        source_doc_type: str | None = None,
        source_doc_id: UUID | None = None,
        note: str | None = None,
    ) -> ReceiveResult:
        """
        Record loose stock arriving.

        Converts ``quantity`` of ``unit_code`` into the base unit and appends
        one receipt entry.  ``unit_cost`` is per entered unit.
        """
        product = self._products.get_physical(product_id, organization_id)
        entered = require_positive_quantity(quantity)
        in_base = self._resolver.to_base(product, entered, unit_code)
        cost, currency = self._cost(unit_cost, currency)

        entries = self._ledger.append([
            LedgerEntryDraft(
                organization_id=organization_id,
                product_id=product_id,
                warehouse_id=warehouse_id,
                movement_type=MovementType.RECEIPT,
                quantity_in_base=in_base,
                unit_code=unit_code,
                quantity_in_entered_unit=entered,
                occurred_at=self._clock.now(),
                unit_cost=cost,
                currency=currency,
                source_doc_type=source_doc_type,
                source_doc_id=source_doc_id,
                note=note,
            )
        ])

        logger.info(
            "stock_received",
            extra={
                "product_id": str(product_id),
                "warehouse_id": str(warehouse_id) if warehouse_id else None,
                "quantity": entered,
                "unit_code": unit_code,
                "quantity_in_base": in_base,
            },
        )
        return ReceiveResult(
            product_id=product_id,
            quantity_in_base=in_base,
            unit_code=product.base_unit_code,
            entry_ids=tuple(e.id for e in entries),
        )

    def receive_packages(
        self,
        organization_id: UUID,
        product_id: UUID,
        unit_code: str,
        packages: int,
        warehouse_id: UUID | None = None,
        unit_cost: Decimal | str | None = None,
        currency: str | None = None,
        codes: Sequence[str] | None = None,
        source_doc_type: str | None = None,
        source_doc_id: UUID | None = None,
    ) -> PackageReceiptResult:
        """
        Record sealed packages arriving.

        Creates one HandlingUnit per package and one packaged receipt entry
        for the combined base quantity.  Packaged stock is not sellable until
        it is unpacked.
        """
        product = self._products.get_physical(product_id, organization_id)
        if isinstance(packages, bool) or not isinstance(packages, int) or packages < 1:
            raise InvalidQuantityError(packages, "package count must be a positive integer")
        if codes is not None and len(codes) != packages:
            raise InvalidQuantityError(
                packages, f"{len(codes)} package code(s) given for {packages} package(s)",
            )
        self._packaging_unit(unit_code)
        package_size = self._resolver.to_base(product, 1, unit_code)
        cost, currency = self._cost(unit_cost, currency)

        units = [
            HandlingUnit(
                organization_id=organization_id,
                product_id=product_id,
                unit_code=unit_code,
                warehouse_id=warehouse_id,
                code=codes[i] if codes is not None else None,
                quantity_in_base=package_size,
                created_at=self._clock.now(),
            )
            for i in range(packages)
        ]
        self.session.add_all(units)
        self.session.flush()
        self.session.add_all([
            HandlingUnitEvent(
                handling_unit_id=unit.id,
                organization_id=organization_id,
                event_type=HandlingUnitEventType.RECEIVED.value,
                warehouse_id=warehouse_id,
                occurred_at=unit.created_at,
                source_doc_type=source_doc_type or "package_receipt",
                source_doc_id=source_doc_id,
            )
            for unit in units
        ])

        quantity = quantize_quantity(package_size * packages)
        entries = self._ledger.append([
            LedgerEntryDraft(
                organization_id=organization_id,
                product_id=product_id,
                warehouse_id=warehouse_id,
                movement_type=MovementType.RECEIPT,
                quantity_in_base=quantity,
                unit_code=unit_code,
                quantity_in_entered_unit=Decimal(packages),
                occurred_at=self._clock.now(),
                unit_cost=cost,
                currency=currency,
                is_packaged=True,
                source_doc_type=source_doc_type,
                source_doc_id=source_doc_id,
            )
        ])

        logger.info(
            "packages_received",
            extra={
                "product_id": str(product_id),
                "unit_code": unit_code,
                "packages": packages,
                "quantity_in_base": quantity,
            },
        )
        return PackageReceiptResult(
            product_id=product_id,
            unit_code=unit_code,
            packages=packages,
            package_size=package_size,
            quantity_in_base=quantity,
            handling_unit_ids=tuple(u.id for u in units),
            entry_ids=tuple(e.id for e in entries),
        )

    # -------------------------------------------------------------------------
    # Sell
    # -------------------------------------------------------------------------

    def sell(
        self,
        organization_id: UUID,
        product_id: UUID,
        lines: Sequence[SaleLine],
        warehouse_id: UUID | None = None,
        return_remaining: bool = False,
        source_doc_type: str | None = None,
        source_doc_id: UUID | None = None,
    ) -> SaleResult:
        """
        Issue stock for a sale, unpacking sealed packages if loose stock is
        short.

        Algorithm:
            1. Convert every line to base units; sum to the requested total.
            2. Lock the stock scope, then read loose on-hand stock.
            3. Short: plan the unpack (smallest package first), open exactly
               ceil(deficit / package size) intact packages and append the
               disassembly pair(s).
            4. One issue entry per line.  Without a warehouse, each line is
               drawn from the warehouses holding loose stock; a line that
               spans several is split into base-unit entries.
        """
        start = time.monotonic()
        product = self._products.get_physical(product_id, organization_id)
        if not lines:
            raise InvalidQuantityError(0, "a sale needs at least one line")

        converted: list[tuple[SaleLine, Decimal, Decimal]] = []
        for line in lines:
            entered = require_positive_quantity(line.quantity)
            converted.append((line, entered, self._resolver.to_base(product, entered, line.unit_code)))
        requested = sum((in_base for _, _, in_base in converted), Decimal("0"))

        self._locks.lock_scope(organization_id, product_id, warehouse_id)
        balances: dict[UUID | None, Decimal] | None = None
        if warehouse_id is None:
            balances = self._stock.on_hand_by_warehouse(organization_id, product_id)
            on_hand = sum(balances.values(), Decimal("0"))
        else:
            on_hand = self._scoped_on_hand(organization_id, product_id, warehouse_id)

        drafts: list[LedgerEntryDraft] = []
        plan: UnpackPlan | None = None
        opened: list[HandlingUnit] = []

        if on_hand < requested:
            options = self._packaging_options(product, warehouse_id)
            try:
                plan = plan_unpack(product_id, requested, on_hand, options)
            except (InsufficientStockError, InsufficientPackagesToUnpackError) as exc:
                logger.info(
                    "sale_rejected",
                    extra={
                        "product_id": str(product_id),
                        "requested": requested,
                        "on_hand": on_hand,
                        "reason": exc.code,
                    },
                )
                raise
            opened = self._open_packages(product, plan, warehouse_id, source_doc_id)
            drafts.extend(self._disassembly_drafts(product, plan, opened, warehouse_id))
            if balances is not None:
                for draft in drafts:
                    if draft.movement_type is MovementType.DISASSEMBLY_IN:
                        balances[draft.warehouse_id] = (
                            balances.get(draft.warehouse_id, Decimal("0")) + draft.quantity_in_base
                        )
            logger.info(
                "auto_unpack_performed",
                extra={
                    "product_id": str(product_id),
                    "unit_code": plan.unit_code,
                    "packages": plan.packages,
                    "deficit": requested - on_hand,
                    "quantity_in_base": plan.quantity_in_base,
                },
            )

        # An organization-wide sale is taken out of the warehouses that hold
        # the stock, so every warehouse level stays consistent with the total.
        if balances is None:
            allocations = [[(warehouse_id, in_base)] for _, _, in_base in converted]
        else:
            allocations = draw_down(
                product_id, balances, [in_base for _, _, in_base in converted],
            )

        now = self._clock.now()
        for (line, entered, _), parts in zip(converted, allocations):
            drafts.extend(self._outflow_drafts(
                product, MovementType.ISSUE, line.unit_code, entered, parts, now,
                source_doc_type=source_doc_type,
                source_doc_id=source_doc_id,
            ))

        entries = self._ledger.append(drafts)

        remaining = None
        if return_remaining:
            remaining = self._stock.current_stock(organization_id, product_id, warehouse_id).on_hand

        logger.info(
            "stock_sold",
            extra={
                "product_id": str(product_id),
                "warehouse_id": str(warehouse_id) if warehouse_id else None,
                "lines": len(converted),
                "quantity_in_base": requested,
                "unpacked_packages": plan.packages if plan else 0,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            },
        )
        return SaleResult(
            product_id=product_id,
            unit_code=product.base_unit_code,
            quantity_in_base=requested,
            entry_ids=tuple(e.id for e in entries),
            unpacked_unit_code=plan.unit_code if plan else None,
            unpacked_packages=plan.packages if plan else 0,
            handling_unit_ids=tuple(u.id for u in opened),
            total_qty_remaining=remaining,
        )

    # -------------------------------------------------------------------------
    # Adjust
    # -------------------------------------------------------------------------

    def adjust(
        self,
        organization_id: UUID,
        warehouse_id: UUID | None,
        product_id: UUID,
        quantity: Decimal | int | str,
        unit_code: str,
        direction: AdjustmentDirection | str,
        reason: str,
        notes: str | None = None,
        physical_count_id: UUID | None = None,
    ) -> AdjustmentResult:
        """
        Correct stock after a count, breakage or similar.

        Negative adjustments are floor-checked against loose on-hand stock
        unless the service was built with ``allow_negative_stock=True``.
        """
        direction = AdjustmentDirection(direction)
        product = self._products.get_physical(product_id, organization_id)
        entered = require_positive_quantity(quantity)
        in_base = self._resolver.to_base(product, entered, unit_code)

        parts: list[tuple[UUID | None, Decimal]] = [(warehouse_id, in_base)]
        if direction is AdjustmentDirection.NEG and not self._allow_negative_stock:
            self._locks.lock_scope(organization_id, product_id, warehouse_id)
            if warehouse_id is None:
                balances = self._stock.on_hand_by_warehouse(organization_id, product_id)
                (parts,) = draw_down(product_id, balances, [in_base])
            else:
                on_hand = self._scoped_on_hand(organization_id, product_id, warehouse_id)
                if on_hand < in_base:
                    raise InsufficientStockError(product_id, in_base, on_hand, warehouse_id)

        note_parts = [reason]
        if notes:
            note_parts.append(notes)
        if physical_count_id:
            note_parts.append(f"physical count {physical_count_id}")

        entries = self._ledger.append(self._outflow_drafts(
            product, direction.movement_type, unit_code, entered, parts, self._clock.now(),
            source_doc_type="physical_count" if physical_count_id else "adjustment",
            source_doc_id=physical_count_id,
            note="; ".join(note_parts),
        ))

        logger.info(
            "stock_adjusted",
            extra={
                "product_id": str(product_id),
                "warehouse_id": str(warehouse_id) if warehouse_id else None,
                "direction": direction.value,
                "quantity_in_base": in_base,
                "reason": reason,
            },
        )
        return AdjustmentResult(
            product_id=product_id,
            direction=direction,
            quantity_in_base=in_base,
            unit_code=product.base_unit_code,
            entry_id=entries[0].id,
            entry_ids=tuple(e.id for e in entries),
        )
