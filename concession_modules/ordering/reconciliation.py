"""
Stock Reconciliation Service (``concession_modules.ordering.reconciliation``).

Responsibility
--------------
Applies an order's stock effect to the cafe ledger:

- **record** adds each item's consumption to ``sales`` on the recording day;
- **restore** credits ``cancel_stock`` on the cancellation day (historical
  ``sales`` are never rewritten);
- **late record** records consumption on the day an order is confirmed,
  refreshing the item snapshots against the ledger's unit on that day.

Architecture
------------
Layer: **Modules**.  Called by ``OrderService`` inside the order's
transaction and by the background ``StockReconciler``.

Invariants
----------
- Every operation runs in its own SAVEPOINT.  A failure rolls back only the
  ledger writes, flags the order ``stock_reconcile_required`` and is logged;
  the order transition that triggered it still commits.
- ``order.stock_recorded`` becomes True only after the ledger writes
  succeeded.
- An item is restored at most once (``item.stock_restored``).

Failure Modes
-------------
None surfaced.  Ledger and database errors are logged at ERROR and left for
``reconcile_pending``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from concession_engines.channels import CONFIRMED_FAMILY, OrderStatus, UNPAID_STATUSES
from concession_engines.ledger import LedgerFamily
from concession_engines.units import (
    ConsumptionResult,
    calculate_consumption,
    conversion_factor,
    log_consumption_warnings,
    normalize_unit,
)
from concession_kernel.db.types import ZERO, round_quantity
from concession_kernel.domain.clock import Clock
from concession_kernel.exceptions import ConcessionError
from concession_kernel.logging_config import get_logger
from concession_kernel.services.base import BaseService
from concession_modules.catalog.models import Product
from concession_modules.catalog.service import CatalogService
from concession_modules.inventory.service import MonthlyLedgerStore, month_of
from concession_modules.ordering.orm import OrderItemModel, OrderModel

logger = get_logger("modules.ordering.reconciliation")


def consumption_for(
    product: Product,
    quantity: int,
    target_unit: str,
    no_qty: int | None = None,
    size_label: str | None = None,
) -> ConsumptionResult:
    """Ledger consumption of ``quantity`` items of ``product``; heuristics are logged."""
    result = calculate_consumption(product.descriptor(no_qty=no_qty, size_label=size_label), quantity, target_unit)
    log_consumption_warnings(result, product.id, product.name)
    return result


@dataclass(frozen=True)
class ReconcileReport:
    recorded: int = 0
    restored: int = 0
    failed: int = 0


class StockReconciliationService(BaseService):
    """
    Order-driven cafe ledger writes.

    Contract:
        The caller holds the tenant lock and owns the outer transaction.
        Each public method returns True on success and False when the
        order was flagged for later reconciliation.
    """

    def __init__(
        self,
        session: Session,
        cafe_store: MonthlyLedgerStore,
        catalog: CatalogService | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        if cafe_store.family is not LedgerFamily.CAFE:
            raise ValueError("StockReconciliationService needs the cafe ledger store")
        self.cafe = cafe_store
        self.catalog = catalog or CatalogService(session, clock)

    # ------------------------------------------------------------------
    # Savepoint wrapper
    # ------------------------------------------------------------------

    def _guarded(self, operation: str, order: OrderModel, work) -> bool:
        savepoint = self.session.begin_nested()
        try:
            work()
            savepoint.commit()
            return True
        except (ConcessionError, SQLAlchemyError) as exc:
            savepoint.rollback()
            order.stock_reconcile_required = True
            self.session.flush()
            logger.error(
                "stock_reconcile_deferred",
                extra={
                    "tenant_id": str(order.tenant_id),
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "operation": operation,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return False

    def _apply(self, tenant_id: UUID, day: date, field_name: str, amounts: dict[UUID, Decimal]) -> None:
        year, month = month_of(day)
        for product_id, amount in amounts.items():
            if amount <= 0:
                continue
            ledger = self.cafe.get_or_create(tenant_id, product_id, year, month)
            row = self.cafe.entry_for_day(ledger, day)
            setattr(row, field_name, round_quantity(getattr(row, field_name) + amount))
            self.cafe.commit_row_change(ledger)

    # ------------------------------------------------------------------
    # Record
    # ------------------------------------------------------------------

    def _recordable(self, order: OrderModel) -> list[OrderItemModel]:
        items = []
        for item in order.active_items:
            if not item.track_stock:
                continue
            if not self.cafe.has_history(order.tenant_id, item.product_id):
                # Nothing is written to sales, so the snapshot must not claim any.
                item.track_stock = False
                item.stock_quantity_consumed = ZERO
                logger.info(
                    "stock_untracked_fresh_product",
                    extra={"order_number": order.order_number, "product_id": str(item.product_id)},
                )
                continue
            items.append(item)
        return items

    def record_consumption(self, order: OrderModel, on_date: date | None = None) -> bool:
        """Add every active item's snapshot consumption to ``sales`` on ``on_date``."""
        if order.stock_recorded:
            return True
        day = on_date or self.clock.today()

        def work():
            totals: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
            for item in self._recordable(order):
                totals[item.product_id] += item.stock_quantity_consumed
            self._apply(order.tenant_id, day, "sales", totals)
            order.stock_recorded = True
            self.session.flush()
            logger.info(
                "stock_consumption_recorded",
                extra={
                    "tenant_id": str(order.tenant_id),
                    "order_number": order.order_number,
                    "day": day,
                    "products": len(totals),
                },
            )

        return self._guarded("record", order, work)

    def refresh_snapshots(self, order: OrderModel) -> None:
        """Recompute item consumption against the ledger unit of today."""
        for item in order.active_items:
            if not item.track_stock:
                continue
            product = self.catalog.find_product(order.tenant_id, item.product_id)
            if product is None:
                continue
            unit = self.cafe.current_unit(order.tenant_id, item.product_id)
            result = consumption_for(product, item.quantity, unit, item.no_qty, item.size_label)
            item.stock_quantity_consumed = result.amount
            item.stock_unit = result.unit

    def late_record(self, order: OrderModel, on_date: date | None = None) -> bool:
        """Record consumption on the confirmation day for an order created unpaid."""
        if order.stock_recorded:
            return True
        day = on_date or self.clock.today()
        self.refresh_snapshots(order)
        logger.info(
            "stock_late_record",
            extra={
                "tenant_id": str(order.tenant_id),
                "order_number": order.order_number,
                "ordered_on": order.ordered_at.date(),
                "recorded_on": day,
            },
        )
        return self.record_consumption(order, day)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restoration_amount(self, tenant_id: UUID, item: OrderItemModel) -> Decimal:
        """
        Amount to credit back for ``item`` in the ledger's current unit.

        Saved snapshot first; then recomputation from the saved ``no_qty``;
        then the product's current data.
        """
        current_unit = self.cafe.current_unit(tenant_id, item.product_id)
        snapshot = item.stock_quantity_consumed or ZERO
        if snapshot > 0:
            saved_unit = normalize_unit(item.stock_unit) or current_unit
            if saved_unit == current_unit:
                return snapshot
            decision = conversion_factor(saved_unit, current_unit, snapshot)
            if decision.factor is not None and not decision.note:
                return round_quantity(snapshot * decision.factor)

        product = self.catalog.find_product(tenant_id, item.product_id)
        if product is None:
            logger.warning(
                "stock_restore_product_missing",
                extra={"product_id": str(item.product_id), "item_id": str(item.id), "snapshot": snapshot},
            )
            return snapshot
        if item.no_qty and item.no_qty > 0:
            return consumption_for(product, item.quantity, current_unit, item.no_qty, item.size_label).amount
        logger.warning(
            "stock_restore_from_current_product",
            extra={"product_id": str(item.product_id), "item_id": str(item.id)},
        )
        return consumption_for(product, item.quantity, current_unit).amount

    def restore_items(
        self,
        order: OrderModel,
        items: Iterable[OrderItemModel],
        on_date: date | None = None,
    ) -> bool:
        """Credit ``cancel_stock`` on ``on_date`` for items not yet restored."""
        items = list(items)
        if not order.stock_recorded:
            # Never deducted, so a later late record must not see them as owed.
            for item in items:
                item.stock_restored = True
            return True
        day = on_date or self.clock.today()
        pending = [i for i in items if i.track_stock and not i.stock_restored]
        if not pending:
            return True

        def work():
            totals: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
            for item in pending:
                totals[item.product_id] += self.restoration_amount(order.tenant_id, item)
            self._apply(order.tenant_id, day, "cancel_stock", totals)
            for item in pending:
                item.stock_restored = True
            self.session.flush()
            logger.info(
                "stock_restored",
                extra={
                    "tenant_id": str(order.tenant_id),
                    "order_number": order.order_number,
                    "day": day,
                    "items": len(pending),
                },
            )

        return self._guarded("restore", order, work)

    # ------------------------------------------------------------------
    # Background convergence
    # ------------------------------------------------------------------

    def _outstanding(self, order: OrderModel) -> tuple[bool, list[OrderItemModel]]:
        status = OrderStatus(order.status)
        needs_record = (
            not order.stock_recorded
            and status in CONFIRMED_FAMILY
            and (
                order.stock_reconcile_required
                or order.payment_status not in {s.value for s in UNPAID_STATUSES}
            )
        )
        to_restore: list[OrderItemModel] = []
        if order.stock_recorded:
            if status is OrderStatus.CANCELLED:
                to_restore = [i for i in order.items if i.track_stock and not i.stock_restored]
            else:
                to_restore = [
                    i for i in order.items
                    if i.cancelled_at is not None and i.track_stock and not i.stock_restored
                ]
        return needs_record, to_restore

    def reconcile_pending(self, tenant_id: UUID, today: date | None = None) -> ReconcileReport:
        """
        Converge the cafe ledger with the order flags.

        Confirmed, paid orders that were never recorded are recorded today;
        cancelled orders and cancelled items that were recorded but not
        restored are restored today.  Safe to run repeatedly.
        """
        today = today or self.clock.today()
        orders = self.session.execute(
            select(OrderModel)
            .where(OrderModel.tenant_id == tenant_id)
            .order_by(OrderModel.ordered_at)
        ).scalars()
        recorded = restored = failed = 0
        for order in orders:
            needs_record, to_restore = self._outstanding(order)
            if not needs_record and not to_restore and not order.stock_reconcile_required:
                continue
            ok = True
            if needs_record:
                if self.late_record(order, today):
                    recorded += 1
                else:
                    ok = False
            if to_restore:
                if self.restore_items(order, to_restore, today):
                    restored += 1
                else:
                    ok = False
            if ok:
                order.stock_reconcile_required = False
                self.session.flush()
            else:
                failed += 1
        if recorded or restored or failed:
            logger.info(
                "stock_reconcile_pass",
                extra={
                    "tenant_id": str(tenant_id),
                    "recorded": recorded,
                    "restored": restored,
                    "failed": failed,
                },
            )
        return ReconcileReport(recorded=recorded, restored=restored, failed=failed)
