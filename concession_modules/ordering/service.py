"""
Order Service (``concession_modules.ordering.service``).

Responsibility
--------------
The order state machine: create, item cancellation, status and payment
updates.  Creates expand combos, validate cafe stock, price every line,
number the order and hand stock effects to ``StockReconciliationService``.

Architecture
------------
Layer: **Modules**.  Called by the facade, which holds the tenant lock,
opens the transaction and dispatches to channels after commit.

State machine::

    pending -> confirmed -> (preparing -> ready -> served ->) completed
    pending | confirmed-family (not completed) -> cancelled

Invariants
----------
- Order numbers come from the tenant's locked counter row: gap-free and
  strictly increasing per tenant.
- An order is recorded against stock at most once; ``stock_recorded`` is
  the source of truth.
- The same status applied twice is a no-op.
- Stock failures never abort a state transition (see reconciliation).

Failure Modes
-------------
- MissingFieldError, ZeroQuantityError, EmptyComboError: malformed lines.
- ProductNotFoundError, ComboNotFoundError, OrderNotFoundError,
  OrderItemNotFoundError: unknown references.
- InsufficientStockError: the cafe cannot cover a line.
- OrderAlreadyCancelledError, OrderCompletedError,
  InvalidStatusTransitionError: disallowed transitions.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from concession_engines.channels import (
    CONFIRMED_FAMILY,
    PAID_ALIAS,
    PAID_STATUSES,
    OrderStatus,
    PaymentStatus,
    default_order_type,
    initial_status,
    should_record_stock,
)
from concession_engines.pricing import (
    LinePricing,
    OrderTotals,
    apportion,
    price_line,
    recalculate_after_removal,
    total_order,
)
from concession_engines.units import max_orderable
from concession_kernel.db.base import SYSTEM_ACTOR_ID
from concession_kernel.db.types import ZERO
from concession_kernel.domain.clock import Clock
from concession_kernel.exceptions import (
    EmptyComboError,
    InsufficientStockError,
    InvalidInputError,
    InvalidStatusTransitionError,
    InvariantViolationError,
    MissingFieldError,
    OrderAlreadyCancelledError,
    OrderCompletedError,
    OrderItemNotFoundError,
    OrderNotFoundError,
    OrderNumberCollisionError,
    ProductNotFoundError,
    ZeroQuantityError,
)
from concession_kernel.logging_config import get_logger
from concession_kernel.services.base import BaseService
from concession_kernel.services.sequence_service import SequenceService, order_sequence_name
from concession_modules.catalog.models import ComboOffer, Product
from concession_modules.catalog.service import CatalogService
from concession_modules.inventory.service import MonthlyLedgerStore
from concession_modules.ordering.models import ComboLine, Order, OrderRequest, ProductLine
from concession_modules.ordering.orm import OrderItemModel, OrderModel
from concession_modules.ordering.reconciliation import StockReconciliationService, consumption_for
from concession_modules.ordering.selector import OrderSelector, lookup_order
from concession_modules.tenants.service import DEFAULT_PREFIX, TenantService

logger = get_logger("modules.ordering.service")

MAX_NUMBER_ATTEMPTS = 5


@dataclass
class _ExpandedLine:
    """One product line after combo expansion, before persistence."""

    product: Product
    quantity: int
    requested: int
    no_qty: int
    size_label: str | None = None
    line: ProductLine | None = None
    combo: ComboOffer | None = None
    combo_product_quantity: int | None = None
    consumption: Decimal = ZERO
    stock_unit: str = "NOS"
    pricing: LinePricing | None = None
    warnings: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StatusChange:
    order: Order
    previous_status: OrderStatus
    changed: bool


class OrderService(BaseService):
    """
    Order lifecycle.

    Contract:
        The caller holds the tenant lock for every mutating call and owns
        the transaction.  Methods return frozen ``Order`` DTOs.

    Non-goals:
        - Does NOT dispatch.  Channel fan-out happens after commit.
    """

    def __init__(
        self,
        session: Session,
        cafe_store: MonthlyLedgerStore,
        clock: Clock | None = None,
        catalog: CatalogService | None = None,
        tenants: TenantService | None = None,
        reconciliation: StockReconciliationService | None = None,
        number_width: int = 4,
        default_prefix: str = DEFAULT_PREFIX,
        currency: str = "INR",
    ):
        super().__init__(session, clock)
        self.cafe = cafe_store
        self.catalog = catalog or CatalogService(session, self.clock)
        self.tenants = tenants or TenantService(session, self.clock)
        self.stock = reconciliation or StockReconciliationService(session, cafe_store, self.catalog, self.clock)
        self.sequences = SequenceService(session)
        self.selector = OrderSelector(session)
        self.number_width = number_width
        self.default_prefix = default_prefix
        self.currency = currency

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _active_product(self, tenant_id: UUID, product_id: UUID) -> Product:
        product = self.catalog.get_product(tenant_id, product_id)
        if not product.is_active:
            raise ProductNotFoundError(str(tenant_id), str(product_id))
        return product

    def _expand(self, tenant_id: UUID, request: OrderRequest) -> list[_ExpandedLine]:
        if not request.lines:
            raise MissingFieldError("items")
        expanded: list[_ExpandedLine] = []
        for line in request.lines:
            if isinstance(line, ProductLine):
                if line.quantity <= 0:
                    raise ZeroQuantityError(str(line.product_id), line.quantity)
                product = self._active_product(tenant_id, line.product_id)
                expanded.append(
                    _ExpandedLine(
                        product=product,
                        quantity=line.quantity,
                        requested=line.quantity,
                        no_qty=line.no_qty or product.no_qty,
                        size_label=line.size_label or product.size_label,
                        line=line,
                    )
                )
            elif isinstance(line, ComboLine):
                if line.quantity <= 0:
                    raise ZeroQuantityError(str(line.combo_id), line.quantity)
                combo = self.catalog.get_combo(tenant_id, line.combo_id)
                if not combo.components:
                    raise EmptyComboError(str(combo.id))
                for component in combo.components:
                    quantity = line.quantity * component.quantity
                    if quantity <= 0:
                        raise ZeroQuantityError(f"{combo.id}/{component.product_id}", quantity)
                    product = self._active_product(tenant_id, component.product_id)
                    expanded.append(
                        _ExpandedLine(
                            product=product,
                            quantity=quantity,
                            requested=line.quantity,
                            no_qty=product.no_qty,
                            size_label=product.size_label,
                            combo=combo,
                            combo_product_quantity=component.quantity,
                        )
                    )
            else:
                raise InvalidInputError(f"Unsupported order line: {line!r}")
        return expanded

    def _validate_stock(self, tenant_id: UUID, lines: list[_ExpandedLine]) -> None:
        """Attach consumption to every line and reject lines the cafe cannot cover."""
        today = self.clock.today()
        by_product: dict[UUID, list[_ExpandedLine]] = defaultdict(list)
        for line in lines:
            by_product[line.product.id].append(line)

        for product_id, product_lines in by_product.items():
            product = product_lines[0].product
            unit = self.cafe.current_unit(tenant_id, product_id)
            for line in product_lines:
                result = consumption_for(product, line.quantity, unit, line.no_qty, line.size_label)
                line.consumption = result.amount
                line.stock_unit = result.unit
            if not product.track_stock or not self.cafe.has_history(tenant_id, product_id):
                continue

            available = self.cafe.current_balance(tenant_id, product_id, today)
            remaining = available
            for line in product_lines:
                if line.consumption <= remaining:
                    remaining -= line.consumption
                    continue
                per_item = max_orderable(
                    remaining,
                    product.descriptor(no_qty=line.no_qty, size_label=line.size_label),
                    unit,
                )
                if line.combo is not None and per_item is not None:
                    reported = per_item // (line.combo_product_quantity or 1)
                else:
                    reported = per_item if per_item is not None else line.requested
                logger.info(
                    "order_rejected_insufficient_stock",
                    extra={
                        "tenant_id": str(tenant_id),
                        "product_id": str(product_id),
                        "requested": line.requested,
                        "consumption": line.consumption,
                        "available": available,
                        "unit": unit,
                        "max_orderable": reported,
                    },
                )
                raise InsufficientStockError(
                    product_id=str(product_id),
                    product_name=product.name,
                    requested=line.requested,
                    available=available,
                    max_orderable=reported,
                    unit=unit,
                    combo_name=line.combo.name if line.combo else None,
                )

    def _price(self, lines: list[_ExpandedLine]) -> None:
        combos: dict[int, list[_ExpandedLine]] = defaultdict(list)
        for line in lines:
            if line.combo is None:
                product, requested = line.product, line.line
                line.pricing = price_line(
                    unit_price=requested.unit_price if requested.unit_price is not None else product.selling_price,
                    quantity=line.quantity,
                    discount_percentage=(
                        requested.discount_percentage if requested.discount_percentage is not None
                        else product.discount_percentage
                    ),
                    tax_rate=requested.tax_rate if requested.tax_rate is not None else product.tax_rate,
                    gst_type=requested.gst_type or product.gst_type,
                )
            else:
                combos[id(line.combo)].append(line)

        for parts in combos.values():
            combo = parts[0].combo
            combo_line = price_line(
                unit_price=combo.price,
                quantity=parts[0].requested,
                discount_percentage=combo.discount_percentage,
                tax_rate=combo.tax_rate,
                gst_type=combo.gst_type,
            )
            shares = apportion(
                combo_line,
                [p.product.base_price * p.quantity for p in parts],
                [p.quantity for p in parts],
            )
            for part, share in zip(parts, shares):
                part.pricing = share

    def _allocate_number(self, tenant_id: UUID, prefix: str) -> str:
        value = self.sequences.next_value(
            order_sequence_name(tenant_id),
            seed=lambda: self.selector.order_count(tenant_id),
        )
        number = f"{prefix}{str(value).zfill(self.number_width)}"
        taken = self.session.execute(
            select(OrderModel.id).where(OrderModel.tenant_id == tenant_id, OrderModel.order_number == number)
        ).first()
        if taken is not None:
            raise OrderNumberCollisionError(str(tenant_id), number)
        return number

    def next_order_number(self, tenant_id: UUID) -> str:
        """
        Allocate the next order number, skipping numbers already present.

        A collision means the counter fell behind imported orders; it is
        advanced and retried a bounded number of times.
        """
        prefix = self.tenants.prefix_for(tenant_id, self.default_prefix)
        for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
            try:
                return self._allocate_number(tenant_id, prefix)
            except OrderNumberCollisionError as exc:
                logger.warning(
                    "order_number_collision",
                    extra={"tenant_id": str(tenant_id), "order_number": exc.order_number, "attempt": attempt},
                )
        raise InvariantViolationError(
            "order_number_unique",
            f"no free order number for tenant {tenant_id} after {MAX_NUMBER_ATTEMPTS} attempts",
        )

    def create_order(self, tenant_id: UUID, request: OrderRequest, actor_id: UUID = SYSTEM_ACTOR_ID) -> Order:
        """
        Create an order.

        Steps: expand, validate stock, price, number, decide status,
        persist, record stock when the order is already confirmed and paid.
        Nothing is written when validation fails.
        """
        tenant = self.tenants.get(tenant_id)
        lines = self._expand(tenant_id, request)
        self._validate_stock(tenant_id, lines)
        self._price(lines)
        totals: OrderTotals = total_order(
            [line.pricing for line in lines],
            caller=request.caller_totals,
            delivery_charge=request.delivery_charge,
        )

        status, payment_status = initial_status(request.source, request.payment_method, request.payment_status)
        order_number = self.next_order_number(tenant_id)
        now = self.clock.now()

        order = OrderModel(
            id=uuid4(),
            tenant_id=tenant_id,
            order_number=order_number,
            source=request.source.value,
            order_type=request.order_type or default_order_type(request.source),
            status=status.value,
            customer_name=request.customer.name or "Walk-in Customer",
            customer_phone=request.customer.phone,
            customer_email=request.customer.email,
            table_number=request.table_number,
            seat=request.seat,
            qr_name=request.qr_name,
            seat_class=request.seat_class,
            special_instructions=request.special_instructions,
            staff_id=request.staff.staff_id,
            staff_name=request.staff.name,
            staff_role=request.staff.role,
            subtotal=totals.subtotal,
            total_discount=totals.total_discount,
            tax_amount=totals.tax_amount,
            cgst=totals.cgst,
            sgst=totals.sgst,
            delivery_charge=totals.delivery_charge,
            total=totals.total,
            currency=request.currency or tenant.currency or self.currency,
            payment_method=(request.payment_method or "cash").strip().lower(),
            payment_status=payment_status.value,
            transaction_id=request.transaction_id,
            paid_at=now if payment_status in PAID_STATUSES else None,
            stock_recorded=False,
            stock_reconcile_required=False,
            ordered_at=now,
            confirmed_at=now if status in CONFIRMED_FAMILY else None,
            created_by_id=actor_id,
        )
        for position, line in enumerate(lines):
            item = OrderItemModel(
                id=uuid4(),
                position=position,
                product_id=line.product.id,
                name=line.product.name,
                quantity=line.quantity,
                no_qty=line.no_qty,
                size_label=line.size_label,
                stock_quantity_consumed=line.consumption if line.product.track_stock else ZERO,
                stock_unit=line.stock_unit,
                track_stock=line.product.track_stock,
                is_from_combo=line.combo is not None,
                combo_id=line.combo.id if line.combo else None,
                combo_name=line.combo.name if line.combo else None,
                combo_product_quantity=line.combo_product_quantity,
                created_by_id=actor_id,
            )
            item.set_pricing(line.pricing)
            order.items.append(item)
        self.session.add(order)
        self.session.flush()

        logger.info(
            "order_created",
            extra={
                "tenant_id": str(tenant_id),
                "order_id": str(order.id),
                "order_number": order_number,
                "source": request.source.value,
                "status": status.value,
                "payment_status": payment_status.value,
                "items": len(lines),
                "total": totals.total,
            },
        )

        if should_record_stock(status, payment_status):
            self.stock.record_consumption(order, self.clock.today())
        return order.to_dto()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_model(self, tenant_id: UUID, ref: UUID | str) -> OrderModel:
        model = lookup_order(self.session, tenant_id, ref)
        if model is None:
            raise OrderNotFoundError(str(tenant_id), str(ref))
        return model

    def get_order(self, tenant_id: UUID, ref: UUID | str) -> Order:
        return self.get_model(tenant_id, ref).to_dto()

    # ------------------------------------------------------------------
    # Item cancellation
    # ------------------------------------------------------------------

    def _apply_totals(self, order: OrderModel, totals: OrderTotals) -> None:
        order.subtotal = totals.subtotal
        order.total_discount = totals.total_discount
        order.tax_amount = totals.tax_amount
        order.cgst = totals.cgst
        order.sgst = totals.sgst
        order.delivery_charge = totals.delivery_charge
        order.total = totals.total

    def cancel_item(
        self,
        tenant_id: UUID,
        order_ref: UUID | str,
        item_id: UUID,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> Order:
        """
        Cancel one line: restore its stock, drop it from the totals.

        Cancelling the last active line cancels the order.
        """
        order = self.get_model(tenant_id, order_ref)
        if order.status == OrderStatus.CANCELLED.value:
            raise OrderAlreadyCancelledError(order.order_number)
        if order.status == OrderStatus.COMPLETED.value:
            raise OrderCompletedError(order.order_number)
        item = next((i for i in order.active_items if i.id == item_id), None)
        if item is None:
            raise OrderItemNotFoundError(str(order.id), str(item_id))

        today = self.clock.today()
        self.stock.restore_items(order, [item], today)
        now = self.clock.now()
        item.cancelled_at = now
        item.updated_by_id = actor_id

        remaining = order.active_items
        self._apply_totals(
            order,
            recalculate_after_removal([i.line_pricing() for i in remaining], order.delivery_charge),
        )
        if not remaining:
            order.status = OrderStatus.CANCELLED.value
            order.cancelled_at = now
        order.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "order_item_cancelled",
            extra={
                "tenant_id": str(tenant_id),
                "order_number": order.order_number,
                "item_id": str(item_id),
                "product_id": str(item.product_id),
                "remaining_items": len(remaining),
                "total": order.total,
            },
        )
        return order.to_dto()

    # ------------------------------------------------------------------
    # Status and payment
    # ------------------------------------------------------------------

    def _mark_paid(self, order: OrderModel, payment_status: PaymentStatus, transaction_id: str | None) -> None:
        order.payment_status = payment_status.value
        if transaction_id:
            order.transaction_id = transaction_id
        if payment_status in PAID_STATUSES and order.paid_at is None:
            order.paid_at = self.clock.now()

    def _enter(self, order: OrderModel, target: OrderStatus) -> None:
        now = self.clock.now()
        order.status = target.value
        if target in CONFIRMED_FAMILY and order.confirmed_at is None:
            order.confirmed_at = now
        if target is OrderStatus.COMPLETED:
            order.completed_at = now
        if target is OrderStatus.CANCELLED:
            order.cancelled_at = now
            self.stock.restore_items(order, order.active_items, self.clock.today())
            order.stock_restored = order.stock_recorded and all(
                i.stock_restored for i in order.active_items if i.track_stock
            )
        elif target in CONFIRMED_FAMILY and not order.stock_recorded:
            self.stock.late_record(order, self.clock.today())

    def update_payment(
        self,
        tenant_id: UUID,
        order_ref: UUID | str,
        payment_status: PaymentStatus | str,
        transaction_id: str | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> StatusChange:
        """
        Update the payment facet.

        A payment that becomes paid confirms a pending order (recording its
        stock on today's row).
        """
        order = self.get_model(tenant_id, order_ref)
        previous = OrderStatus(order.status)
        try:
            new_payment = PaymentStatus(str(getattr(payment_status, "value", payment_status)).strip().lower())
        except ValueError as exc:
            raise InvalidInputError(f"Unknown payment status: {payment_status}") from exc
        if previous is OrderStatus.CANCELLED:
            raise OrderAlreadyCancelledError(order.order_number)

        self._mark_paid(order, new_payment, transaction_id)
        if new_payment in PAID_STATUSES:
            if previous is OrderStatus.PENDING:
                self._enter(order, OrderStatus.CONFIRMED)
            elif previous in CONFIRMED_FAMILY and not order.stock_recorded:
                self.stock.late_record(order, self.clock.today())
        order.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "order_payment_updated",
            extra={
                "tenant_id": str(tenant_id),
                "order_number": order.order_number,
                "payment_status": new_payment.value,
                "status": order.status,
            },
        )
        return StatusChange(order.to_dto(), previous, order.status != previous.value)

    def update_status(
        self,
        tenant_id: UUID,
        order_ref: UUID | str,
        new_status: OrderStatus | str,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> StatusChange:
        """
        Move an order to ``new_status``.

        ``"paid"`` is routed to the payment facet.  Cancelling restores every
        active line; entering the confirmed family records stock if it was
        not recorded at create.
        """
        requested = str(getattr(new_status, "value", new_status)).strip().lower()
        if requested == PAID_ALIAS:
            return self.update_payment(tenant_id, order_ref, PaymentStatus.PAID, actor_id=actor_id)
        try:
            target = OrderStatus(requested)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown order status: {new_status}") from exc

        order = self.get_model(tenant_id, order_ref)
        current = OrderStatus(order.status)
        if target is current:
            return StatusChange(order.to_dto(), current, False)
        if current is OrderStatus.CANCELLED:
            raise OrderAlreadyCancelledError(order.order_number)
        if current is OrderStatus.COMPLETED:
            if target is OrderStatus.CANCELLED:
                raise OrderCompletedError(order.order_number)
            raise InvalidStatusTransitionError(order.order_number, current.value, target.value)
        if target is OrderStatus.PENDING:
            raise InvalidStatusTransitionError(order.order_number, current.value, target.value)

        self._enter(order, target)
        order.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "order_status_changed",
            extra={
                "tenant_id": str(tenant_id),
                "order_number": order.order_number,
                "from_status": current.value,
                "to_status": target.value,
                "stock_recorded": order.stock_recorded,
            },
        )
        return StatusChange(order.to_dto(), current, True)
