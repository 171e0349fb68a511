"""
Ordering Domain Models (``concession_modules.ordering.models``).

Responsibility
--------------
Frozen value objects for order requests, orders and order items.  Input
lines are a tagged union: ``ProductLine | ComboLine``.  Items carry
immutable snapshots taken at create time (``no_qty``, the exact stock
amount deducted, and the line pricing) so that cancellation restores
precisely what was taken.

Invariants
----------
- ``OrderItem.stock_quantity_consumed`` is in ``stock_unit`` (the cafe
  ledger's unit at create time) and never changes afterwards.
- ``Order.items`` lists active items only; cancelled items remain stored
  for audit but are not part of the order's totals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Union
from uuid import UUID

from concession_engines.channels import OrderSource, OrderStatus, PaymentStatus
from concession_engines.pricing import CallerTotals, GstType, LinePricing
from concession_kernel.db.types import ZERO

DEFAULT_CUSTOMER_NAME = "Walk-in Customer"


# ---------------------------------------------------------------------------
# Input lines
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductLine:
    """A request for ``quantity`` sellable items of one product."""

    product_id: UUID
    quantity: int
    unit_price: Decimal | None = None
    discount_percentage: Decimal | None = None
    tax_rate: Decimal | None = None
    gst_type: GstType | None = None
    size_label: str | None = None
    no_qty: int | None = None


@dataclass(frozen=True)
class ComboLine:
    """A request for ``quantity`` combos; expanded per component."""

    combo_id: UUID
    quantity: int


OrderLine = Union[ProductLine, ComboLine]


@dataclass(frozen=True)
class CustomerInfo:
    name: str = DEFAULT_CUSTOMER_NAME
    phone: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class StaffInfo:
    staff_id: str | None = None
    name: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class OrderRequest:
    """
    Everything a create needs.

    ``source`` is already canonical here; ingress aliases are resolved by
    the facade's normalization step.
    """

    lines: tuple[OrderLine, ...]
    source: OrderSource = OrderSource.POS
    order_type: str | None = None
    payment_method: str = "cash"
    payment_status: PaymentStatus | None = None
    transaction_id: str | None = None
    customer: CustomerInfo = field(default_factory=CustomerInfo)
    staff: StaffInfo = field(default_factory=StaffInfo)
    table_number: str | None = None
    seat: str | None = None
    qr_name: str | None = None
    seat_class: str | None = None
    special_instructions: str | None = None
    caller_totals: CallerTotals | None = None
    delivery_charge: Decimal = ZERO
    currency: str | None = None


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderItem:
    id: UUID
    position: int
    product_id: UUID
    name: str
    quantity: int
    no_qty: int
    stock_quantity_consumed: Decimal
    stock_unit: str
    pricing: LinePricing
    is_from_combo: bool = False
    combo_id: UUID | None = None
    combo_name: str | None = None
    combo_product_quantity: int | None = None
    size_label: str | None = None
    stock_restored: bool = False


@dataclass(frozen=True)
class OrderPricing:
    subtotal: Decimal
    total_discount: Decimal
    tax_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    delivery_charge: Decimal
    total: Decimal
    currency: str = "INR"


@dataclass(frozen=True)
class PaymentInfo:
    method: str
    status: PaymentStatus
    transaction_id: str | None = None
    paid_at: datetime | None = None


@dataclass(frozen=True)
class Order:
    id: UUID
    tenant_id: UUID
    order_number: str
    source: OrderSource
    order_type: str
    status: OrderStatus
    items: tuple[OrderItem, ...]
    pricing: OrderPricing
    payment: PaymentInfo
    customer: CustomerInfo
    staff: StaffInfo
    stock_recorded: bool
    stock_reconcile_required: bool
    ordered_at: datetime
    table_number: str | None = None
    seat: str | None = None
    qr_name: str | None = None
    seat_class: str | None = None
    special_instructions: str | None = None
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderFilters:
    """
    List filters.  ``None`` means "no filter".

    ``start``/``end`` bound ``ordered_at`` inclusively.  ``search`` matches
    order number, customer name or phone (case-insensitive substring).
    """

    source: OrderSource | None = None
    staff_id: str | None = None
    status: OrderStatus | None = None
    start: datetime | None = None
    end: datetime | None = None
    search: str | None = None
    payment_mode: str | None = None
    page: int = 1
    limit: int = 20


@dataclass(frozen=True)
class OrderSummary:
    total_orders: int = 0
    confirmed_orders: int = 0
    completed_orders: int = 0
    cancelled_order_amount: Decimal = ZERO
    total_revenue: Decimal = ZERO
    # Revenue split by payment family; excludes cancelled orders.
    cash_revenue: Decimal = ZERO
    upi_revenue: Decimal = ZERO
    card_revenue: Decimal = ZERO


@dataclass(frozen=True)
class Pagination:
    current: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


@dataclass(frozen=True)
class OrderPage:
    orders: tuple[Order, ...]
    summary: OrderSummary
    pagination: Pagination
