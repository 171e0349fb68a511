"""
Module: concession_modules.ordering.orm
Responsibility: SQLAlchemy persistence for orders and their items.
Architecture position: Modules > Ordering > ORM.  Inherits from TrackedBase.

Invariants enforced:
    - (tenant_id, order_number) is unique; a duplicate surfaces as
      IntegrityError and is retried by the numbering path.
    - Money and quantity columns use Decimal (PortableDecimal) -- never float.
    - Items are owned by their order (delete-orphan cascade) and keep their
      listed order through ``position``.
    - A cancelled item keeps its row (``cancelled_at`` set) so that the
      audit trail of what was sold and restored survives.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from concession_kernel.db.base import TrackedBase
from concession_kernel.db.types import ZERO


class OrderModel(TrackedBase):
    """
    ORM model for an order.

    Maps to: concession_modules.ordering.models.Order (frozen dataclass).
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("tenant_id", "order_number", name="uq_order_number"),
        Index("idx_order_tenant_time", "tenant_id", "ordered_at"),
        Index("idx_order_tenant_status", "tenant_id", "status"),
    )

    tenant_id: Mapped[UUID] = mapped_column()
    order_number: Mapped[str] = mapped_column(String(20))
    source: Mapped[str] = mapped_column(String(20))
    order_type: Mapped[str] = mapped_column(String(30))
    status: Mapped[str] = mapped_column(String(20))

    # Customer
    customer_name: Mapped[str] = mapped_column(String(255))
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    table_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    seat: Mapped[str | None] = mapped_column(String(50), nullable=True)
    qr_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    seat_class: Mapped[str | None] = mapped_column(String(100), nullable=True)
    special_instructions: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Staff
    staff_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    staff_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    staff_role: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Pricing snapshot
    subtotal: Mapped[Decimal] = mapped_column(default=ZERO)
    total_discount: Mapped[Decimal] = mapped_column(default=ZERO)
    tax_amount: Mapped[Decimal] = mapped_column(default=ZERO)
    cgst: Mapped[Decimal] = mapped_column(default=ZERO)
    sgst: Mapped[Decimal] = mapped_column(default=ZERO)
    delivery_charge: Mapped[Decimal] = mapped_column(default=ZERO)
    total: Mapped[Decimal] = mapped_column(default=ZERO)
    currency: Mapped[str] = mapped_column(String(3), default="INR")

    # Payment
    payment_method: Mapped[str] = mapped_column(String(30), default="cash")
    payment_status: Mapped[str] = mapped_column(String(20), default="pending")
    transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Stock accounting
    stock_recorded: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_reconcile_required: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_restored: Mapped[bool] = mapped_column(Boolean, default=False)

    ordered_at: Mapped[datetime] = mapped_column()
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    items: Mapped[list["OrderItemModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
    )

    @property
    def active_items(self) -> list["OrderItemModel"]:
        return [item for item in self.items if item.cancelled_at is None]

    def to_dto(self):
        """Convert ORM model to frozen Order DTO."""
        from concession_engines.channels import OrderSource, OrderStatus, PaymentStatus
        from concession_modules.ordering.models import (
            CustomerInfo,
            Order,
            OrderPricing,
            PaymentInfo,
            StaffInfo,
        )
        return Order(
            id=self.id,
            tenant_id=self.tenant_id,
            order_number=self.order_number,
            source=OrderSource(self.source),
            order_type=self.order_type,
            status=OrderStatus(self.status),
            items=tuple(item.to_dto() for item in self.active_items),
            pricing=OrderPricing(
                subtotal=self.subtotal,
                total_discount=self.total_discount,
                tax_amount=self.tax_amount,
                cgst=self.cgst,
                sgst=self.sgst,
                delivery_charge=self.delivery_charge,
                total=self.total,
                currency=self.currency,
            ),
            payment=PaymentInfo(
                method=self.payment_method,
                status=PaymentStatus(self.payment_status),
                transaction_id=self.transaction_id,
                paid_at=self.paid_at,
            ),
            customer=CustomerInfo(
                name=self.customer_name,
                phone=self.customer_phone,
                email=self.customer_email,
            ),
            staff=StaffInfo(staff_id=self.staff_id, name=self.staff_name, role=self.staff_role),
            stock_recorded=self.stock_recorded,
            stock_reconcile_required=self.stock_reconcile_required,
            ordered_at=self.ordered_at,
            table_number=self.table_number,
            seat=self.seat,
            qr_name=self.qr_name,
            seat_class=self.seat_class,
            special_instructions=self.special_instructions,
            confirmed_at=self.confirmed_at,
            completed_at=self.completed_at,
            cancelled_at=self.cancelled_at,
        )

    def __repr__(self) -> str:
        return f"<OrderModel {self.order_number} status={self.status} tenant={self.tenant_id}>"


class OrderItemModel(TrackedBase):
    """
    ORM model for one order line.

    Maps to: concession_modules.ordering.models.OrderItem (frozen dataclass).
    """

    __tablename__ = "order_items"

    __table_args__ = (
        Index("idx_order_item_order", "order_id"),
    )

    order_id: Mapped[UUID] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"))
    position: Mapped[int] = mapped_column(Integer, default=0)
    product_id: Mapped[UUID] = mapped_column()
    name: Mapped[str] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer)
    no_qty: Mapped[int] = mapped_column(Integer, default=1)
    size_label: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Stock snapshot
    stock_quantity_consumed: Mapped[Decimal] = mapped_column(default=ZERO)
    stock_unit: Mapped[str] = mapped_column(String(20), default="NOS")
    track_stock: Mapped[bool] = mapped_column(Boolean, default=True)

    # Pricing snapshot
    unit_price: Mapped[Decimal] = mapped_column(default=ZERO)
    discount_percentage: Mapped[Decimal] = mapped_column(default=ZERO)
    tax_rate: Mapped[Decimal] = mapped_column(default=ZERO)
    gst_type: Mapped[str] = mapped_column(String(20), default="EXCLUDE")
    line_subtotal: Mapped[Decimal] = mapped_column(default=ZERO)
    discount_amount: Mapped[Decimal] = mapped_column(default=ZERO)
    price_after_discount: Mapped[Decimal] = mapped_column(default=ZERO)
    line_tax: Mapped[Decimal] = mapped_column(default=ZERO)
    line_total: Mapped[Decimal] = mapped_column(default=ZERO)

    # Combo provenance
    is_from_combo: Mapped[bool] = mapped_column(Boolean, default=False)
    combo_id: Mapped[UUID | None] = mapped_column(nullable=True)
    combo_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    combo_product_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    stock_restored: Mapped[bool] = mapped_column(Boolean, default=False)

    order: Mapped[OrderModel] = relationship(back_populates="items")

    def line_pricing(self):
        from concession_engines.pricing import GstType, LinePricing
        return LinePricing(
            unit_price=self.unit_price,
            quantity=self.quantity,
            discount_percentage=self.discount_percentage,
            tax_rate=self.tax_rate,
            gst_type=GstType.parse(self.gst_type),
            subtotal=self.line_subtotal,
            discount_amount=self.discount_amount,
            price_after_discount=self.price_after_discount,
            tax_amount=self.line_tax,
            total=self.line_total,
        )

    def set_pricing(self, pricing) -> None:
        self.unit_price = pricing.unit_price
        self.discount_percentage = pricing.discount_percentage
        self.tax_rate = pricing.tax_rate
        self.gst_type = pricing.gst_type.value
        self.line_subtotal = pricing.subtotal
        self.discount_amount = pricing.discount_amount
        self.price_after_discount = pricing.price_after_discount
        self.line_tax = pricing.tax_amount
        self.line_total = pricing.total

    def to_dto(self):
        """Convert ORM model to frozen OrderItem DTO."""
        from concession_modules.ordering.models import OrderItem
        return OrderItem(
            id=self.id,
            position=self.position,
            product_id=self.product_id,
            name=self.name,
            quantity=self.quantity,
            no_qty=self.no_qty,
            stock_quantity_consumed=self.stock_quantity_consumed,
            stock_unit=self.stock_unit,
            pricing=self.line_pricing(),
            is_from_combo=self.is_from_combo,
            combo_id=self.combo_id,
            combo_name=self.combo_name,
            combo_product_quantity=self.combo_product_quantity,
            size_label=self.size_label,
            stock_restored=self.stock_restored,
        )

    def __repr__(self) -> str:
        return f"<OrderItemModel {self.id} {self.name!r} x{self.quantity}>"
