"""
Dispatch Models (``concession_modules.dispatch.models``).

Projections of an order for the two outbound channels.  Both are built
from the committed ``Order`` DTO; neither carries internal stock data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from concession_modules.ordering.models import Order
from concession_modules.tenants.models import Tenant


@dataclass(frozen=True)
class PrintLine:
    name: str
    quantity: int
    unit_price: Decimal
    total: Decimal
    size_label: str | None = None
    combo_name: str | None = None


@dataclass(frozen=True)
class PrintMessage:
    """Minimal receipt projection for an in-tenant print worker."""

    tenant_id: str
    order_id: str
    order_number: str
    event_kind: str
    lines: tuple[PrintLine, ...]
    subtotal: Decimal
    tax_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    total: Decimal
    payment_method: str
    customer_name: str
    created_at: datetime
    tenant_name: str
    tenant_phone: str | None = None
    tenant_address: str | None = None
    tenant_gst_number: str | None = None
    seat: str | None = None
    qr_name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.order_number, self.event_kind)


def build_print_message(order: Order, tenant: Tenant, event_kind: str = "created") -> PrintMessage:
    return PrintMessage(
        tenant_id=str(tenant.id),
        order_id=str(order.id),
        order_number=order.order_number,
        event_kind=event_kind,
        lines=tuple(
            PrintLine(
                name=item.name,
                quantity=item.quantity,
                unit_price=item.pricing.unit_price,
                total=item.pricing.total,
                size_label=item.size_label,
                combo_name=item.combo_name,
            )
            for item in order.items
        ),
        subtotal=order.pricing.subtotal,
        tax_amount=order.pricing.tax_amount,
        cgst=order.pricing.cgst,
        sgst=order.pricing.sgst,
        total=order.pricing.total,
        payment_method=order.payment.method,
        customer_name=order.customer.name,
        created_at=order.ordered_at,
        tenant_name=tenant.name,
        tenant_phone=tenant.phone,
        tenant_address=tenant.address,
        tenant_gst_number=tenant.gst_number,
        seat=order.seat,
        qr_name=order.qr_name,
    )


def notification_topic(tenant_id) -> str:
    return f"pos_{tenant_id}"


def build_notification_payload(order: Order, event: str) -> dict[str, Any]:
    """Push payload; amounts are strings so the transport never sees floats."""
    return {
        "type": "pos_order",
        "event": event,
        "orderId": str(order.id),
        "orderNumber": order.order_number,
        "status": order.status.value,
        "source": order.source.value,
        "orderType": order.order_type,
        "total": str(order.pricing.total),
        "subtotal": str(order.pricing.subtotal),
        "taxAmount": str(order.pricing.tax_amount),
        "paymentMethod": order.payment.method or "cash",
        "paymentStatus": order.payment.status.value,
        "customerName": order.customer.name or "Customer",
        "qrName": order.qr_name,
        "seat": order.seat,
        "createdAt": order.ordered_at.isoformat(),
    }
