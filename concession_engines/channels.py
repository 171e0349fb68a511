"""
Channel vocabulary - order sources, statuses and payment families.

Pure functions with no I/O.  Every alias an ingress surface may send is
canonicalized here, so downstream code only ever sees ``pos``, ``kiosk``
and ``online``.

Usage:
    from concession_engines.channels import canonical_source, initial_status

    source = canonical_source("offline-pos")        # OrderSource.POS
    status, payment = initial_status(source, "cash", None)
    # (OrderStatus.CONFIRMED, PaymentStatus.COMPLETED)
"""

from __future__ import annotations

from enum import Enum


class OrderSource(str, Enum):
    POS = "pos"
    KIOSK = "kiosk"
    ONLINE = "online"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentFamily(str, Enum):
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"
    OTHER = "other"


_SOURCE_ALIASES = {
    "pos": OrderSource.POS,
    "offline-pos": OrderSource.POS,
    "offline_pos": OrderSource.POS,
    "staff": OrderSource.POS,
    "counter": OrderSource.POS,
    "kiosk": OrderSource.KIOSK,
    "online": OrderSource.ONLINE,
    "online-pos": OrderSource.ONLINE,
    "qr_code": OrderSource.ONLINE,
    "qr_order": OrderSource.ONLINE,
    "qr-order": OrderSource.ONLINE,
    "web": OrderSource.ONLINE,
    "app": OrderSource.ONLINE,
    "customer": OrderSource.ONLINE,
}

PAYMENT_METHODS = (
    "cash", "cod", "card", "credit_card", "debit_card", "neft", "upi",
    "online", "razorpay", "phonepe", "paytm",
)

_PAYMENT_FAMILIES = {
    "cash": PaymentFamily.CASH,
    "cod": PaymentFamily.CASH,
    "card": PaymentFamily.CARD,
    "credit_card": PaymentFamily.CARD,
    "debit_card": PaymentFamily.CARD,
    "neft": PaymentFamily.ONLINE,
    "upi": PaymentFamily.ONLINE,
    "online": PaymentFamily.ONLINE,
    "razorpay": PaymentFamily.ONLINE,
    "phonepe": PaymentFamily.ONLINE,
    "paytm": PaymentFamily.ONLINE,
}

CONFIRMED_FAMILY = frozenset(
    {OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY,
     OrderStatus.SERVED, OrderStatus.COMPLETED}
)
TERMINAL = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})
PAID_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.COMPLETED})
UNPAID_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.FAILED})
NOTIFY_EVENTS = frozenset({"created", "preparing", "ready", "completed", "cancelled"})

# Requested status that only flips the payment facet.
PAID_ALIAS = "paid"


def canonical_source(raw: str | OrderSource | None) -> OrderSource:
    """Map any source alias to pos/kiosk/online; unknown or empty is pos."""
    if isinstance(raw, OrderSource):
        return raw
    if not raw:
        return OrderSource.POS
    return _SOURCE_ALIASES.get(str(raw).strip().lower(), OrderSource.POS)


def is_known_source(raw: str | None) -> bool:
    return bool(raw) and str(raw).strip().lower() in _SOURCE_ALIASES


def default_order_type(source: OrderSource) -> str:
    return source.value


def payment_family(method: str | None) -> PaymentFamily:
    if not method:
        return PaymentFamily.CASH
    return _PAYMENT_FAMILIES.get(str(method).strip().lower(), PaymentFamily.OTHER)


def is_pos_route(source: OrderSource) -> bool:
    """Counter or kiosk: eligible for cash auto-confirm and print dispatch."""
    return source in (OrderSource.POS, OrderSource.KIOSK)


def initial_status(
    source: OrderSource,
    payment_method: str | None,
    payment_status: PaymentStatus | None,
) -> tuple[OrderStatus, PaymentStatus]:
    """Cash and COD on a POS route confirm immediately with payment completed."""
    method = (payment_method or "cash").strip().lower()
    if is_pos_route(source) and method in ("cash", "cod"):
        return OrderStatus.CONFIRMED, PaymentStatus.COMPLETED
    return OrderStatus.PENDING, payment_status or PaymentStatus.PENDING


def should_record_stock(status: OrderStatus, payment_status: PaymentStatus) -> bool:
    return status in CONFIRMED_FAMILY and payment_status not in UNPAID_STATUSES


def is_paid(payment_status: PaymentStatus | str | None) -> bool:
    if payment_status is None:
        return False
    try:
        return PaymentStatus(str(payment_status).lower()) in PAID_STATUSES
    except ValueError:
        return False


def payment_methods_for(mode: str) -> tuple[str, ...]:
    """
    Stored payment methods a list filter on ``mode`` should match.

    A known method matches its whole family ("upi" also finds razorpay,
    phonepe and paytm orders); anything else matches only itself.
    """
    wanted = mode.strip().lower()
    if wanted not in _PAYMENT_FAMILIES:
        return (wanted,)
    family = _PAYMENT_FAMILIES[wanted]
    return tuple(method for method, member in _PAYMENT_FAMILIES.items() if member is family)
