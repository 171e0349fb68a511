"""
Input normalization (``concession_services.normalization``).

Responsibility
--------------
Turns loosely typed ingress payloads (form posts, JSON bodies with
camelCase keys) into the typed requests the modules accept:

- string booleans ("true", "1") become ``bool``;
- numeric strings and JSON numbers become ``Decimal``; the empty string is
  treated as absent, not as zero;
- phone numbers are reduced to their last ten digits;
- source aliases are canonicalized to pos / kiosk / online.

Nothing here touches the database.  Malformed values raise
``InvalidInputError`` naming the field.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping
from uuid import UUID

from concession_engines.channels import OrderSource, OrderStatus, PaymentStatus, canonical_source, is_known_source
from concession_engines.ledger import EntryType, InwardType, LedgerRow
from concession_engines.pricing import CallerTotals, GstType
from concession_engines.units import normalize_unit, parse_quantity
from concession_kernel.db.types import ZERO
from concession_kernel.exceptions import InvalidInputError, MissingFieldError
from concession_kernel.logging_config import get_logger
from concession_modules.ordering.models import (
    DEFAULT_CUSTOMER_NAME,
    ComboLine,
    CustomerInfo,
    OrderFilters,
    OrderRequest,
    ProductLine,
    StaffInfo,
)

logger = get_logger("services.normalization")

PHONE_DIGITS = 10

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})
_NON_DIGIT = re.compile(r"\D")

# camelCase payload key -> LedgerRow field
LEDGER_FIELDS = {
    "invordStock": "invord_stock",
    "directStock": "direct_stock",
    "addon": "addon",
    "cancelStock": "cancel_stock",
    "stockAdjustment": "stock_adjustment",
    "sales": "sales",
    "transfer": "transfer",
    "expiredStock": "expired_stock",
    "damageStock": "damage_stock",
}


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------


def coerce_bool(value: Any, default: bool | None = None) -> bool | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, Decimal)):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise InvalidInputError(f"Not a boolean: {value!r}")


def coerce_decimal(value: Any, field_name: str = "value") -> Decimal | None:
    """``None`` and ``""`` are absent (None); everything else must parse."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f"{field_name} must be a number, got {value!r}")
    if isinstance(value, Decimal):
        return value
    try:
        # JSON floats go through their shortest repr, never binary expansion.
        result = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise InvalidInputError(f"{field_name} must be a number, got {value!r}") from exc
    if not result.is_finite():
        raise InvalidInputError(f"{field_name} must be finite, got {value!r}")
    return result


def coerce_int(value: Any, field_name: str = "value", default: int | None = None) -> int | None:
    number = coerce_decimal(value, field_name)
    if number is None:
        return default
    if number != number.to_integral_value():
        raise InvalidInputError(f"{field_name} must be a whole number, got {value!r}")
    return int(number)


def coerce_uuid(value: Any, field_name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    if value is None or value == "":
        raise MissingFieldError(field_name)
    try:
        return UUID(str(value).strip())
    except ValueError as exc:
        raise InvalidInputError(f"{field_name} is not a valid id: {value!r}") from exc


def coerce_date(value: Any, field_name: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise InvalidInputError(f"{field_name} is not an ISO date: {value!r}") from exc


def coerce_datetime(value: Any, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip().replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise InvalidInputError(f"{field_name} is not an ISO timestamp: {value!r}") from exc


def normalize_phone(raw: Any) -> str | None:
    """Digits only, last ten; None when no digits remain."""
    if raw is None:
        return None
    digits = _NON_DIGIT.sub("", str(raw))
    return digits[-PHONE_DIGITS:] or None


def phones_match(stored: Any, supplied: Any) -> bool:
    left, right = normalize_phone(stored), normalize_phone(supplied)
    return left is not None and left == right


def parse_unit_quantity(text: Any) -> tuple[Decimal, str] | None:
    """``"750 ml"`` -> ``(Decimal("750"), "ML")``; None when it does not parse."""
    parsed = parse_quantity(None if text is None else str(text))
    if parsed is None:
        return None
    magnitude, unit = parsed
    return magnitude, normalize_unit(unit)


def normalize_source(raw: Any) -> OrderSource:
    if raw and not is_known_source(str(raw)):
        logger.warning("order_source_unknown", extra={"source": str(raw)})
    return canonical_source(None if raw is None else str(raw))


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def _line(raw: Mapping[str, Any], index: int) -> ProductLine | ComboLine:
    label = f"items[{index}]"
    quantity = coerce_int(raw.get("quantity"), f"{label}.quantity")
    if quantity is None:
        raise MissingFieldError(f"{label}.quantity")
    combo_id = _first(raw, "comboId", "comboOfferId")
    if combo_id is not None or coerce_bool(raw.get("isCombo"), False):
        return ComboLine(
            combo_id=coerce_uuid(combo_id or _first(raw, "productId", "_id"), f"{label}.comboId"),
            quantity=quantity,
        )
    gst_raw = _first(raw, "gstType")
    return ProductLine(
        product_id=coerce_uuid(_first(raw, "productId", "_id"), f"{label}.productId"),
        quantity=quantity,
        unit_price=coerce_decimal(_first(raw, "unitPrice", "price"), f"{label}.unitPrice"),
        discount_percentage=coerce_decimal(raw.get("discountPercentage"), f"{label}.discountPercentage"),
        tax_rate=coerce_decimal(raw.get("taxRate"), f"{label}.taxRate"),
        gst_type=GstType.parse(gst_raw) if gst_raw is not None else None,
        size_label=_first(raw, "size", "variant", "sizeLabel"),
        no_qty=coerce_int(raw.get("noQty"), f"{label}.noQty"),
    )


def order_request_from_payload(payload: Mapping[str, Any]) -> OrderRequest:
    """Build an ``OrderRequest`` from a camelCase create payload."""
    items = payload.get("items") or payload.get("cart") or []
    if not items:
        raise MissingFieldError("items")
    lines = tuple(_line(raw, index) for index, raw in enumerate(items))

    customer_raw = payload.get("customerInfo") or {}
    customer = CustomerInfo(
        name=(_first(customer_raw, "name") or _first(payload, "customerName") or DEFAULT_CUSTOMER_NAME),
        phone=normalize_phone(_first(customer_raw, "phone", "phoneNumber") or payload.get("customerPhone")),
        email=_first(customer_raw, "email") or payload.get("customerEmail"),
    )
    staff_raw = payload.get("staffInfo") or {}
    staff = StaffInfo(
        staff_id=_first(staff_raw, "staffId", "id") or payload.get("staffId"),
        name=_first(staff_raw, "name", "username"),
        role=_first(staff_raw, "role"),
    )

    totals = None
    if any(payload.get(k) not in (None, "") for k in ("total", "subtotal", "tax", "totalDiscount")):
        totals = CallerTotals(
            total=coerce_decimal(payload.get("total"), "total"),
            subtotal=coerce_decimal(payload.get("subtotal"), "subtotal"),
            tax=coerce_decimal(payload.get("tax"), "tax"),
            discount=coerce_decimal(payload.get("totalDiscount"), "totalDiscount"),
        )

    payment_status = None
    raw_payment_status = payload.get("paymentStatus")
    if raw_payment_status:
        try:
            payment_status = PaymentStatus(str(raw_payment_status).strip().lower())
        except ValueError as exc:
            raise InvalidInputError(f"Unknown payment status: {raw_payment_status}") from exc

    return OrderRequest(
        lines=lines,
        source=normalize_source(_first(payload, "source", "orderSource")),
        order_type=payload.get("orderType") or None,
        payment_method=(payload.get("paymentMethod") or "cash"),
        payment_status=payment_status,
        transaction_id=payload.get("transactionId") or None,
        customer=customer,
        staff=staff,
        table_number=_first(payload, "tableNumber"),
        seat=_first(payload, "seat", "seatNumber"),
        qr_name=_first(payload, "qrName"),
        seat_class=_first(payload, "seatClass"),
        special_instructions=_first(payload, "specialInstructions", "notes"),
        caller_totals=totals,
        delivery_charge=coerce_decimal(payload.get("deliveryCharge"), "deliveryCharge") or ZERO,
        currency=payload.get("currency") or None,
    )


def order_filters_from_query(query: Mapping[str, Any]) -> OrderFilters:
    """List filters from query-string style values."""
    source = query.get("source")
    status = query.get("status")
    if status:
        try:
            status = OrderStatus(str(status).strip().lower())
        except ValueError as exc:
            raise InvalidInputError(f"Unknown order status: {status}") from exc
    return OrderFilters(
        source=normalize_source(source) if source else None,
        staff_id=query.get("staffId") or None,
        status=status or None,
        start=coerce_datetime(query.get("startDate"), "startDate"),
        end=coerce_datetime(query.get("endDate"), "endDate"),
        search=(query.get("search") or "").strip() or None,
        payment_mode=query.get("paymentMode") or None,
        page=coerce_int(query.get("page"), "page", 1),
        limit=coerce_int(query.get("limit"), "limit", 20),
    )


# ---------------------------------------------------------------------------
# Ledger rows
# ---------------------------------------------------------------------------


def _inward_type(raw: Any) -> InwardType | None:
    if raw is None or raw == "":
        return None
    try:
        return InwardType(str(raw).strip().lower())
    except ValueError as exc:
        raise InvalidInputError(f"Unknown inward type: {raw!r}") from exc


def _entry_type(raw: Any) -> EntryType:
    if raw is None or raw == "":
        return EntryType.ADDED
    try:
        return EntryType(str(raw).strip().upper())
    except ValueError as exc:
        raise InvalidInputError(f"Unknown entry type: {raw!r}") from exc


def ledger_row_from_payload(payload: Mapping[str, Any]) -> LedgerRow:
    """
    Build a new ledger row.

    A bare ``quantity`` on an ADDED row is inward stock: routed to
    ``invord_stock`` for ``inwardType`` "product" (the default) and to
    ``direct_stock`` for "cafe".
    """
    day = coerce_date(payload.get("date"), "date")
    if day is None:
        raise MissingFieldError("date")
    values: dict[str, Decimal] = {}
    for key, name in LEDGER_FIELDS.items():
        amount = coerce_decimal(payload.get(key), key)
        if amount is not None:
            values[name] = amount

    entry_type = _entry_type(payload.get("type"))
    inward_type = _inward_type(payload.get("inwardType"))
    quantity = coerce_decimal(payload.get("quantity"), "quantity")
    if quantity is not None and entry_type is EntryType.ADDED:
        target = "direct_stock" if inward_type is InwardType.CAFE else "invord_stock"
        values.setdefault(target, quantity)
        inward_type = inward_type or InwardType.PRODUCT

    return LedgerRow(
        day=day,
        unit=normalize_unit(payload.get("unit")) or "",
        entry_type=entry_type,
        notes=payload.get("notes") or None,
        batch_number=payload.get("batchNumber") or None,
        expire_date=coerce_date(payload.get("expireDate"), "expireDate"),
        inward_type=inward_type,
        **values,
    )


def ledger_patch_from_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    """
    Patch for ``MonthlyLedgerStore.update``.

    Keys absent from the payload (or empty strings) are left out; an
    explicit zero is kept so the store sets that field to zero.
    """
    patch: dict[str, Any] = {}
    for key, name in LEDGER_FIELDS.items():
        if key in payload:
            amount = coerce_decimal(payload[key], key)
            if amount is not None:
                patch[name] = amount
    if payload.get("date") not in (None, ""):
        patch["day"] = coerce_date(payload["date"], "date")
    if payload.get("expireDate") not in (None, ""):
        patch["expire_date"] = coerce_date(payload["expireDate"], "expireDate")
    if payload.get("type") not in (None, ""):
        patch["entry_type"] = _entry_type(payload["type"]).value
    if payload.get("inwardType") not in (None, ""):
        patch["inward_type"] = _inward_type(payload["inwardType"]).value
    for key, name in (("unit", "unit"), ("notes", "notes"), ("batchNumber", "batch_number")):
        if key in payload and payload[key] is not None:
            patch[name] = payload[key]

    quantity = coerce_decimal(payload.get("quantity"), "quantity")
    if quantity is not None and patch.get("entry_type", EntryType.ADDED.value) == EntryType.ADDED.value:
        target = "direct_stock" if patch.get("inward_type") == InwardType.CAFE.value else "invord_stock"
        patch.setdefault(target, quantity)
    return patch
