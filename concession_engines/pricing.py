"""
Pricing Engine - line and order totals with GST and discount semantics.

Pure functions with no I/O.

Usage:
    from decimal import Decimal
    from concession_engines.pricing import GstType, price_line, total_order

    line = price_line(
        unit_price=Decimal("100"),
        quantity=2,
        discount_percentage=Decimal("10"),
        tax_rate=Decimal("5"),
        gst_type=GstType.EXCLUDE,
    )
    print(line.total)  # Decimal("189.00")

    totals = total_order([line])
    print(totals.cgst, totals.sgst)  # 4.50 4.50

Rules (per line):
    subtotal            = unit price x quantity
    discount            = subtotal x discount% / 100
    price after discount = subtotal - discount
    INCLUDE: tax = price after discount x rate / (100 + rate); total = price after discount
    EXCLUDE: tax = price after discount x rate / 100;         total = price after discount + tax

Order totals aggregate the lines.  A positive caller-supplied total is
trusted (rounded to two places) and only the delivery charge is added.
Tax is split into equal CGST and SGST halves.  The order ``subtotal`` is
the grand total without GST.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Sequence

from concession_engines.tracer import traced_engine
from concession_kernel.db.types import ZERO, round_money

HUNDRED = Decimal("100")


class GstType(str, Enum):
    """Whether tax sits inside the price or on top of it."""

    INCLUDE = "INCLUDE"
    EXCLUDE = "EXCLUDE"

    @classmethod
    def parse(cls, raw: str | GstType | None) -> GstType:
        """INCLUDE or Inclusive is inclusive; everything else exclusive."""
        if isinstance(raw, GstType):
            return raw
        if raw and str(raw).strip().upper().startswith("INCLU"):
            return cls.INCLUDE
        return cls.EXCLUDE


@dataclass(frozen=True)
class LinePricing:
    """Pricing snapshot for one order line.  Money fields are rounded to 0.01."""

    unit_price: Decimal
    quantity: int
    discount_percentage: Decimal
    tax_rate: Decimal
    gst_type: GstType
    subtotal: Decimal
    discount_amount: Decimal
    price_after_discount: Decimal
    tax_amount: Decimal
    total: Decimal


@traced_engine("pricing", "1.0", fingerprint_fields=("unit_price", "quantity", "discount_percentage", "tax_rate"))
def price_line(
    unit_price: Decimal,
    quantity: int,
    discount_percentage: Decimal | None = None,
    tax_rate: Decimal | None = None,
    gst_type: GstType | str | None = None,
) -> LinePricing:
    """Price one line; ``None`` rates mean zero."""
    if discount_percentage is not None and not (ZERO <= discount_percentage <= HUNDRED):
        raise ValueError(f"discount_percentage out of range: {discount_percentage}")
    if tax_rate is not None and not (ZERO <= tax_rate <= HUNDRED):
        raise ValueError(f"tax_rate out of range: {tax_rate}")
    discount_pct = discount_percentage if discount_percentage is not None else ZERO
    rate = tax_rate if tax_rate is not None else ZERO
    kind = GstType.parse(gst_type)

    subtotal = unit_price * quantity
    discount = subtotal * discount_pct / HUNDRED
    after = subtotal - discount
    if kind is GstType.INCLUDE:
        tax = after * rate / (HUNDRED + rate)
        total = after
    else:
        tax = after * rate / HUNDRED
        total = after + tax

    return LinePricing(
        unit_price=round_money(unit_price),
        quantity=quantity,
        discount_percentage=discount_pct,
        tax_rate=rate,
        gst_type=kind,
        subtotal=round_money(subtotal),
        discount_amount=round_money(discount),
        price_after_discount=round_money(after),
        tax_amount=round_money(tax),
        total=round_money(total),
    )


@dataclass(frozen=True)
class CallerTotals:
    """Totals pre-computed by the caller (POS front end)."""

    total: Decimal | None = None
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    discount: Decimal | None = None

    @property
    def trusted(self) -> bool:
        return self.total is not None and self.total > 0


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    total_discount: Decimal
    tax_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    delivery_charge: Decimal
    total: Decimal


def split_gst(tax: Decimal) -> tuple[Decimal, Decimal]:
    """Equal CGST/SGST halves."""
    half = round_money(tax / 2)
    return half, half


def total_order(
    lines: Sequence[LinePricing],
    caller: CallerTotals | None = None,
    delivery_charge: Decimal = ZERO,
) -> OrderTotals:
    """Aggregate line snapshots into order totals."""
    delivery = round_money(delivery_charge or ZERO)
    line_tax = sum((line.tax_amount for line in lines), ZERO)
    line_discount = sum((line.discount_amount for line in lines), ZERO)

    if caller is not None and caller.trusted:
        tax = round_money(caller.tax) if caller.tax is not None else round_money(line_tax)
        discount = round_money(caller.discount) if caller.discount is not None else round_money(line_discount)
        total = round_money(caller.total) + delivery
        subtotal = round_money(caller.subtotal) if caller.subtotal else total - tax
    else:
        tax = round_money(line_tax)
        discount = round_money(line_discount)
        total = round_money(sum((line.total for line in lines), ZERO)) + delivery
        subtotal = total - tax

    cgst, sgst = split_gst(tax)
    return OrderTotals(
        subtotal=round_money(subtotal),
        total_discount=discount,
        tax_amount=tax,
        cgst=cgst,
        sgst=sgst,
        delivery_charge=delivery,
        total=round_money(total),
    )


def _shares(amount: Decimal, weights: Sequence[Decimal]) -> list[Decimal]:
    """Split ``amount`` by weight at 0.01; the last share absorbs rounding."""
    total_weight = sum(weights, ZERO)
    count = len(weights)
    shares: list[Decimal] = []
    for index, weight in enumerate(weights):
        if index == count - 1:
            shares.append(amount - sum(shares, ZERO))
        elif total_weight > 0:
            shares.append(round_money(amount * weight / total_weight))
        else:
            shares.append(round_money(amount / count))
    return shares


def apportion(line: LinePricing, weights: Sequence[Decimal], quantities: Sequence[int]) -> list[LinePricing]:
    """
    Distribute one combo line's pricing over its expanded components.

    ``weights`` are typically each component's base price x expanded
    quantity; ``quantities`` are the expanded quantities.  The component
    snapshots sum exactly to the combo line.
    """
    if not weights or len(weights) != len(quantities):
        raise ValueError("weights and quantities must be non-empty and equally long")
    subtotals = _shares(line.subtotal, weights)
    discounts = _shares(line.discount_amount, weights)
    afters = _shares(line.price_after_discount, weights)
    taxes = _shares(line.tax_amount, weights)
    totals = _shares(line.total, weights)
    out = []
    for i, qty in enumerate(quantities):
        out.append(
            LinePricing(
                unit_price=round_money(subtotals[i] / qty) if qty else ZERO,
                quantity=qty,
                discount_percentage=line.discount_percentage,
                tax_rate=line.tax_rate,
                gst_type=line.gst_type,
                subtotal=subtotals[i],
                discount_amount=discounts[i],
                price_after_discount=afters[i],
                tax_amount=taxes[i],
                total=totals[i],
            )
        )
    return out


def recalculate_after_removal(
    remaining: Sequence[LinePricing],
    delivery_charge: Decimal = ZERO,
) -> OrderTotals:
    """Totals for an order after an item is cancelled (caller totals no longer apply)."""
    return total_order(remaining, caller=None, delivery_charge=delivery_charge)
