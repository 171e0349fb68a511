"""
Statistics Engine - bucket order facts into rollup totals.

Pure functions with no I/O.  Callers load order facts (source, status,
amount, timestamp) and this module does the arithmetic.

Usage:
    from concession_engines.stats import OrderFact, rollup_orders

    totals = rollup_orders(facts, start, end)
    print(totals.pos_orders, totals.total_amount)

Rules:
    - The window is inclusive of both instants as supplied.
    - Cancelled orders count only in the cancelled bucket.
    - Everything else lands in exactly one of pos / kiosk / online.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from concession_engines.channels import OrderSource, OrderStatus, canonical_source, is_paid
from concession_kernel.db.types import ZERO, round_money


@dataclass(frozen=True)
class OrderFact:
    source: str
    status: str
    amount: Decimal
    created_at: datetime
    payment_status: str | None = None


@dataclass(frozen=True)
class RollupTotals:
    pos_orders: int = 0
    pos_amount: Decimal = ZERO
    kiosk_orders: int = 0
    kiosk_amount: Decimal = ZERO
    online_orders: int = 0
    online_amount: Decimal = ZERO
    cancelled_orders: int = 0
    cancelled_amount: Decimal = ZERO

    @property
    def total_orders(self) -> int:
        return self.pos_orders + self.kiosk_orders + self.online_orders

    @property
    def total_amount(self) -> Decimal:
        return self.pos_amount + self.kiosk_amount + self.online_amount

    def __add__(self, other: RollupTotals) -> RollupTotals:
        return RollupTotals(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )


def in_window(moment: datetime, start: datetime | None, end: datetime | None) -> bool:
    if start is not None and moment < start:
        return False
    if end is not None and moment > end:
        return False
    return True


def rollup_orders(
    facts: Iterable[OrderFact],
    start: datetime | None,
    end: datetime | None,
) -> RollupTotals:
    """Bucket facts inside ``[start, end]``."""
    totals = RollupTotals()
    for fact in facts:
        if not in_window(fact.created_at, start, end):
            continue
        amount = round_money(fact.amount)
        if fact.status == OrderStatus.CANCELLED.value:
            totals = replace(
                totals,
                cancelled_orders=totals.cancelled_orders + 1,
                cancelled_amount=totals.cancelled_amount + amount,
            )
            continue
        source = canonical_source(fact.source)
        prefix = {
            OrderSource.POS: "pos",
            OrderSource.KIOSK: "kiosk",
            OrderSource.ONLINE: "online",
        }[source]
        totals = replace(
            totals,
            **{
                f"{prefix}_orders": getattr(totals, f"{prefix}_orders") + 1,
                f"{prefix}_amount": getattr(totals, f"{prefix}_amount") + amount,
            },
        )
    return totals


@dataclass(frozen=True)
class TenantStats:
    total_orders: int
    today_orders: int
    completed_orders: int
    pending_orders: int
    today_revenue: Decimal
    total_revenue: Decimal
    currency: str = "INR"


_OPEN_STATUSES = frozenset(
    {OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value, OrderStatus.PREPARING.value}
)


def tenant_stats(facts: Iterable[OrderFact], today: date, currency: str = "INR") -> TenantStats:
    """
    Per-tenant dashboard numbers.

    Revenue counts only orders whose payment is paid or completed and that
    are not cancelled.
    """
    total = today_count = completed = pending = 0
    revenue_today = revenue_total = ZERO
    for fact in facts:
        total += 1
        is_today = fact.created_at.date() == today
        if is_today:
            today_count += 1
        if fact.status == OrderStatus.COMPLETED.value:
            completed += 1
        if fact.status in _OPEN_STATUSES:
            pending += 1
        if fact.status != OrderStatus.CANCELLED.value and is_paid(fact.payment_status):
            revenue_total += fact.amount
            if is_today:
                revenue_today += fact.amount
    return TenantStats(
        total_orders=total,
        today_orders=today_count,
        completed_orders=completed,
        pending_orders=pending,
        today_revenue=round_money(revenue_today),
        total_revenue=round_money(revenue_total),
        currency=currency,
    )

