"""
Ledger Engine - canonical recomputation of a monthly stock ledger.

Pure functions with no I/O.  A monthly ledger is an opening balance plus
date-keyed rows of contributions.  ``recompute`` sorts the rows, fills the
missing days with carry-forward rows, applies the family's balance equation
with a zero clamp and derives the monthly totals.

Usage:
    from datetime import date
    from decimal import Decimal
    from concession_engines.ledger import LedgerFamily, LedgerRow, recompute

    rows = [
        LedgerRow(day=date(2025, 3, 1), unit="KG", direct_stock=Decimal("10")),
        LedgerRow(day=date(2025, 3, 4), unit="KG", sales=Decimal("1.5")),
    ]
    result = recompute(Decimal("2"), rows, today=date(2025, 3, 15), family=LedgerFamily.CAFE)
    print(len(result.entries))       # 4 (two carry-forward rows for 2nd and 3rd)
    print(result.closing_balance)    # Decimal("10.500")

Balance equations:
    cafe:    b_i = max(0, b_{i-1} + invord + direct + addon + cancel + adjustment
                          - sales - expired - damage)
    theater: b_i = max(0, b_{i-1} + invord + adjustment - transfer - expired - damage)
    b_0 = opening balance

Invariants:
    - Fill rows never extend past ``today`` nor past the last real row.
    - recompute(recompute(x)) == recompute(x) for the same opening and today.
    - A fill row carries the previous row's unit and balance unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Iterable, Sequence
from uuid import UUID

from concession_engines.tracer import traced_engine
from concession_kernel.db.types import ZERO, round_quantity

CARRY_FORWARD_NOTE = "Auto-generated: Balance carried forward"


class LedgerFamily(str, Enum):
    """The two parallel ledger families."""

    CAFE = "cafe"
    THEATER = "theater"

    @property
    def inflows(self) -> tuple[str, ...]:
        if self is LedgerFamily.CAFE:
            return ("invord_stock", "direct_stock", "addon", "cancel_stock", "stock_adjustment")
        return ("invord_stock", "stock_adjustment")

    @property
    def outflows(self) -> tuple[str, ...]:
        if self is LedgerFamily.CAFE:
            return ("sales", "expired_stock", "damage_stock")
        return ("transfer", "expired_stock", "damage_stock")


class EntryType(str, Enum):
    """Row tag kept for historical compatibility; new writes use ADDED."""

    ADDED = "ADDED"
    SOLD = "SOLD"
    EXPIRED = "EXPIRED"
    DAMAGED = "DAMAGED"
    RETURNED = "RETURNED"
    ADJUSTMENT = "ADJUSTMENT"


class InwardType(str, Enum):
    """Where an inward quantity came from (routes to invord or direct stock)."""

    PRODUCT = "product"
    CAFE = "cafe"


ALL_CONTRIBUTIONS = (
    "invord_stock",
    "direct_stock",
    "addon",
    "cancel_stock",
    "stock_adjustment",
    "sales",
    "transfer",
    "expired_stock",
    "damage_stock",
)


@dataclass(frozen=True)
class LedgerRow:
    """
    One dated row of a monthly ledger.

    Contribution fields are non-negative at rest except ``stock_adjustment``.
    Fields that do not belong to a family stay at zero (theater rows never
    carry ``sales``; cafe rows never carry ``transfer``).
    """

    day: date
    unit: str = "NOS"
    id: UUID | None = None
    entry_type: EntryType = EntryType.ADDED
    invord_stock: Decimal = ZERO
    direct_stock: Decimal = ZERO
    addon: Decimal = ZERO
    cancel_stock: Decimal = ZERO
    stock_adjustment: Decimal = ZERO
    sales: Decimal = ZERO
    transfer: Decimal = ZERO
    expired_stock: Decimal = ZERO
    damage_stock: Decimal = ZERO
    balance: Decimal = ZERO
    notes: str | None = None
    batch_number: str | None = None
    expire_date: date | None = None
    inward_type: InwardType | None = None
    expiry_processed: bool = False
    auto_filled: bool = False

    def net_change(self, family: LedgerFamily) -> Decimal:
        inflow = sum((getattr(self, name) for name in family.inflows), ZERO)
        outflow = sum((getattr(self, name) for name in family.outflows), ZERO)
        return inflow - outflow

    @property
    def is_filler(self) -> bool:
        """Auto-filled and still carrying no movement."""
        return self.auto_filled and all(getattr(self, name) == 0 for name in ALL_CONTRIBUTIONS)


@dataclass(frozen=True)
class LedgerTotals:
    """Monthly sums of every contribution field."""

    total_invord_stock: Decimal = ZERO
    total_direct_stock: Decimal = ZERO
    total_addon: Decimal = ZERO
    total_cancel_stock: Decimal = ZERO
    total_sales: Decimal = ZERO
    total_transfer: Decimal = ZERO
    total_expired_stock: Decimal = ZERO
    total_damage_stock: Decimal = ZERO
    total_stock_adjustment: Decimal = ZERO

    def as_dict(self) -> dict[str, Decimal]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class RecomputedLedger:
    opening_balance: Decimal
    entries: tuple[LedgerRow, ...]
    closing_balance: Decimal
    totals: LedgerTotals = field(default_factory=LedgerTotals)


def negative_contributions(row: LedgerRow) -> list[str]:
    """Names of contribution fields that are negative where only adjustments may be."""
    return [
        name for name in ALL_CONTRIBUTIONS
        if name != "stock_adjustment" and getattr(row, name) < 0
    ]


def carry_forward_row(previous: LedgerRow, day: date) -> LedgerRow:
    """Zero-movement row that repeats ``previous``'s unit and balance."""
    return LedgerRow(
        day=day,
        unit=previous.unit,
        entry_type=EntryType.ADDED,
        balance=previous.balance,
        notes=CARRY_FORWARD_NOTE,
        auto_filled=True,
    )


def _clean(rows: Iterable[LedgerRow], fill_until: date | None) -> list[LedgerRow]:
    ordered = sorted(rows, key=lambda r: r.day)
    real_days = {r.day for r in ordered if not r.is_filler}
    kept = []
    for row in ordered:
        if row.is_filler:
            if row.day in real_days:
                continue
            if fill_until is None or row.day > fill_until:
                continue
        kept.append(row)
    return kept


def _fill_gaps(rows: list[LedgerRow], fill_until: date | None) -> list[LedgerRow]:
    """Insert placeholder fillers for missing days; balances are set later."""
    if not rows or fill_until is None:
        return rows
    out: list[LedgerRow] = []
    for row in rows:
        if out:
            cursor = out[-1].day + timedelta(days=1)
            while cursor < row.day and cursor <= fill_until:
                out.append(carry_forward_row(out[-1], cursor))
                cursor += timedelta(days=1)
        out.append(row)
    return out


@traced_engine("ledger", "1.0", fingerprint_fields=("opening", "today", "family"))
def recompute(
    opening: Decimal,
    entries: Sequence[LedgerRow],
    today: date,
    family: LedgerFamily,
) -> RecomputedLedger:
    """
    Canonical recomputation.

    Args:
        opening: Opening balance carried from the previous month.
        entries: Rows in any order; fillers from an earlier run are allowed.
        today: Business date; no fill row is created after it.
        family: Selects the balance equation.

    Returns:
        RecomputedLedger with date-sorted rows, running balances, closing
        balance (opening when there are no rows) and monthly totals.
    """
    opening = round_quantity(opening)
    real = [r for r in entries if not r.is_filler]
    last_day = max((r.day for r in real), default=None)
    fill_until = min(today, last_day) if last_day is not None else None

    rows = _fill_gaps(_clean(entries, fill_until), fill_until)

    running = opening
    computed: list[LedgerRow] = []
    for row in rows:
        running = round_quantity(max(ZERO, running + row.net_change(family)))
        computed.append(replace(row, balance=running))

    totals = LedgerTotals(
        **{
            f"total_{name}": round_quantity(sum((getattr(r, name) for r in computed), ZERO))
            for name in ALL_CONTRIBUTIONS
        }
    )
    return RecomputedLedger(
        opening_balance=opening,
        entries=tuple(computed),
        closing_balance=running,
        totals=totals,
    )


def balance_on(result: RecomputedLedger, day: date) -> Decimal:
    """Closing balance at the end of ``day`` (opening if no row precedes it)."""
    balance = result.opening_balance
    for row in result.entries:
        if row.day > day:
            break
        balance = row.balance
    return balance
