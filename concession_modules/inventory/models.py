"""
Inventory Domain Models (``concession_modules.inventory.models``).

Frozen views of a monthly ledger.  Rows are ``concession_engines.ledger.LedgerRow``
values so callers see exactly what the recompute engine produced.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from concession_engines.ledger import LedgerFamily, LedgerRow, LedgerTotals


@dataclass(frozen=True)
class MonthlyLedger:
    """
    One (tenant, product, year, month) ledger of one family.

    ``id`` is None for a ledger that has not been stored yet (a read of a
    month with no activity returns the carried-in opening and no rows).
    """

    id: UUID | None
    tenant_id: UUID
    product_id: UUID
    family: LedgerFamily
    year: int
    month: int
    opening_balance: Decimal
    closing_balance: Decimal
    entries: tuple[LedgerRow, ...] = field(default_factory=tuple)
    totals: LedgerTotals = field(default_factory=LedgerTotals)
    unit: str = "NOS"

    @property
    def period(self) -> tuple[int, int]:
        return (self.year, self.month)
