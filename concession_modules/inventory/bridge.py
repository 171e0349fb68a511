"""
Theater -> Cafe Bridge (``concession_modules.inventory.bridge``).

Responsibility
--------------
Mirrors cafe inward stock into the theater ledger.  Stock received by the
cafe on a day was transferred out of the theater warehouse on that same
day, so the theater row for the day carries ``transfer`` equal to the
cafe's ``invord_stock``.

Invariants
----------
- One-way: the cafe value is authoritative; theater transfers are never
  read back into the cafe ledger.
- Idempotent: replaying ``sync_transfer`` with the same value leaves the
  theater ledger unchanged.
- A transfer of zero never creates a theater ledger or row.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from concession_engines.ledger import CARRY_FORWARD_NOTE, LedgerFamily
from concession_kernel.db.base import SYSTEM_ACTOR_ID
from concession_kernel.db.types import ZERO, round_quantity
from concession_kernel.domain.clock import Clock
from concession_kernel.logging_config import get_logger
from concession_modules.inventory.service import MonthlyLedgerStore, month_of

logger = get_logger("modules.inventory.bridge")


class TheaterCafeBridge:
    """
    Keeps theater ``transfer`` in step with cafe ``invord_stock``.

    Contract:
        ``theater_store`` must be a THEATER-family store sharing the
        caller's session.
    """

    def __init__(self, theater_store: MonthlyLedgerStore):
        if theater_store.family is not LedgerFamily.THEATER:
            raise ValueError("TheaterCafeBridge needs a theater ledger store")
        self.theater = theater_store

    def sync_transfer(self, tenant_id: UUID, product_id: UUID, day: date, invord: Decimal) -> bool:
        """
        Set the theater transfer for ``day`` to ``invord``.

        The first real theater row of the day carries the transfer; other
        rows of the same day are zeroed.  Returns True when anything changed.
        """
        invord = round_quantity(invord or ZERO)
        year, month = month_of(day)
        store = self.theater
        model = store.find(tenant_id, product_id, year, month)
        if model is None:
            if invord == 0:
                return False
            model = store.get_or_create(tenant_id, product_id, year, month)

        rows = sorted(
            (e for e in model.entries if e.day == day and not e.auto_filled),
            key=lambda e: e.seq,
        )
        current = sum((e.transfer for e in rows), ZERO)
        if current == invord and (not rows or rows[0].transfer == invord):
            return False
        if not rows and invord == 0:
            return False

        target = rows[0] if rows else store.entry_for_day(model, day)
        for extra in rows[1:]:
            extra.transfer = ZERO
        target.transfer = invord
        store.commit_row_change(model)
        logger.info(
            "theater_transfer_synced",
            extra={
                "tenant_id": str(tenant_id),
                "product_id": str(product_id),
                "day": day,
                "previous_transfer": current,
                "transfer": invord,
                "theater_closing": model.closing_balance,
            },
        )
        return True


@dataclass(frozen=True)
class LedgerStores:
    cafe: MonthlyLedgerStore
    theater: MonthlyLedgerStore

    def for_family(self, family: LedgerFamily) -> MonthlyLedgerStore:
        return self.cafe if family is LedgerFamily.CAFE else self.theater


def build_ledger_stores(
    session: Session,
    clock: Clock | None = None,
    carry_forward_note: str = CARRY_FORWARD_NOTE,
    actor_id: UUID = SYSTEM_ACTOR_ID,
) -> LedgerStores:
    """Theater store, and a cafe store bridged to it, sharing one session."""
    theater = MonthlyLedgerStore(session, LedgerFamily.THEATER, clock, None, carry_forward_note, actor_id)
    cafe = MonthlyLedgerStore(
        session, LedgerFamily.CAFE, clock, TheaterCafeBridge(theater), carry_forward_note, actor_id,
    )
    return LedgerStores(cafe=cafe, theater=theater)
