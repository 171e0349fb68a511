"""
Monthly Ledger Store (``concession_modules.inventory.service``).

Responsibility
--------------
Persists per-(tenant, product, year, month) ledgers of one family and keeps
them consistent with ``concession_engines.ledger.recompute``:

- running balances and monthly totals always match the stored rows;
- each month opens with the previous stored month's closing balance;
- writes to a month are propagated forward through the successor chain.

Architecture
------------
Layer: **Modules** -- stateful orchestration over the ledger engine.
One ``MonthlyLedgerStore`` per family.  The cafe store is constructed with a
``TheaterCafeBridge`` so that cafe inward stock is mirrored as theater
transfers after every cafe write.

Invariants
----------
- Closing balance = clamped prefix sum of the rows over the opening.
- Next month's opening = this month's closing, repaired after every write.
- At most one carry-forward row per empty day, never after today.
- Contribution fields are non-negative except ``stock_adjustment``.

Failure Modes
-------------
- ``InvalidLedgerEntryError`` for negative contributions, fields that do not
  belong to the family, or a row dated outside its ledger's month.
- ``LedgerEntryNotFoundError`` for an unknown row id.
- Database errors propagate; the caller owns the transaction.

Usage::

    store = MonthlyLedgerStore(session, LedgerFamily.CAFE, clock, bridge=bridge)
    ledger = store.get_or_create(tenant_id, product_id, 2025, 3)
    store.append(ledger, LedgerRow(day=date(2025, 3, 4), unit="KG", invord_stock=Decimal("10")))
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from concession_engines import ledger as ledger_engine
from concession_engines.ledger import (
    ALL_CONTRIBUTIONS,
    CARRY_FORWARD_NOTE,
    EntryType,
    InwardType,
    LedgerFamily,
    LedgerRow,
    RecomputedLedger,
)
from concession_engines.units import Unit, normalize_unit
from concession_kernel.db.base import SYSTEM_ACTOR_ID
from concession_kernel.db.types import ZERO, round_quantity, to_decimal
from concession_kernel.domain.clock import Clock
from concession_kernel.exceptions import InvalidLedgerEntryError, LedgerEntryNotFoundError
from concession_kernel.logging_config import get_logger
from concession_kernel.services.base import BaseService
from concession_modules.inventory.models import MonthlyLedger
from concession_modules.inventory.orm import MonthlyLedgerModel, StockEntryModel

if TYPE_CHECKING:
    from concession_modules.inventory.bridge import TheaterCafeBridge

logger = get_logger("modules.inventory.service")

_PATCHABLE_META = frozenset(
    {"unit", "notes", "day", "batch_number", "expire_date", "entry_type", "inward_type"}
)
_FAMILY_ONLY = {
    LedgerFamily.CAFE: frozenset({"direct_stock", "addon", "cancel_stock", "sales"}),
    LedgerFamily.THEATER: frozenset({"transfer"}),
}


def month_of(day: date) -> tuple[int, int]:
    return day.year, day.month


class MonthlyLedgerStore(BaseService):
    """
    Ledger persistence for one family.

    Contract
    --------
    Write methods take the ledger ORM object obtained from ``get_or_create``
    and leave it recomputed, flushed and chain-consistent.  Read methods
    return frozen ``MonthlyLedger`` DTOs.

    Non-goals
    ---------
    - Does NOT lock.  The facade holds the ledger-cell locks.
    - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        family: LedgerFamily,
        clock: Clock | None = None,
        bridge: TheaterCafeBridge | None = None,
        carry_forward_note: str = CARRY_FORWARD_NOTE,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        super().__init__(session, clock)
        self.family = family
        self.bridge = bridge
        self.carry_forward_note = carry_forward_note
        self.actor_id = actor_id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _cell_filter(self, tenant_id: UUID, product_id: UUID):
        return and_(
            MonthlyLedgerModel.tenant_id == tenant_id,
            MonthlyLedgerModel.product_id == product_id,
            MonthlyLedgerModel.family == self.family.value,
        )

    def find(self, tenant_id: UUID, product_id: UUID, year: int, month: int) -> MonthlyLedgerModel | None:
        return self.session.execute(
            select(MonthlyLedgerModel).where(
                self._cell_filter(tenant_id, product_id),
                MonthlyLedgerModel.year == year,
                MonthlyLedgerModel.month == month,
            )
        ).scalar_one_or_none()

    def _chain(self, tenant_id: UUID, product_id: UUID) -> list[MonthlyLedgerModel]:
        return list(
            self.session.execute(
                select(MonthlyLedgerModel)
                .where(self._cell_filter(tenant_id, product_id))
                .order_by(MonthlyLedgerModel.year, MonthlyLedgerModel.month)
            ).scalars()
        )

    def _successors(self, tenant_id: UUID, product_id: UUID, year: int, month: int) -> list[MonthlyLedgerModel]:
        return list(
            self.session.execute(
                select(MonthlyLedgerModel)
                .where(
                    self._cell_filter(tenant_id, product_id),
                    or_(
                        MonthlyLedgerModel.year > year,
                        and_(MonthlyLedgerModel.year == year, MonthlyLedgerModel.month > month),
                    ),
                )
                .order_by(MonthlyLedgerModel.year, MonthlyLedgerModel.month)
            ).scalars()
        )

    def get_previous_month_closing(self, tenant_id: UUID, product_id: UUID, year: int, month: int) -> Decimal:
        """Closing balance of the latest stored month before (year, month); 0 if none."""
        previous = self.session.execute(
            select(MonthlyLedgerModel)
            .where(
                self._cell_filter(tenant_id, product_id),
                or_(
                    MonthlyLedgerModel.year < year,
                    and_(MonthlyLedgerModel.year == year, MonthlyLedgerModel.month < month),
                ),
            )
            .order_by(MonthlyLedgerModel.year.desc(), MonthlyLedgerModel.month.desc())
            .limit(1)
        ).scalar_one_or_none()
        return previous.closing_balance if previous is not None else ZERO

    def get_or_create(self, tenant_id: UUID, product_id: UUID, year: int, month: int) -> MonthlyLedgerModel:
        """
        Ledger for the month, created with the carried-in opening if missing.

        An existing ledger whose opening disagrees with the previous month's
        closing is patched and recomputed.
        """
        prior = self.get_previous_month_closing(tenant_id, product_id, year, month)
        model = self.find(tenant_id, product_id, year, month)
        if model is None:
            model = MonthlyLedgerModel(
                id=uuid4(),
                tenant_id=tenant_id,
                product_id=product_id,
                family=self.family.value,
                year=year,
                month=month,
                opening_balance=prior,
                closing_balance=prior,
                created_by_id=self.actor_id,
            )
            self.session.add(model)
            self.session.flush()
            logger.info(
                "ledger_created",
                extra={
                    "tenant_id": str(tenant_id),
                    "product_id": str(product_id),
                    "family": self.family.value,
                    "period": f"{year}-{month:02d}",
                    "opening_balance": prior,
                },
            )
        elif model.opening_balance != prior:
            logger.info(
                "ledger_opening_patched",
                extra={
                    "tenant_id": str(tenant_id),
                    "product_id": str(product_id),
                    "family": self.family.value,
                    "period": f"{year}-{month:02d}",
                    "stored_opening": model.opening_balance,
                    "carried_opening": prior,
                    "has_entries": bool(model.entries),
                },
            )
            model.opening_balance = prior
            self.recompute(model)
            self.propagate_forward(tenant_id, product_id, year, month)
        return model

    # ------------------------------------------------------------------
    # Recompute
    # ------------------------------------------------------------------

    def _rows(self, model: MonthlyLedgerModel) -> list[LedgerRow]:
        return [e.to_row() for e in sorted(model.entries, key=lambda e: (e.day, e.seq))]

    def _compute(self, model: MonthlyLedgerModel) -> RecomputedLedger:
        return ledger_engine.recompute(
            model.opening_balance,
            self._rows(model),
            today=self.clock.today(),
            family=self.family,
        )

    def _persist(self, model: MonthlyLedgerModel, result: RecomputedLedger) -> None:
        by_id = {e.id: e for e in model.entries}
        keep_ids = {row.id for row in result.entries if row.id is not None}
        for entry in list(model.entries):
            if entry.id not in keep_ids:
                model.entries.remove(entry)
        for seq, row in enumerate(result.entries):
            if row.id is None:
                filler = replace(row, id=uuid4(), notes=self.carry_forward_note)
                model.entries.append(StockEntryModel.from_row(filler, seq, self.actor_id))
                continue
            entry = by_id[row.id]
            entry.balance = row.balance
            entry.seq = seq
        model.opening_balance = result.opening_balance
        model.closing_balance = result.closing_balance
        for name, value in result.totals.as_dict().items():
            setattr(model, name, value)
        model.last_recomputed_at = self.clock.now_utc()
        self.session.flush()

    def recompute(self, model: MonthlyLedgerModel) -> RecomputedLedger:
        """Canonical recomputation of one ledger, persisted."""
        result = self._compute(model)
        self._persist(model, result)
        return result

    def _drifted(self, model: MonthlyLedgerModel, result: RecomputedLedger) -> bool:
        if model.closing_balance != result.closing_balance:
            return True
        if any(getattr(model, k) != v for k, v in result.totals.as_dict().items()):
            return True
        stored = [(e.id, e.balance) for e in sorted(model.entries, key=lambda e: (e.day, e.seq))]
        computed = [(r.id, r.balance) for r in result.entries]
        return stored != computed

    def read(self, tenant_id: UUID, product_id: UUID, year: int, month: int) -> MonthlyLedger:
        """
        Ledger view whose balances and totals match the stored rows.

        Drifted ledgers are recomputed and persisted before returning.  A
        month with no stored ledger is returned unsaved with the carried-in
        opening.
        """
        model = self.find(tenant_id, product_id, year, month)
        if model is None:
            prior = self.get_previous_month_closing(tenant_id, product_id, year, month)
            return MonthlyLedger(
                id=None,
                tenant_id=tenant_id,
                product_id=product_id,
                family=self.family,
                year=year,
                month=month,
                opening_balance=prior,
                closing_balance=prior,
                unit=self.current_unit(tenant_id, product_id),
            )
        result = self._compute(model)
        if self._drifted(model, result):
            logger.warning(
                "ledger_drift_repaired",
                extra={
                    "tenant_id": str(tenant_id),
                    "product_id": str(product_id),
                    "family": self.family.value,
                    "period": f"{year}-{month:02d}",
                    "stored_closing": model.closing_balance,
                    "computed_closing": result.closing_balance,
                },
            )
            self._persist(model, result)
            self.propagate_forward(tenant_id, product_id, year, month)
        return model.to_dto()

    def list_year(self, tenant_id: UUID, product_id: UUID, year: int) -> list[MonthlyLedger]:
        months = [m for m in self._chain(tenant_id, product_id) if m.year == year]
        return [self.read(tenant_id, product_id, m.year, m.month) for m in months]

    # ------------------------------------------------------------------
    # Point reads
    # ------------------------------------------------------------------

    def current_balance(self, tenant_id: UUID, product_id: UUID, on_date: date) -> Decimal:
        """Balance at the end of ``on_date``; read-only."""
        year, month = month_of(on_date)
        model = self.find(tenant_id, product_id, year, month)
        if model is None:
            return self.get_previous_month_closing(tenant_id, product_id, year, month)
        return ledger_engine.balance_on(self._compute(model), on_date)

    def current_unit(self, tenant_id: UUID, product_id: UUID) -> str:
        """Unit of the most recent row with a non-empty unit; NOS if none."""
        unit = self.session.execute(
            select(StockEntryModel.unit)
            .join(MonthlyLedgerModel, StockEntryModel.ledger_id == MonthlyLedgerModel.id)
            .where(self._cell_filter(tenant_id, product_id), StockEntryModel.unit != "")
            .order_by(StockEntryModel.day.desc(), StockEntryModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        return normalize_unit(unit) or Unit.NOS.value

    def has_history(self, tenant_id: UUID, product_id: UUID) -> bool:
        """True when any stored month has an opening balance or rows."""
        for model in self._chain(tenant_id, product_id):
            if model.opening_balance != 0 or model.entries:
                return True
        return False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _check_day(self, model: MonthlyLedgerModel, day: date) -> None:
        if month_of(day) != model.period:
            raise InvalidLedgerEntryError(
                "date", f"{day.isoformat()} is outside {model.year}-{model.month:02d}"
            )

    def _check_row(self, row: LedgerRow) -> None:
        negative = ledger_engine.negative_contributions(row)
        if negative:
            raise InvalidLedgerEntryError(negative[0], "must not be negative")
        other = LedgerFamily.THEATER if self.family is LedgerFamily.CAFE else LedgerFamily.CAFE
        for name in _FAMILY_ONLY[other]:
            if getattr(row, name) != 0:
                raise InvalidLedgerEntryError(name, f"not a {self.family.value} ledger field")

    def _route_inward(self, row: LedgerRow) -> LedgerRow:
        """``cafe`` inward lands in direct stock, ``product`` inward in invord stock."""
        if self.family is not LedgerFamily.CAFE or row.inward_type is None:
            return row
        if row.inward_type is InwardType.CAFE and row.invord_stock > 0 and row.direct_stock == 0:
            return replace(row, direct_stock=row.invord_stock, invord_stock=ZERO)
        if row.inward_type is InwardType.PRODUCT and row.direct_stock > 0 and row.invord_stock == 0:
            return replace(row, invord_stock=row.direct_stock, direct_stock=ZERO)
        return row

    def _day_invord(self, model: MonthlyLedgerModel, day: date) -> Decimal:
        return sum((e.invord_stock for e in model.entries if e.day == day), ZERO)

    def _sync_bridge(self, model: MonthlyLedgerModel, day: date) -> None:
        if self.bridge is None or self.family is not LedgerFamily.CAFE:
            return
        self.bridge.sync_transfer(model.tenant_id, model.product_id, day, self._day_invord(model, day))

    def _after_write(self, model: MonthlyLedgerModel) -> RecomputedLedger:
        result = self.recompute(model)
        self.propagate_forward(model.tenant_id, model.product_id, model.year, model.month)
        return result

    def _find(self, model: MonthlyLedgerModel, entry_id: UUID) -> StockEntryModel:
        for entry in model.entries:
            if entry.id == entry_id:
                return entry
        raise LedgerEntryNotFoundError(str(model.id), str(entry_id))

    def append(self, model: MonthlyLedgerModel, entry: LedgerRow) -> LedgerRow:
        """Insert a row, recompute the ledger and propagate forward."""
        self._check_day(model, entry.day)
        row = self._route_inward(entry)
        self._check_row(row)
        quantity_fields = {name: round_quantity(getattr(row, name)) for name in ALL_CONTRIBUTIONS}
        row = replace(
            row,
            id=uuid4(),
            unit=normalize_unit(row.unit) or self.current_unit(model.tenant_id, model.product_id),
            auto_filled=False,
            **quantity_fields,
        )
        stored = StockEntryModel.from_row(row, len(model.entries), self.actor_id)
        model.entries.append(stored)
        self.session.flush()
        self._after_write(model)
        logger.info(
            "ledger_entry_appended",
            extra={
                "tenant_id": str(model.tenant_id),
                "product_id": str(model.product_id),
                "family": self.family.value,
                "entry_id": str(stored.id),
                "day": row.day,
                "closing_balance": model.closing_balance,
            },
        )
        if row.invord_stock > 0:
            self._sync_bridge(model, row.day)
        return stored.to_row()

    def update(self, model: MonthlyLedgerModel, entry_id: UUID, patch: Mapping[str, Any]) -> LedgerRow:
        """
        Patch one row.

        A key present with a zero value sets that field to zero; an absent
        key (or ``None``) keeps the stored value.
        """
        entry = self._find(model, entry_id)
        unknown = set(patch) - set(ALL_CONTRIBUTIONS) - _PATCHABLE_META
        if unknown:
            raise InvalidLedgerEntryError(sorted(unknown)[0], "unknown ledger field")

        old_day, old_invord = entry.day, entry.invord_stock
        changes: dict[str, Any] = {}
        for key, value in patch.items():
            if value is None:
                continue
            if key in ALL_CONTRIBUTIONS:
                changes[key] = round_quantity(to_decimal(value))
            elif key == "entry_type":
                changes[key] = EntryType(str(value).upper())
            elif key == "inward_type":
                changes[key] = InwardType(str(value).lower())
            elif key == "unit":
                changes[key] = normalize_unit(value)
            else:
                changes[key] = value

        candidate = self._route_inward(replace(entry.to_row(), **changes))
        self._check_day(model, candidate.day)
        self._check_row(candidate)
        if candidate.auto_filled and not candidate.is_filler:
            candidate = replace(candidate, auto_filled=False)

        for name in ALL_CONTRIBUTIONS:
            setattr(entry, name, getattr(candidate, name))
        entry.day = candidate.day
        entry.unit = candidate.unit
        entry.entry_type = candidate.entry_type.value
        entry.notes = candidate.notes
        entry.batch_number = candidate.batch_number
        entry.expire_date = candidate.expire_date
        entry.inward_type = candidate.inward_type.value if candidate.inward_type else None
        entry.auto_filled = candidate.auto_filled
        entry.updated_by_id = self.actor_id
        self.session.flush()
        self._after_write(model)
        logger.info(
            "ledger_entry_updated",
            extra={
                "tenant_id": str(model.tenant_id),
                "product_id": str(model.product_id),
                "family": self.family.value,
                "entry_id": str(entry_id),
                "fields": sorted(changes),
            },
        )
        if entry.day != old_day or entry.invord_stock != old_invord:
            self._sync_bridge(model, old_day)
            if entry.day != old_day:
                self._sync_bridge(model, entry.day)
        return entry.to_row()

    def delete(self, model: MonthlyLedgerModel, entry_id: UUID) -> None:
        """Remove one row, recompute and propagate; the theater transfer follows."""
        entry = self._find(model, entry_id)
        day, invord = entry.day, entry.invord_stock
        model.entries.remove(entry)
        self.session.flush()
        self._after_write(model)
        logger.info(
            "ledger_entry_deleted",
            extra={
                "tenant_id": str(model.tenant_id),
                "product_id": str(model.product_id),
                "family": self.family.value,
                "entry_id": str(entry_id),
                "day": day,
            },
        )
        if invord > 0:
            self._sync_bridge(model, day)

    def entry_for_day(self, model: MonthlyLedgerModel, day: date) -> StockEntryModel:
        """
        Row for ``day``, created with zero contributions if missing.

        A carry-forward row on that day is taken over as a real row.  The
        caller mutates the returned row and then calls ``commit_row_change``.
        """
        self._check_day(model, day)
        same_day = sorted((e for e in model.entries if e.day == day), key=lambda e: (e.auto_filled, e.seq))
        if same_day:
            entry = same_day[0]
            if entry.auto_filled:
                entry.auto_filled = False
                entry.notes = None
            return entry
        row = LedgerRow(
            day=day,
            id=uuid4(),
            unit=self.current_unit(model.tenant_id, model.product_id),
            entry_type=EntryType.ADDED,
        )
        entry = StockEntryModel.from_row(row, len(model.entries), self.actor_id)
        model.entries.append(entry)
        self.session.flush()
        return entry

    def commit_row_change(self, model: MonthlyLedgerModel) -> RecomputedLedger:
        """Recompute and propagate after a caller mutated a row from ``entry_for_day``."""
        return self._after_write(model)

    # ------------------------------------------------------------------
    # Chain maintenance
    # ------------------------------------------------------------------

    def propagate_forward(self, tenant_id: UUID, product_id: UUID, year: int, month: int) -> int:
        """
        Re-open successor months from their predecessor's closing.

        Stops at the first successor whose opening already matches.  Returns
        the number of months recomputed.
        """
        anchor = self.find(tenant_id, product_id, year, month)
        previous_closing = (
            anchor.closing_balance if anchor is not None
            else self.get_previous_month_closing(tenant_id, product_id, year, month)
        )
        updated = 0
        for successor in self._successors(tenant_id, product_id, year, month):
            if successor.opening_balance == previous_closing:
                break
            successor.opening_balance = previous_closing
            self.recompute(successor)
            updated += 1
            previous_closing = successor.closing_balance
        if updated:
            logger.info(
                "ledger_chain_propagated",
                extra={
                    "tenant_id": str(tenant_id),
                    "product_id": str(product_id),
                    "family": self.family.value,
                    "from_period": f"{year}-{month:02d}",
                    "months_updated": updated,
                },
            )
        return updated

    def update_old_stock_chain(self, tenant_id: UUID, product_id: UUID) -> int:
        """
        Verify the whole chain and repair it.

        The first month keeps its stored opening; every later month is
        re-opened from its predecessor and recomputed when it drifted.
        Returns the number of months repaired.  Idempotent.
        """
        repaired = 0
        previous: MonthlyLedgerModel | None = None
        for model in self._chain(tenant_id, product_id):
            changed = False
            if previous is not None and model.opening_balance != previous.closing_balance:
                model.opening_balance = previous.closing_balance
                changed = True
            result = self._compute(model)
            if changed or self._drifted(model, result):
                self._persist(model, result)
                repaired += 1
            previous = model
        if repaired:
            logger.info(
                "ledger_chain_repaired",
                extra={
                    "tenant_id": str(tenant_id),
                    "product_id": str(product_id),
                    "family": self.family.value,
                    "months_repaired": repaired,
                },
            )
        return repaired

    def auto_expire(self, tenant_id: UUID, product_id: UUID, today: date | None = None) -> int:
        """
        Book expired stock for batches past their expiry date.

        For every inward row whose ``expire_date`` is before today and that
        has not been processed, ``min(batch inward, balance at expiry)`` is
        booked as ``expired_stock`` on the day after expiry.  Returns the
        number of batches processed.  Idempotent.
        """
        today = today or self.clock.today()
        processed = 0
        for model in self._chain(tenant_id, product_id):
            for entry in list(model.entries):
                if entry.expiry_processed or entry.expire_date is None or entry.expire_date >= today:
                    continue
                inward = entry.invord_stock + entry.direct_stock + entry.addon
                if inward <= 0:
                    continue
                expiry_day = entry.expire_date + timedelta(days=1)
                amount = min(inward, self.current_balance(tenant_id, product_id, entry.expire_date))
                if amount > 0:
                    target = self.get_or_create(tenant_id, product_id, *month_of(expiry_day))
                    row = self.entry_for_day(target, expiry_day)
                    row.expired_stock = round_quantity(row.expired_stock + amount)
                    if entry.batch_number:
                        row.notes = f"Expired batch {entry.batch_number}"
                    self.commit_row_change(target)
                entry.expiry_processed = True
                self.session.flush()
                processed += 1
                logger.info(
                    "stock_batch_expired",
                    extra={
                        "tenant_id": str(tenant_id),
                        "product_id": str(product_id),
                        "family": self.family.value,
                        "batch_number": entry.batch_number,
                        "expire_date": entry.expire_date,
                        "expired_quantity": amount,
                    },
                )
        return processed

    def latest_period(self, tenant_id: UUID, product_id: UUID) -> tuple[int, int] | None:
        """(year, month) of the newest stored ledger for the product, if any."""
        row = self.session.execute(
            select(MonthlyLedgerModel.year, MonthlyLedgerModel.month)
            .where(self._cell_filter(tenant_id, product_id))
            .order_by(MonthlyLedgerModel.year.desc(), MonthlyLedgerModel.month.desc())
            .limit(1)
        ).first()
        return (row.year, row.month) if row is not None else None

    def products_with_ledgers(self, tenant_id: UUID) -> list[UUID]:
        rows = self.session.execute(
            select(MonthlyLedgerModel.product_id)
            .where(MonthlyLedgerModel.tenant_id == tenant_id, MonthlyLedgerModel.family == self.family.value)
            .distinct()
        ).scalars()
        return list(rows)


def ledger_span_keys(
    family: LedgerFamily, product_id: UUID, first: tuple[int, int], last: tuple[int, int],
) -> list[tuple]:
    """Lock keys for every month from ``first`` through ``last`` inclusive."""
    keys = []
    year, month = first
    while (year, month) <= last:
        keys.append((family.value, str(product_id), year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return keys
