"""
Module: concession_modules.inventory.orm
Responsibility: SQLAlchemy persistence for monthly ledgers and their rows.
    Both ledger families share the tables and are told apart by ``family``.

Architecture position: Modules > Inventory > ORM.  Inherits from TrackedBase.
    Products and tenants are referenced by id without foreign keys.

Invariants enforced:
    - (tenant_id, product_id, family, year, month) is unique.
    - Quantities use Decimal (PortableDecimal) -- never float.
    - Rows are owned by their ledger (delete-orphan cascade) and load in
      (day, seq) order.

Failure modes:
    - IntegrityError on a duplicate ledger cell.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from concession_kernel.db.base import TrackedBase
from concession_kernel.db.types import ZERO


class MonthlyLedgerModel(TrackedBase):
    """
    ORM model for one monthly ledger.

    Maps to: concession_modules.inventory.models.MonthlyLedger (frozen dataclass).
    """

    __tablename__ = "monthly_ledgers"

    __table_args__ = (
        UniqueConstraint("tenant_id", "product_id", "family", "year", "month", name="uq_ledger_cell"),
        Index("idx_ledger_product", "tenant_id", "product_id", "family"),
    )

    tenant_id: Mapped[UUID] = mapped_column()
    product_id: Mapped[UUID] = mapped_column()
    family: Mapped[str] = mapped_column(String(20))
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)

    opening_balance: Mapped[Decimal] = mapped_column(default=ZERO)
    closing_balance: Mapped[Decimal] = mapped_column(default=ZERO)

    # Derived monthly totals
    total_invord_stock: Mapped[Decimal] = mapped_column(default=ZERO)
    total_direct_stock: Mapped[Decimal] = mapped_column(default=ZERO)
    total_addon: Mapped[Decimal] = mapped_column(default=ZERO)
    total_cancel_stock: Mapped[Decimal] = mapped_column(default=ZERO)
    total_sales: Mapped[Decimal] = mapped_column(default=ZERO)
    total_transfer: Mapped[Decimal] = mapped_column(default=ZERO)
    total_expired_stock: Mapped[Decimal] = mapped_column(default=ZERO)
    total_damage_stock: Mapped[Decimal] = mapped_column(default=ZERO)
    total_stock_adjustment: Mapped[Decimal] = mapped_column(default=ZERO)

    last_recomputed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    entries: Mapped[list["StockEntryModel"]] = relationship(
        back_populates="ledger",
        cascade="all, delete-orphan",
        order_by=lambda: [StockEntryModel.day, StockEntryModel.seq],
    )

    @property
    def period(self) -> tuple[int, int]:
        return (self.year, self.month)

    def to_dto(self):
        """Convert ORM model to frozen MonthlyLedger DTO."""
        from concession_engines.ledger import LedgerFamily, LedgerTotals
        from concession_engines.units import resolve_target_unit
        from concession_modules.inventory.models import MonthlyLedger
        rows = tuple(e.to_row() for e in self.entries)
        return MonthlyLedger(
            id=self.id,
            tenant_id=self.tenant_id,
            product_id=self.product_id,
            family=LedgerFamily(self.family),
            year=self.year,
            month=self.month,
            opening_balance=self.opening_balance,
            closing_balance=self.closing_balance,
            entries=rows,
            totals=LedgerTotals(
                total_invord_stock=self.total_invord_stock,
                total_direct_stock=self.total_direct_stock,
                total_addon=self.total_addon,
                total_cancel_stock=self.total_cancel_stock,
                total_sales=self.total_sales,
                total_transfer=self.total_transfer,
                total_expired_stock=self.total_expired_stock,
                total_damage_stock=self.total_damage_stock,
                total_stock_adjustment=self.total_stock_adjustment,
            ),
            unit=resolve_target_unit(r.unit for r in rows),
        )

    def __repr__(self) -> str:
        return (
            f"<MonthlyLedgerModel {self.family} {self.year}-{self.month:02d} "
            f"product={self.product_id} closing={self.closing_balance}>"
        )


class StockEntryModel(TrackedBase):
    """
    ORM model for one dated ledger row.

    Maps to: concession_engines.ledger.LedgerRow (frozen dataclass).
    """

    __tablename__ = "stock_entries"

    __table_args__ = (
        Index("idx_entry_ledger_day", "ledger_id", "day"),
    )

    ledger_id: Mapped[UUID] = mapped_column(ForeignKey("monthly_ledgers.id", ondelete="CASCADE"))
    day: Mapped[date] = mapped_column(Date)
    seq: Mapped[int] = mapped_column(Integer, default=0)
    unit: Mapped[str] = mapped_column(String(20), default="NOS")
    entry_type: Mapped[str] = mapped_column(String(20), default="ADDED")

    invord_stock: Mapped[Decimal] = mapped_column(default=ZERO)
    direct_stock: Mapped[Decimal] = mapped_column(default=ZERO)
    addon: Mapped[Decimal] = mapped_column(default=ZERO)
    cancel_stock: Mapped[Decimal] = mapped_column(default=ZERO)
    stock_adjustment: Mapped[Decimal] = mapped_column(default=ZERO)
    sales: Mapped[Decimal] = mapped_column(default=ZERO)
    transfer: Mapped[Decimal] = mapped_column(default=ZERO)
    expired_stock: Mapped[Decimal] = mapped_column(default=ZERO)
    damage_stock: Mapped[Decimal] = mapped_column(default=ZERO)
    balance: Mapped[Decimal] = mapped_column(default=ZERO)

    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    inward_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    expiry_processed: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_filled: Mapped[bool] = mapped_column(Boolean, default=False)

    ledger: Mapped[MonthlyLedgerModel] = relationship(back_populates="entries")

    def to_row(self):
        """Convert ORM model to a frozen LedgerRow."""
        from concession_engines.ledger import EntryType, InwardType, LedgerRow
        return LedgerRow(
            day=self.day,
            unit=self.unit,
            id=self.id,
            entry_type=EntryType(self.entry_type),
            invord_stock=self.invord_stock,
            direct_stock=self.direct_stock,
            addon=self.addon,
            cancel_stock=self.cancel_stock,
            stock_adjustment=self.stock_adjustment,
            sales=self.sales,
            transfer=self.transfer,
            expired_stock=self.expired_stock,
            damage_stock=self.damage_stock,
            balance=self.balance,
            notes=self.notes,
            batch_number=self.batch_number,
            expire_date=self.expire_date,
            inward_type=InwardType(self.inward_type) if self.inward_type else None,
            expiry_processed=self.expiry_processed,
            auto_filled=self.auto_filled,
        )

    @classmethod
    def from_row(cls, row, seq: int, created_by_id: UUID) -> "StockEntryModel":
        """Create ORM model from a LedgerRow."""
        return cls(
            id=row.id,
            day=row.day,
            seq=seq,
            unit=row.unit,
            entry_type=row.entry_type.value,
            invord_stock=row.invord_stock,
            direct_stock=row.direct_stock,
            addon=row.addon,
            cancel_stock=row.cancel_stock,
            stock_adjustment=row.stock_adjustment,
            sales=row.sales,
            transfer=row.transfer,
            expired_stock=row.expired_stock,
            damage_stock=row.damage_stock,
            balance=row.balance,
            notes=row.notes,
            batch_number=row.batch_number,
            expire_date=row.expire_date,
            inward_type=row.inward_type.value if row.inward_type else None,
            expiry_processed=row.expiry_processed,
            auto_filled=row.auto_filled,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<StockEntryModel {self.id} day={self.day} balance={self.balance}>"
