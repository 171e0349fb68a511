"""
Module: concession_modules.qr_names.orm
Responsibility: SQLAlchemy persistence for QR names.
Architecture position: Modules > QR names > ORM.  Inherits from TrackedBase.

Invariants enforced:
    - (tenant_id, qr_key, seat_class_key) is unique, where the keys are the
      trimmed, lower-cased display values.  Inactive rows still hold their
      pair.
"""

from uuid import UUID

from sqlalchemy import Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from concession_kernel.db.base import TrackedBase


def name_key(value: str) -> str:
    return (value or "").strip().lower()


class QRNameModel(TrackedBase):
    """
    ORM model for a QR name.

    Maps to: concession_modules.qr_names.models.QRName (frozen dataclass).
    """

    __tablename__ = "qr_names"

    __table_args__ = (
        UniqueConstraint("tenant_id", "qr_key", "seat_class_key", name="uq_qr_name_seat_class"),
    )

    tenant_id: Mapped[UUID] = mapped_column()
    qr_name: Mapped[str] = mapped_column(String(100))
    seat_class: Mapped[str] = mapped_column(String(50))
    qr_key: Mapped[str] = mapped_column(String(100))
    seat_class_key: Mapped[str] = mapped_column(String(50))
    description: Mapped[str] = mapped_column(String(500), default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    def set_names(self, qr_name: str, seat_class: str) -> None:
        self.qr_name = qr_name.strip()
        self.seat_class = seat_class.strip()
        self.qr_key = name_key(qr_name)
        self.seat_class_key = name_key(seat_class)

    def to_dto(self):
        """Convert ORM model to frozen QRName DTO."""
        from concession_modules.qr_names.models import QRName
        return QRName(
            id=self.id,
            tenant_id=self.tenant_id,
            qr_name=self.qr_name,
            seat_class=self.seat_class,
            description=self.description,
            is_active=self.is_active,
            sort_order=self.sort_order,
        )

    def __repr__(self) -> str:
        return f"<QRNameModel {self.qr_name!r}/{self.seat_class!r} tenant={self.tenant_id}>"
