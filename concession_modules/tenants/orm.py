"""
Module: concession_modules.tenants.orm
Responsibility: SQLAlchemy persistence for tenants.
Architecture position: Modules > Tenants > ORM.  Inherits from TrackedBase.
"""

from uuid import UUID

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from concession_kernel.db.base import TrackedBase


class TenantModel(TrackedBase):
    """
    ORM model for a cinema location.

    Maps to: concession_modules.tenants.models.Tenant (frozen dataclass).
    """

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    gst_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), default="INR")

    def to_dto(self):
        """Convert ORM model to frozen Tenant DTO."""
        from concession_modules.tenants.models import Tenant
        return Tenant(
            id=self.id,
            name=self.name,
            is_active=self.is_active,
            phone=self.phone,
            email=self.email,
            address=self.address,
            gst_number=self.gst_number,
            currency=self.currency,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "TenantModel":
        """Create ORM model from frozen Tenant DTO."""
        return cls(
            id=dto.id,
            name=dto.name,
            is_active=dto.is_active,
            phone=dto.phone,
            email=dto.email,
            address=dto.address,
            gst_number=dto.gst_number,
            currency=dto.currency,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<TenantModel {self.id} name={self.name!r}>"
