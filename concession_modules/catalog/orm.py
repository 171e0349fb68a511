"""
Module: concession_modules.catalog.orm
Responsibility: SQLAlchemy persistence for products and combo offers.
Architecture position: Modules > Catalog > ORM.  Inherits from TrackedBase.

Invariants enforced:
    - Prices and percentages use Decimal (PortableDecimal) -- never float.
    - GST type stored as String(20) for readability.
    - Combo components are owned by their combo (delete-orphan cascade) and
      keep their listed order through ``position``.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from concession_kernel.db.base import TrackedBase


class ProductModel(TrackedBase):
    """
    ORM model for a sellable product.

    Maps to: concession_modules.catalog.models.Product (frozen dataclass).
    """

    __tablename__ = "products"

    __table_args__ = (
        Index("idx_product_tenant", "tenant_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column()
    name: Mapped[str] = mapped_column(String(255))

    base_price: Mapped[Decimal] = mapped_column()
    sale_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    discount_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    gst_type: Mapped[str] = mapped_column(String(20), default="EXCLUDE")
    currency: Mapped[str] = mapped_column(String(3), default="INR")

    # Quantity descriptor
    quantity: Mapped[str | None] = mapped_column(String(100), nullable=True)
    quantity_unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    inventory_unit: Mapped[str | None] = mapped_column(String(50), nullable=True)
    size_label: Mapped[str | None] = mapped_column(String(100), nullable=True)
    no_qty: Mapped[int] = mapped_column(Integer, default=1)

    track_stock: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def to_dto(self):
        """Convert ORM model to frozen Product DTO."""
        from concession_engines.pricing import GstType
        from concession_modules.catalog.models import Product
        return Product(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            base_price=self.base_price,
            sale_price=self.sale_price,
            discount_percentage=self.discount_percentage,
            tax_rate=self.tax_rate,
            gst_type=GstType.parse(self.gst_type),
            currency=self.currency,
            quantity=self.quantity,
            quantity_unit=self.quantity_unit,
            unit=self.unit,
            inventory_unit=self.inventory_unit,
            size_label=self.size_label,
            no_qty=self.no_qty,
            track_stock=self.track_stock,
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "ProductModel":
        """Create ORM model from frozen Product DTO."""
        return cls(
            id=dto.id,
            tenant_id=dto.tenant_id,
            name=dto.name,
            base_price=dto.base_price,
            sale_price=dto.sale_price,
            discount_percentage=dto.discount_percentage,
            tax_rate=dto.tax_rate,
            gst_type=dto.gst_type.value,
            currency=dto.currency,
            quantity=dto.quantity,
            quantity_unit=dto.quantity_unit,
            unit=dto.unit,
            inventory_unit=dto.inventory_unit,
            size_label=dto.size_label,
            no_qty=dto.no_qty,
            track_stock=dto.track_stock,
            is_active=dto.is_active,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<ProductModel {self.id} name={self.name!r} tenant={self.tenant_id}>"


class ComboOfferModel(TrackedBase):
    """
    ORM model for a combo offer.

    Maps to: concession_modules.catalog.models.ComboOffer (frozen dataclass).
    """

    __tablename__ = "combo_offers"

    __table_args__ = (
        Index("idx_combo_tenant", "tenant_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column()
    name: Mapped[str] = mapped_column(String(255))
    price: Mapped[Decimal] = mapped_column()
    discount_percentage: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    gst_type: Mapped[str] = mapped_column(String(20), default="INCLUDE")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    components: Mapped[list["ComboComponentModel"]] = relationship(
        back_populates="combo",
        cascade="all, delete-orphan",
        order_by="ComboComponentModel.position",
    )

    def to_dto(self):
        """Convert ORM model to frozen ComboOffer DTO."""
        from concession_engines.pricing import GstType
        from concession_modules.catalog.models import ComboComponent, ComboOffer
        return ComboOffer(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            price=self.price,
            components=tuple(
                ComboComponent(
                    product_id=c.product_id,
                    quantity=c.quantity,
                    product_name=c.product_name,
                )
                for c in self.components
            ),
            discount_percentage=self.discount_percentage,
            tax_rate=self.tax_rate,
            gst_type=GstType.parse(self.gst_type),
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<ComboOfferModel {self.id} name={self.name!r} components={len(self.components)}>"


class ComboComponentModel(TrackedBase):
    """One (product, quantity per combo) entry of a combo offer."""

    __tablename__ = "combo_components"

    combo_id: Mapped[UUID] = mapped_column(ForeignKey("combo_offers.id", ondelete="CASCADE"))
    position: Mapped[int] = mapped_column(Integer, default=0)
    product_id: Mapped[UUID] = mapped_column()
    product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    combo: Mapped[ComboOfferModel] = relationship(back_populates="components")
