"""
Catalog Domain Models (``concession_modules.catalog.models``).

Responsibility
--------------
Frozen value objects for sellable products and combo offers.  The order
pipeline reads these to price lines and to compute stock consumption; it
never writes them.

Invariants
----------
- ``no_qty`` is at least 1.
- Discount and tax percentages lie in [0, 100].
- A combo offer lists its components in a stable order.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from concession_engines.pricing import GstType
from concession_engines.units import QuantityDescriptor


@dataclass(frozen=True)
class Product:
    """
    A sellable product.

    ``quantity`` is either a free-form string ("750 ML") or a plain number
    paired with ``quantity_unit`` / ``unit`` / ``inventory_unit``.
    """

    id: UUID
    tenant_id: UUID
    name: str
    base_price: Decimal
    sale_price: Decimal | None = None
    discount_percentage: Decimal | None = None
    tax_rate: Decimal | None = None
    gst_type: GstType = GstType.EXCLUDE
    currency: str = "INR"
    quantity: str | None = None
    quantity_unit: str | None = None
    unit: str | None = None
    inventory_unit: str | None = None
    size_label: str | None = None
    no_qty: int = 1
    track_stock: bool = True
    is_active: bool = True

    def __post_init__(self):
        if self.no_qty < 1:
            raise ValueError(f"no_qty must be >= 1, got {self.no_qty}")
        for name in ("discount_percentage", "tax_rate"):
            value = getattr(self, name)
            if value is not None and not (Decimal("0") <= value <= Decimal("100")):
                raise ValueError(f"{name} must be within [0, 100], got {value}")

    @property
    def selling_price(self) -> Decimal:
        """Sale price when set and positive, else the base price."""
        if self.sale_price is not None and self.sale_price > 0:
            return self.sale_price
        return self.base_price

    def descriptor(self, no_qty: int | None = None, size_label: str | None = None) -> QuantityDescriptor:
        return QuantityDescriptor(
            quantity=self.quantity,
            quantity_unit=self.quantity_unit,
            unit=self.unit,
            inventory_unit=self.inventory_unit,
            size_label=size_label or self.size_label,
            no_qty=no_qty if no_qty is not None else self.no_qty,
        )


@dataclass(frozen=True)
class ComboComponent:
    product_id: UUID
    quantity: int = 1
    product_name: str | None = None


@dataclass(frozen=True)
class ComboOffer:
    """A single sellable line that expands into several product lines."""

    id: UUID
    tenant_id: UUID
    name: str
    price: Decimal
    components: tuple[ComboComponent, ...] = field(default_factory=tuple)
    discount_percentage: Decimal | None = None
    tax_rate: Decimal | None = None
    gst_type: GstType = GstType.INCLUDE
    is_active: bool = True
