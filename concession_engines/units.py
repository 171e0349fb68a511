"""
Unit & Conversion Engine - turn a sold item count into ledger consumption.

Pure functions with no I/O.  Given how a product describes its size
("750 ML", quantity 1 + unit "kg", a size label "500g", or nothing at all)
and the unit a cafe ledger currently counts in, compute how much to deduct
from that ledger for a number of sold items.

Usage:
    from decimal import Decimal
    from concession_engines.units import QuantityDescriptor, calculate_consumption

    result = calculate_consumption(
        QuantityDescriptor(quantity="750 ML", no_qty=1),
        sold_count=2,
        target_unit="KG",
    )
    print(result.amount)  # Decimal("1.500")

Rules:
    consumption = magnitude x conversion factor x noQty x sold count

    Mass/volume targets round to 0.001 (ROUND_HALF_UP); count targets are
    exact.  Unresolvable unit pairs fall back to ``sold count x noQty`` in NOS
    with a warning.  The kernel never raises for bad product data.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from enum import Enum

from concession_engines.tracer import traced_engine
from concession_kernel.db.types import round_quantity
from concession_kernel.logging_config import get_logger

logger = get_logger("engines.units")

QUANTITY_PATTERN = re.compile(r"^([0-9.]+)\s*([A-Za-z%]+)$")

# Heuristic window for a bare number against a mass/volume ledger
# (typical beverage and snack sizes: 50 ml .. 2000 ml).
HEURISTIC_ML_LOW = Decimal("50")
HEURISTIC_ML_HIGH = Decimal("2000")
MILLI = Decimal("0.001")
KILO = Decimal("1000")


class Unit(str, Enum):
    """Canonical stock units."""

    NOS = "NOS"
    ML = "ML"
    L = "L"
    G = "G"
    KG = "KG"


_ALIASES: dict[str, str] = {}
for _canonical, _names in {
    "L": ("l", "ltr", "ltrs", "liter", "liters", "litre", "litres"),
    "ML": ("ml", "milli", "millilitre", "milliliter", "millilitres", "milliliters"),
    "G": ("g", "gm", "gms", "gram", "grams"),
    "KG": ("kg", "kgs", "kilo", "kilos", "kilogram", "kilograms"),
    "NOS": (
        "no", "nos", "num", "number", "numbers", "pc", "pcs", "piece", "pieces",
        "unit", "units", "res", "rs", "rupees",
    ),
}.items():
    for _name in _names:
        _ALIASES[_name] = _canonical

# (product unit, target unit) -> factor; density taken as 1 across mass/volume
_FACTORS: dict[tuple[str, str], Decimal] = {
    ("ML", "L"): MILLI,
    ("L", "ML"): KILO,
    ("G", "KG"): MILLI,
    ("KG", "G"): KILO,
    ("ML", "KG"): MILLI,
    ("L", "KG"): Decimal("1"),
    ("KG", "L"): Decimal("1"),
    ("G", "L"): MILLI,
    ("ML", "G"): Decimal("1"),
    ("G", "ML"): Decimal("1"),
    ("L", "G"): KILO,
    ("KG", "ML"): KILO,
}


def normalize_unit(raw: str | None) -> str:
    """
    Collapse unit spellings to a canonical code.

    Dots and whitespace are stripped before matching, so "k.g." is KG.
    Unknown spellings come back upper-cased; empty input returns "".
    """
    if raw is None:
        return ""
    cleaned = re.sub(r"[.\s]", "", str(raw)).lower()
    if not cleaned:
        return ""
    return _ALIASES.get(cleaned, cleaned.upper())


def parse_quantity(text: str | None) -> tuple[Decimal, str] | None:
    """Parse "750 ML" / "1kg" into (magnitude, canonical unit); None if no match."""
    if text is None:
        return None
    match = QUANTITY_PATTERN.match(str(text).strip())
    if not match:
        return None
    try:
        magnitude = Decimal(match.group(1))
    except InvalidOperation:
        return None
    return magnitude, normalize_unit(match.group(2))


def _as_number(value) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


@dataclass(frozen=True)
class QuantityDescriptor:
    """How a product states its size.  Mirrors the product's stored fields."""

    quantity: str | Decimal | int | None = None
    quantity_unit: str | None = None
    unit: str | None = None
    inventory_unit: str | None = None
    size_label: str | None = None
    no_qty: int = 1

    @property
    def effective_no_qty(self) -> int:
        return self.no_qty if self.no_qty and self.no_qty > 0 else 1


@dataclass(frozen=True)
class DetectedQuantity:
    magnitude: Decimal
    unit: str  # canonical, or "" when no unit could be found
    source: str


def detect_quantity(descriptor: QuantityDescriptor) -> DetectedQuantity:
    """
    Identify magnitude and unit.

    Order: quantity string, numeric quantity with a stored unit field
    (quantityUnit, unit, inventory unit), size label, fallback (1, NOS).
    """
    parsed = parse_quantity(descriptor.quantity) if isinstance(descriptor.quantity, str) else None
    if parsed is not None:
        return DetectedQuantity(parsed[0], parsed[1], "quantity")

    number = _as_number(descriptor.quantity)
    if number is not None:
        for source, raw in (
            ("quantity_unit", descriptor.quantity_unit),
            ("unit", descriptor.unit),
            ("inventory_unit", descriptor.inventory_unit),
        ):
            if raw and str(raw).strip():
                return DetectedQuantity(number, normalize_unit(raw), source)
        label = parse_quantity(descriptor.size_label)
        if label is not None:
            return DetectedQuantity(number, label[1], "size_label_unit")
        return DetectedQuantity(number, "", "bare_number")

    label = parse_quantity(descriptor.size_label)
    if label is not None:
        return DetectedQuantity(label[0], label[1], "size_label")

    return DetectedQuantity(Decimal("1"), Unit.NOS.value, "fallback")


def resolve_target_unit(entry_units) -> str:
    """Most recent non-empty unit across date-ordered ledger rows; NOS if none."""
    for raw in reversed(list(entry_units)):
        unit = normalize_unit(raw)
        if unit:
            return unit
    return Unit.NOS.value


def _is_measured(unit: str) -> bool:
    return unit in (Unit.ML.value, Unit.L.value, Unit.G.value, Unit.KG.value)


@dataclass(frozen=True)
class ConversionDecision:
    factor: Decimal | None  # None means the pair is unresolvable
    note: str | None = None


def conversion_factor(product_unit: str, target_unit: str, magnitude: Decimal) -> ConversionDecision:
    """
    Factor that converts one product-unit magnitude into the target unit.

    A missing (or count) product unit against a KG/L ledger is resolved by
    magnitude: [50, 2000] is read as millilitres, above 2000 as grams, below
    50 as already in the target unit.
    """
    if product_unit == target_unit and product_unit:
        return ConversionDecision(Decimal("1"))
    factor = _FACTORS.get((product_unit, target_unit))
    if factor is not None:
        return ConversionDecision(factor)
    if target_unit in (Unit.KG.value, Unit.L.value) and product_unit in ("", Unit.NOS.value):
        if HEURISTIC_ML_LOW <= magnitude <= HEURISTIC_ML_HIGH:
            return ConversionDecision(MILLI, f"assumed {magnitude} is ML")
        if magnitude > HEURISTIC_ML_HIGH:
            return ConversionDecision(MILLI, f"assumed {magnitude} is grams")
        return ConversionDecision(Decimal("1"), f"assumed {magnitude} is already {target_unit}")
    if target_unit == Unit.NOS.value and product_unit in ("", Unit.NOS.value):
        return ConversionDecision(Decimal("1"))
    return ConversionDecision(None, f"cannot convert {product_unit or '(none)'} to {target_unit}")


@dataclass(frozen=True)
class ConsumptionResult:
    """Amount to deduct from the ledger for one sold line."""

    amount: Decimal
    unit: str
    factor: Decimal
    magnitude: Decimal
    product_unit: str
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def per_item(self) -> Decimal:
        return self.magnitude * self.factor


def _finish(amount: Decimal, unit: str) -> Decimal:
    if _is_measured(unit):
        return round_quantity(amount)
    if amount == amount.to_integral_value():
        return amount.quantize(Decimal("1"))
    return amount


@traced_engine("units", "1.0", fingerprint_fields=("sold_count", "target_unit"))
def calculate_consumption(
    descriptor: QuantityDescriptor,
    sold_count: int | Decimal,
    target_unit: str | None,
) -> ConsumptionResult:
    """
    Compute ledger consumption for ``sold_count`` items.

    Pure: identical inputs always give identical outputs.  Never raises for
    odd product data; unresolvable cases count items in NOS with a warning.
    """
    count = Decimal(sold_count)
    no_qty = Decimal(descriptor.effective_no_qty)
    target = normalize_unit(target_unit) or Unit.NOS.value
    detected = detect_quantity(descriptor)
    warnings: list[str] = []

    if count <= 0:
        return ConsumptionResult(Decimal("0"), target, Decimal("0"), detected.magnitude, detected.unit)

    if detected.magnitude == 0:
        warnings.append("product has no quantity value; counting items")
        return ConsumptionResult(
            _finish(count * no_qty, Unit.NOS.value), Unit.NOS.value, Decimal("1"),
            detected.magnitude, detected.unit, tuple(warnings),
        )

    decision = conversion_factor(detected.unit, target, detected.magnitude)
    if decision.factor is None:
        if _is_measured(detected.unit) and target == Unit.NOS.value:
            warnings.append(f"{detected.unit} product against a count ledger; counting items")
        else:
            warnings.append(decision.note or "unresolvable unit")
        return ConsumptionResult(
            _finish(count * no_qty, Unit.NOS.value), Unit.NOS.value, Decimal("1"),
            detected.magnitude, detected.unit, tuple(warnings),
        )
    if decision.note:
        warnings.append(decision.note)

    factor = decision.factor
    per_item = detected.magnitude * factor
    # Plausibility: a sellable item of 50..2000 whole KG or L deducted 1:1 is a
    # millilitre or gram size entered with the ledger's unit.
    if (
        target in (Unit.KG.value, Unit.L.value)
        and detected.unit in (Unit.KG.value, Unit.L.value)
        and factor == 1
        and HEURISTIC_ML_LOW <= detected.magnitude <= HEURISTIC_ML_HIGH
    ):
        warnings.append(f"implausible consumption {per_item} {target} per item; retried at 0.001")
        factor = MILLI
        per_item = detected.magnitude * factor

    amount = _finish(per_item * no_qty * count, target)
    return ConsumptionResult(amount, target, factor, detected.magnitude, detected.unit, tuple(warnings))


def log_consumption_warnings(result: ConsumptionResult, product_id, product_name: str) -> None:
    """Emit one WARNING per heuristic the kernel applied."""
    for warning in result.warnings:
        logger.warning(
            "unit_conversion_heuristic",
            extra={
                "product_id": str(product_id),
                "product_name": product_name,
                "detail": warning,
                "magnitude": result.magnitude,
                "product_unit": result.product_unit or None,
                "target_unit": result.unit,
                "factor": result.factor,
            },
        )


def max_orderable(
    available: Decimal,
    descriptor: QuantityDescriptor,
    target_unit: str | None,
) -> int | None:
    """
    Largest sellable count that ``available`` covers.

    ``None`` means unlimited (the product consumes nothing per item).
    """
    per_item_consumption = calculate_consumption(descriptor, 1, target_unit).amount
    if per_item_consumption <= 0:
        return None
    if available <= 0:
        return 0
    return int((available / per_item_consumption).to_integral_value(rounding=ROUND_FLOOR))
