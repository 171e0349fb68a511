"""
Module: concession_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by
    concession_modules and concession_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import concession_kernel (types, logging) and sibling engines.
    MUST NOT import concession_modules or concession_services.

Invariants enforced:
    - Purity: engines never read the clock; "today" is always a parameter.
    - Decimal-only arithmetic for quantities and money.
    - Determinism: identical inputs always produce identical outputs.
"""

from concession_engines.channels import (
    OrderSource,
    OrderStatus,
    PaymentFamily,
    PaymentStatus,
    canonical_source,
    initial_status,
    payment_family,
    payment_methods_for,
    should_record_stock,
)
from concession_engines.ledger import (
    CARRY_FORWARD_NOTE,
    EntryType,
    InwardType,
    LedgerFamily,
    LedgerRow,
    LedgerTotals,
    RecomputedLedger,
    recompute,
)
from concession_engines.pricing import (
    CallerTotals,
    GstType,
    LinePricing,
    OrderTotals,
    apportion,
    price_line,
    total_order,
)
from concession_engines.stats import OrderFact, RollupTotals, TenantStats, rollup_orders, tenant_stats
from concession_engines.units import (
    ConsumptionResult,
    QuantityDescriptor,
    Unit,
    calculate_consumption,
    max_orderable,
    normalize_unit,
    parse_quantity,
    resolve_target_unit,
)

__all__ = [
    "CARRY_FORWARD_NOTE",
    "CallerTotals",
    "ConsumptionResult",
    "EntryType",
    "GstType",
    "InwardType",
    "LedgerFamily",
    "LedgerRow",
    "LedgerTotals",
    "LinePricing",
    "OrderFact",
    "OrderSource",
    "OrderStatus",
    "OrderTotals",
    "PaymentFamily",
    "PaymentStatus",
    "QuantityDescriptor",
    "RecomputedLedger",
    "RollupTotals",
    "TenantStats",
    "Unit",
    "apportion",
    "calculate_consumption",
    "canonical_source",
    "initial_status",
    "max_orderable",
    "normalize_unit",
    "parse_quantity",
    "payment_family",
    "payment_methods_for",
    "price_line",
    "recompute",
    "resolve_target_unit",
    "rollup_orders",
    "should_record_stock",
    "tenant_stats",
    "total_order",
]
