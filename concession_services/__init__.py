"""
concession_services -- Package init and public API.

Responsibility:
    Unit-of-work orchestration over the module services: transaction
    boundaries, tenant and ledger-cell locks, retries, post-commit channel
    dispatch, background ledger maintenance and cross-tenant statistics.
    This is the only layer that opens sessions and commits.

Architecture position:
    Services -- stateful orchestration over modules + engines + kernel.

    Dependency direction:
        concession_services/ -> concession_modules/  (allowed)
        concession_services/ -> concession_engines/  (allowed)
        concession_modules/  -> concession_services/ (FORBIDDEN)
        concession_engines/  -> concession_services/ (FORBIDDEN)

Invariants enforced:
    - Locks are always acquired before a transaction opens and released
      after it commits or rolls back.
    - Nothing is dispatched for a transaction that did not commit.

Failure modes:
    - ImportError at startup if a service's dependency graph is broken.
"""

from concession_kernel.logging_config import get_logger

logger = get_logger("services")

from concession_services.facade import ConcessionFacade
from concession_services.ledger_maintenance import LedgerMaintenanceWorker, MaintenanceReport, StockReconciler
from concession_services.normalization import (
    ledger_patch_from_payload,
    ledger_row_from_payload,
    order_filters_from_query,
    order_request_from_payload,
)
from concession_services.stats_service import CrossTenantAggregator, RollupResult, TenantStatsService

__all__ = [
    "ConcessionFacade",
    "CrossTenantAggregator",
    "LedgerMaintenanceWorker",
    "MaintenanceReport",
    "RollupResult",
    "StockReconciler",
    "TenantStatsService",
    "ledger_patch_from_payload",
    "ledger_row_from_payload",
    "order_filters_from_query",
    "order_request_from_payload",
]
