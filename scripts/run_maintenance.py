#!/usr/bin/env python3
"""
One maintenance pass over every active tenant.

1. Reconcile pending stock: orders whose stock flags disagree with the cafe
   ledger (a crash between commit and record, a restore that never landed)
   are recorded or restored.
2. Ledger maintenance: expire lapsed batches and repair month chains for
   every product with a ledger, both families.

Meant for cron.  Exits 1 when any tenant or product failed.

Usage:
  python3 scripts/run_maintenance.py
  python3 scripts/run_maintenance.py --skip-ledgers
  python3 scripts/run_maintenance.py --tenant 6f1c...
"""

import argparse
import logging
import sys
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Reconcile stock and repair ledgers for active tenants")
    p.add_argument("--config", type=Path, default=None, help="Settings YAML (default: CONCESSION_CONFIG or defaults)")
    p.add_argument("--tenant", type=UUID, action="append", default=None, help="Limit to this tenant (repeatable)")
    p.add_argument("--skip-stock", action="store_true", help="Skip pending stock reconciliation")
    p.add_argument("--skip-ledgers", action="store_true", help="Skip expiry and chain repair")
    p.add_argument("--verbose", "-v", action="store_true")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from concession_config import get_active_settings
    from concession_kernel.logging_config import configure_logging, get_logger
    from concession_services.facade import ConcessionFacade

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    logger = get_logger("scripts.run_maintenance")

    facade = ConcessionFacade.from_settings(get_active_settings(args.config))
    failures = 0
    tenant_ids = []
    try:
        if args.tenant:
            tenant_ids = list(args.tenant)
        else:
            tenant_ids = [t.id for t in facade.list_tenants()]

        if not args.skip_stock:
            for tenant_id in tenant_ids:
                report = facade.reconcile_stock(tenant_id)
                failures += report.failed
                print(f"{tenant_id}  stock: recorded={report.recorded} restored={report.restored} failed={report.failed}")

        if not args.skip_ledgers:
            for tenant_id in tenant_ids:
                report = facade.run_ledger_maintenance(tenant_id)
                failures += report.failed
                print(
                    f"{tenant_id}  ledgers: products={report.products} expired={report.batches_expired} "
                    f"repaired={report.months_repaired} failed={report.failed}"
                )
    finally:
        facade.close()

    logger.info("maintenance_run_finished", extra={"tenants": len(tenant_ids), "failures": failures})
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
