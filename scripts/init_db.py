#!/usr/bin/env python3
"""
Create (or recreate) the concession schema.

Reads the database URL from the active settings (``CONCESSION_CONFIG`` /
``DATABASE_URL`` override ``defaults.yaml``), creates every table registered
by the ORM registry and optionally seeds one tenant.

Usage:
  python3 scripts/init_db.py
  python3 scripts/init_db.py --drop --tenant "Screen One" --phone 9876543210
"""

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create the concession database schema")
    p.add_argument("--config", type=Path, default=None, help="Settings YAML (default: CONCESSION_CONFIG or defaults)")
    p.add_argument("--database-url", default=None, help="Override the configured database URL")
    p.add_argument("--drop", action="store_true", help="Drop all tables first")
    p.add_argument("--tenant", default=None, help="Seed a tenant with this name")
    p.add_argument("--phone", default=None, help="Phone printed on the seeded tenant's receipts")
    p.add_argument("--gst-number", default=None, help="GST number of the seeded tenant")
    p.add_argument("--verbose", "-v", action="store_true")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from concession_config import get_active_settings
    from concession_kernel.db.engine import (
        create_tables,
        drop_tables,
        get_session_factory,
        init_engine_from_url,
        session_scope,
    )
    from concession_kernel.logging_config import configure_logging, get_logger
    from concession_modules.tenants.service import TenantService

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    logger = get_logger("scripts.init_db")

    settings = get_active_settings(args.config)
    db = settings.database
    url = args.database_url or db.url
    init_engine_from_url(
        url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        statement_timeout_seconds=db.statement_timeout_seconds,
    )

    if args.drop:
        drop_tables()
        logger.info("tables_dropped")
    create_tables()
    logger.info("tables_created", extra={"database": url.rsplit("@", 1)[-1]})

    if args.tenant:
        details = {k: v for k, v in (("phone", args.phone), ("gst_number", args.gst_number)) if v}
        with session_scope(get_session_factory()) as session:
            tenant = TenantService(session).create(args.tenant, **details)
        print(f"Tenant {tenant.name!r}: {tenant.id}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
