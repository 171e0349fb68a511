"""
Domain modules (``concession_modules``).

Each subpackage holds frozen dataclass DTOs (``models.py``), SQLAlchemy
persistence (``orm.py``) and a service that flushes but never commits:

- ``tenants``   -- cinema locations and their order-number prefix
- ``catalog``   -- products and combo offers
- ``inventory`` -- monthly cafe/theater ledgers and the theater-to-cafe bridge
- ``ordering``  -- the order state machine and stock reconciliation
- ``dispatch``  -- print queues and push notifications
- ``qr_names``  -- seat/screen QR labels

Modules import from ``concession_engines`` and ``concession_kernel`` but
never from ``concession_services``.
"""
