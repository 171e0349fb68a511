"""
Ordering Module (``concession_modules.ordering``).

The order state machine (``service``), its stock side effects on the cafe
ledger (``reconciliation``) and read-only listing (``selector``).
"""
