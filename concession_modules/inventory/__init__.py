"""
Inventory Module (``concession_modules.inventory``).

Monthly stock ledgers for the two families (theater warehouse and cafe
stockroom) and the bridge that mirrors cafe inward stock as theater
transfers.  All balance arithmetic lives in ``concession_engines.ledger``;
this package stores rows and keeps the month chain consistent.
"""
