"""QR names: per-tenant seat/screen labels printed on table QR codes."""
