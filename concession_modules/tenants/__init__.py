"""Tenants (cinema locations): identity, display name and order-number prefix."""
