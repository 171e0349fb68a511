"""Dispatch: per-tenant print queues and push notifications for committed orders."""
