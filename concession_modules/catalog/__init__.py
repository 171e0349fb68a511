"""Catalog: products and combo offers, read by the order pipeline, never mutated by it."""
