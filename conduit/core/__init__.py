"""Reconciliation core: hashing, flattening, resolution, diffing, reconcilers."""
