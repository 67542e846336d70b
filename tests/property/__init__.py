# tests/property/__init__.py
"""Property tests for redistribution, serialization and reconciliation.

Restore semantics must hold for ALL partition layouts and reader
parallelisms, not just the reference scenario.
"""
