"""erpforms.core: Cross-cutting primitives (exceptions)."""
