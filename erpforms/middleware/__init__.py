"""erpforms.middleware: Request-level cross-cutting concerns."""
