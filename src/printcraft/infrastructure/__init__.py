"""Infrastructure adapters (work queue)."""
