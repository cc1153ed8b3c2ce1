"""Application layer - use cases, caches and background workers."""
