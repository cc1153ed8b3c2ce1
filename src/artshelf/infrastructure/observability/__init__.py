"""Observability infrastructure for structured logging."""

from artshelf.infrastructure.observability.logging import (
    configure_logging,
    get_correlation_id,
    scan_context,
    set_correlation_id,
)

__all__ = [
    "configure_logging",
    "get_correlation_id",
    "scan_context",
    "set_correlation_id",
]
