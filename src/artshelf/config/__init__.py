"""Configuration module for artshelf."""

from .settings import (
    DatabaseSettings,
    DiscoverySource,
    ObservabilitySettings,
    RemoteFailurePolicy,
    ScannerSettings,
    Settings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "DiscoverySource",
    "ObservabilitySettings",
    "RemoteFailurePolicy",
    "ScannerSettings",
    "Settings",
    "get_settings",
]
