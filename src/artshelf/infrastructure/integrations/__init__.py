"""External service integrations."""

from artshelf.infrastructure.integrations.remote_discovery_client import (
    InvalidDiscoveryPayloadError,
    RemoteDiscoveryClient,
)

__all__ = [
    "InvalidDiscoveryPayloadError",
    "RemoteDiscoveryClient",
]
