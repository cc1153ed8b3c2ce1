"""HTTP client for the remote metadata-file scanner."""

import logging
from typing import Any

import httpx

from artshelf.config.settings import ScannerSettings
from artshelf.domain.exceptions import ConfigurationError, DiscoveryError
from artshelf.infrastructure.retry import RetryExhaustedError, RetryPolicy

logger = logging.getLogger(__name__)


class InvalidDiscoveryPayloadError(ValueError):
    """Remote scanner answered 2xx but the body is not a JSON array of strings."""


# Hey future me, the remote scanner is a tiny sidecar that walks the library ON THE HOST that owns
# the disk and returns every metadata file as a path relative to the library root:
#   GET {base}/metadata-files -> ["/123/123-meta.txt", "456/456-meta.txt", ...]
# Leading slashes are optional, the caller strips them. We only validate SHAPE here. Anything that
# isn't a list of strings is treated exactly like a network failure and retried, because a half-
# restarted sidecar sometimes answers 200 with an HTML error page.
class RemoteDiscoveryClient:
    """Fetches the list of metadata files from a remote scanner endpoint."""

    ENDPOINT = "/metadata-files"

    def __init__(
        self,
        settings: ScannerSettings,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize remote discovery client.

        Args:
            settings: Scanner settings (base URL, timeout, retry knobs)
            retry_policy: Override retry behaviour (tests inject a fake sleep)
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not settings.remote_discovery_url:
            raise ConfigurationError("Remote discovery URL is not configured")

        self.settings = settings
        self.base_url = settings.remote_discovery_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.remote_max_attempts,
            initial_delay=settings.remote_initial_delay,
            max_delay=settings.remote_max_delay,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.settings.remote_timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RemoteDiscoveryClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _fetch_once(self) -> list[str]:
        """One attempt: GET the endpoint and validate the payload shape.

        Raises:
            httpx.HTTPError: Transport failure, timeout or non-2xx status
            ValueError: Body is not JSON or not a list of strings
        """
        client = await self._get_client()
        response = await client.get(self.ENDPOINT)
        response.raise_for_status()

        data = response.json()
        if not isinstance(data, list):
            raise InvalidDiscoveryPayloadError(
                f"Expected a JSON array, got {type(data).__name__}"
            )
        bad = [entry for entry in data if not isinstance(entry, str)]
        if bad:
            raise InvalidDiscoveryPayloadError(
                f"Expected only string paths, got {len(bad)} non-string entries"
            )
        return data

    async def list_metadata_files(self) -> list[str]:
        """Fetch all metadata file paths (relative to the library root).

        Returns:
            Paths exactly as the remote scanner reported them

        Raises:
            DiscoveryError: If every attempt failed
        """
        url = f"{self.base_url}{self.ENDPOINT}"
        try:
            paths = await self.retry_policy.run(
                self._fetch_once,
                description=f"Remote discovery GET {url}",
                retry_on=(httpx.HTTPError, ValueError),
            )
        except RetryExhaustedError as e:
            raise DiscoveryError(
                f"Remote discovery at {url} failed after {e.attempts} attempts: {e.last_error}",
                attempts=e.attempts,
                last_error=e.last_error,
            ) from e

        logger.info("Remote discovery returned %d metadata files", len(paths))
        return paths
