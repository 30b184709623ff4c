"""One logical connection backed by N equivalent endpoints, with failover."""

import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from autosell.errors import AllEndpointsFailedError
from autosell.services.rpc_client import RpcConnection, RpcEndpoint, SenderRoutedConnection

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionPool:
    """Ordered endpoint list with a rotating current index.

    The index is shared by every caller and is never reset, so repeated
    failures cycle through all endpoints over time.
    """

    def __init__(
        self,
        urls: Sequence[str],
        commitment: str = "confirmed",
        endpoint_factory: Callable[[str], RpcConnection] | None = None,
    ):
        if not urls:
            raise ValueError("At least one RPC URL is required")

        self.commitment = commitment
        factory = endpoint_factory or (lambda url: RpcEndpoint(url, commitment=commitment))
        self._connections: list[RpcConnection] = [factory(url) for url in urls]
        self._current_index = 0

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def size(self) -> int:
        return len(self._connections)

    def get_connection(self) -> RpcConnection:
        return self._connections[self._current_index]

    def switch_to_next_endpoint(self) -> RpcConnection:
        self._current_index = (self._current_index + 1) % len(self._connections)
        return self.get_connection()

    async def execute_with_fallback(
        self,
        operation: Callable[[RpcConnection], Awaitable[T]],
        max_retries: int | None = None,
    ) -> T:
        """Run ``operation`` on the current endpoint, rotating on each failure."""
        attempts = max_retries if max_retries is not None else len(self._connections)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            connection = self.get_connection()
            try:
                return await operation(connection)
            except Exception as e:
                last_error = e
                nxt = self.switch_to_next_endpoint()
                logger.warning(
                    f"Endpoint {connection.url} failed (attempt {attempt}/{attempts}): {e}; "
                    f"switching to {nxt.url}"
                )

        raise AllEndpointsFailedError(
            f"All RPC endpoints failed: {last_error if last_error else 'unknown error'}",
            attempts=attempts,
            last_error=last_error,
        )

    async def close(self):
        for connection in self._connections:
            try:
                await connection.close()
            except Exception as e:
                logger.debug(f"Error closing {connection.url}: {e}")


def create_connection_pool(settings) -> ConnectionPool:
    """Build the pool from settings, routing sends through the sender when configured."""
    timeout = settings.rpc_timeout_seconds

    def factory(url: str) -> RpcConnection:
        endpoint = RpcEndpoint(url, commitment=settings.rpc_commitment, timeout=timeout)
        if settings.sender_url:
            return SenderRoutedConnection(
                endpoint,
                api_key=settings.sender_api_key,
                sender_url=settings.sender_url,
                timeout=timeout,
            )
        return endpoint

    return ConnectionPool(settings.rpc_urls, commitment=settings.rpc_commitment, endpoint_factory=factory)
