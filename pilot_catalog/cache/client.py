"""
Pooled Valkey client used by the cache evictor.

Only two key operations are exposed: listing the keys that match a glob
(SCAN) and deleting a list of keys in one round trip (DEL). The entry
point's ``connect()`` retries with exponential backoff. Key operations
reconnect at most once, without waiting, and otherwise raise so the
invalidation cycle aborts and is re-run later.
"""

import asyncio
import logging
import time
from typing import Iterable, List, Optional

import valkey
from valkey.connection import ConnectionPool
from valkey.exceptions import ConnectionError, TimeoutError

from .config import ValkeyConfig, ValkeyConnectionError

logger = logging.getLogger(__name__)

CONNECT_ATTEMPTS = 5
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 30.0


class ValkeyClient:
    """
    Connection owner for one Valkey endpoint.

    The process entry point creates it, ``connect()``s it (or uses it as an
    async context manager) and hands it to ``ValkeyKeyStore``.
    """

    def __init__(self, config: Optional[ValkeyConfig] = None):
        self.config = config or ValkeyConfig.from_env()
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[valkey.Valkey] = None
        self._is_connected = False
        self._last_ping = 0.0

    async def connect(self) -> None:
        """
        Open the pool and verify it with PING.

        Raises:
            ValkeyConnectionError: If every attempt failed
        """
        if self._is_connected:
            return

        last_error: Optional[Exception] = None
        for attempt in range(1, CONNECT_ATTEMPTS + 1):
            try:
                self._open()
                logger.info(f"Connected to {self.config}")
                return
            except ValkeyConnectionError as e:
                last_error = e
                logger.warning(f"Valkey connection attempt {attempt}/{CONNECT_ATTEMPTS} failed: {e}")
                if attempt < CONNECT_ATTEMPTS:
                    delay = min(BACKOFF_BASE_SECONDS * 2 ** (attempt - 1), BACKOFF_MAX_SECONDS)
                    await asyncio.sleep(delay)

        message = f"Could not connect to {self.config} after {CONNECT_ATTEMPTS} attempts: {last_error}"
        logger.error(message)
        raise ValkeyConnectionError(message) from last_error

    def _open(self) -> None:
        """One connection attempt; leaves the client closed when it fails."""
        self._close_pool()
        try:
            self._pool = ConnectionPool(**self.config.to_connection_kwargs())
            self._client = valkey.Valkey(connection_pool=self._pool)
            self._ping()
        except ValkeyConnectionError:
            self._close_pool()
            raise
        except (ConnectionError, TimeoutError, OSError) as e:
            self._close_pool()
            raise ValkeyConnectionError(str(e)) from e
        self._is_connected = True
        self._last_ping = time.time()

    def _close_pool(self) -> None:
        if self._pool is not None:
            self._pool.disconnect()
        self._pool = None
        self._client = None
        self._is_connected = False

    async def disconnect(self) -> None:
        if self._pool is not None:
            logger.info(f"Disconnected from {self.config}")
        self._close_pool()

    def _ping(self) -> None:
        if self._client is None:
            raise ValkeyConnectionError("Client not initialized")
        try:
            answered = self._client.ping()
        except (ConnectionError, TimeoutError, OSError) as e:
            raise ValkeyConnectionError(f"PING failed: {e}") from e
        if not answered:
            raise ValkeyConnectionError("PING returned no answer")

    async def ensure_connection(self) -> None:
        """
        Re-PING a stale connection and reconnect once if it does not answer.

        Called before every key operation. There is no backoff here: a
        failed reconnect raises at once and the cycle reports the cache
        as unavailable.

        Raises:
            ValkeyConnectionError: If the single reconnect attempt failed
        """
        if self._is_connected:
            if time.time() - self._last_ping < self.config.health_check_interval:
                return
            try:
                self._ping()
                self._last_ping = time.time()
                return
            except ValkeyConnectionError as e:
                logger.warning(f"Valkey health check failed, reconnecting once: {e}")

        try:
            self._open()
        except ValkeyConnectionError as e:
            logger.error(f"Valkey reconnect to {self.config} failed: {e}")
            raise
        logger.info(f"Reconnected to {self.config}")

    @property
    def is_connected(self) -> bool:
        return self._is_connected and self._client is not None

    @property
    def client(self) -> valkey.Valkey:
        if not self.is_connected:
            raise ValkeyConnectionError("Client not connected. Call connect() first.")
        return self._client

    async def scan_keys(self, pattern: str) -> List[str]:
        """Every key matching a Valkey glob, via incremental SCAN."""
        await self.ensure_connection()
        return list(self.client.scan_iter(match=pattern, count=self.config.scan_count))

    async def delete_keys(self, keys: Iterable[str]) -> int:
        """Delete keys with a single DEL; returns the count the server removed."""
        keys = list(keys)
        if not keys:
            return 0
        await self.ensure_connection()
        return int(self.client.delete(*keys))

    async def __aenter__(self) -> "ValkeyClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
