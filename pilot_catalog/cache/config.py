"""
Connection settings for the Valkey instance holding cached catalog responses.

Values come from ``VALKEY_*`` environment variables (a ``.env`` file in the
working directory is loaded first). The password is never rendered by
``__str__`` so the config can be logged as-is.
"""

import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ValkeyConfig:
    """
    Valkey endpoint, pool size, timeouts and SCAN batch size.

    ``scan_count`` is the COUNT hint passed to every SCAN issued while
    resolving an invalidation pattern; larger values mean fewer round trips
    on big keyspaces.
    """

    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    database: int = 0
    max_connections: int = 10
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    retry_on_timeout: bool = True
    health_check_interval: int = 30
    scan_count: int = 500

    @classmethod
    def from_env(cls) -> "ValkeyConfig":
        """Build the config from ``VALKEY_*`` variables, falling back to defaults."""
        defaults = cls()
        return cls(
            host=os.getenv("VALKEY_HOST", defaults.host),
            port=int(os.getenv("VALKEY_PORT", defaults.port)),
            password=os.getenv("VALKEY_PASSWORD") or None,
            database=int(os.getenv("VALKEY_DATABASE", defaults.database)),
            max_connections=int(os.getenv("VALKEY_MAX_CONNECTIONS", defaults.max_connections)),
            socket_timeout=float(os.getenv("VALKEY_SOCKET_TIMEOUT", defaults.socket_timeout)),
            socket_connect_timeout=float(
                os.getenv("VALKEY_SOCKET_CONNECT_TIMEOUT", defaults.socket_connect_timeout)
            ),
            retry_on_timeout=_env_bool("VALKEY_RETRY_ON_TIMEOUT", defaults.retry_on_timeout),
            health_check_interval=int(
                os.getenv("VALKEY_HEALTH_CHECK_INTERVAL", defaults.health_check_interval)
            ),
            scan_count=int(os.getenv("VALKEY_SCAN_COUNT", defaults.scan_count)),
        )

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """
        Keyword arguments for ``valkey.ConnectionPool``.

        Responses are always decoded: keys are compared as text.
        """
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "db": self.database,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_connect_timeout,
            "retry_on_timeout": self.retry_on_timeout,
            "max_connections": self.max_connections,
            "decode_responses": True,
        }
        if self.password:
            kwargs["password"] = self.password
        return kwargs

    def __str__(self) -> str:
        auth = "password=***" if self.password else "no password"
        return f"valkey://{self.host}:{self.port}/{self.database} ({auth}, pool={self.max_connections})"


class ValkeyConnectionError(Exception):
    """The Valkey server could not be reached or stopped answering."""
