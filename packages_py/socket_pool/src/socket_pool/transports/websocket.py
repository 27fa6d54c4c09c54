"""
WebSocket socket factory for the pool manager
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import quote

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import WebSocketException

from ..config import DEFAULT_SOCKET_POOL_CONFIG, calculate_reconnect_delay
from ..types import ReconnectionConfig

logger = logging.getLogger(__name__)

LOG_PREFIX = "[WebSocketConnectionFactory]"

# Errors that trigger a reconnect attempt
RETRYABLE_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class WebSocketConnectionFactory:
    """
    Opens WebSocket connections for pool keys.

    The URL may contain ``{pool_key}`` and ``{flow_id}`` placeholders, where
    ``flow_id`` is the part of the key after the namespace
    (``payment:abc`` -> ``abc``). When ``join_event`` is set, a
    ``{"event": join_event, "data": {"flowId": flow_id}}`` message is sent
    once the socket is open.

    Transport errors are retried up to ``reconnection.max_attempts`` times
    with exponential backoff; ``on_reconnect`` is called before each retry.
    """

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        connect_timeout_seconds: float = 10.0,
        reconnection: Optional[ReconnectionConfig] = None,
        join_event: Optional[str] = "join_flow",
        on_reconnect: Optional[Callable[[str], None]] = None,
        connector: Optional[Callable[..., Awaitable[Any]]] = None,
    ) -> None:
        if not url:
            raise ValueError("url is required")
        self._url = url
        self._headers = dict(headers or {})
        self._connect_timeout_seconds = connect_timeout_seconds
        self._reconnection = reconnection or DEFAULT_SOCKET_POOL_CONFIG.reconnection
        self._join_event = join_event
        self._connector = connector or connect
        self.on_reconnect = on_reconnect

    @property
    def url(self) -> str:
        return self._url

    @property
    def total_timeout_seconds(self) -> Optional[float]:
        """
        Upper bound on a single call, covering all connect attempts with their
        backoff delays plus one open timeout for the join message.
        None when connects never time out.
        """
        if not self._connect_timeout_seconds:
            return None
        retries = self._reconnection.max_attempts
        return (
            (retries + 2) * self._connect_timeout_seconds
            + retries * self._reconnection.max_delay_seconds
        )

    def build_url(self, pool_key: str) -> str:
        """Resolve URL placeholders for a pool key"""
        flow_id = pool_key.partition(":")[2] or pool_key
        return self._url.format(
            pool_key=quote(pool_key, safe=""),
            flow_id=quote(flow_id, safe=""),
        )

    async def __call__(self, pool_key: str) -> ClientConnection:
        url = self.build_url(pool_key)
        max_attempts = self._reconnection.max_attempts
        attempt = 0

        while True:
            try:
                websocket = await self._connector(
                    url,
                    additional_headers=self._headers,
                    open_timeout=self._connect_timeout_seconds or None,
                )
                break
            except RETRYABLE_ERRORS as e:
                if attempt >= max_attempts:
                    logger.error(
                        f"{LOG_PREFIX} {pool_key}: giving up after {attempt + 1} "
                        f"attempt(s): {type(e).__name__}: {e}"
                    )
                    raise

                delay = calculate_reconnect_delay(attempt, self._reconnection)
                attempt += 1
                logger.warning(
                    f"{LOG_PREFIX} {pool_key}: connect failed ({type(e).__name__}: {e}), "
                    f"reconnect {attempt}/{max_attempts} in {delay:.2f}s"
                )
                if self.on_reconnect is not None:
                    self.on_reconnect(pool_key)
                await asyncio.sleep(delay)

        if self._join_event:
            await self._join(websocket, pool_key)

        logger.debug(f"{LOG_PREFIX} {pool_key}: connected to {url}")
        return websocket

    async def _join(self, websocket: Any, pool_key: str) -> None:
        flow_id = pool_key.partition(":")[2] or pool_key
        message = json.dumps({"event": self._join_event, "data": {"flowId": flow_id}})
        try:
            await websocket.send(message)
        except BaseException:
            # Includes cancellation by the caller's timeout
            await websocket.close()
            raise
