"""Outbound request forwarding with an offline mode."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Mapping
from typing import Any

from .boot.collaborators import RpcClient

logger = logging.getLogger(__name__)


class RequestForwarder:
    """Forward requests to an :class:`RpcClient`, deferring them while offline.

    Offline requests are queued and sent in order once offline mode is
    disabled; their callers simply keep awaiting until then.
    """

    def __init__(self, client: RpcClient) -> None:
        """Wrap *client*; the forwarder starts online."""
        self._client = client
        self._offline = False
        self._pending: deque[tuple[str, object, asyncio.Future[Any]]] = deque()
        self._drain_task: asyncio.Task[None] | None = None

    @property
    def offline(self) -> bool:
        """Return ``True`` while requests are being deferred."""
        return self._offline

    @property
    def pending_count(self) -> int:
        """Return the number of requests waiting to be sent."""
        return len(self._pending)

    def enable_offline_mode(self) -> None:
        """Start deferring outbound requests."""
        if self._offline:
            return
        logger.warning("Connection lost, entering offline mode")
        self._offline = True

    def disable_offline_mode(self) -> None:
        """Resume sending requests, flushing the deferred ones first."""
        if self._offline:
            logger.info("Connection restored, leaving offline mode (%d queued)", len(self._pending))
        self._offline = False
        if self._pending and (self._drain_task is None or self._drain_task.done()):
            loop = self._pending[0][2].get_loop()
            self._drain_task = loop.create_task(self._drain())

    async def request(self, path: str, payload: object) -> Any:
        """Send a request now, or queue it while offline (or while draining)."""
        if self._offline or self._pending:
            return await self._enqueue("request", (path, payload))
        return await self._client.request(path, payload)

    async def query_tags(self, query: Mapping[str, object]) -> object:
        """Query tags now, or queue the query while offline."""
        if self._offline or self._pending:
            return await self._enqueue("query_tags", (query,))
        return await self._client.query_tags(query)

    # ------------------------------------------------------------------
    async def _enqueue(self, method: str, args: tuple[object, ...]) -> Any:
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending.append((method, args, future))
        return await future

    async def _drain(self) -> None:
        while self._pending and not self._offline:
            method, args, future = self._pending.popleft()
            if future.cancelled():
                continue
            try:
                result = await getattr(self._client, method)(*args)
            except Exception as exc:
                if not future.cancelled():
                    future.set_exception(exc)
                continue
            if not future.cancelled():
                future.set_result(result)


__all__ = ["RequestForwarder"]
