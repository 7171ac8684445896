"""Broker connectivity monitoring."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .boot.collaborators import OfflineModeSwitch
from .config import RECONNECT_GRACE_PERIOD

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    """Transport connection status notifications."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ConnectivityMonitor:
    """Switch to offline mode when a disconnect outlasts the grace period.

    The transport usually reconnects on its own within a few seconds, so a
    disconnect only takes effect once the grace timer fires.
    """

    def __init__(
        self,
        switch: OfflineModeSwitch,
        *,
        grace_period: float = RECONNECT_GRACE_PERIOD,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Bind the monitor to the offline-mode *switch*."""
        self._switch = switch
        self.grace_period = grace_period
        self._loop = loop
        self._offline_timer: asyncio.TimerHandle | None = None
        self._offline = False

    @property
    def timer_pending(self) -> bool:
        """Return ``True`` while a grace timer is armed."""
        return self._offline_timer is not None

    @property
    def offline(self) -> bool:
        """Return ``True`` once offline mode was enabled and until reconnected."""
        return self._offline

    def connection_status(self, status: ConnectionStatus | str) -> bool:
        """Handle a connection status notification; always returns ``True``."""
        status = ConnectionStatus(status)
        if status is ConnectionStatus.DISCONNECTED:
            if self._offline_timer is None and not self._offline:
                loop = self._loop or asyncio.get_running_loop()
                logger.info("Disconnected, offline mode in %.1fs unless reconnected", self.grace_period)
                self._offline_timer = loop.call_later(self.grace_period, self._go_offline)
        else:
            if self._offline_timer is not None:
                self._offline_timer.cancel()
                self._offline_timer = None
            self._offline = False
            self._switch.disable_offline_mode()
        return True

    def _go_offline(self) -> None:
        self._offline_timer = None
        self._offline = True
        self._switch.enable_offline_mode()


__all__ = ["ConnectionStatus", "ConnectivityMonitor"]
