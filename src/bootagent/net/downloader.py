"""Abstract resilient downloader.

:class:`Downloader` owns everything protocol independent: endpoint discovery,
sticky failover, sanitising the resource for audit output and throughput
accounting. Concrete subclasses only move bytes in :meth:`Downloader._download`.
"""
from __future__ import annotations

import abc
import logging
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from .balancer import RequestBalancer, StickyPolicy
from .classifier import is_fatal
from .resolver import resolve_endpoints

logger = logging.getLogger(__name__)

Resolver = Callable[[list[str]], dict[str, str]]


def scale(value: int) -> tuple[int, str]:
    """Return *value* bytes scaled to the largest fitting unit (floor division)."""
    if value <= 1023:
        return value, "B"
    if value <= 1024**2 - 1:
        return value // 1024, "KB"
    if value <= 1024**3 - 1:
        return value // 1024**2, "MB"
    return value // 1024**3, "GB"


def sanitize_resource(resource: str) -> str:
    """Return the part of *resource* that is safe to show in logs and audits.

    Query strings typically carry signatures or tokens and are dropped.
    """
    return resource.split("?", 1)[0]


class Downloader(abc.ABC):
    """Download resources from a set of equivalent hosts."""

    def __init__(
        self,
        hostnames: str | Iterable[str],
        *,
        resolver: Resolver | None = None,
    ) -> None:
        """Resolve *hostnames* up front; resolution failures abort construction."""
        names = [hostnames] if isinstance(hostnames, str) else list(hostnames)
        self.ips: dict[str, str] = (resolver or resolve_endpoints)(names)
        self.size = 0
        self.speed = 0.0
        self.sanitized_resource: str | None = None
        self.last_attempt: str | None = None
        self._balancer: RequestBalancer | None = None

    @property
    def balancer(self) -> RequestBalancer:
        """Return the balancer shared by every download of this instance."""
        if self._balancer is None:
            endpoints = list(self.ips)
            self._balancer = RequestBalancer(
                endpoints,
                policy=StickyPolicy(endpoints),
                fatal=is_fatal,
            )
        return self._balancer

    def download(self, resource: str, destination: str | Path) -> Path:
        """Fetch *resource* into *destination* and return the destination path.

        ``size``, ``speed`` and ``sanitized_resource`` describe the most recent
        successful download; a failed call leaves them untouched and only
        updates ``last_attempt``.
        """
        target = Path(destination)
        sanitized = sanitize_resource(resource)
        self.last_attempt = sanitized
        started = time.perf_counter()

        size = self.balancer.request(
            lambda endpoint: self._download(endpoint, self.ips[endpoint], resource, target)
        )

        elapsed = time.perf_counter() - started
        self.sanitized_resource = sanitized
        self.size = int(size)
        self.speed = self.size / elapsed if elapsed > 0 else float(self.size)
        logger.info(self.details())
        return target

    def details(self) -> str:
        """Summarise the last successful download for audits."""
        size_value, size_unit = scale(int(self.size))
        speed_value, speed_unit = scale(int(self.speed))
        return (
            f"Downloaded '{self.sanitized_resource}' ({size_value} {size_unit}) "
            f"at {speed_value} {speed_unit}/s"
        )

    @abc.abstractmethod
    def _download(self, endpoint: str, hostname: str, resource: str, destination: Path) -> int:
        """Transfer *resource* from *endpoint* into *destination*.

        *hostname* is the name *endpoint* was resolved from. Returns the number
        of bytes written. Raise an error carrying ``http_code`` for HTTP
        failures so the balancer can tell fatal from retryable ones.
        """


__all__ = ["Downloader", "sanitize_resource", "scale"]
