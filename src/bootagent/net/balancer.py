"""Load-balanced requests across a fixed set of endpoints."""
from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Protocol, TypeVar

from .classifier import is_fatal
from .errors import AllEndpointsFailed, InvalidArgument

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BalancingPolicy(Protocol):
    """Strategy choosing which endpoint the next attempt goes to."""

    def next(self) -> str:
        ...

    def good(self, endpoint: str) -> None:
        ...

    def bad(self, endpoint: str) -> None:
        ...


class StickyPolicy:
    """Keep using an endpoint until it fails, then move to the next one."""

    def __init__(self, endpoints: Sequence[str]) -> None:
        """Start at the first endpoint of *endpoints*."""
        if not endpoints:
            raise InvalidArgument("StickyPolicy requires at least one endpoint")
        self._endpoints = list(endpoints)
        self._index = 0

    @property
    def current(self) -> str:
        """Return the endpoint the next attempt will use."""
        return self._endpoints[self._index]

    def next(self) -> str:
        return self.current

    def good(self, endpoint: str) -> None:
        # Already pinned to the endpoint that just worked.
        pass

    def bad(self, endpoint: str) -> None:
        if endpoint == self.current:
            self._index = (self._index + 1) % len(self._endpoints)


class RequestBalancer:
    """Run an operation against endpoints chosen by a policy, failing over on errors."""

    def __init__(
        self,
        endpoints: Sequence[str],
        *,
        policy: BalancingPolicy | None = None,
        fatal: Callable[[BaseException], bool] = is_fatal,
    ) -> None:
        """Bind the balancer to *endpoints*, defaulting to a sticky policy."""
        if not endpoints:
            raise InvalidArgument("At least one endpoint must be provided")
        self.endpoints = tuple(endpoints)
        self.policy: BalancingPolicy = policy or StickyPolicy(self.endpoints)
        self._fatal = fatal

    def request(self, operation: Callable[[str], T]) -> T:
        """Call ``operation(endpoint)`` until one endpoint succeeds.

        Fatal errors propagate immediately. Other errors mark the endpoint bad
        and move on; each endpoint gets at most one attempt per request.
        """
        failures: list[tuple[str, BaseException]] = []
        for _attempt in range(len(self.endpoints)):
            endpoint = self.policy.next()
            try:
                result = operation(endpoint)
            except Exception as exc:
                if self._fatal(exc):
                    logger.error("Fatal error from %s: %s: %s", endpoint, type(exc).__name__, exc)
                    raise
                logger.warning(
                    "Request to %s failed, trying next endpoint: %s: %s",
                    endpoint,
                    type(exc).__name__,
                    exc,
                )
                self.policy.bad(endpoint)
                failures.append((endpoint, exc))
                continue
            self.policy.good(endpoint)
            return result
        raise AllEndpointsFailed(failures)


__all__ = ["BalancingPolicy", "RequestBalancer", "StickyPolicy"]
