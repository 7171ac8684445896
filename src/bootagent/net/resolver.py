"""DNS-based endpoint discovery."""
from __future__ import annotations

import logging
import random
import socket
from collections.abc import Callable, Iterable, MutableSequence
from typing import Any

from .errors import InvalidArgument, ResolutionError

logger = logging.getLogger(__name__)

AddrInfoFn = Callable[..., list[tuple[Any, ...]]]
ShuffleFn = Callable[[MutableSequence[Any]], None]


def resolve_endpoints(
    hostnames: str | Iterable[str],
    *,
    port: int = 443,
    getaddrinfo: AddrInfoFn = socket.getaddrinfo,
    shuffle: ShuffleFn = random.shuffle,
) -> dict[str, str]:
    """Resolve *hostnames* to a mapping of IP address to originating hostname.

    The reverse mapping lets transfers connect by address while still
    verifying TLS certificates against the hostname. Addresses of each
    hostname are shuffled so a fleet of agents spreads its load across them.
    Any unresolvable hostname aborts the whole resolution.
    """
    names = [hostnames] if isinstance(hostnames, str) else list(hostnames)
    names = [name.strip() for name in names if name and name.strip()]
    if not names:
        raise InvalidArgument("At least one hostname must be provided")

    ips: dict[str, str] = {}
    for hostname in names:
        try:
            infos = getaddrinfo(
                hostname,
                port,
                socket.AF_INET,
                socket.SOCK_STREAM,
                socket.IPPROTO_TCP,
            )
        except (OSError, UnicodeError) as exc:
            logger.error("Failed to resolve hostnames: %s: %s", type(exc).__name__, exc)
            raise ResolutionError(hostname, str(exc)) from exc

        addresses = [info[4][0] for info in infos]
        if not addresses:
            logger.error("Failed to resolve hostnames: %s returned no addresses", hostname)
            raise ResolutionError(hostname, "no addresses returned")

        shuffle(addresses)
        for address in addresses:
            ips[address] = hostname
    return ips


__all__ = ["resolve_endpoints"]
