"""HTTPS transfers pinned to a resolved address."""
from __future__ import annotations

import http.client
import os
import shutil
import socket
import ssl
import urllib.parse
from collections.abc import Callable, Iterable
from pathlib import Path

from .downloader import Downloader, Resolver
from .errors import RetryableTransferError, TransferHTTPError

CHUNK_SIZE = 64 * 1024


def default_ssl_context() -> ssl.SSLContext:
    """Return a verifying SSL context, honouring ``SSL_CERT_FILE`` when set."""
    candidates: list[str] = []

    env_override = os.environ.get("SSL_CERT_FILE")
    if env_override:
        candidates.append(env_override)
    candidates.append("/etc/ssl/cert.pem")

    for candidate in candidates:
        path = Path(candidate)
        if path.is_file():
            return ssl.create_default_context(cafile=str(path))

    return ssl.create_default_context()


class PinnedHTTPSConnection(http.client.HTTPSConnection):
    """HTTPS connection to a fixed IP that verifies the certificate for *host*."""

    def __init__(
        self,
        address: str,
        host: str,
        port: int,
        *,
        timeout: float,
        context: ssl.SSLContext,
    ) -> None:
        """Connect to *address* while presenting and verifying *host*."""
        super().__init__(host, port, timeout=timeout, context=context)
        self.address = address
        self.ssl_context = context

    def connect(self) -> None:
        sock = socket.create_connection((self.address, self.port), self.timeout)
        self.sock = self.ssl_context.wrap_socket(sock, server_hostname=self.host)


ConnectionFactory = Callable[[str, str], http.client.HTTPConnection]


class HttpDownloader(Downloader):
    """Fetch resources over HTTPS from whichever endpoint the balancer picks."""

    def __init__(
        self,
        hostnames: str | Iterable[str],
        *,
        port: int = 443,
        timeout: float = 30.0,
        user_agent: str = "bootagent",
        ssl_context: ssl.SSLContext | None = None,
        resolver: Resolver | None = None,
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        """Resolve *hostnames* and remember transport settings."""
        super().__init__(hostnames, resolver=resolver)
        self.port = port
        self.timeout = timeout
        self.user_agent = user_agent
        self._ssl_context = ssl_context
        self._connection_factory = connection_factory or self._pinned_connection

    def _pinned_connection(self, address: str, hostname: str) -> http.client.HTTPConnection:
        if self._ssl_context is None:
            self._ssl_context = default_ssl_context()
        return PinnedHTTPSConnection(
            address,
            hostname,
            self.port,
            timeout=self.timeout,
            context=self._ssl_context,
        )

    def _download(self, endpoint: str, hostname: str, resource: str, destination: Path) -> int:
        parsed = urllib.parse.urlsplit(resource)
        path = parsed.path or "/"
        if not path.startswith("/"):
            path = f"/{path}"
        if parsed.query:
            path = f"{path}?{parsed.query}"

        connection = self._connection_factory(endpoint, hostname)
        try:
            try:
                connection.request(
                    "GET",
                    path,
                    headers={"Host": hostname, "User-Agent": self.user_agent},
                )
                response = connection.getresponse()
            except (OSError, http.client.HTTPException) as exc:
                raise RetryableTransferError(f"{hostname} ({endpoint}): {exc}") from exc

            if not 200 <= response.status < 300:
                reason = response.reason or ""
                response.read()
                raise TransferHTTPError(response.status, reason)

            destination.parent.mkdir(parents=True, exist_ok=True)
            partial = destination.with_name(f".{destination.name}.part")
            try:
                with partial.open("wb") as handle:
                    shutil.copyfileobj(response, handle, CHUNK_SIZE)
                    written = handle.tell()
                os.replace(partial, destination)
            except (OSError, http.client.HTTPException) as exc:
                partial.unlink(missing_ok=True)
                raise RetryableTransferError(f"{hostname} ({endpoint}): {exc}") from exc
            return written
        finally:
            connection.close()


__all__ = ["HttpDownloader", "PinnedHTTPSConnection", "default_ssl_context"]
