"""Interfaces of the external collaborators the boot sequencer drives."""
from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol

from ..audit import AuditTrail
from ..models import BootBundle, LoginPolicy, OperationResult, RepositoryDescriptor


class RpcClient(Protocol):
    """Request/response transport to the core site."""

    async def request(self, path: str, payload: object) -> OperationResult | Mapping[str, Any]:
        """Send *payload* to *path* and return the decoded response."""
        ...

    async def query_tags(self, query: Mapping[str, object]) -> object:
        """Return the tags matching *query*; may return ``None``."""
        ...


class OfflineModeSwitch(Protocol):
    """Something that can defer outbound requests while disconnected."""

    def enable_offline_mode(self) -> None:
        ...

    def disable_offline_mode(self) -> None:
        ...


class LoginPolicyApplier(Protocol):
    """Applies a managed login policy and describes what changed."""

    def update_policy(self, policy: LoginPolicy) -> str:
        ...


class BundleExecutor(Protocol):
    """Runs a boot bundle to completion.

    Called exactly once per boot attempt, from a worker thread. Returning
    ``None``/``True`` or a successful :class:`OperationResult` means success;
    ``False``, a failed result or raising means failure.
    """

    def run(self, bundle: BootBundle) -> OperationResult | bool | None:
        ...


# Configures local mirrors for one repository; receives the descriptor and
# the mirror snapshot date (``YYYYMMDD``) or ``None``.
RepositoryConfigurator = Callable[[RepositoryDescriptor, str | None], None]

# Refreshes the package index once mirrors are configured; returns the
# command output to audit, or ``None`` when there is nothing to refresh.
PackageIndexRefresher = Callable[[], str | None]

AuditFactory = Callable[[str], AuditTrail]


__all__ = [
    "AuditFactory",
    "BundleExecutor",
    "LoginPolicyApplier",
    "OfflineModeSwitch",
    "PackageIndexRefresher",
    "RepositoryConfigurator",
    "RpcClient",
]
