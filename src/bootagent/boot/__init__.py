"""Boot sequence: step machine, collaborator interfaces and repository setup."""
from __future__ import annotations

from .collaborators import (
    AuditFactory,
    BundleExecutor,
    LoginPolicyApplier,
    OfflineModeSwitch,
    PackageIndexRefresher,
    RepositoryConfigurator,
    RpcClient,
)
from .repositories import AptIndexRefresher, configure_repositories
from .sequencer import BootSequencer, BootStep, StepFailure

__all__ = [
    "AptIndexRefresher",
    "AuditFactory",
    "BootSequencer",
    "BootStep",
    "BundleExecutor",
    "LoginPolicyApplier",
    "OfflineModeSwitch",
    "PackageIndexRefresher",
    "RepositoryConfigurator",
    "RpcClient",
    "StepFailure",
    "configure_repositories",
]
