"""Repository mirror configuration hooks run before the boot bundle."""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence

from ..models import OperationResult, RepositoryDescriptor
from .collaborators import RepositoryConfigurator

logger = logging.getLogger(__name__)


def configure_repositories(
    repositories: Sequence[RepositoryDescriptor],
    configurators: Mapping[str, RepositoryConfigurator],
) -> list[OperationResult]:
    """Run the configurator registered for each repository, in order.

    Configurators may fail when the platform is not what they expect; such
    failures are logged and reported in the returned results, and the
    remaining repositories are still configured.
    """
    results: list[OperationResult] = []
    for repository in repositories:
        configurator = configurators.get(repository.name)
        if configurator is None:
            logger.debug("No configurator registered for repository %s", repository.name)
            results.append(OperationResult.success(None))
            continue
        try:
            configurator(repository, repository.mirror_date())
        except Exception as exc:
            logger.error("Failed to configure repository %s: %s", repository.name, exc)
            results.append(OperationResult.error(f"{repository.name}: {exc}"))
            continue
        logger.info("Configured repository %s", repository.name)
        results.append(OperationResult.success(repository.name))
    return results


class AptIndexRefresher:
    """Run ``apt-get update`` after mirrors changed, when apt is available."""

    def __init__(self, apt_get_bin: str = "apt-get", *, timeout: float | None = 600.0) -> None:
        """Remember the binary to run and the command timeout."""
        self.apt_get_bin = apt_get_bin
        self.timeout = timeout

    def __call__(self) -> str | None:
        """Refresh the package index and return the combined output."""
        if shutil.which(self.apt_get_bin) is None:
            return None
        env = os.environ.copy()
        env["DEBIAN_FRONTEND"] = "noninteractive"
        result = subprocess.run(  # noqa: S603
            [self.apt_get_bin, "update"],
            capture_output=True,
            text=True,
            check=False,
            env=env,
            timeout=self.timeout,
        )
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            logger.warning("%s update exited with %s", self.apt_get_bin, result.returncode)
        return output


__all__ = ["AptIndexRefresher", "configure_repositories"]
