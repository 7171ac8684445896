"""bootagent package bootstrap.

Boot-time orchestration core for a cloud instance agent: the boot step
sequencer, connectivity monitoring and the resilient artifact downloader.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# NOTE: The version is duplicated in ``pyproject.toml``.
__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
