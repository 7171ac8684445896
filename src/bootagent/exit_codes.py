"""Process exit codes of the ``bootagent`` CLI."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes shared by every command."""

    OK = 0
    # Bad configuration or arguments.
    VALIDATION = 2
    # The persisted instance state could not be read.
    STATE = 3
    # Name resolution or transfer failures.
    NETWORK = 4
