"""Persisted instance state.

The state file (``/var/lib/bootagent/instance_state.yml`` by default) records
the agent identity the state belongs to, the current :class:`InstanceState`
value and the startup tags gathered during boot. Writes are atomic so a crash
mid-boot never leaves a truncated file behind.
"""
from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage bootagent state. Install with `pip install bootagent`."
    ) from exc

from .models import InstanceState

logger = logging.getLogger(__name__)


class StateStoreError(RuntimeError):
    """Raised when the instance state cannot be read or written."""


class InstanceStateStore:
    """File-backed store for the instance state value and startup tags."""

    def __init__(self, path: Path) -> None:
        """Bind the store to *path*; nothing is read until :meth:`init`."""
        self.path = path.expanduser()
        self._data: dict[str, Any] = {}
        self._initialised = False

    def init(self, identity: str) -> InstanceState:
        """Load the persisted state for *identity*.

        A missing file, or one written for a different agent identity (the
        instance was relaunched from an image), starts over in ``booting``.
        """
        normalized = identity.strip()
        if not normalized:
            raise StateStoreError("Agent identity must be a non-empty string.")

        stored = self._load()
        if stored.get("identity") != normalized:
            if stored:
                logger.info(
                    "Resetting instance state: identity changed from %s to %s",
                    stored.get("identity"),
                    normalized,
                )
            self._save(
                {
                    "identity": normalized,
                    "value": InstanceState.BOOTING.value,
                    "startup_tags": [],
                }
            )
        else:
            self._data = stored
            # Validate eagerly so a corrupt value surfaces at startup.
            _coerce_state(self._data.get("value"))
        self._initialised = True
        return self.value

    @property
    def identity(self) -> str | None:
        """Return the identity the current state belongs to."""
        self._ensure_initialised()
        value = self._data.get("identity")
        return str(value) if value is not None else None

    @property
    def value(self) -> InstanceState:
        """Return the current instance state."""
        self._ensure_initialised()
        return _coerce_state(self._data.get("value"))

    @value.setter
    def value(self, state: InstanceState | str) -> None:
        self._ensure_initialised()
        coerced = _coerce_state(state)
        previous = self._data.get("value")
        self._save({**self._data, "value": coerced.value})
        if previous != coerced.value:
            logger.info("Instance state changed from %s to %s", previous, coerced.value)

    @property
    def startup_tags(self) -> list[str]:
        """Return the tags recorded for this instance at startup."""
        self._ensure_initialised()
        tags = self._data.get("startup_tags") or []
        return [str(tag) for tag in tags]

    @startup_tags.setter
    def startup_tags(self, tags: Iterable[object]) -> None:
        self._ensure_initialised()
        self._save({**self._data, "startup_tags": [str(tag) for tag in tags]})

    def snapshot(self) -> dict[str, Any]:
        """Return the persisted state without initialising or modifying it."""
        return self._load()

    # ------------------------------------------------------------------
    def _ensure_initialised(self) -> None:
        if not self._initialised:
            raise StateStoreError("Instance state store used before init().")

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise StateStoreError(f"Failed to read state file {self.path}: {exc}") from exc
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise StateStoreError(f"Failed to parse state file {self.path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, Mapping):
            raise StateStoreError(f"State file {self.path} must contain a mapping.")
        return dict(data)

    def _save(self, data: dict[str, Any]) -> None:
        """Persist *data* atomically; the in-memory state only changes on success."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=f".{self.path.name}."
            )
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                    yaml.safe_dump(data, handle, sort_keys=False)
                os.chmod(tmp_path, 0o640)
                os.replace(tmp_path, self.path)
            finally:
                tmp_path.unlink(missing_ok=True)
        except OSError as exc:
            raise StateStoreError(f"Failed to write state file {self.path}: {exc}") from exc
        self._data = data


def _coerce_state(value: object) -> InstanceState:
    if isinstance(value, InstanceState):
        return value
    try:
        return InstanceState(str(value))
    except ValueError as exc:
        allowed = ", ".join(state.value for state in InstanceState)
        raise StateStoreError(f"Invalid instance state {value!r}. Allowed: {allowed}.") from exc


__all__ = ["InstanceStateStore", "StateStoreError"]
