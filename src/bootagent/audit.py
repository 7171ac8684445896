"""Append-only audit trails.

Each audit trail is a JSON-lines file named after its audit id. Entries are
grouped into sections; the boot sequencer reports progress and failures here
so operators can see why an instance stranded without shell access.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_SAFE_ID_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_.")


class AuditError(ValueError):
    """Raised when an audit trail cannot be opened."""


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _json_safe(value: object) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return str(value)


class AuditTrail:
    """Audit trail bound to a single audit id."""

    def __init__(self, audit_dir: Path, audit_id: str) -> None:
        """Open (lazily create) the trail for *audit_id* below *audit_dir*."""
        normalized = str(audit_id).strip()
        if not normalized or not set(normalized) <= _SAFE_ID_CHARS:
            raise AuditError(f"Invalid audit id {audit_id!r}.")
        self.audit_id = normalized
        self._path = audit_dir.expanduser() / f"{normalized}.jsonl"
        self._section: str | None = None
        self._enabled = True
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning("Audit trail %s disabled: %s", normalized, exc)
            self._enabled = False

    @property
    def path(self) -> Path:
        """Return the JSON-lines file backing this trail."""
        return self._path

    @property
    def section(self) -> str | None:
        """Return the title of the current section."""
        return self._section

    def create_new_section(self, title: str) -> None:
        """Start a new named section; subsequent entries belong to it."""
        self._section = title
        self._write("section", title)

    def append_info(self, message: str, *, context: Mapping[str, object] | None = None) -> None:
        """Append an informational entry."""
        self._write("info", message, context)

    def append_error(self, message: str, *, context: Mapping[str, object] | None = None) -> None:
        """Append an error entry."""
        self._write("error", message, context)

    def append_output(self, output: str) -> None:
        """Append raw command output."""
        self._write("output", output)

    def entries(self) -> list[dict[str, Any]]:
        """Return every entry recorded so far, oldest first."""
        if not self._path.exists():
            return []
        records: list[dict[str, Any]] = []
        with self._path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if line:
                    records.append(json.loads(line))
        return records

    def messages(self, kind: str | None = None) -> list[str]:
        """Return entry messages, optionally only those of *kind*."""
        return [
            str(entry["message"])
            for entry in self.entries()
            if kind is None or entry["kind"] == kind
        ]

    # ------------------------------------------------------------------
    def _write(
        self,
        kind: str,
        message: str,
        context: Mapping[str, object] | None = None,
    ) -> None:
        if not self._enabled:
            return
        record: dict[str, Any] = {
            "ts": _timestamp(),
            "audit_id": self.audit_id,
            "section": self._section,
            "kind": kind,
            "message": str(message),
        }
        if context:
            record["context"] = _json_safe(context)
        try:
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            logger.warning("Audit trail %s disabled after write failure: %s", self.audit_id, exc)
            self._enabled = False


def safe_audit_id(text: str) -> str:
    """Return *text* with characters unsafe for audit file names replaced."""
    cleaned = "".join(char if char in _SAFE_ID_CHARS else "-" for char in text.strip())
    return cleaned or "audit"


class AuditTrailFactory:
    """Open audit trails by id below a shared directory."""

    def __init__(self, audit_dir: Path) -> None:
        """Store the directory trails are written to."""
        self.audit_dir = audit_dir.expanduser()

    def __call__(self, audit_id: str) -> AuditTrail:
        """Return the audit trail for *audit_id*."""
        return AuditTrail(self.audit_dir, audit_id)


__all__ = ["AuditError", "AuditTrail", "AuditTrailFactory", "safe_audit_id"]
