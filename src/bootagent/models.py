"""Data models exchanged between the boot sequencer and its collaborators.

Remote responses arrive as plain mappings (decoded by the transport). The
``from_payload`` constructors normalise them into typed objects so the
sequencer never inspects raw dictionaries.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any


class InstanceState(str, Enum):
    """Persisted lifecycle value of the instance."""

    BOOTING = "booting"
    OPERATIONAL = "operational"
    STRANDED = "stranded"


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of a remote call: success with content, or failure with a message."""

    ok: bool
    content: Any = None

    @classmethod
    def success(cls, content: Any = None) -> OperationResult:
        """Build a successful result."""
        return cls(ok=True, content=content)

    @classmethod
    def error(cls, content: Any = None) -> OperationResult:
        """Build a failed result."""
        return cls(ok=False, content=content)

    @classmethod
    def from_payload(cls, payload: object) -> OperationResult:
        """Normalise a transport response into an :class:`OperationResult`.

        Accepts an existing result, a ``{"status": ..., "content": ...}``
        envelope, ``None`` (no response at all, treated as a failure) or any
        other value, which is taken as successful content.
        """
        if isinstance(payload, OperationResult):
            return payload
        if payload is None:
            return cls.error("No response received")
        if isinstance(payload, Mapping) and "status" in payload:
            status = str(payload["status"]).lower()
            content = payload.get("content")
            return cls(ok=status in {"success", "ok"}, content=content)
        return cls.success(payload)

    def describe(self) -> str | None:
        """Return the content as an audit-friendly string, or ``None``."""
        if self.content is None or self.content == "":
            return None
        return str(self.content)


@dataclass(slots=True)
class Executable:
    """A single convergence unit of a boot bundle."""

    id: str
    nickname: str = ""
    ready: bool = True

    @property
    def title(self) -> str:
        """Human-readable name used in audit messages."""
        return self.nickname or str(self.id)

    def merge(self, other: Executable) -> None:
        """Copy the resolved inputs of *other* and mark this executable ready."""
        self.ready = True


@dataclass(slots=True)
class ScriptExecutable(Executable):
    """Script executable configured through environment parameters."""

    parameters: dict[str, Any] = field(default_factory=dict)

    def merge(self, other: Executable) -> None:
        self.ready = True
        if isinstance(other, ScriptExecutable):
            self.parameters = dict(other.parameters)


@dataclass(slots=True)
class RecipeExecutable(Executable):
    """Recipe executable configured through node attributes."""

    attributes: dict[str, Any] = field(default_factory=dict)

    def merge(self, other: Executable) -> None:
        self.ready = True
        if isinstance(other, RecipeExecutable):
            self.attributes = dict(other.attributes)


def executable_from_payload(payload: Mapping[str, Any]) -> Executable:
    """Build the executable variant described by *payload*.

    The variant is selected by ``type`` (``script`` or ``recipe``); mappings
    carrying ``parameters`` default to scripts, everything else to recipes.
    """
    kind = str(payload.get("type") or ("script" if "parameters" in payload else "recipe"))
    common = {
        "id": str(payload["id"]),
        "nickname": str(payload.get("nickname") or ""),
        "ready": bool(payload.get("ready", True)),
    }
    if kind.lower() == "script":
        return ScriptExecutable(**common, parameters=dict(payload.get("parameters") or {}))
    if kind.lower() == "recipe":
        return RecipeExecutable(**common, attributes=dict(payload.get("attributes") or {}))
    raise ValueError(f"Unknown executable type '{kind}'.")


@dataclass(slots=True)
class BootBundle:
    """Ordered executables to converge during boot."""

    executables: list[Executable] = field(default_factory=list)
    audit_id: str | None = None
    full_converge: bool = False

    @classmethod
    def from_payload(cls, payload: object) -> BootBundle:
        """Build a bundle from a remote response."""
        if isinstance(payload, BootBundle):
            return payload
        if not isinstance(payload, Mapping):
            raise ValueError("Boot bundle payload must be a mapping.")
        raw = payload.get("executables") or []
        executables = [
            item if isinstance(item, Executable) else executable_from_payload(item)
            for item in raw
        ]
        audit_id = payload.get("audit_id")
        return cls(
            executables=executables,
            audit_id=str(audit_id) if audit_id is not None else None,
            full_converge=bool(payload.get("full_converge", False)),
        )

    @property
    def ready(self) -> bool:
        """Return ``True`` when every executable has all of its inputs."""
        return all(executable.ready for executable in self.executables)

    def pending(self) -> list[Executable]:
        """Return the executables still waiting for inputs."""
        return [executable for executable in self.executables if not executable.ready]

    def pending_ids(self) -> tuple[list[str], list[str]]:
        """Return ``(script_ids, recipe_ids)`` of the pending executables."""
        scripts = [e.id for e in self.pending() if isinstance(e, ScriptExecutable)]
        recipes = [e.id for e in self.pending() if isinstance(e, RecipeExecutable)]
        return scripts, recipes

    def merge_inputs(self, resolved: Iterable[Executable]) -> None:
        """Merge executables returned by a missing-inputs query into the bundle."""
        for update in resolved:
            for executable in self.executables:
                if executable.id == update.id and type(executable) is type(update):
                    executable.merge(update)
                    break


@dataclass(frozen=True, slots=True)
class RepositoryDescriptor:
    """Software repository to mirror before the bundle runs."""

    name: str
    base_urls: tuple[str, ...] = ()
    frozen_date: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> RepositoryDescriptor:
        """Build a descriptor from a remote mapping."""
        urls = payload.get("base_urls") or ()
        if isinstance(urls, str):
            urls = (urls,)
        frozen = payload.get("frozen_date")
        return cls(
            name=str(payload["name"]),
            base_urls=tuple(str(url) for url in urls),
            frozen_date=str(frozen) if frozen else None,
        )

    def mirror_date(self) -> str | None:
        """Return the mirror snapshot to use as ``YYYYMMDD``.

        The snapshot for the frozen day itself may not be generated yet, so
        the day before is used.
        """
        if not self.frozen_date:
            return None
        frozen = date.fromisoformat(self.frozen_date[:10])
        return (frozen - timedelta(days=1)).strftime("%Y%m%d")

    def __str__(self) -> str:
        urls = ", ".join(self.base_urls) or "no mirrors"
        frozen = f" (frozen {self.frozen_date})" if self.frozen_date else ""
        return f"{self.name}: {urls}{frozen}"


@dataclass(frozen=True, slots=True)
class RepositoryList:
    """Repositories response: descriptors plus the audit trail to report into."""

    repositories: tuple[RepositoryDescriptor, ...]
    audit_id: str

    @classmethod
    def from_payload(cls, payload: object) -> RepositoryList:
        """Build the repository list from a remote response."""
        if isinstance(payload, RepositoryList):
            return payload
        if not isinstance(payload, Mapping):
            raise ValueError("Repositories payload must be a mapping.")
        raw: Sequence[Any] = payload.get("repositories") or ()
        return cls(
            repositories=tuple(
                item if isinstance(item, RepositoryDescriptor)
                else RepositoryDescriptor.from_payload(item)
                for item in raw
            ),
            audit_id=str(payload["audit_id"]),
        )


@dataclass(frozen=True, slots=True)
class LoginPolicy:
    """Managed login policy handed to the login-policy applier."""

    audit_id: str
    users: tuple[Mapping[str, Any], ...] = ()
    exclusive: bool = False

    @classmethod
    def from_payload(cls, payload: object) -> LoginPolicy:
        """Build a login policy from a remote response."""
        if isinstance(payload, LoginPolicy):
            return payload
        if not isinstance(payload, Mapping):
            raise ValueError("Login policy payload must be a mapping.")
        return cls(
            audit_id=str(payload["audit_id"]),
            users=tuple(payload.get("users") or ()),
            exclusive=bool(payload.get("exclusive", False)),
        )


__all__ = [
    "BootBundle",
    "Executable",
    "InstanceState",
    "LoginPolicy",
    "OperationResult",
    "RecipeExecutable",
    "RepositoryDescriptor",
    "RepositoryList",
    "ScriptExecutable",
    "executable_from_payload",
]
