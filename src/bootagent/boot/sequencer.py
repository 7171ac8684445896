"""Boot step sequencer.

Drives a freshly launched instance through the boot steps, one remote call
at a time::

    SETTING_VERSION -> ENABLING_LOGIN -> CONFIGURING_REPOS -> PREPARING_BUNDLE
        -> [WAITING_FOR_INPUTS]* -> RUNNING_BUNDLE -> OPERATIONAL

Any step may strand the instance instead. Each step has one handler that
awaits its remote call and returns the next step; failures are raised as
:class:`StepFailure` and converted into a strand at the step boundary, so
nothing escapes :meth:`BootSequencer.run`. All state mutation happens on the
event loop; only the bundle executor runs in a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from concurrent.futures import Executor
from enum import Enum
from typing import Any

from ..audit import AuditTrail, safe_audit_id
from ..config import MISSING_INPUTS_DELAY
from ..models import (
    BootBundle,
    Executable,
    InstanceState,
    LoginPolicy,
    OperationResult,
    RepositoryList,
    executable_from_payload,
)
from ..state import InstanceStateStore, StateStoreError
from .collaborators import (
    AuditFactory,
    BundleExecutor,
    LoginPolicyApplier,
    PackageIndexRefresher,
    RepositoryConfigurator,
    RpcClient,
)
from .repositories import configure_repositories

logger = logging.getLogger(__name__)


class BootStep(str, Enum):
    """States of the boot state machine."""

    SETTING_VERSION = "setting_version"
    ENABLING_LOGIN = "enabling_login"
    CONFIGURING_REPOS = "configuring_repos"
    PREPARING_BUNDLE = "preparing_bundle"
    WAITING_FOR_INPUTS = "waiting_for_inputs"
    RUNNING_BUNDLE = "running_bundle"
    OPERATIONAL = "operational"
    STRANDED = "stranded"
    SHUTDOWN = "shutdown"

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` when no further step follows."""
        return self in _TERMINAL_STEPS


_TERMINAL_STEPS = frozenset({BootStep.OPERATIONAL, BootStep.STRANDED, BootStep.SHUTDOWN})


class StepFailure(Exception):
    """A boot step failed; the instance must be stranded."""

    def __init__(self, message: str, result: OperationResult | None = None) -> None:
        """Store the strand message and the result that caused it."""
        super().__init__(message)
        self.message = message
        self.result = result


class BootSequencer:
    """Run the boot sequence for one agent identity."""

    def __init__(
        self,
        identity: str,
        *,
        store: InstanceStateStore,
        rpc: RpcClient,
        audit_factory: AuditFactory,
        login_manager: LoginPolicyApplier,
        executor: BundleExecutor,
        configurators: Mapping[str, RepositoryConfigurator] | None = None,
        index_refresher: PackageIndexRefresher | None = None,
        protocol_version: int = 6,
        missing_inputs_delay: float = MISSING_INPUTS_DELAY,
        worker: Executor | None = None,
    ) -> None:
        """Wire the sequencer to its collaborators; nothing runs until :meth:`run`."""
        self.identity = identity
        self.store = store
        self.rpc = rpc
        self.protocol_version = protocol_version
        self.missing_inputs_delay = missing_inputs_delay
        self._audit_factory = audit_factory
        self._login_manager = login_manager
        self._executor = executor
        self._configurators = dict(configurators or {})
        self._index_refresher = index_refresher
        self._worker = worker
        self._shutdown = asyncio.Event()

        self.step: BootStep | None = None
        self.history: list[BootStep] = []
        self.auditor: AuditTrail | None = None
        self.audit_id: str | None = None
        self.bundle: BootBundle | None = None
        self.strand_message: str | None = None
        self._handlers: dict[BootStep, Callable[[], Awaitable[BootStep]]] = {
            BootStep.SETTING_VERSION: self._set_version,
            BootStep.ENABLING_LOGIN: self._enable_login,
            BootStep.CONFIGURING_REPOS: self._configure_repositories,
            BootStep.PREPARING_BUNDLE: self._prepare_bundle,
            BootStep.WAITING_FOR_INPUTS: self._retrieve_missing_inputs,
            BootStep.RUNNING_BUNDLE: self._run_bundle,
        }

    def request_shutdown(self) -> None:
        """Stop waiting for missing inputs; the instance stays ``booting``."""
        self._shutdown.set()

    async def run(self) -> InstanceState:
        """Boot if and only if the persisted state is ``booting``."""
        state = self.store.value
        if state is not InstanceState.BOOTING:
            logger.info("Skipping boot sequence: instance state is %s", state.value)
            return state

        self.audit_id = f"boot-{safe_audit_id(self.identity)}"
        self.auditor = self._audit_factory(self.audit_id)

        step = BootStep.SETTING_VERSION
        while not step.is_terminal:
            self.step = step
            self.history.append(step)
            logger.info("Boot step: %s", step.value)
            try:
                step = await self._handlers[step]()
            except StepFailure as failure:
                self.strand(failure.message, failure.result)
                step = BootStep.STRANDED
            except StateStoreError as exc:
                self.strand("Failed to persist instance state", OperationResult.error(str(exc)))
                step = BootStep.STRANDED
        self.step = step
        self.history.append(step)
        return self.store.value

    def strand(self, message: str, result: OperationResult | None = None) -> None:
        """Mark the instance stranded and audit why.

        A state file that cannot be written is logged; the in-memory step still
        becomes ``stranded`` and the audit trail still records the reason.
        """
        detail = result.describe() if result is not None else None
        full_message = f"{message}: {detail}" if detail else message
        self.strand_message = full_message
        logger.error("Instance stranded: %s", full_message)
        try:
            self.store.value = InstanceState.STRANDED
        except StateStoreError as exc:
            logger.error("Could not persist stranded state: %s", exc)
        if self.auditor is not None:
            self.auditor.append_error(full_message)

    # ------------------------------------------------------------------
    # Step handlers
    # ------------------------------------------------------------------
    async def _set_version(self) -> BootStep:
        result = await self._request(
            "/booter/set_r_s_version",
            {"agent_identity": self.identity, "r_s_version": self.protocol_version},
        )
        if not result.ok:
            raise StepFailure("Failed to set_r_s_version", result)
        return BootStep.ENABLING_LOGIN

    async def _enable_login(self) -> BootStep:
        # Login failures are audited but never strand the instance.
        result = await self._request("/booter/get_login_policy", {"agent_identity": self.identity})
        if not result.ok:
            logger.error("Could not get login policy: %s", result.describe())
            return BootStep.CONFIGURING_REPOS
        try:
            policy = LoginPolicy.from_payload(result.content)
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("Could not parse login policy: %s", exc)
            return BootStep.CONFIGURING_REPOS

        auditor = self._audit_factory(safe_audit_id(policy.audit_id))
        outcome = self._apply_login_policy(policy)
        if outcome.ok:
            auditor.create_new_section("Managed login enabled")
            auditor.append_info(outcome.describe() or "")
        else:
            auditor.create_new_section("Failed to enable managed login")
            auditor.append_error(f"Error applying policy: {outcome.describe()}")
        return BootStep.CONFIGURING_REPOS

    async def _configure_repositories(self) -> BootStep:
        result = await self._request("/booter/get_repositories", self.identity)
        if not result.ok:
            raise StepFailure("Failed to retrieve software repositories", result)
        try:
            repositories = RepositoryList.from_payload(result.content)
        except (KeyError, TypeError, ValueError) as exc:
            raise StepFailure(
                "Failed to retrieve software repositories",
                OperationResult.error(f"invalid response: {exc}"),
            ) from exc

        self.audit_id = repositories.audit_id
        self.auditor = self._audit_factory(safe_audit_id(repositories.audit_id))
        audit = "Using the following software repositories:\n"
        for repository in repositories.repositories:
            audit += f"  - {repository}\n"
        self.auditor.create_new_section("Software repositories configured")
        self.auditor.append_info(audit)

        configure_repositories(repositories.repositories, self._configurators)

        if self._index_refresher is not None:
            refreshed = await self._in_worker(
                self._refresh_package_index, self._index_refresher
            )
            if refreshed.ok and refreshed.content:
                self.auditor.append_output(str(refreshed.content))
            elif not refreshed.ok:
                logger.error("Package index refresh failed: %s", refreshed.describe())
        return BootStep.PREPARING_BUNDLE

    async def _prepare_bundle(self) -> BootStep:
        self.store.startup_tags = await self._query_startup_tags()

        result = await self._request(
            "/booter/get_boot_bundle",
            {"agent_identity": self.identity, "audit_id": self.audit_id},
        )
        if not result.ok:
            message = "Failed to retrieve boot scripts"
            detail = result.describe()
            if detail:
                message += f": {detail}"
            raise StepFailure("Failed to retrieve missing inputs", OperationResult.error(message))
        try:
            self.bundle = BootBundle.from_payload(result.content)
        except (KeyError, TypeError, ValueError) as exc:
            raise StepFailure(
                "Failed to retrieve missing inputs",
                OperationResult.error(f"Failed to retrieve boot scripts: invalid bundle: {exc}"),
            ) from exc

        if self.bundle.ready:
            return BootStep.RUNNING_BUNDLE
        return BootStep.WAITING_FOR_INPUTS

    async def _retrieve_missing_inputs(self) -> BootStep:
        # Retries forever: inputs are expected to show up eventually.
        bundle = self._require_bundle()
        scripts_ids, recipes_ids = bundle.pending_ids()
        result = await self._request(
            "/booter/get_missing_attributes",
            {
                "agent_identity": self.identity,
                "scripts_ids": scripts_ids,
                "recipes_ids": recipes_ids,
            },
        )
        if not result.ok:
            raise StepFailure("Failed to retrieve missing inputs", result)
        try:
            resolved = _parse_executables(result.content)
        except (KeyError, TypeError, ValueError) as exc:
            raise StepFailure(
                "Failed to retrieve missing inputs",
                OperationResult.error(f"invalid response: {exc}"),
            ) from exc

        bundle.merge_inputs(resolved)
        pending = bundle.pending()
        if not pending:
            return BootStep.RUNNING_BUNDLE

        titles = ", ".join(executable.title for executable in pending)
        if self.auditor is not None:
            self.auditor.append_info(f"Missing inputs for {titles}, waiting...")
        if await self._wait_for_shutdown(self.missing_inputs_delay):
            logger.info("Shutdown requested while waiting for missing inputs")
            return BootStep.SHUTDOWN
        return BootStep.WAITING_FOR_INPUTS

    async def _run_bundle(self) -> BootStep:
        bundle = self._require_bundle()
        # Boot always runs a full converge.
        bundle.full_converge = True
        outcome = await self._in_worker(self._execute_bundle, bundle)
        if not outcome.ok:
            raise StepFailure("Failed to run boot sequence", outcome)
        self.store.value = InstanceState.OPERATIONAL
        logger.info("Boot sequence completed, instance is operational")
        return BootStep.OPERATIONAL

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _request(self, path: str, payload: object) -> OperationResult:
        try:
            response = await self.rpc.request(path, payload)
        except Exception as exc:
            logger.error("Request %s failed: %s: %s", path, type(exc).__name__, exc)
            return OperationResult.error(str(exc) or type(exc).__name__)
        return OperationResult.from_payload(response)

    async def _query_startup_tags(self) -> list[str]:
        try:
            response = await self.rpc.query_tags({"agent_ids": [self.identity]})
        except Exception as exc:
            logger.warning("Tag query failed, continuing without startup tags: %s", exc)
            return []
        return _flatten_tags(response)

    async def _in_worker(self, func: Callable[..., OperationResult], *args: Any) -> OperationResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._worker, func, *args)

    async def _wait_for_shutdown(self, delay: float) -> bool:
        if self._shutdown.is_set():
            return True
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    def _apply_login_policy(self, policy: LoginPolicy) -> OperationResult:
        try:
            audit = self._login_manager.update_policy(policy)
        except Exception as exc:
            logger.exception("Failed to apply login policy")
            return OperationResult.error(str(exc) or type(exc).__name__)
        return OperationResult.success(audit)

    def _refresh_package_index(self, refresher: PackageIndexRefresher) -> OperationResult:
        try:
            output = refresher()
        except Exception as exc:
            return OperationResult.error(str(exc) or type(exc).__name__)
        return OperationResult.success(output)

    def _execute_bundle(self, bundle: BootBundle) -> OperationResult:
        # Runs in the worker thread: must not touch the store or audit trail.
        try:
            outcome = self._executor.run(bundle)
        except Exception as exc:
            logger.exception("Boot bundle raised")
            return OperationResult.error(str(exc) or "Failed to run boot bundle")
        if outcome is None or outcome is True:
            return OperationResult.success()
        if outcome is False:
            return OperationResult.error("Failed to run boot bundle")
        return OperationResult.from_payload(outcome)

    def _require_bundle(self) -> BootBundle:
        if self.bundle is None:
            raise StepFailure("Failed to retrieve missing inputs", OperationResult.error("no bundle"))
        return self.bundle


def _parse_executables(content: object) -> list[Executable]:
    if content is None:
        return []
    if isinstance(content, (str, bytes)) or not isinstance(content, (list, tuple)):
        raise TypeError("expected a list of executables")
    return [
        item if isinstance(item, Executable) else executable_from_payload(item)
        for item in content
    ]


def _flatten_tags(response: object) -> list[str]:
    """Normalise a tag query response into a flat list of tags."""
    if response is None:
        return []
    if isinstance(response, OperationResult):
        return _flatten_tags(response.content) if response.ok else []
    if isinstance(response, Mapping):
        if "results" in response:
            return _flatten_tags(response["results"])
        if "tags" in response:
            return _flatten_tags(response["tags"])
        tags: list[str] = []
        for value in response.values():
            tags.extend(_flatten_tags(value))
        return tags
    if isinstance(response, str):
        return [response]
    if isinstance(response, (list, tuple, set)):
        tags = []
        for item in response:
            tags.extend(_flatten_tags(item))
        return tags
    return [str(response)]


__all__ = ["BootSequencer", "BootStep", "StepFailure"]
