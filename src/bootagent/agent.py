"""Instance setup facade.

:class:`InstanceSetup` is what the agent process talks to: it loads the
persisted state, starts the boot sequence when the instance is still
booting, answers state queries and relays broker connectivity changes.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from concurrent.futures import Executor

from .audit import AuditTrailFactory
from .boot.collaborators import (
    AuditFactory,
    BundleExecutor,
    LoginPolicyApplier,
    PackageIndexRefresher,
    RepositoryConfigurator,
    RpcClient,
)
from .boot.sequencer import BootSequencer
from .config import MISSING_INPUTS_DELAY, RECONNECT_GRACE_PERIOD, AppConfig, ConfigError
from .connectivity import ConnectionStatus, ConnectivityMonitor
from .forwarder import RequestForwarder
from .models import InstanceState, OperationResult
from .state import InstanceStateStore

logger = logging.getLogger(__name__)


class InstanceSetup:
    """Own the boot lifecycle of one instance."""

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
        grace_period: float = RECONNECT_GRACE_PERIOD,
        worker: Executor | None = None,
    ) -> None:
        """Initialise the persisted state for *identity* and wire the sequencer."""
        self.identity = identity
        self.store = store
        self.forwarder = RequestForwarder(rpc)
        self.store.init(identity)
        self.sequencer = BootSequencer(
            identity,
            store=store,
            rpc=self.forwarder,
            audit_factory=audit_factory,
            login_manager=login_manager,
            executor=executor,
            configurators=configurators,
            index_refresher=index_refresher,
            protocol_version=protocol_version,
            missing_inputs_delay=missing_inputs_delay,
            worker=worker,
        )
        self.monitor = ConnectivityMonitor(self.forwarder, grace_period=grace_period)
        self._task: asyncio.Task[InstanceState] | None = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        rpc: RpcClient,
        login_manager: LoginPolicyApplier,
        executor: BundleExecutor,
        configurators: Mapping[str, RepositoryConfigurator] | None = None,
        index_refresher: PackageIndexRefresher | None = None,
        worker: Executor | None = None,
    ) -> InstanceSetup:
        """Build an instance setup from resolved configuration."""
        if not config.agent_identity:
            raise ConfigError("agent_identity must be configured to boot the instance.")
        return cls(
            config.agent_identity,
            store=InstanceStateStore(config.state_file),
            rpc=rpc,
            audit_factory=AuditTrailFactory(config.audit_dir),
            login_manager=login_manager,
            executor=executor,
            configurators=configurators,
            index_refresher=index_refresher,
            protocol_version=config.protocol_version,
            missing_inputs_delay=config.boot.missing_inputs_delay,
            grace_period=config.connectivity.grace_period,
            worker=worker,
        )

    @property
    def task(self) -> asyncio.Task[InstanceState] | None:
        """Return the running boot task, if one was started."""
        return self._task

    def start(self) -> asyncio.Task[InstanceState] | None:
        """Schedule the boot sequence when the instance is still booting."""
        state = self.store.value
        if state is not InstanceState.BOOTING:
            logger.info("Instance is %s, not booting", state.value)
            return None
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.sequencer.run())
            self._task.add_done_callback(_log_task_failure)
        return self._task

    def report_state(self) -> OperationResult:
        """Return the current instance state."""
        return OperationResult.success(self.store.value.value)

    def connection_status(self, status: ConnectionStatus | str) -> bool:
        """Relay a broker connection status change."""
        return self.monitor.connection_status(status)

    async def shutdown(self) -> InstanceState:
        """Stop the boot sequence at its next wait point and return the state."""
        self.sequencer.request_shutdown()
        if self._task is not None:
            await self._task
        return self.store.value


def _log_task_failure(task: asyncio.Task[InstanceState]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Boot sequence crashed: %s", exc, exc_info=exc)


__all__ = ["InstanceSetup"]
