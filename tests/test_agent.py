"""Instance setup facade tests."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from bootagent.agent import InstanceSetup
from bootagent.audit import AuditTrailFactory
from bootagent.config import ConfigError, load_config
from bootagent.forwarder import RequestForwarder
from bootagent.models import BootBundle, InstanceState, LoginPolicy, OperationResult
from bootagent.state import InstanceStateStore


class DummyRpc:
    """RPC client that answers every boot request successfully."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    async def request(self, path: str, payload: object) -> Any:
        self.calls.append(path)
        if path == "/booter/get_repositories":
            return OperationResult.success({"audit_id": "audit-1", "repositories": []})
        if path == "/booter/get_boot_bundle":
            return OperationResult.success({"executables": []})
        if path == "/booter/get_login_policy":
            return OperationResult.error("not enabled")
        return OperationResult.success()

    async def query_tags(self, query: Any) -> object:
        return []


class DummyLoginManager:
    def update_policy(self, policy: LoginPolicy) -> str:
        return "ok"


class DummyExecutor:
    def run(self, bundle: BootBundle) -> bool:
        return True


def _setup(tmp_path: Path, rpc: DummyRpc | None = None, **kwargs: Any) -> InstanceSetup:
    return InstanceSetup(
        "agent-1",
        store=InstanceStateStore(tmp_path / "instance_state.yml"),
        rpc=rpc or DummyRpc(),
        audit_factory=AuditTrailFactory(tmp_path / "audits"),
        login_manager=DummyLoginManager(),
        executor=DummyExecutor(),
        **kwargs,
    )


def test_start_boots_a_new_instance(tmp_path: Path) -> None:
    """A booting instance runs the sequence to operational."""
    rpc = DummyRpc()
    setup = _setup(tmp_path, rpc)

    assert setup.report_state() == OperationResult.success("booting")

    async def scenario() -> InstanceState:
        task = setup.start()
        assert task is not None
        return await task

    assert asyncio.run(scenario()) is InstanceState.OPERATIONAL
    assert setup.report_state() == OperationResult.success("operational")
    assert rpc.calls[0] == "/booter/set_r_s_version"


def test_start_is_a_no_op_once_operational(tmp_path: Path) -> None:
    """A relaunched operational instance does not boot again."""
    store = InstanceStateStore(tmp_path / "instance_state.yml")
    store.init("agent-1")
    store.value = InstanceState.OPERATIONAL
    rpc = DummyRpc()
    setup = _setup(tmp_path, rpc)

    async def scenario() -> object:
        return setup.start()

    assert asyncio.run(scenario()) is None
    assert rpc.calls == []


def test_requests_go_through_the_forwarder(tmp_path: Path) -> None:
    """The sequencer talks to the core site via the offline-aware forwarder."""
    setup = _setup(tmp_path)

    assert isinstance(setup.forwarder, RequestForwarder)
    assert setup.sequencer.rpc is setup.forwarder


def test_disconnect_defers_boot_requests(tmp_path: Path) -> None:
    """Boot requests wait while offline and resume after reconnecting."""
    rpc = DummyRpc()
    setup = _setup(tmp_path, rpc, grace_period=0.0)

    async def scenario() -> InstanceState:
        assert setup.connection_status("disconnected") is True
        await asyncio.sleep(0.01)
        assert setup.forwarder.offline is True

        task = setup.start()
        assert task is not None
        await asyncio.sleep(0.05)
        assert rpc.calls == []
        assert setup.report_state() == OperationResult.success("booting")

        setup.connection_status("connected")
        return await asyncio.wait_for(task, timeout=5)

    assert asyncio.run(scenario()) is InstanceState.OPERATIONAL


def test_shutdown_without_start_returns_state(tmp_path: Path) -> None:
    """Shutdown before start simply reports the persisted state."""
    setup = _setup(tmp_path)

    assert asyncio.run(setup.shutdown()) is InstanceState.BOOTING


def test_from_config_requires_identity(tmp_path: Path) -> None:
    """Booting needs an agent identity."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    with pytest.raises(ConfigError, match="agent_identity"):
        InstanceSetup.from_config(
            config,
            rpc=DummyRpc(),
            login_manager=DummyLoginManager(),
            executor=DummyExecutor(),
        )


def test_from_config_wires_paths_and_tunables(tmp_path: Path) -> None:
    """Configuration drives the state file, audit directory and timings."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={
            "BOOTAGENT_AGENT_IDENTITY": "agent-7",
            "BOOTAGENT_STATE_DIR": str(tmp_path / "state"),
            "BOOTAGENT_BOOT__MISSING_INPUTS_DELAY": "3",
            "BOOTAGENT_CONNECTIVITY__GRACE_PERIOD": "4",
        },
    )

    setup = InstanceSetup.from_config(
        config,
        rpc=DummyRpc(),
        login_manager=DummyLoginManager(),
        executor=DummyExecutor(),
    )

    assert setup.identity == "agent-7"
    assert setup.store.path == tmp_path / "state" / "instance_state.yml"
    assert setup.store.identity == "agent-7"
    assert setup.sequencer.missing_inputs_delay == 3.0
    assert setup.monitor.grace_period == 4.0


def test_crashed_boot_task_is_logged(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    """An exception escaping the boot task is retrieved and logged."""
    setup = _setup(tmp_path)

    async def crash() -> InstanceState:
        raise RuntimeError("sequencer exploded")

    setup.sequencer.run = crash  # type: ignore[method-assign]

    async def scenario() -> None:
        task = setup.start()
        assert task is not None
        await asyncio.wait([task])
        await asyncio.sleep(0)

    with caplog.at_level("ERROR", logger="bootagent.agent"):
        asyncio.run(scenario())

    records = [record for record in caplog.records if record.name == "bootagent.agent"]
    assert [record.getMessage() for record in records] == [
        "Boot sequence crashed: sequencer exploded"
    ]
    assert records[0].exc_info is not None
