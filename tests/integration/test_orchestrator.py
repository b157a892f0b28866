"""End-to-end orchestration over the in-memory transport."""

import asyncio

import pytest

from flowcast.config import FlowcastConfig
from flowcast.connection import ConnectionManager
from flowcast.handlers import register_simulated_handlers
from flowcast.models import ProgressEvent, StepDefinition, StepStatus, WorkflowStatus
from flowcast.registry import StepHandlerRegistry
from flowcast.runtime import Orchestrator
from flowcast.telemetry import RandomWalkTelemetry
from flowcast.transports.inmemory import InMemoryTransport


def steps(fail_second=False):
    fast = {"duration": 0, "ticks": 2}
    return [
        StepDefinition(id="fetch", name="Fetch", kind="dataStore", params=fast),
        StepDefinition(
            id="train",
            name="Train",
            kind="aiModelCall",
            params={**fast, "fail": fail_second, "prompt": "classify the inputs"},
            depends_on={"fetch"},
        ),
        StepDefinition(
            id="publish",
            name="Publish",
            kind="blockchainWrite",
            params=fast,
            depends_on={"fetch", "train"},
        ),
    ]


def make_orchestrator(transport=None, connection=None):
    transport = transport or InMemoryTransport()
    return Orchestrator(
        config=FlowcastConfig(),
        registry=register_simulated_handlers(StepHandlerRegistry()),
        transport=transport,
        connection=connection,
    )


async def drain(transport, topic, count):
    received = []
    async for raw, event in transport.subscribe(topic, lifespan=1.0):
        received.append(event)
        await transport.ack(raw)
        if len(received) == count:
            break
    return received


@pytest.mark.asyncio
async def test_progress_is_forwarded_to_transport_topic():
    transport = InMemoryTransport()
    orchestrator = make_orchestrator(transport)
    local = []
    orchestrator.broadcaster.subscribe("*", local.append)

    assert await orchestrator.start() is True
    result = await orchestrator.submit("pipeline", steps())
    await orchestrator.stop()

    assert result.status == WorkflowStatus.COMPLETED
    assert result.outputs["train"] == {"model": "default", "tokens": 3}
    assert result.outputs["publish"]["tx_hash"].startswith("0x")

    remote = await drain(transport, "flowcast.progress", len(local))
    assert [e.kind for e in remote] == [e.kind for e in local]
    assert remote[-1].kind == "workflowCompleted"
    assert all(isinstance(e, ProgressEvent) for e in remote)


@pytest.mark.asyncio
async def test_forwarding_suppressed_while_transport_down():
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    transport = InMemoryTransport(fail_connects=10)
    connection = ConnectionManager(transport, max_reconnect_attempts=2, sleep=fake_sleep)
    orchestrator = make_orchestrator(transport, connection)
    local = []
    orchestrator.broadcaster.subscribe("*", local.append)

    assert await orchestrator.start() is False
    await connection.wait_idle()
    assert connection.state.gave_up
    assert delays == [2.0, 4.0]

    result = await orchestrator.submit("offline", steps())
    await orchestrator.stop()

    assert result.status == WorkflowStatus.COMPLETED
    assert local[-1].kind == "workflowCompleted"
    assert orchestrator.broadcaster.suppressed == len(local)
    assert transport.pending("flowcast.progress") == 0


@pytest.mark.asyncio
async def test_retry_runs_a_fresh_copy():
    orchestrator = make_orchestrator()
    await orchestrator.start()

    failed = await orchestrator.submit("flaky", steps(fail_second=True))
    assert failed.status == WorkflowStatus.FAILED
    assert failed.failed_step_id == "train"

    original = await orchestrator.store.get(failed.workflow_id)
    assert original.runtime["publish"].status == StepStatus.IDLE

    retried = await orchestrator.retry(failed.workflow_id)
    await orchestrator.stop()

    assert retried.workflow_id != failed.workflow_id
    assert retried.status == WorkflowStatus.FAILED
    assert len(await orchestrator.store.list_all()) == 2


@pytest.mark.asyncio
async def test_session_events_stay_off_default_broadcaster():
    orchestrator = make_orchestrator()
    default_events, session_events = [], []
    orchestrator.broadcaster.subscribe("*", default_events.append)
    orchestrator.hub.for_session("tab-7").subscribe("*", session_events.append)
    await orchestrator.start()

    result = await orchestrator.submit("scoped", steps(), session_id="tab-7")
    await orchestrator.stop()

    assert result.succeeded
    assert default_events == []
    assert session_events[-1].kind == "workflowCompleted"


@pytest.mark.asyncio
async def test_telemetry_flows_through_default_broadcaster():
    orchestrator = make_orchestrator()
    orchestrator.config.telemetry.interval = 0.001
    await orchestrator.start(telemetry=RandomWalkTelemetry(seed=1))
    await asyncio.sleep(0.01)

    await orchestrator.telemetry.stop()
    points = orchestrator.telemetry.latest(5)
    await orchestrator.stop()

    assert points
    assert {"temperature", "pressure", "signal"} <= set(points[0])
