"""Transport tests."""

import pytest

from flowcast.errors import TransportConnectionError
from flowcast.models import ConnectionEvent, ProgressEvent, TelemetryEvent
from flowcast.transports import decode_event, encode_event, get_transport
from flowcast.transports.inmemory import InMemoryTransport


@pytest.mark.asyncio
async def test_inmemory_transport_basic():
    """Test basic InMemoryTransport publish/subscribe."""
    transport = InMemoryTransport()
    event = ProgressEvent(workflow_id="wf-1", kind="stepProgress", step_id="a", progress=40)

    await transport.publish("test_topic", event)

    message_received = False
    async for raw_msg, received in transport.subscribe("test_topic"):
        assert isinstance(received, ProgressEvent)
        assert received.workflow_id == "wf-1"
        assert received.progress == 40

        await transport.ack(raw_msg)
        message_received = True
        break

    assert message_received


@pytest.mark.asyncio
async def test_inmemory_subscribe_respects_lifespan():
    transport = InMemoryTransport()
    received = [event async for _, event in transport.subscribe("empty", lifespan=0.2)]
    assert received == []


@pytest.mark.asyncio
async def test_inmemory_connect_failures():
    transport = InMemoryTransport(fail_connects=1)

    with pytest.raises(TransportConnectionError):
        await transport.connect()
    await transport.connect()

    assert transport.connected
    assert transport.connect_calls == 2


def test_decode_picks_model_by_kind():
    progress = decode_event(encode_event(ProgressEvent(workflow_id="w", kind="stepStarted")))
    connection = decode_event(encode_event(ConnectionEvent(kind="reconnectScheduled", delay=2.0)))
    telemetry = decode_event(encode_event(TelemetryEvent(data={"temperature": 2.5})))

    assert isinstance(progress, ProgressEvent)
    assert isinstance(connection, ConnectionEvent)
    assert connection.delay == 2.0
    assert isinstance(telemetry, TelemetryEvent)
    assert telemetry.data == {"temperature": 2.5}


def test_get_transport_rejects_unknown_backend(monkeypatch):
    monkeypatch.delenv("FLOWCAST_TRANSPORT", raising=False)
    with pytest.raises(ValueError):
        get_transport("carrier-pigeon")


def test_redis_transport_instantiation():
    pytest.importorskip("redis")
    from flowcast.transports.redis import RedisTransport

    transport = RedisTransport()
    assert transport.host == "localhost"
    assert transport.port == 6379


@pytest.mark.asyncio
async def test_inmemory_nack_redelivers_before_later_events():
    transport = InMemoryTransport()
    await transport.publish("jobs", ProgressEvent(workflow_id="wf-1", kind="stepStarted"))
    await transport.publish("jobs", ProgressEvent(workflow_id="wf-1", kind="stepCompleted"))

    seen = []
    rejected = False
    async for raw, received in transport.subscribe("jobs", lifespan=0.5):
        seen.append(received.kind)
        if not rejected:
            rejected = True
            await transport.nack(raw)
            continue
        await transport.ack(raw)
        if len(seen) == 3:
            break

    assert seen == ["stepStarted", "stepStarted", "stepCompleted"]
    assert transport.pending("jobs") == 0


@pytest.mark.asyncio
async def test_inmemory_nack_without_requeue_drops_delivery():
    transport = InMemoryTransport()
    await transport.publish("jobs", ProgressEvent(workflow_id="wf-1", kind="stepStarted"))

    async for raw, _ in transport.subscribe("jobs", lifespan=0.5):
        await transport.nack(raw, requeue=False)
        break

    assert transport.pending("jobs") == 0
