"""Workflow store tests."""

import asyncio

import pytest

from flowcast.errors import WorkflowNotFoundError, WorkflowValidationError
from flowcast.models import StepDefinition, StepStatus, WorkflowStatus
from flowcast.store import WorkflowStore


def step(step_id: str, *deps: str) -> StepDefinition:
    return StepDefinition(id=step_id, name=step_id, kind="noop", depends_on=set(deps))


@pytest.mark.asyncio
async def test_create_initializes_idle_runtime():
    store = WorkflowStore()
    wf = await store.create("pipeline", [step("a"), step("b", "a")], session_id="s1")

    assert wf.id
    assert wf.status == WorkflowStatus.IDLE
    assert wf.session_id == "s1"
    assert wf.current_step_id is None
    assert set(wf.runtime) == {"a", "b"}
    for state in wf.runtime.values():
        assert state.status == StepStatus.IDLE
        assert state.progress == 0
    assert wf.id in store
    assert len(store) == 1


@pytest.mark.asyncio
async def test_create_rejects_invalid_graph_without_storing():
    store = WorkflowStore()
    with pytest.raises(WorkflowValidationError) as exc_info:
        await store.create("broken", [step("a", "a")])

    assert exc_info.value.errors[0].code == "self_dependency"
    assert await store.list_all() == []


@pytest.mark.asyncio
async def test_get_returns_isolated_snapshot():
    store = WorkflowStore()
    wf = await store.create("pipeline", [step("a")])

    snapshot = await store.get(wf.id)
    snapshot.status = WorkflowStatus.FAILED
    snapshot.runtime["a"].progress = 80

    fresh = await store.get(wf.id)
    assert fresh.status == WorkflowStatus.IDLE
    assert fresh.runtime["a"].progress == 0


@pytest.mark.asyncio
async def test_get_unknown_returns_none_and_require_raises():
    store = WorkflowStore()
    assert await store.get("nope") is None
    with pytest.raises(WorkflowNotFoundError):
        await store.require("nope")


@pytest.mark.asyncio
async def test_mutate_applies_changes():
    store = WorkflowStore()
    wf = await store.create("pipeline", [step("a")])

    def start(instance):
        instance.status = WorkflowStatus.RUNNING
        instance.current_step_id = "a"

    updated = await store.mutate(wf.id, start)
    assert updated.status == WorkflowStatus.RUNNING
    assert (await store.get(wf.id)).current_step_id == "a"


@pytest.mark.asyncio
async def test_mutate_failure_leaves_state_untouched():
    store = WorkflowStore()
    wf = await store.create("pipeline", [step("a")])

    def broken(instance):
        instance.status = WorkflowStatus.RUNNING
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError):
        await store.mutate(wf.id, broken)
    assert (await store.get(wf.id)).status == WorkflowStatus.IDLE


@pytest.mark.asyncio
async def test_concurrent_mutations_on_same_workflow_do_not_interleave():
    store = WorkflowStore()
    wf = await store.create("counter", [step("a")], metadata={"count": 0})

    def increment(instance):
        instance.metadata["count"] += 1

    await asyncio.gather(*(store.mutate(wf.id, increment) for _ in range(50)))
    assert (await store.get(wf.id)).metadata["count"] == 50


@pytest.mark.asyncio
async def test_delete_then_operations_fail_not_found():
    store = WorkflowStore()
    wf = await store.create("pipeline", [step("a")])

    await store.delete(wf.id)

    assert await store.get(wf.id) is None
    with pytest.raises(WorkflowNotFoundError):
        await store.mutate(wf.id, lambda instance: None)
    with pytest.raises(WorkflowNotFoundError):
        await store.delete(wf.id)


@pytest.mark.asyncio
async def test_list_all_in_creation_order():
    store = WorkflowStore()
    first = await store.create("one", [step("a")])
    second = await store.create("two", [step("a")])

    assert [wf.id for wf in await store.list_all()] == [first.id, second.id]


@pytest.mark.asyncio
async def test_clone_creates_fresh_idle_run():
    store = WorkflowStore()
    wf = await store.create("pipeline", [step("a"), step("b", "a")], session_id="s")

    def fail(instance):
        instance.status = WorkflowStatus.FAILED
        instance.runtime["a"].status = StepStatus.FAILED

    await store.mutate(wf.id, fail)
    copy = await store.clone(wf.id)

    assert copy.id != wf.id
    assert copy.status == WorkflowStatus.IDLE
    assert copy.session_id == "s"
    assert [s.id for s in copy.steps] == ["a", "b"]
    assert copy.runtime["a"].status == StepStatus.IDLE


@pytest.mark.asyncio
async def test_create_accepts_long_dependency_chain():
    store = WorkflowStore()
    chain = [step(f"s{i}", f"s{i - 1}") for i in range(1199, 0, -1)] + [step("s0")]

    wf = await store.create("long", chain)

    assert len(wf.runtime) == 1200
