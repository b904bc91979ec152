from __future__ import annotations

import asyncio

import pytest

from pyvsm._tasks import TaskSupervisor


@pytest.mark.asyncio
async def test_completed_task_is_reported_and_released() -> None:
    outcomes: list[tuple[str, BaseException | None]] = []
    supervisor = TaskSupervisor(on_done=lambda name, error: outcomes.append((name, error)))

    async def _work() -> int:
        await asyncio.sleep(0)
        return 7

    task = supervisor.spawn(_work(), name="work")
    assert len(supervisor) == 1

    await supervisor.join()

    assert task.result() == 7
    assert outcomes == [("work", None)]
    assert len(supervisor) == 0


@pytest.mark.asyncio
async def test_failure_is_reported_not_raised() -> None:
    outcomes: list[tuple[str, BaseException | None]] = []
    supervisor = TaskSupervisor(on_done=lambda name, error: outcomes.append((name, error)))

    async def _boom() -> None:
        raise RuntimeError("boom")

    supervisor.spawn(_boom(), name="boom")
    await supervisor.join()

    assert len(outcomes) == 1
    assert outcomes[0][0] == "boom"
    assert isinstance(outcomes[0][1], RuntimeError)


@pytest.mark.asyncio
async def test_cancel_all_cancels_running_tasks() -> None:
    outcomes: list[tuple[str, BaseException | None]] = []
    supervisor = TaskSupervisor(on_done=lambda name, error: outcomes.append((name, error)))
    started = asyncio.Event()

    async def _forever() -> None:
        started.set()
        await asyncio.sleep(3600)

    task = supervisor.spawn(_forever(), name="forever")
    await started.wait()
    await supervisor.cancel_all()

    assert task.cancelled()
    assert len(outcomes) == 1
    assert isinstance(outcomes[0][1], asyncio.CancelledError)


@pytest.mark.asyncio
async def test_join_waits_for_tasks_spawned_while_joining() -> None:
    supervisor = TaskSupervisor()
    finished: list[str] = []

    async def _child() -> None:
        await asyncio.sleep(0)
        finished.append("child")

    async def _parent() -> None:
        supervisor.spawn(_child(), name="child")
        finished.append("parent")

    supervisor.spawn(_parent(), name="parent")
    await supervisor.join()

    assert finished == ["parent", "child"]


@pytest.mark.asyncio
async def test_callback_error_is_contained() -> None:
    def _broken(name: str, error: BaseException | None) -> None:
        raise ValueError("callback bug")

    supervisor = TaskSupervisor(on_done=_broken)

    async def _noop() -> None:
        return None

    supervisor.spawn(_noop(), name="noop")
    await supervisor.join()

    assert len(supervisor) == 0
