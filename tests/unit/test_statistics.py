from datetime import timedelta

import pytest

from flowrun.contracts import Priority, RunStatus, Task, utcnow
from flowrun.persistence import InMemoryTaskStore
from flowrun.tasks import TaskManager


def _finished(status: RunStatus, seconds: int, user: str = "alice", **kwargs) -> Task:
    task = Task(**kwargs)
    task.context.user_id = user
    task.transition(RunStatus.RUNNING)
    task.transition(status)
    end = utcnow()
    task.started_at = end - timedelta(seconds=seconds)
    task.completed_at = end
    return task


@pytest.mark.asyncio
async def test_statistics_average_and_success_rate():
    store = InMemoryTaskStore()
    for seconds in (10, 20, 30):
        await store.save(_finished(RunStatus.COMPLETED, seconds))
    await store.save(_finished(RunStatus.FAILED, 5, priority=Priority.HIGH))
    await store.save(Task(priority=Priority.LOW))

    stats = await TaskManager(store=store).get_statistics()
    assert stats.total == 5
    assert stats.by_status["completed"] == 3
    assert stats.by_status["failed"] == 1
    assert stats.by_status["pending"] == 1
    assert stats.by_status["cancelled"] == 0
    assert stats.by_priority == {1: 0, 2: 1, 3: 3, 4: 1}
    assert stats.completed_today == 3
    assert stats.average_duration == 20
    assert stats.success_rate == 75


@pytest.mark.asyncio
async def test_statistics_empty_and_per_user():
    store = InMemoryTaskStore()
    manager = TaskManager(store=store)

    empty = await manager.get_statistics()
    assert empty.total == 0
    assert empty.average_duration == 0
    assert empty.success_rate == 0

    await store.save(_finished(RunStatus.COMPLETED, 4, user="alice"))
    await store.save(_finished(RunStatus.FAILED, 4, user="bob"))
    alice = await manager.get_statistics("alice")
    assert alice.total == 1
    assert alice.success_rate == 100


@pytest.mark.asyncio
async def test_completed_today_excludes_earlier_days():
    store = InMemoryTaskStore()
    old = _finished(RunStatus.COMPLETED, 60)
    old.completed_at = utcnow() - timedelta(days=2)
    old.started_at = old.completed_at - timedelta(seconds=60)
    await store.save(old)

    stats = await TaskManager(store=store).get_statistics()
    assert stats.completed_today == 0
    assert stats.average_duration == 60
