"""End-to-end runs against the SQLite stores."""

import pytest

import flowrun.persistence as persistence
from flowrun.contracts import Priority, RunStatus, StepResult, StepStatus
from flowrun.persistence import get_stores
from flowrun.service import WorkflowService
from flowrun.tasks import TaskManager


@pytest.fixture
def stores(tmp_path, monkeypatch):
    monkeypatch.setattr(persistence, "_stores_instance", None)
    return get_stores(f"sqlite://{tmp_path / 'flowrun.db'}")


@pytest.mark.asyncio
async def test_definition_to_completed_run(stores):
    service = WorkflowService(stores=stores)
    definition = (await service.create_from_template("lead-followup")).data

    async def score(definition, step, context):
        if step.type == "analysis":
            return StepResult.ok({"score": context.input["score"]})
        return StepResult.ok({"step": step.id, "files": [f"{step.id}.log"]})

    hot = (await service.start_run(definition.id, {"score": 91}, executor=score)).data
    cold = (await service.start_run(definition.id, {"score": 12}, executor=score)).data

    hot = (await service.get_run(hot.id)).data
    assert hot.status is RunStatus.COMPLETED
    assert hot.step_state("step-3").status is StepStatus.COMPLETED
    assert hot.step_state("step-4").status is StepStatus.COMPLETED
    assert hot.summary.files == ["step-2.log", "step-3.log", "step-4.log"]

    cold = (await service.get_run(cold.id)).data
    assert cold.status is RunStatus.COMPLETED
    assert cold.output["step-2"]["next_step"] == "end"
    assert cold.step_state("step-3").status is StepStatus.PENDING

    runs = (await service.list_runs({"definition_id": definition.id})).data
    assert [r.id for r in runs] == [cold.id, hot.id]
    assert (await service.health()).data["executions"] == 2


@pytest.mark.asyncio
async def test_background_run_persists_progress(stores):
    service = WorkflowService(stores=stores)
    definition = (
        await service.create_definition(
            {
                "name": "Backfill",
                "steps": [
                    {"id": "fetch", "type": "data-fetch"},
                    {"id": "pause", "type": "delay", "config": {"seconds": 0}},
                    {"id": "notify", "type": "notify"},
                ],
            }
        )
    ).data

    started = (await service.start_run(definition.id, wait=False)).data
    assert started.status is RunStatus.RUNNING
    await service.join()

    stored = (await service.get_run(started.id)).data
    assert stored.status is RunStatus.COMPLETED
    assert stored.progress == 100
    assert [log.type for log in stored.logs][-1] == "complete"


@pytest.mark.asyncio
async def test_task_pause_retry_cycle(stores):
    attempts = {"draft": 0}

    def flaky(task, step):
        if step.id == "draft":
            attempts["draft"] += 1
            if attempts["draft"] == 1:
                raise RuntimeError("model timeout")
        return {"step": step.id}

    manager = TaskManager(store=stores.tasks, executor=flaky)
    task = await manager.create_task(
        {"text": "Publish release notes", "summary": "Release notes"},
        [
            {"id": "collect", "type": "data-fetch"},
            {"id": "draft", "type": "ai-invoke", "dependsOn": ["collect"]},
            {"id": "publish", "type": "webhook", "config": {"url": "/publish"}},
        ],
        priority=Priority.CRITICAL,
        user_id="alice",
    )

    paused = await manager.execute_task(task.id)
    assert paused.status is RunStatus.PAUSED
    assert paused.error == "model timeout"

    aborted = await manager.resolve_task(task.id, "abort")
    assert aborted.status is RunStatus.FAILED

    await manager.retry_task(task.id)
    done = await manager.execute_task(task.id)
    assert done.status is RunStatus.COMPLETED
    assert attempts["draft"] == 2

    stored = await manager.get_task(task.id)
    assert stored.status is RunStatus.COMPLETED
    assert stored.output["draft"] == {"step": "draft"}
    stats = await manager.get_statistics("alice")
    assert stats.total == 1
    assert stats.success_rate == 100
