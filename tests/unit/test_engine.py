import pytest

from flowrun.config import EngineConfig
from flowrun.contracts import (
    Definition,
    Execution,
    RunStatus,
    Step,
    StepResult,
    StepStatus,
)
from flowrun.engine import TASK_POLICY, WORKFLOW_POLICY, RunEngine, build_summary


def _steps(*ids, type="notify"):
    return [Step(id=i, name=i.upper(), type=type) for i in ids]


def _run(definition: Definition, input=None) -> Execution:
    return Execution.for_definition(definition, input)


def _branching_definition(target_high="A", target_low="B") -> Definition:
    return Definition(
        name="Branching",
        steps=[
            Step(
                id="route",
                type="condition",
                config={
                    "conditions": [
                        {"field": "score", "operator": ">=", "value": 80, "next_step": target_high},
                        {"field": "score", "operator": ">=", "value": 50, "next_step": target_low},
                    ]
                },
            ),
            Step(id="A", type="notify"),
            Step(id="B", type="notify"),
        ],
    )


class RecordingExecutor:
    def __init__(self, fail_on=None, raise_on=None):
        self.calls = []
        self.fail_on = fail_on
        self.raise_on = raise_on

    async def execute(self, definition, step, context):
        self.calls.append(step.id)
        if step.id == self.raise_on:
            raise RuntimeError("executor crashed")
        if step.id == self.fail_on:
            return StepResult.failed("boom")
        return {"success": True, "output": {"step": step.id}}


@pytest.mark.asyncio
async def test_all_steps_succeed():
    definition = Definition(name="Linear", steps=_steps("s1", "s2", "s3"))
    executor = RecordingExecutor()
    run = await RunEngine(executor=executor).drive(definition, _run(definition))

    assert run.status is RunStatus.COMPLETED
    assert run.progress == 100
    assert run.completed_steps == 3
    assert set(run.output) == {"s1", "s2", "s3"}
    assert executor.calls == ["s1", "s2", "s3"]
    assert all(s.status is StepStatus.COMPLETED for s in run.steps)
    assert run.context.variables["s2"] == {"step": "s2"}
    assert run.logs[-1].type == "complete"


@pytest.mark.asyncio
async def test_failing_step_fails_run_and_stops():
    definition = Definition(name="Linear", steps=_steps("s1", "s2", "s3"))
    executor = RecordingExecutor(fail_on="s2")
    run = await RunEngine(executor=executor).drive(definition, _run(definition))

    assert run.status is RunStatus.FAILED
    assert run.error == "boom"
    assert run.failed_step_id == "s2"
    assert run.step_state("s2").status is StepStatus.FAILED
    assert run.step_state("s2").error == "boom"
    assert run.step_state("s3").status is StepStatus.PENDING
    assert "s3" not in run.output
    assert executor.calls == ["s1", "s2"]
    assert run.progress == 33
    assert run.completed_at is not None


@pytest.mark.asyncio
async def test_failing_step_pauses_under_task_policy():
    definition = Definition(name="Linear", steps=_steps("s1", "s2"))
    run = await RunEngine(executor=RecordingExecutor(fail_on="s1")).drive(
        definition, _run(definition), TASK_POLICY
    )
    assert run.status is RunStatus.PAUSED
    assert run.user_decision == "required"
    assert run.completed_at is None


@pytest.mark.asyncio
async def test_executor_exception_becomes_step_failure():
    definition = Definition(name="Linear", steps=_steps("s1", "s2"))
    run = await RunEngine(executor=RecordingExecutor(raise_on="s1")).drive(
        definition, _run(definition)
    )
    assert run.status is RunStatus.FAILED
    assert run.error == "executor crashed"
    assert run.failed_step_id == "s1"


@pytest.mark.asyncio
async def test_unknown_step_type_fails_without_calling_executor():
    definition = Definition(
        name="Odd", steps=[Step(id="s1", type="notify"), Step(id="s2", type="teleport")]
    )
    executor = RecordingExecutor()
    run = await RunEngine(executor=executor).drive(definition, _run(definition))

    assert run.status is RunStatus.FAILED
    assert run.error == "unknown step type: teleport"
    assert run.failed_step_id == "s2"
    assert executor.calls == ["s1"]


@pytest.mark.asyncio
async def test_invalid_step_config_fails_step():
    definition = Definition(
        name="Bad delay", steps=[Step(id="wait", type="delay", config={"seconds": -5})]
    )
    run = await RunEngine().drive(definition, _run(definition))
    assert run.status is RunStatus.FAILED
    assert run.error.startswith("invalid config for step wait")


@pytest.mark.asyncio
@pytest.mark.parametrize("score, expected", [(90, "A"), (60, "B")])
async def test_condition_first_match_wins(score, expected):
    definition = _branching_definition(target_high="A", target_low="B")
    executor = RecordingExecutor()
    run = await RunEngine(executor=executor).drive(definition, _run(definition, {"score": score}))

    assert run.status is RunStatus.COMPLETED
    assert executor.calls[:2] == ["route", expected]
    assert run.output["route"]["next_step"] == expected
    assert run.output["route"]["condition"]["next_step"] == expected


@pytest.mark.asyncio
async def test_condition_jumps_forward_skipping_steps():
    definition = _branching_definition(target_high="B", target_low="A")
    executor = RecordingExecutor()
    run = await RunEngine(executor=executor).drive(definition, _run(definition, {"score": 95}))

    assert executor.calls == ["route", "B"]
    assert run.status is RunStatus.COMPLETED
    assert run.step_state("A").status is StepStatus.PENDING
    assert run.progress == 100


@pytest.mark.asyncio
async def test_condition_end_completes_run_immediately():
    definition = _branching_definition(target_high="end")
    executor = RecordingExecutor()
    run = await RunEngine(executor=executor).drive(definition, _run(definition, {"score": 99}))

    assert run.status is RunStatus.COMPLETED
    assert executor.calls == ["route"]
    assert run.progress == 100
    assert run.summary is not None


@pytest.mark.asyncio
async def test_no_matching_condition_continues_sequentially():
    definition = _branching_definition()
    executor = RecordingExecutor()
    run = await RunEngine(executor=executor).drive(definition, _run(definition, {"score": 1}))

    assert executor.calls == ["route", "A", "B"]
    assert run.status is RunStatus.COMPLETED
    assert "next_step" not in run.output["route"]


@pytest.mark.asyncio
async def test_dangling_branch_continues_by_default():
    definition = _branching_definition(target_high="nowhere")
    executor = RecordingExecutor()
    run = await RunEngine(executor=executor).drive(definition, _run(definition, {"score": 99}))

    assert executor.calls == ["route", "A", "B"]
    assert run.status is RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_dangling_branch_fails_when_configured():
    definition = _branching_definition(target_high="nowhere")
    engine = RunEngine(executor=RecordingExecutor(), config=EngineConfig(dangling_branch="fail"))
    run = await engine.drive(definition, _run(definition, {"score": 99}))

    assert run.status is RunStatus.FAILED
    assert run.error == "unknown branch target: nowhere"
    assert run.failed_step_id == "route"


@pytest.mark.asyncio
async def test_branch_loop_hits_step_limit():
    definition = Definition(
        name="Loop",
        steps=[
            Step(id="work", type="notify"),
            Step(
                id="again",
                type="condition",
                config={"conditions": [{"field": "go", "operator": "==", "value": True, "next_step": "work"}]},
            ),
        ],
    )
    engine = RunEngine(executor=RecordingExecutor(), config=EngineConfig(max_steps=5))
    run = await engine.drive(definition, _run(definition, {"go": True}))

    assert run.status is RunStatus.FAILED
    assert run.error == "step limit exceeded (5)"


@pytest.mark.asyncio
async def test_linear_definition_longer_than_step_limit_completes():
    ids = [f"s{i}" for i in range(150)]
    definition = Definition(name="Long", steps=_steps(*ids))
    engine = RunEngine(executor=RecordingExecutor())
    run = await engine.drive(definition, _run(definition))

    assert run.status is RunStatus.COMPLETED
    assert run.completed_steps == 150
    assert run.progress == 100
    assert len(run.output) == 150


@pytest.mark.asyncio
async def test_step_limit_counts_only_repeated_steps():
    definition = Definition(
        name="Loop",
        steps=[
            *_steps("a", "b", "c", "d"),
            Step(
                id="again",
                type="condition",
                config={"conditions": [{"field": "go", "operator": "==", "value": True, "next_step": "d"}]},
            ),
        ],
    )
    executor = RecordingExecutor()
    engine = RunEngine(executor=executor, config=EngineConfig(max_steps=2))
    run = await engine.drive(definition, _run(definition, {"go": True}))

    assert run.status is RunStatus.FAILED
    assert run.error == "step limit exceeded (2)"
    # two repeat executions are allowed; the third trips the guard
    assert executor.calls == ["a", "b", "c", "d", "again", "d", "again"]
    assert run.failed_step_id == "d"


@pytest.mark.asyncio
async def test_long_plan_completes_under_task_policy():
    ids = [f"s{i}" for i in range(120)]
    definition = Definition(name="Long", steps=_steps(*ids))
    engine = RunEngine(executor=RecordingExecutor())
    run = await engine.drive(definition, _run(definition), TASK_POLICY)

    assert run.status is RunStatus.COMPLETED
    assert run.user_decision is None


@pytest.mark.asyncio
async def test_dependencies_wait_then_resume_under_task_policy():
    definition = Definition(
        name="Deps",
        steps=[
            Step(id="a", type="notify"),
            Step(id="b", type="notify", depends_on=["c"]),
            Step(id="c", type="notify"),
        ],
    )
    engine = RunEngine(executor=RecordingExecutor())
    run = await engine.drive(definition, _run(definition), TASK_POLICY)

    assert run.status is RunStatus.WAITING
    assert run.step_state("b").status is StepStatus.WAITING
    assert run.step_state("c").status is StepStatus.COMPLETED

    executor = RecordingExecutor()
    run = await engine.drive(definition, run, TASK_POLICY, executor=executor)
    assert executor.calls == ["b"]
    assert run.status is RunStatus.COMPLETED
    assert run.completed_steps == 3


@pytest.mark.asyncio
async def test_workflow_policy_ignores_dependencies():
    definition = Definition(
        name="Deps",
        steps=[Step(id="a", type="notify", depends_on=["b"]), Step(id="b", type="notify")],
    )
    run = await RunEngine(executor=RecordingExecutor()).drive(
        definition, _run(definition), WORKFLOW_POLICY
    )
    assert run.status is RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancel_during_step_stops_further_steps():
    definition = Definition(name="Linear", steps=_steps("s1", "s2"))
    run = _run(definition)
    calls = []

    async def cancelling(definition, step, context):
        calls.append(step.id)
        run.cancel("stop")
        return {"success": True, "output": None}

    await RunEngine().drive(definition, run, executor=cancelling)
    assert calls == ["s1"]
    assert run.status is RunStatus.CANCELLED
    assert "s1" not in run.output


@pytest.mark.asyncio
async def test_default_executor_simulates_steps():
    definition = Definition(
        name="Simulated",
        steps=[Step(id="s1", name="Fetch", type="data-fetch"), Step(id="s2", type="delay")],
    )
    run = await RunEngine().drive(definition, _run(definition))
    assert run.status is RunStatus.COMPLETED
    assert run.output["s1"]["step_type"] == "data-fetch"
    assert run.output["s1"]["result"] == 'Step "Fetch" completed'


@pytest.mark.asyncio
async def test_on_update_receives_progress():
    definition = Definition(name="Linear", steps=_steps("s1", "s2"))
    seen = []

    async def on_update(run):
        seen.append((run.status, run.progress))

    await RunEngine(executor=RecordingExecutor()).drive(
        definition, _run(definition), on_update=on_update
    )
    assert seen[0] == (RunStatus.RUNNING, 0)
    assert (RunStatus.RUNNING, 50) in seen
    assert seen[-1] == (RunStatus.COMPLETED, 100)


@pytest.mark.asyncio
async def test_summary_collects_files():
    definition = Definition(name="Files", steps=_steps("s1", "s2"))

    async def with_files(definition, step, context):
        return StepResult.ok({"files": [f"{step.id}.txt"]})

    run = await RunEngine().drive(definition, _run(definition), executor=with_files)
    summary = build_summary(run)
    assert summary.files == ["s1.txt", "s2.txt"]
    assert summary.completed_steps == 2
    assert summary.duration is not None
    assert summary.metrics["success_rate"] == 100
