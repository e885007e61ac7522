"""Tests for the hook runner."""

import asyncio

import pytest

from wallhue.cancellation import CancelToken
from wallhue.hooks import HookRunner, unmet_dependencies
from wallhue.models import DependencyPolicy, HookCommand, HookStatus, RenderOutcome, RenderStatus
from wallhue.process import SubprocessRunner

from .testtools import FakeRunner, is_running


def rendered(**statuses):
    return [RenderOutcome(name, f"/tmp/{name}", RenderStatus.SUCCESS if ok else RenderStatus.FAILED) for name, ok in statuses.items()]


def test_unmet_dependencies():
    results = {r.template_id: r for r in rendered(bar=True, term=False)}
    assert unmet_dependencies(HookCommand("h", "true"), results) == []
    assert unmet_dependencies(HookCommand("h", "true", depends_on=("bar",)), results) == []
    assert unmet_dependencies(HookCommand("h", "true", depends_on=("bar", "term")), results) == ["term"]
    assert unmet_dependencies(HookCommand("h", "true", depends_on=("missing",)), results) == ["missing"]

    any_hook = HookCommand("h", "true", depends_on=("bar", "term"), require=DependencyPolicy.ANY)
    assert unmet_dependencies(any_hook, results) == []
    none_hook = HookCommand("h", "true", depends_on=("term", "missing"), require=DependencyPolicy.ANY)
    assert unmet_dependencies(none_hook, results) == ["term", "missing"]


def test_max_parallel_must_be_positive():
    with pytest.raises(ValueError):
        HookRunner(runner=FakeRunner(), max_parallel=0)


@pytest.mark.asyncio
@pytest.mark.parametrize("failing", [0, 1, 2])
async def test_failing_hook_is_isolated(failing):
    runner = FakeRunner()
    runner.on("fail", returncode=2, stderr="no such bar\n")
    hooks = [HookCommand(f"h{i}", "fail" if i == failing else f"reload {i}") for i in range(3)]

    outcomes = await HookRunner(runner=runner).run_all(hooks, [])

    assert [o.name for o in outcomes] == ["h0", "h1", "h2"]
    for i, outcome in enumerate(outcomes):
        if i == failing:
            assert outcome.status == HookStatus.NON_ZERO_EXIT
            assert outcome.returncode == 2
            assert outcome.stderr == "no such bar"
        else:
            assert outcome.status == HookStatus.SUCCESS
    assert len(runner.calls) == 3


@pytest.mark.asyncio
async def test_skips_hooks_of_failed_templates():
    runner = FakeRunner()
    hooks = [
        HookCommand("reload-bar", "reload bar", depends_on=("bar",)),
        HookCommand("reload-term", "reload term", depends_on=("term",)),
        HookCommand("reload-any", "reload any", depends_on=("bar", "term"), require=DependencyPolicy.ANY),
        HookCommand("notify", "notify"),
    ]
    outcomes = await HookRunner(runner=runner).run_all(hooks, rendered(bar=False, term=True))

    statuses = {o.name: o.status for o in outcomes}
    assert statuses == {
        "reload-bar": HookStatus.SKIPPED,
        "reload-term": HookStatus.SUCCESS,
        "reload-any": HookStatus.SUCCESS,
        "notify": HookStatus.SUCCESS,
    }
    assert outcomes[0].message == "dependencies did not render: bar"
    assert runner.calls_matching("reload bar") == []


@pytest.mark.asyncio
async def test_bounded_parallelism():
    runner = FakeRunner()
    runner.on("reload", delay=0.05)
    hooks = [HookCommand(f"h{i}", f"reload {i}") for i in range(6)]

    outcomes = await HookRunner(runner=runner, max_parallel=2).run_all(hooks, [])

    assert all(o.ok for o in outcomes)
    assert runner.max_active == 2


@pytest.mark.asyncio
async def test_hooks_run_concurrently():
    runner = FakeRunner()
    runner.on("reload", delay=0.2)
    hooks = [HookCommand(f"h{i}", f"reload {i}") for i in range(4)]
    await asyncio.wait_for(HookRunner(runner=runner, max_parallel=4).run_all(hooks, []), timeout=0.5)
    assert runner.max_active == 4


@pytest.mark.asyncio
async def test_timeouts():
    runner = FakeRunner()
    runner.on("slow", delay=1)
    hooks = [
        HookCommand("slow", "slow", timeout=0.05),
        HookCommand("slow-default", "slow"),
        HookCommand("patient", "slow", timeout=2),
    ]
    outcomes = await HookRunner(runner=runner, default_timeout=0.05).run_all(hooks, [])
    assert [o.status for o in outcomes] == [HookStatus.TIMEOUT, HookStatus.TIMEOUT, HookStatus.SUCCESS]
    assert [timeout for _, _, timeout in runner.calls] == [0.05, 0.05, 2]


@pytest.mark.asyncio
async def test_spawn_error():
    runner = FakeRunner()
    runner.on("broken", raises=PermissionError(13, "Permission denied"))
    runner.on("weird", raises=RuntimeError("unexpected"))
    hooks = [HookCommand("broken", "broken"), HookCommand("weird", "weird"), HookCommand("ok", "ok", cwd="/tmp")]
    outcomes = await HookRunner(runner=runner).run_all(hooks, [])
    assert [o.status for o in outcomes] == [HookStatus.SPAWN_ERROR, HookStatus.SPAWN_ERROR, HookStatus.SUCCESS]
    assert runner.calls[2][1] == "/tmp"


@pytest.mark.asyncio
async def test_cancelled_hooks_are_skipped():
    runner = FakeRunner()
    token = CancelToken()
    token.cancel("superseded by /w/b.png")
    outcomes = await HookRunner(runner=runner).run_all([HookCommand("h", "reload")], [], token)
    assert outcomes[0].status == HookStatus.SKIPPED
    assert outcomes[0].message == "superseded by /w/b.png"
    assert runner.calls == []


@pytest.mark.asyncio
async def test_real_shell_hooks(tmp_path):
    hooks = [
        HookCommand("write", "echo reloaded > marker", cwd=str(tmp_path)),
        HookCommand("fail", "echo bad >&2; exit 4"),
        HookCommand("hang", "sleep 5", timeout=0.1),
    ]
    runner = HookRunner(runner=SubprocessRunner(graceful_timeout=0.1))
    outcomes = await runner.run_all(hooks, [])
    assert [o.status for o in outcomes] == [HookStatus.SUCCESS, HookStatus.NON_ZERO_EXIT, HookStatus.TIMEOUT]
    assert (tmp_path / "marker").read_text() == "reloaded\n"
    assert outcomes[1].stderr == "bad"


@pytest.mark.asyncio
async def test_timed_out_hook_leaves_no_children(tmp_path):
    hook = HookCommand("hang", f"sleep 7.77 & echo $! > {tmp_path / 'pid'}; wait; true", timeout=0.2)
    outcomes = await HookRunner(runner=SubprocessRunner(graceful_timeout=0.1)).run_all([hook], [])
    assert outcomes[0].status == HookStatus.TIMEOUT
    child = int((tmp_path / "pid").read_text())
    for _ in range(40):
        if not is_running(child):
            break
        await asyncio.sleep(0.05)
    assert not is_running(child)
