"""Tests for the stage executor and failure policies."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from shipline.kernel.domain.pipeline import PipelineDefinition
from shipline.kernel.domain.run import Run
from shipline.kernel.domain.stage import ArtifactCategory, FailurePolicy, GateVerdict, StageState
from shipline.kernel.orchestration.context import LOG_DIR, RunContext
from shipline.kernel.orchestration.credentials import CredentialScopeManager
from shipline.kernel.orchestration.events import (
    Event,
    QualityGateResolved,
    StageCompleted,
    StageFailed,
    StageSkipped,
    StageStarted,
)
from shipline.kernel.orchestration.parameters import ParameterBinding
from shipline.kernel.orchestration.stage_executor import StageExecutor
from shipline.kernel.ports.secret import SecretStore
from shipline.stdlib.actions import ActionResolver
from shipline.stdlib.adapters.mock import MockAction
from shipline.stdlib.adapters.secret import EnvSecretStore, StaticSecretStore

PASSWORD = "hunter2"


def _pipeline(*stages: dict[str, Any]) -> PipelineDefinition:
    return PipelineDefinition.model_validate(
        {
            "name": "backend",
            "parameters": [{"name": "tag"}],
            "credentials": {"registry": {"bindings": {"REGISTRY_PASSWORD": "registry/password"}}},
            "stages": list(stages),
        }
    )


def _stage(name: str, **extra: Any) -> dict[str, Any]:
    return {"name": name, "action": {"kind": "command", "args": ["run", name]}, **extra}


class Harness:
    """A run of ``pipeline`` with mock actions and recorded events."""

    def __init__(
        self,
        tmp_path: Path,
        pipeline: PipelineDefinition,
        overrides: dict[str, MockAction],
        secrets: dict[str, str] | None = None,
        default_timeout: float | None = None,
        store: SecretStore | None = None,
    ) -> None:
        workspace = tmp_path / "ws"
        (workspace / LOG_DIR).mkdir(parents=True)
        self.events: list[Event] = []
        self.run = Run.create("r1", pipeline, ParameterBinding({"tag": "v1.2.0"}))
        self.context = RunContext(
            run_id="r1", workspace=workspace, parameters=ParameterBinding({"tag": "v1.2.0"})
        )
        if store is None:
            store = StaticSecretStore(
                secrets if secrets is not None else {"registry/password": PASSWORD}
            )
        self.credentials = CredentialScopeManager(store, pipeline.credentials)
        self.executor = StageExecutor(
            ActionResolver(gate_timeout=1.0, gate_poll_interval=0.01),
            self.credentials,
            default_timeout=default_timeout,
            notify=self.events.append,
            action_overrides=overrides,
        )

    def execution(self, name: str):
        return next(e for e in self.run.executions if e.name == name)

    def states(self) -> dict[str, StageState]:
        return {e.name: e.state for e in self.run.executions}

    def events_of(self, kind: type[Event]) -> list[Any]:
        return [e for e in self.events if isinstance(e, kind)]


class TestFailurePolicy:
    @pytest.mark.asyncio
    async def test_all_stages_run_in_order(self, tmp_path: Path) -> None:
        order: list[str] = []

        class Recording(MockAction):
            async def aexecute(self, invocation):
                order.append(invocation.stage_name)
                return await super().aexecute(invocation)

        actions = {name: Recording() for name in ("a", "b", "c")}
        harness = Harness(tmp_path, _pipeline(_stage("a"), _stage("b"), _stage("c")), actions)

        await harness.executor.run_stages(harness.run, harness.context)

        assert order == ["a", "b", "c"]
        assert set(harness.states().values()) == {StageState.SUCCESS}
        assert [e.name for e in harness.events_of(StageStarted)] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_hard_failure_skips_remaining(self, tmp_path: Path) -> None:
        later = MockAction()
        harness = Harness(
            tmp_path,
            _pipeline(_stage("a"), _stage("b"), _stage("c")),
            {"a": MockAction(), "b": MockAction(exit_status=1), "c": later},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert harness.states() == {
            "a": StageState.SUCCESS,
            "b": StageState.FAILED,
            "c": StageState.SKIPPED,
        }
        assert later.call_count == 0
        assert harness.execution("b").exit_status == 1
        assert harness.execution("b").error == "action exited with status 1"
        assert harness.execution("c").error == "aborted after HARD failure of stage 'b'"
        skipped = harness.events_of(StageSkipped)
        assert [e.name for e in skipped] == ["c"]

    @pytest.mark.asyncio
    async def test_soft_failure_continues(self, tmp_path: Path) -> None:
        later = MockAction()
        harness = Harness(
            tmp_path,
            _pipeline(_stage("a", policy="soft"), _stage("b")),
            {"a": MockAction(exit_status=3), "b": later},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert harness.states() == {"a": StageState.FAILED, "b": StageState.SUCCESS}
        assert harness.execution("a").failed_soft
        assert later.call_count == 1
        failed = harness.events_of(StageFailed)
        assert failed[0].policy == "soft"
        assert failed[0].exit_status == 3

    @pytest.mark.asyncio
    async def test_exception_becomes_failed_stage(self, tmp_path: Path) -> None:
        harness = Harness(
            tmp_path,
            _pipeline(_stage("a", policy="soft"), _stage("b")),
            {"a": MockAction(error=RuntimeError("scanner crashed")), "b": MockAction()},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert harness.execution("a").error == "RuntimeError: scanner crashed"
        assert harness.execution("a").exit_status is None
        assert harness.execution("b").state is StageState.SUCCESS

    @pytest.mark.asyncio
    async def test_timeout_fails_stage(self, tmp_path: Path) -> None:
        slow = MockAction(delay=5.0)
        harness = Harness(
            tmp_path,
            _pipeline(_stage("a", policy="soft", timeout=0.05), _stage("b")),
            {"a": slow, "b": MockAction()},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert harness.execution("a").state is StageState.FAILED
        assert "exceeded its timeout of 0.05s" in harness.execution("a").error
        assert slow.cancelled
        assert harness.execution("b").state is StageState.SUCCESS

    @pytest.mark.asyncio
    async def test_default_timeout_applies(self, tmp_path: Path) -> None:
        harness = Harness(
            tmp_path,
            _pipeline(_stage("a")),
            {"a": MockAction(delay=5.0)},
            default_timeout=0.05,
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert "timeout" in harness.execution("a").error


class TestCredentials:
    @pytest.mark.asyncio
    async def test_bindings_reach_only_owning_stage(self, tmp_path: Path) -> None:
        build, push = MockAction(), MockAction()
        harness = Harness(
            tmp_path,
            _pipeline(_stage("build"), _stage("push", credentials=["registry"])),
            {"build": build, "push": push},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert "REGISTRY_PASSWORD" not in build.invocations[0].env
        assert push.invocations[0].env["REGISTRY_PASSWORD"] == PASSWORD
        assert PASSWORD not in " ".join(push.invocations[0].args)
        assert harness.credentials.acquired_count == harness.credentials.released_count == 1
        assert harness.context.active_scopes == {}

    @pytest.mark.asyncio
    async def test_released_when_action_raises(self, tmp_path: Path) -> None:
        harness = Harness(
            tmp_path,
            _pipeline(_stage("push", credentials=["registry"], policy="soft")),
            {"push": MockAction(error=RuntimeError("push refused"))},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert harness.execution("push").state is StageState.FAILED
        assert harness.credentials.released_count == 1
        assert harness.credentials.active_scopes == []

    @pytest.mark.asyncio
    async def test_released_on_timeout(self, tmp_path: Path) -> None:
        harness = Harness(
            tmp_path,
            _pipeline(_stage("push", credentials=["registry"], timeout=0.05)),
            {"push": MockAction(delay=5.0)},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert harness.credentials.released_count == 1

    @pytest.mark.asyncio
    async def test_unresolvable_credential_fails_hard(self, tmp_path: Path) -> None:
        push, after = MockAction(), MockAction()
        harness = Harness(
            tmp_path,
            _pipeline(_stage("push", credentials=["registry"], policy="soft"), _stage("after")),
            {"push": push, "after": after},
            secrets={},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        execution = harness.execution("push")
        assert execution.state is StageState.FAILED
        assert execution.policy is FailurePolicy.HARD
        assert execution.definition.policy is FailurePolicy.SOFT
        assert "registry" in execution.error
        assert push.call_count == 0
        assert after.call_count == 0
        assert harness.execution("after").state is StageState.SKIPPED

    @pytest.mark.asyncio
    async def test_secret_redacted_from_error(self, tmp_path: Path) -> None:
        harness = Harness(
            tmp_path,
            _pipeline(_stage("push", credentials=["registry"], policy="soft")),
            {"push": MockAction(error=RuntimeError(f"bad password {PASSWORD}"))},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert PASSWORD not in harness.execution("push").error
        assert "****" in harness.execution("push").error

    @pytest.mark.asyncio
    async def test_credential_variables_withheld_from_every_child(self, tmp_path: Path) -> None:
        build, push = MockAction(), MockAction()
        harness = Harness(
            tmp_path,
            _pipeline(_stage("build"), _stage("push", credentials=["registry"])),
            {"build": build, "push": push},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert "REGISTRY_PASSWORD" in build.invocations[0].unset_env
        assert "REGISTRY_PASSWORD" in push.invocations[0].unset_env
        assert push.invocations[0].env["REGISTRY_PASSWORD"] == PASSWORD

    @pytest.mark.asyncio
    async def test_engine_secret_masked_before_its_owner_runs(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("CI_REGISTRY_PASSWORD", "s3cr3t-value")
        build = MockAction(error=RuntimeError("leaked s3cr3t-value"))
        harness = Harness(
            tmp_path,
            _pipeline(
                _stage("build", policy="soft"), _stage("push", credentials=["registry"])
            ),
            {"build": build, "push": MockAction()},
            store=EnvSecretStore(prefix="CI_"),
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert "CI_REGISTRY_PASSWORD" in build.invocations[0].unset_env
        assert "s3cr3t-value" in build.invocations[0].redactions
        assert harness.execution("build").error == "RuntimeError: leaked ****"
        assert harness.execution("push").state is StageState.SUCCESS


class TestParametersAndExports:
    @pytest.mark.asyncio
    async def test_args_rendered_with_parameters(self, tmp_path: Path) -> None:
        build = MockAction()
        stage = {"name": "build", "action": {"kind": "command", "args": ["tag", "backend:${tag}"]}}
        harness = Harness(tmp_path, _pipeline(stage), {"build": build})

        await harness.executor.run_stages(harness.run, harness.context)

        assert build.invocations[0].args == ("tag", "backend:v1.2.0")

    @pytest.mark.asyncio
    async def test_exports_published_on_success(self, tmp_path: Path) -> None:
        push = MockAction()
        harness = Harness(
            tmp_path,
            _pipeline(
                _stage("build", exports={"image": "backend:${tag}"}),
                {"name": "push", "action": {"kind": "command", "args": ["push", "${image}"]}},
            ),
            {"build": MockAction(), "push": push},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert harness.context.derived == {"image": "backend:v1.2.0"}
        assert push.invocations[0].args == ("push", "backend:v1.2.0")

    @pytest.mark.asyncio
    async def test_exports_not_published_on_failure(self, tmp_path: Path) -> None:
        harness = Harness(
            tmp_path,
            _pipeline(_stage("build", policy="soft", exports={"image": "backend:${tag}"})),
            {"build": MockAction(exit_status=1)},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert harness.context.derived == {}


class TestArtifacts:
    @pytest.mark.asyncio
    async def test_declared_artifacts_and_log_collected(self, tmp_path: Path) -> None:
        harness = Harness(
            tmp_path,
            _pipeline(
                _stage(
                    "scan",
                    artifacts=[
                        {"path": "reports/*.json", "category": "report"},
                        {"path": "scan/image.sarif", "category": "image-scan-result"},
                    ],
                )
            ),
            {
                "scan": MockAction(
                    outputs={
                        "reports/a.json": "{}",
                        "reports/b.json": "{}",
                        "scan/image.sarif": "",
                    },
                    log="scanning\n",
                )
            },
        )

        await harness.executor.run_stages(harness.run, harness.context)

        artifacts = harness.execution("scan").artifacts
        by_path = {a.relative_path: a.category for a in artifacts}
        assert by_path == {
            "reports/a.json": ArtifactCategory.REPORT,
            "reports/b.json": ArtifactCategory.REPORT,
            "scan/image.sarif": ArtifactCategory.IMAGE_SCAN_RESULT,
            ".shipline/logs/scan.log": ArtifactCategory.BUILD_LOG,
        }
        assert harness.events_of(StageCompleted)[0].artifacts == 4

    @pytest.mark.asyncio
    async def test_missing_artifact_does_not_fail_stage(self, tmp_path: Path) -> None:
        harness = Harness(
            tmp_path,
            _pipeline(_stage("scan", artifacts=[{"path": "reports/missing.json"}])),
            {"scan": MockAction()},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert harness.execution("scan").state is StageState.SUCCESS
        assert harness.execution("scan").artifacts == []

    @pytest.mark.asyncio
    async def test_artifacts_collected_from_failed_stage(self, tmp_path: Path) -> None:
        harness = Harness(
            tmp_path,
            _pipeline(_stage("scan", policy="soft", artifacts=[{"path": "report.json"}])),
            {"scan": MockAction(exit_status=1, outputs={"report.json": "[]"})},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert [a.relative_path for a in harness.execution("scan").artifacts] == ["report.json"]

    @pytest.mark.asyncio
    async def test_glob_outside_workspace_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "outside.json").write_text("{}")
        harness = Harness(
            tmp_path,
            _pipeline(_stage("scan", artifacts=[{"path": "../outside.json"}])),
            {"scan": MockAction()},
        )

        await harness.executor.run_stages(harness.run, harness.context)

        assert harness.execution("scan").artifacts == []


class TestQualityGateStage:
    @pytest.mark.asyncio
    async def test_failed_verdict_degrades_run(self, tmp_path: Path) -> None:
        gate = {
            "name": "qualityGate",
            "action": {
                "kind": "quality_gate",
                "source": {"kind": "static", "config": {"verdict": "FAILED"}},
            },
        }
        after = MockAction()
        pipeline = PipelineDefinition.model_validate(
            {"name": "p", "stages": [gate, _stage("after")]}
        )
        harness = Harness(tmp_path, pipeline, {"after": after})

        await harness.executor.run_stages(harness.run, harness.context)

        execution = harness.execution("qualityGate")
        assert execution.state is StageState.FAILED
        assert execution.verdict is GateVerdict.FAILED
        assert execution.failed_soft
        assert after.call_count == 1
        resolved = harness.events_of(QualityGateResolved)
        assert resolved[0].verdict == "FAILED"

    @pytest.mark.asyncio
    async def test_timed_out_gate_lets_next_stage_start(self, tmp_path: Path) -> None:
        after = MockAction()
        pipeline = PipelineDefinition.model_validate(
            {
                "name": "p",
                "stages": [
                    {
                        "name": "qualityGate",
                        "action": {
                            "kind": "quality_gate",
                            "timeout": 0.05,
                            "poll_interval": 0.01,
                            "source": {
                                "kind": "delayed",
                                "config": {"verdict": "PASSED", "delay": 5.0},
                            },
                        },
                    },
                    _stage("after"),
                ],
            }
        )
        harness = Harness(tmp_path, pipeline, {"after": after})

        await harness.executor.run_stages(harness.run, harness.context)

        execution = harness.execution("qualityGate")
        assert execution.verdict is GateVerdict.TIMED_OUT
        assert execution.state is StageState.FAILED
        assert "timed out" in execution.error
        assert after.call_count == 1
        assert harness.execution("after").state is StageState.SUCCESS

    @pytest.mark.asyncio
    async def test_stage_timeout_shorter_than_gate_timeout(self, tmp_path: Path) -> None:
        gate = {
            "name": "qualityGate",
            "action": {
                "kind": "quality_gate",
                "timeout": 5.0,
                "poll_interval": 0.01,
                "source": {"kind": "delayed", "config": {"verdict": "PASSED", "delay": 5.0}},
            },
        }
        after = MockAction()
        pipeline = PipelineDefinition.model_validate(
            {"name": "p", "stages": [gate, _stage("after")]}
        )
        harness = Harness(tmp_path, pipeline, {"after": after}, default_timeout=0.05)

        await harness.executor.run_stages(harness.run, harness.context)

        execution = harness.execution("qualityGate")
        assert execution.verdict is GateVerdict.TIMED_OUT
        assert execution.failed_soft
        assert "exceeded its timeout" in execution.error
        assert [e.verdict for e in harness.events_of(QualityGateResolved)] == ["TIMED_OUT"]
        assert after.call_count == 1


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_event_fails_running_and_skips_rest(self, tmp_path: Path) -> None:
        slow, later = MockAction(delay=5.0), MockAction()
        harness = Harness(
            tmp_path,
            _pipeline(_stage("a", policy="soft"), _stage("b")),
            {"a": slow, "b": later},
        )

        async def cancel_soon() -> None:
            await asyncio.sleep(0.05)
            harness.context.cancel_event.set()

        canceller = asyncio.create_task(cancel_soon())
        await harness.executor.run_stages(harness.run, harness.context)
        await canceller

        assert harness.execution("a").state is StageState.FAILED
        assert harness.execution("a").error == "cancelled"
        assert slow.cancelled
        assert harness.execution("b").state is StageState.SKIPPED
        assert harness.execution("b").error == "run cancelled"
        assert later.call_count == 0

    @pytest.mark.asyncio
    async def test_cancel_before_start_skips_everything(self, tmp_path: Path) -> None:
        first = MockAction()
        harness = Harness(tmp_path, _pipeline(_stage("a"), _stage("b")), {"a": first})
        harness.context.cancel_event.set()

        await harness.executor.run_stages(harness.run, harness.context)

        assert first.call_count == 0
        assert set(harness.states().values()) == {StageState.SKIPPED}

    @pytest.mark.asyncio
    async def test_task_cancellation_finishes_stage_and_releases(self, tmp_path: Path) -> None:
        harness = Harness(
            tmp_path,
            _pipeline(_stage("push", credentials=["registry"])),
            {"push": MockAction(delay=5.0)},
        )
        task = asyncio.create_task(harness.executor.run_stages(harness.run, harness.context))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert harness.execution("push").state is StageState.FAILED
        assert harness.execution("push").error == "cancelled"
        assert harness.credentials.released_count == 1
