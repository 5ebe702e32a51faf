"""Top-level run driver.

``parameters → workspace → stages (with credential scopes) → post-run → outcome``

The post-run phase (archiving, report publishing, workspace reclamation) runs
exactly once per started run, however the stage loop ended: normal
completion, HARD abort, an unexpected controller error, an external cancel
request or task cancellation.

Examples
--------
Basic usage::

    controller = RunController(config=ShiplineConfig())
    report = await controller.run(pipeline, {"tag": "v1.2.0"})
    print(report.outcome)

With action overrides (testing)::

    controller = RunController(action_overrides={"build": MockAction(exit_status=1)})
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from shipline.kernel.config.models import ShiplineConfig
from shipline.kernel.domain.run import Run, RunOutcome, new_run_id
from shipline.kernel.logging import get_logger, run_log_context
from shipline.kernel.orchestration.archiver import ArchiveManifest, ArtifactArchiver
from shipline.kernel.orchestration.context import RunContext
from shipline.kernel.orchestration.credentials import CredentialScopeManager, SessionRunner
from shipline.kernel.orchestration.events import (
    ArchiveCompleted,
    EventBus,
    Observer,
    RunCompleted,
    RunStarted,
)
from shipline.kernel.orchestration.parameters import ParameterResolver
from shipline.kernel.orchestration.stage_executor import ActionProvider, StageExecutor
from shipline.kernel.orchestration.workspace import WorkspaceManager
from shipline.kernel.utils.timer import Timer

if TYPE_CHECKING:
    from pathlib import Path

    from shipline.kernel.domain.pipeline import PipelineDefinition
    from shipline.kernel.ports.action import StageAction
    from shipline.kernel.ports.secret import SecretStore

logger = get_logger(__name__)


@dataclass(slots=True)
class RunReport:
    """Result of one run: the run record and its archive manifest."""

    run: Run
    manifest: ArchiveManifest | None = None

    @property
    def run_id(self) -> str:
        return self.run.run_id

    @property
    def outcome(self) -> RunOutcome:
        if self.run.outcome is None:
            raise RuntimeError(f"Run '{self.run.run_id}' has not finished")
        return self.run.outcome

    def to_dict(self) -> dict[str, Any]:
        data = self.run.to_dict()
        data["archive"] = self.manifest.model_dump(mode="json") if self.manifest else None
        return data


class RunController:
    """Drives pipeline runs.

    Parameters
    ----------
    config : ShiplineConfig | None
        Engine configuration. Defaults to :class:`ShiplineConfig` defaults.
    secret_store : SecretStore | None
        Backend for credential references. Defaults to the environment
        secret store.
    actions : ActionProvider | None
        Builds actions from action specs. Defaults to the stdlib resolver.
    session_runner : SessionRunner | None
        Runs credential login/logout commands. Defaults to the stdlib
        command runner.
    source : Path | None
        Source tree copied into each run workspace.
    action_overrides : Mapping[str, StageAction] | None
        Per-stage action replacements (dry runs, tests).
    observers : Sequence[Observer] | None
        Callables receiving every lifecycle event.
    workspace_manager : WorkspaceManager | None
        Overrides the workspace manager built from ``config``.
    archiver : ArtifactArchiver | None
        Overrides the archiver built from ``config``.
    """

    def __init__(
        self,
        *,
        config: ShiplineConfig | None = None,
        secret_store: SecretStore | None = None,
        actions: ActionProvider | None = None,
        session_runner: SessionRunner | None = None,
        source: Path | None = None,
        action_overrides: Mapping[str, StageAction] | None = None,
        observers: Sequence[Observer] | None = None,
        workspace_manager: WorkspaceManager | None = None,
        archiver: ArtifactArchiver | None = None,
    ) -> None:
        self.config = config or ShiplineConfig()

        if secret_store is None:
            from shipline.stdlib.adapters.secret import EnvSecretStore

            secret_store = EnvSecretStore(prefix=self.config.secret_env_prefix)
        if actions is None:
            from shipline.stdlib.actions import ActionResolver

            actions = ActionResolver(
                gate_timeout=self.config.gate_timeout,
                gate_poll_interval=self.config.gate_poll_interval,
            )
        if session_runner is None:
            from shipline.stdlib.actions.command import run_command

            session_runner = run_command

        self._secret_store = secret_store
        self._actions = actions
        self._session_runner = session_runner
        self._action_overrides = dict(action_overrides or {})
        self._events = EventBus(list(observers or []))
        self._parameters = ParameterResolver()
        self._workspaces = workspace_manager or WorkspaceManager(
            self.config.workspace_root, source=source, keep=self.config.keep_workspace
        )
        self._archiver = archiver or ArtifactArchiver(self.config.archive_root)

    def subscribe(self, observer: Observer) -> None:
        self._events.subscribe(observer)

    async def run(
        self,
        pipeline: PipelineDefinition,
        parameters: Mapping[str, str],
        *,
        run_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunReport:
        """Run ``pipeline`` with ``parameters``.

        Parameters
        ----------
        pipeline : PipelineDefinition
            The validated pipeline.
        parameters : Mapping[str, str]
            Invocation parameters.
        run_id : str | None
            Run id; generated when omitted.
        cancel_event : asyncio.Event | None
            Setting this event aborts the run. The running stage fails,
            the remaining ones are skipped and the post-run phase still runs.

        Returns
        -------
        RunReport
            The finished run and its archive manifest.

        Raises
        ------
        MissingParameterError
            If a required parameter is missing. No stage has started and
            nothing has been created on disk.
        ConfigurationError
            If the workspace cannot be prepared.
        asyncio.CancelledError
            If the calling task is cancelled, after the post-run phase.
        """
        run_id = run_id or new_run_id()
        binding = self._parameters.resolve(pipeline.parameters, parameters)
        run = Run.create(run_id, pipeline, binding)

        with run_log_context(run_id):
            workspace = self._workspaces.prepare(run_id)
            run.workspace = workspace
            context = RunContext(
                run_id=run_id,
                workspace=workspace,
                parameters=binding,
                cancel_event=cancel_event or asyncio.Event(),
            )
            credentials = CredentialScopeManager(
                self._secret_store, pipeline.credentials, self._session_runner
            )
            executor = StageExecutor(
                self._actions,
                credentials,
                default_timeout=self.config.default_stage_timeout,
                notify=self._events,
                action_overrides=self._action_overrides,
            )

            timer = Timer()
            self._events(
                RunStarted(
                    run_id=run_id, pipeline_name=pipeline.name, total_stages=len(run.executions)
                )
            )
            manifest: ArchiveManifest | None = None
            try:
                await executor.run_stages(run, context)
            except asyncio.CancelledError:
                run.cancelled = True
                executor.skip_remaining(run, "run cancelled")
                raise
            except Exception as e:
                logger.error("Run '{}' aborted by an unexpected error: {}", run_id, e)
                run.error = f"{type(e).__name__}: {e}"
                executor.skip_remaining(run, "run aborted by an unexpected error")
            finally:
                if context.cancel_requested:
                    run.cancelled = True
                run.finalize()
                manifest = self._post_run(run)
                self._workspaces.reclaim(workspace)
                self._events(
                    RunCompleted(
                        run_id=run_id,
                        pipeline_name=pipeline.name,
                        outcome=str(run.outcome),
                        duration_ms=timer.duration_ms,
                        cancelled=run.cancelled,
                    )
                )

        return RunReport(run=run, manifest=manifest)

    def _post_run(self, run: Run) -> ArchiveManifest | None:
        try:
            manifest = self._archiver.archive(
                run.executions,
                run_id=run.run_id,
                pipeline_name=run.pipeline_name,
                outcome=str(run.outcome) if run.outcome else None,
            )
        except Exception as e:
            logger.error("Archiving run '{}' failed: {}", run.run_id, e)
            return None
        self._events(
            ArchiveCompleted(
                run_id=run.run_id,
                artifacts=manifest.artifact_count,
                errors=len(manifest.errors),
                location=manifest.location,
            )
        )
        return manifest
