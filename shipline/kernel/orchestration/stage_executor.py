"""Stage execution and failure policy.

The :class:`StageExecutor` runs stages strictly one after another in declared
order. Every error raised while a stage runs is captured at the stage
boundary and turned into a FAILED execution; the failure policy then decides
what happens to the rest of the run:

- HARD: every remaining stage is SKIPPED and the loop stops
- SOFT: the failure is logged, the run is degraded and the loop continues

A stage whose credentials cannot be acquired fails HARD whatever its declared
policy.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from shipline.kernel.domain.stage import (
    Artifact,
    ArtifactCategory,
    FailurePolicy,
    GateVerdict,
    StageDefinition,
    StageExecution,
    StageState,
)
from shipline.kernel.exceptions import (
    CredentialResolutionError,
    RunCancelledError,
    StageTimeoutError,
)
from shipline.kernel.logging import get_logger
from shipline.kernel.orchestration.events import (
    Event,
    QualityGateResolved,
    StageCompleted,
    StageFailed,
    StageSkipped,
    StageStarted,
)
from shipline.kernel.ports.action import ActionInvocation, ActionResult, StageAction
from shipline.kernel.templating import render
from shipline.kernel.utils.redaction import redact
from shipline.kernel.utils.timer import Timer

if TYPE_CHECKING:
    from shipline.kernel.domain.run import Run
    from shipline.kernel.domain.stage import ActionSpec
    from shipline.kernel.orchestration.context import RunContext
    from shipline.kernel.orchestration.credentials import CredentialScopeManager

logger = get_logger(__name__)

CANCELLED = "cancelled"


class ActionProvider(Protocol):
    """Builds the action that carries out a rendered action spec."""

    def resolve(self, spec: ActionSpec) -> StageAction: ...


class StageExecutor:
    """Runs stage definitions and applies their failure policy.

    Parameters
    ----------
    actions : ActionProvider
        Turns action specs into runnable actions.
    credentials : CredentialScopeManager
        Acquires the credential scopes a stage declares.
    default_timeout : float | None
        Duration bound for stages that declare none.
    notify : Callable[[Event], object] | None
        Receives lifecycle events.
    action_overrides : Mapping[str, StageAction] | None
        Actions to use for specific stage names instead of the resolved ones
        (dry runs, tests).
    """

    def __init__(
        self,
        actions: ActionProvider,
        credentials: CredentialScopeManager,
        *,
        default_timeout: float | None = None,
        notify: Callable[[Event], object] | None = None,
        action_overrides: Mapping[str, StageAction] | None = None,
    ) -> None:
        self._actions = actions
        self._credentials = credentials
        self._default_timeout = default_timeout
        self._notify = notify or (lambda event: None)
        self._overrides = dict(action_overrides or {})

    async def run_stages(self, run: Run, context: RunContext) -> None:
        """Run every PENDING execution of ``run`` in order.

        Stops at the first HARD failure or when the run is cancelled; the
        executions never reached are marked SKIPPED.
        """
        skip_reason: str | None = None
        for execution in run.executions:
            if execution.state is not StageState.PENDING:
                continue
            if context.cancel_requested:
                skip_reason = "run cancelled"
                break

            await self.run_stage(execution.definition, context, execution)

            if context.cancel_requested:
                skip_reason = "run cancelled"
                break
            if execution.failed_hard:
                skip_reason = f"aborted after HARD failure of stage '{execution.name}'"
                break
            if execution.failed_soft:
                logger.warning(
                    "Stage '{}' failed with SOFT policy, continuing with a degraded run",
                    execution.name,
                )

        if skip_reason is not None:
            self.skip_remaining(run, skip_reason)

    def skip_remaining(self, run: Run, reason: str) -> None:
        for execution in run.skip_pending(reason):
            self._notify(StageSkipped(name=execution.name, reason=reason))

    async def run_stage(
        self,
        definition: StageDefinition,
        context: RunContext,
        execution: StageExecution | None = None,
    ) -> StageExecution:
        """Run one stage and record its outcome on ``execution``.

        Never raises for stage-level failures. Only task cancellation
        propagates, after the execution has been finished as FAILED.
        """
        execution = execution if execution is not None else StageExecution(definition=definition)
        execution.start()
        self._notify(
            StageStarted(
                name=definition.name, ordinal=definition.ordinal, policy=str(definition.policy)
            )
        )
        timer = Timer()
        redactions = self._credentials.masked_values()
        error: str | None = None
        log_path = context.log_path(definition.name)

        try:
            if context.cancel_requested:
                raise RunCancelledError(CANCELLED)

            values = context.values()
            spec = definition.action.render(values)
            action = self._overrides.get(definition.name) or self._actions.resolve(spec)

            async with self._credentials.scoped(
                definition.credentials, definition.name, context
            ) as scopes:
                env = dict(spec.env)
                for scope in scopes:
                    env.update(scope.environment())
                redactions = self._credentials.masked_values()
                invocation = ActionInvocation(
                    stage_name=definition.name,
                    args=tuple(spec.args),
                    env=env,
                    workspace=context.workspace,
                    log_path=log_path,
                    redactions=redactions,
                    unset_env=self._credentials.shielded_variables,
                )
                result = await self._invoke(action, invocation, definition, context)

            execution.exit_status = result.exit_status
            execution.verdict = result.verdict
            if not result.ok:
                error = result.detail or f"action exited with status {result.exit_status}"
        except CredentialResolutionError as e:
            execution.effective_policy = FailurePolicy.HARD
            error = str(e)
        except RunCancelledError:
            error = CANCELLED
        except StageTimeoutError as e:
            if definition.is_quality_gate:
                execution.verdict = GateVerdict.TIMED_OUT
            error = str(e)
        except asyncio.CancelledError:
            self._finish(execution, context, StageState.FAILED, CANCELLED, timer)
            raise
        except Exception as e:
            logger.debug("Stage '{}' raised {}", definition.name, type(e).__name__)
            error = f"{type(e).__name__}: {e}"

        if error is None:
            error = self._publish_exports(definition, context)
        state = StageState.SUCCESS if error is None else StageState.FAILED
        self._finish(execution, context, state, redact(error, redactions) if error else None, timer)
        return execution

    async def _invoke(
        self,
        action: StageAction,
        invocation: ActionInvocation,
        definition: StageDefinition,
        context: RunContext,
    ) -> ActionResult:
        """Run the action, racing it against the stage timeout and the cancel event."""
        timeout = definition.timeout if definition.timeout is not None else self._default_timeout
        action_task = asyncio.ensure_future(action.aexecute(invocation))
        cancel_task = asyncio.ensure_future(context.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {action_task, cancel_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            action_task.cancel()
            await asyncio.gather(action_task, return_exceptions=True)
            raise
        finally:
            cancel_task.cancel()

        if action_task in done:
            return action_task.result()

        action_task.cancel()
        await asyncio.gather(action_task, return_exceptions=True)
        if cancel_task in done:
            raise RunCancelledError(CANCELLED)
        raise StageTimeoutError(definition.name, timeout or 0.0, TimeoutError())

    def _publish_exports(self, definition: StageDefinition, context: RunContext) -> str | None:
        if not definition.exports:
            return None
        values = context.values()
        try:
            rendered = {
                name: render(template, values) for name, template in definition.exports.items()
            }
        except KeyError as e:
            return f"cannot render exports: {e}"
        context.derived.update(rendered)
        logger.debug("Stage '{}' exported {}", definition.name, sorted(rendered))
        return None

    def _finish(
        self,
        execution: StageExecution,
        context: RunContext,
        state: StageState,
        error: str | None,
        timer: Timer,
    ) -> None:
        execution.artifacts = self.collect_artifacts(execution.definition, context)
        execution.finish(state, error)

        if execution.verdict is not None:
            self._notify(
                QualityGateResolved(
                    name=execution.name,
                    verdict=str(execution.verdict),
                    waited_ms=timer.duration_ms,
                )
            )
        if state is StageState.SUCCESS:
            self._notify(
                StageCompleted(
                    name=execution.name,
                    duration_ms=timer.duration_ms,
                    artifacts=len(execution.artifacts),
                )
            )
        else:
            self._notify(
                StageFailed(
                    name=execution.name,
                    policy=str(execution.policy),
                    error=error or "failed",
                    exit_status=execution.exit_status,
                )
            )

    def collect_artifacts(self, definition: StageDefinition, context: RunContext) -> list[Artifact]:
        """Collect the declared artifacts present on disk plus the stage's build log.

        Declared artifacts that are missing are logged and never fail the stage.
        """
        workspace = context.workspace.resolve()
        values = context.values()
        found: dict[Path, Artifact] = {}

        for spec in definition.artifacts:
            try:
                pattern = render(spec.path, values)
                matches = sorted(workspace.glob(pattern))
            except (KeyError, ValueError, NotImplementedError) as e:
                logger.warning(
                    "Stage '{}': cannot evaluate artifact glob '{}': {}",
                    definition.name,
                    spec.path,
                    e,
                )
                continue

            files = [m for m in matches if m.is_file() and m.resolve().is_relative_to(workspace)]
            if not files:
                logger.warning(
                    "Stage '{}': declared artifact '{}' ({}) not found",
                    definition.name,
                    pattern,
                    spec.category,
                )
                continue
            for path in files:
                resolved = path.resolve()
                found.setdefault(
                    resolved,
                    Artifact(
                        stage=definition.name,
                        category=spec.category,
                        path=resolved,
                        relative_path=resolved.relative_to(workspace).as_posix(),
                    ),
                )

        log_path = context.log_path(definition.name).resolve()
        if log_path.is_file() and log_path not in found:
            found[log_path] = Artifact(
                stage=definition.name,
                category=ArtifactCategory.BUILD_LOG,
                path=log_path,
                relative_path=log_path.relative_to(workspace).as_posix(),
            )
        return list(found.values())
