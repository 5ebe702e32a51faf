"""Mock stage action implementation for testing purposes."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field

from shipline.kernel.domain.stage import GateVerdict
from shipline.kernel.ports.action import ActionInvocation, ActionResult, StageAction


@dataclass
class RecordedInvocation:
    """A recorded action invocation for test assertions."""

    stage_name: str
    args: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict)


class MockAction(StageAction):
    """Mock StageAction for testing and dry runs.

    Records every invocation, optionally writes files into the workspace and
    returns a pre-configured result.

    Parameters
    ----------
    exit_status : int
        Exit status to report (default: 0).
    outputs : Mapping[str, str] | None
        Files to write, as workspace-relative path → content, before
        reporting. Lets tests produce declared artifacts.
    delay : float
        Seconds to sleep before reporting (for timeout and cancel tests).
    error : BaseException | None
        Raised instead of returning a result.
    verdict : GateVerdict | None
        Verdict to report (quality gate stand-in).
    log : str | None
        Text appended to the stage build log.

    Examples
    --------
    Basic usage::

        build = MockAction(exit_status=1)
        controller = RunController(action_overrides={"build": build})
        ...
        assert build.call_count == 1
        assert build.invocations[0].args == ("docker", "build", "-t", "backend:v1.2.0", ".")
    """

    def __init__(
        self,
        exit_status: int = 0,
        outputs: Mapping[str, str] | None = None,
        delay: float = 0.0,
        error: BaseException | None = None,
        verdict: GateVerdict | None = None,
        log: str | None = None,
    ) -> None:
        self.exit_status = exit_status
        self.outputs = dict(outputs or {})
        self.delay = delay
        self.error = error
        self.verdict = verdict
        self.log = log
        self.invocations: list[RecordedInvocation] = []
        self.cancelled = False

    @property
    def call_count(self) -> int:
        return len(self.invocations)

    async def aexecute(self, invocation: ActionInvocation) -> ActionResult:
        self.invocations.append(
            RecordedInvocation(
                stage_name=invocation.stage_name,
                args=tuple(invocation.args),
                env=dict(invocation.env),
            )
        )
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise

        for relative, content in self.outputs.items():
            target = invocation.workspace / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        if self.log is not None:
            invocation.log_path.parent.mkdir(parents=True, exist_ok=True)
            with invocation.log_path.open("a", encoding="utf-8") as fh:
                fh.write(self.log)

        if self.error is not None:
            raise self.error
        return ActionResult(exit_status=self.exit_status, verdict=self.verdict)
