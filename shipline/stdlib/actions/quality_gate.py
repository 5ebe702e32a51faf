"""Quality gate stage action."""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any

from shipline.kernel.domain.stage import GateVerdict
from shipline.kernel.logging import get_logger
from shipline.kernel.orchestration.quality_gate import QualityGateEvaluator
from shipline.kernel.ports.action import ActionInvocation, ActionResult, StageAction
from shipline.kernel.resolver import resolve

if TYPE_CHECKING:
    from shipline.kernel.domain.stage import QualityGateActionSpec
    from shipline.kernel.ports.verdict import VerdictSource

logger = get_logger(__name__)


def build_verdict_source(
    spec: QualityGateActionSpec, environment: dict[str, str] | None = None
) -> VerdictSource:
    """Instantiate the verdict source named by ``spec.source``.

    The stage environment is passed as ``environment`` to sources whose
    constructor accepts it, so tokens can come from credential scopes.
    """
    source_cls = resolve(spec.source.kind)
    config: dict[str, Any] = dict(spec.source.config)
    if "environment" in inspect.signature(source_cls).parameters:
        config["environment"] = dict(environment or {})
    return source_cls(**config)


class QualityGateAction(StageAction):
    """Waits (bounded) for an external verdict and reports it.

    PASSED reports exit status 0; FAILED and TIMED_OUT report 1. Quality
    gate stages are always SOFT, so neither can abort the run.
    """

    def __init__(self, spec: QualityGateActionSpec, timeout: float, poll_interval: float) -> None:
        self.spec = spec
        self.timeout = spec.timeout if spec.timeout is not None else timeout
        self.poll_interval = spec.poll_interval if spec.poll_interval is not None else poll_interval

    async def aexecute(self, invocation: ActionInvocation) -> ActionResult:
        source = build_verdict_source(self.spec, dict(invocation.env))
        evaluator = QualityGateEvaluator(
            source, poll_interval=self.poll_interval, name=invocation.stage_name
        )
        try:
            verdict = await evaluator.wait_for_verdict(self.timeout)
        finally:
            close = getattr(source, "aclose", None)
            if close is not None:
                await close()

        invocation.log_path.parent.mkdir(parents=True, exist_ok=True)
        with invocation.log_path.open("a", encoding="utf-8") as fh:
            fh.write(f"quality gate verdict: {verdict}\n")

        if verdict is GateVerdict.PASSED:
            return ActionResult(exit_status=0, verdict=verdict)
        detail = (
            f"quality gate timed out after {self.timeout:g}s"
            if verdict is GateVerdict.TIMED_OUT
            else "quality gate verdict FAILED"
        )
        return ActionResult(exit_status=1, verdict=verdict, detail=detail)
