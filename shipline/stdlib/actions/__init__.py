"""Built-in stage actions and the resolver that picks one per action spec."""

from __future__ import annotations

from typing import TYPE_CHECKING

from shipline.stdlib.actions.command import CommandAction, run_command
from shipline.stdlib.actions.python import PythonAction
from shipline.stdlib.actions.quality_gate import QualityGateAction, build_verdict_source

if TYPE_CHECKING:
    from shipline.kernel.domain.stage import ActionSpec
    from shipline.kernel.ports.action import StageAction

DEFAULT_GATE_TIMEOUT = 300.0
DEFAULT_GATE_POLL_INTERVAL = 5.0


class ActionResolver:
    """Maps rendered action specs to action instances.

    Parameters
    ----------
    gate_timeout : float
        Quality gate wait for gate specs that declare none.
    gate_poll_interval : float
        Poll interval for gate specs that declare none.
    """

    def __init__(
        self,
        gate_timeout: float = DEFAULT_GATE_TIMEOUT,
        gate_poll_interval: float = DEFAULT_GATE_POLL_INTERVAL,
    ) -> None:
        self.gate_timeout = gate_timeout
        self.gate_poll_interval = gate_poll_interval
        self._command = CommandAction()

    def resolve(self, spec: ActionSpec) -> StageAction:
        match spec.kind:
            case "command":
                return self._command
            case "python":
                return PythonAction(spec.target)
            case "quality_gate":
                return QualityGateAction(spec, self.gate_timeout, self.gate_poll_interval)
        raise ValueError(f"Unknown action kind: {spec.kind}")


__all__ = [
    "ActionResolver",
    "CommandAction",
    "PythonAction",
    "QualityGateAction",
    "build_verdict_source",
    "run_command",
]
