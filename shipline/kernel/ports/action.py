"""Port interface for stage actions.

An action is an opaque external call (scanner, image builder, registry
client). The engine hands it concrete argument strings, with parameters
already substituted, and an environment holding any acquired credential
bindings. It gets back an exit status. Actions may write files into the
workspace; the engine only knows the declared output globs.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from shipline.kernel.domain.stage import GateVerdict


@dataclass(frozen=True, slots=True)
class ActionInvocation:
    """Everything an action receives for one stage execution.

    Attributes
    ----------
    stage_name : str
        Name of the stage being executed.
    args : tuple[str, ...]
        Concrete argument strings, parameters substituted.
    env : Mapping[str, str]
        Stage environment plus credential bindings. Credentials travel only
        through this mapping, never through ``args``.
    workspace : Path
        The run's isolated working directory.
    log_path : Path
        Where the action should write its build log.
    redactions : frozenset[str]
        Secret values that must never be written to logs or artifacts.
    unset_env : frozenset[str]
        Engine environment variables holding credentials. Child processes
        must not inherit them; a stage that owns the credential gets it
        through ``env``.
    """

    stage_name: str
    args: tuple[str, ...]
    env: Mapping[str, str]
    workspace: Path
    log_path: Path
    redactions: frozenset[str] = field(default_factory=frozenset)
    unset_env: frozenset[str] = field(default_factory=frozenset)

    def __repr__(self) -> str:
        # env may hold credential values
        return (
            f"ActionInvocation(stage_name={self.stage_name!r}, args={self.args!r}, "
            f"env=<{len(self.env)} vars>, workspace={str(self.workspace)!r})"
        )


class ActionResult(BaseModel):
    """Outcome reported by an action.

    Attributes
    ----------
    exit_status : int
        0 means success, anything else failure.
    detail : str | None
        Short human-readable explanation, logged by the executor.
    verdict : GateVerdict | None
        Set by quality gate actions.
    """

    model_config = ConfigDict(frozen=True)

    exit_status: int
    detail: str | None = None
    verdict: GateVerdict | None = None

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


@runtime_checkable
class StageAction(Protocol):
    """Port interface for anything a stage can run."""

    @abstractmethod
    async def aexecute(self, invocation: ActionInvocation) -> ActionResult:
        """Run the action and report its exit status.

        Implementations may raise; the stage executor turns any exception
        into a FAILED stage execution.
        """
        ...
