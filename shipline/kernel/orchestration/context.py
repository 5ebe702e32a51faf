"""Shared run context passed by reference through the stage executor."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shipline.kernel.orchestration.credentials import CredentialScope
    from shipline.kernel.orchestration.parameters import ParameterBinding

LOG_DIR = Path(".shipline") / "logs"


@dataclass(slots=True)
class RunContext:
    """Mutable state shared by the stages of one run.

    Only one stage runs at a time, so it owns the context while it runs.

    Attributes
    ----------
    run_id : str
        Identifier of the run.
    workspace : Path
        The run's isolated working directory.
    parameters : ParameterBinding
        Validated, immutable run parameters.
    derived : dict[str, str]
        Values exported by stages that succeeded (e.g. a resolved image name).
    active_scopes : dict[str, CredentialScope]
        Credential scopes held by the currently running stage. Emptied when
        that stage ends.
    cancel_event : asyncio.Event
        Set to abort the run from outside.
    """

    run_id: str
    workspace: Path
    parameters: ParameterBinding
    derived: dict[str, str] = field(default_factory=dict)
    active_scopes: dict[str, CredentialScope] = field(default_factory=dict)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    def values(self) -> dict[str, str]:
        """Values available for ``${name}`` substitution."""
        return {**self.derived, **self.parameters}

    def log_path(self, stage_name: str) -> Path:
        return self.workspace / LOG_DIR / f"{stage_name}.log"

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()
