"""Domain model for a single pipeline run."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from shipline.kernel.domain.stage import StageExecution, StageState

if TYPE_CHECKING:
    from collections.abc import Mapping

    from shipline.kernel.domain.pipeline import PipelineDefinition


class RunOutcome(StrEnum):
    """Final outcome signal of a run.

    Consumed by whatever decides whether to promote the produced artifacts.
    """

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    FAILED_NONBLOCKING = "FAILED_NONBLOCKING"


def new_run_id() -> str:
    """Generate a sortable, path-safe run id."""
    return f"{time.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}"


@dataclass(slots=True)
class Run:
    """One invocation of a pipeline.

    Owns its stage executions exclusively. All executions exist from the start
    of the run in PENDING state so that stages never reached can be reported
    as SKIPPED.
    """

    run_id: str
    pipeline_name: str
    parameters: Mapping[str, str]
    executions: list[StageExecution]
    workspace: Path | None = None
    outcome: RunOutcome | None = None
    cancelled: bool = False
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @classmethod
    def create(
        cls,
        run_id: str,
        pipeline: PipelineDefinition,
        parameters: Mapping[str, str],
    ) -> Run:
        return cls(
            run_id=run_id,
            pipeline_name=pipeline.name,
            parameters=parameters,
            executions=[StageExecution(definition=stage) for stage in pipeline.stages],
        )

    def skip_pending(self, reason: str) -> list[StageExecution]:
        """Mark every not-yet-started execution SKIPPED."""
        skipped = [e for e in self.executions if e.state is StageState.PENDING]
        for execution in skipped:
            execution.skip(reason)
        return skipped

    def encountered(self) -> list[StageExecution]:
        """Executions that were actually started, in order."""
        return [e for e in self.executions if e.started_at is not None]

    def compute_outcome(self) -> RunOutcome:
        """Derive the run outcome from stage states.

        Any HARD failure, a cancellation or an unexpected controller error
        gives FAILED. Otherwise any SOFT failure gives FAILED_NONBLOCKING.
        """
        if self.cancelled or self.error is not None:
            return RunOutcome.FAILED
        if any(e.failed_hard for e in self.executions):
            return RunOutcome.FAILED
        if any(e.failed_soft for e in self.executions):
            return RunOutcome.FAILED_NONBLOCKING
        return RunOutcome.SUCCESS

    def finalize(self) -> RunOutcome:
        self.outcome = self.compute_outcome()
        self.finished_at = datetime.now(UTC)
        return self.outcome

    @property
    def duration_ms(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "pipeline": self.pipeline_name,
            "outcome": str(self.outcome) if self.outcome else None,
            "cancelled": self.cancelled,
            "error": self.error,
            "parameters": dict(self.parameters),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "stages": [e.to_dict() for e in self.executions],
        }
