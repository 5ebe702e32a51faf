"""Stage definitions (static templates) and stage executions (runtime state).

A :class:`StageDefinition` is immutable once its pipeline is defined. A
:class:`StageExecution` is the runtime record of one definition inside one
run; only the stage executor mutates it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shipline.kernel.templating import iter_strings, render, render_structure


class FailurePolicy(StrEnum):
    """What a failing stage does to the rest of the run."""

    HARD = "hard"
    SOFT = "soft"


class StageState(StrEnum):
    """Lifecycle state of a stage execution.

    ``PENDING → RUNNING → {SUCCESS, FAILED}``; ``SKIPPED`` for stages never
    reached because an earlier HARD failure (or a cancellation) aborted the run.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"

    @property
    def is_terminal(self) -> bool:
        return self in (StageState.SUCCESS, StageState.FAILED, StageState.SKIPPED)


class ArtifactCategory(StrEnum):
    """Category an archived artifact is filed under."""

    REPORT = "report"
    IMAGE_SCAN_RESULT = "image-scan-result"
    BUILD_LOG = "build-log"


class GateVerdict(StrEnum):
    """Result of waiting on an external quality gate."""

    PASSED = "PASSED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


# ============================================================================
# Action specifications
# ============================================================================


def _scalar_to_str(value: Any) -> Any:
    """YAML reads `5` or `true` as numbers and booleans, argv wants strings."""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int | float):
        return str(value)
    return value


def _stringify_items(value: Any) -> Any:
    if isinstance(value, list | tuple):
        return [_scalar_to_str(item) for item in value]
    return value


class _ActionSpecBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    env: dict[str, str] = Field(default_factory=dict, description="Extra environment")

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {key: _scalar_to_str(item) for key, item in value.items()}
        return value

    def templates(self) -> list[str]:
        """All template strings that are rendered before invocation."""
        return list(iter_strings(self.model_dump(exclude={"kind"})))

    def render(self, values: dict[str, str]) -> _ActionSpecBase:
        """Return a copy with every ``${name}`` placeholder substituted."""
        return self.model_copy(
            update={
                "args": tuple(render(arg, values) for arg in getattr(self, "args", ())),
                "env": {key: render(value, values) for key, value in self.env.items()},
            }
        )


class CommandActionSpec(_ActionSpecBase):
    """Run an external program (scanner, builder, registry client)."""

    kind: Literal["command"] = "command"
    args: tuple[str, ...] = Field(min_length=1, description="argv, parameters substituted")

    @field_validator("args", mode="before")
    @classmethod
    def _stringify_args(cls, value: Any) -> Any:
        return _stringify_items(value)


class PythonActionSpec(_ActionSpecBase):
    """Call an in-process Python callable given as ``module.attr``."""

    kind: Literal["python"] = "python"
    target: str
    args: tuple[str, ...] = ()

    @field_validator("args", mode="before")
    @classmethod
    def _stringify_args(cls, value: Any) -> Any:
        return _stringify_items(value)


class VerdictSourceSpec(BaseModel):
    """Where a quality gate gets its verdict from."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: str = Field(description="'http', 'static' or a full module path")
    config: dict[str, Any] = Field(default_factory=dict)


class QualityGateActionSpec(_ActionSpecBase):
    """Wait (bounded) for an external analysis verdict."""

    kind: Literal["quality_gate"] = "quality_gate"
    source: VerdictSourceSpec
    timeout: float | None = Field(default=None, gt=0)
    poll_interval: float | None = Field(default=None, gt=0)

    @property
    def args(self) -> tuple[str, ...]:
        return ()

    def render(self, values: dict[str, str]) -> QualityGateActionSpec:
        source = self.source.model_copy(
            update={"config": render_structure(self.source.config, values)}
        )
        env = {key: render(value, values) for key, value in self.env.items()}
        return self.model_copy(update={"source": source, "env": env})


ActionSpec = Annotated[
    CommandActionSpec | PythonActionSpec | QualityGateActionSpec,
    Field(discriminator="kind"),
]


# ============================================================================
# Stage definition
# ============================================================================


class ArtifactSpec(BaseModel):
    """A declared stage output: a glob relative to the workspace."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str = Field(min_length=1)
    category: ArtifactCategory = ArtifactCategory.REPORT


class StageDefinition(BaseModel):
    """Static template of a pipeline stage.

    Attributes
    ----------
    name : str
        Unique stage name within the pipeline.
    ordinal : int
        Position in the pipeline (assigned by the pipeline definition).
    action : ActionSpec
        Opaque description of the external call.
    policy : FailurePolicy
        HARD aborts the run on failure, SOFT degrades it. Quality gates are
        always SOFT.
    timeout : float | None
        Expected duration bound in seconds. None uses the configured default.
    credentials : tuple[str, ...]
        Credential scopes acquired for the duration of this stage.
    artifacts : tuple[ArtifactSpec, ...]
        Declared outputs collected after the action, whatever its outcome.
    exports : dict[str, str]
        Values derived from parameters that later stages may reference,
        published only when this stage succeeds.
    needs : tuple[str, ...]
        Earlier stages this one depends on. Stages still run sequentially;
        this only documents ordering constraints and is validated.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(min_length=1, pattern=r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
    ordinal: int = 0
    action: ActionSpec
    policy: FailurePolicy = FailurePolicy.HARD
    description: str = ""
    timeout: float | None = Field(default=None, gt=0)
    credentials: tuple[str, ...] = ()
    artifacts: tuple[ArtifactSpec, ...] = ()
    exports: dict[str, str] = Field(default_factory=dict)
    needs: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _gate_policy_is_soft(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        action = data.get("action")
        kind = action.get("kind") if isinstance(action, dict) else getattr(action, "kind", None)
        if kind != "quality_gate":
            return data
        policy = data.get("policy")
        if policy is not None and str(policy).lower() == FailurePolicy.HARD:
            raise ValueError("quality gate stages are advisory and cannot use policy 'hard'")
        return {**data, "policy": FailurePolicy.SOFT}

    @field_validator("policy", mode="before")
    @classmethod
    def _normalise_policy(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @property
    def is_quality_gate(self) -> bool:
        return self.action.kind == "quality_gate"

    def templates(self) -> list[str]:
        """Every template string this stage renders at run time."""
        strings = self.action.templates()
        strings.extend(artifact.path for artifact in self.artifacts)
        strings.extend(self.exports.values())
        return strings


# ============================================================================
# Runtime records
# ============================================================================


@dataclass(frozen=True, slots=True)
class Artifact:
    """A file produced by a stage execution."""

    stage: str
    category: ArtifactCategory
    path: Path
    relative_path: str


@dataclass(slots=True)
class StageExecution:
    """Runtime state of one stage definition within one run."""

    definition: StageDefinition
    state: StageState = StageState.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    exit_status: int | None = None
    effective_policy: FailurePolicy | None = None
    verdict: GateVerdict | None = None
    error: str | None = None
    artifacts: list[Artifact] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def policy(self) -> FailurePolicy:
        """Policy applied to this execution's outcome."""
        return self.effective_policy or self.definition.policy

    @property
    def duration_ms(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    @property
    def failed_hard(self) -> bool:
        return self.state is StageState.FAILED and self.policy is FailurePolicy.HARD

    @property
    def failed_soft(self) -> bool:
        return self.state is StageState.FAILED and self.policy is FailurePolicy.SOFT

    def start(self) -> None:
        if self.state is not StageState.PENDING:
            raise RuntimeError(f"Stage '{self.name}' cannot start from state {self.state}")
        self.state = StageState.RUNNING
        self.started_at = datetime.now(UTC)

    def finish(self, state: StageState, error: str | None = None) -> None:
        if self.state is not StageState.RUNNING:
            raise RuntimeError(f"Stage '{self.name}' cannot finish from state {self.state}")
        if state not in (StageState.SUCCESS, StageState.FAILED):
            raise ValueError(f"Invalid terminal state for a started stage: {state}")
        self.state = state
        self.error = error
        self.finished_at = datetime.now(UTC)

    def skip(self, reason: str) -> None:
        if self.state is not StageState.PENDING:
            raise RuntimeError(f"Stage '{self.name}' cannot be skipped from state {self.state}")
        self.state = StageState.SKIPPED
        self.error = reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "ordinal": self.definition.ordinal,
            "state": str(self.state),
            "policy": str(self.policy),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "exit_status": self.exit_status,
            "verdict": str(self.verdict) if self.verdict else None,
            "error": self.error,
            "artifacts": [
                {"category": str(a.category), "path": a.relative_path} for a in self.artifacts
            ],
        }
