"""Domain models: pipelines, stages, runs."""

from shipline.kernel.domain.pipeline import CredentialSpec, ParameterSpec, PipelineDefinition
from shipline.kernel.domain.run import Run, RunOutcome, new_run_id
from shipline.kernel.domain.stage import (
    ActionSpec,
    Artifact,
    ArtifactCategory,
    ArtifactSpec,
    CommandActionSpec,
    FailurePolicy,
    GateVerdict,
    PythonActionSpec,
    QualityGateActionSpec,
    StageDefinition,
    StageExecution,
    StageState,
    VerdictSourceSpec,
)

__all__ = [
    "ActionSpec",
    "Artifact",
    "ArtifactCategory",
    "ArtifactSpec",
    "CommandActionSpec",
    "CredentialSpec",
    "FailurePolicy",
    "GateVerdict",
    "ParameterSpec",
    "PipelineDefinition",
    "PythonActionSpec",
    "QualityGateActionSpec",
    "Run",
    "RunOutcome",
    "StageDefinition",
    "StageExecution",
    "StageState",
    "VerdictSourceSpec",
    "new_run_id",
]
