"""Run orchestration: parameters, credentials, workspaces, stages, archiving."""

from shipline.kernel.orchestration.archiver import (
    ArchivedArtifact,
    ArchiveManifest,
    ArtifactArchiver,
    HtmlReportPublisher,
    StageArchiveEntry,
)
from shipline.kernel.orchestration.context import RunContext
from shipline.kernel.orchestration.credentials import CredentialScope, CredentialScopeManager
from shipline.kernel.orchestration.events import (
    ArchiveCompleted,
    Event,
    EventBus,
    QualityGateResolved,
    RunCompleted,
    RunStarted,
    StageCompleted,
    StageFailed,
    StageSkipped,
    StageStarted,
)
from shipline.kernel.orchestration.parameters import ParameterBinding, ParameterResolver
from shipline.kernel.orchestration.quality_gate import QualityGateEvaluator
from shipline.kernel.orchestration.run_controller import RunController, RunReport
from shipline.kernel.orchestration.stage_executor import StageExecutor
from shipline.kernel.orchestration.workspace import WorkspaceManager

__all__ = [
    "ArchiveCompleted",
    "ArchiveManifest",
    "ArchivedArtifact",
    "ArtifactArchiver",
    "CredentialScope",
    "CredentialScopeManager",
    "Event",
    "EventBus",
    "HtmlReportPublisher",
    "ParameterBinding",
    "ParameterResolver",
    "QualityGateEvaluator",
    "QualityGateResolved",
    "RunCompleted",
    "RunContext",
    "RunController",
    "RunReport",
    "RunStarted",
    "StageArchiveEntry",
    "StageCompleted",
    "StageExecutor",
    "StageFailed",
    "StageSkipped",
    "StageStarted",
    "WorkspaceManager",
]
