"""shipline - pipeline orchestration engine for build, test and security stages.

Examples
--------
Run a manifest from Python::

    import asyncio
    from shipline import RunController, load_pipeline

    pipeline = load_pipeline("pipelines/backend.yaml")
    report = asyncio.run(RunController().run(pipeline, {"tag": "v1.2.0"}))
    print(report.outcome)
"""

from importlib.metadata import PackageNotFoundError, version

from shipline.compiler import load_config, load_pipeline, load_pipeline_from_string
from shipline.kernel.config import ShiplineConfig
from shipline.kernel.domain import (
    ArtifactCategory,
    FailurePolicy,
    GateVerdict,
    PipelineDefinition,
    RunOutcome,
    StageDefinition,
    StageState,
)
from shipline.kernel.exceptions import (
    ConfigurationError,
    CredentialResolutionError,
    MissingParameterError,
    PipelineDefinitionError,
    ShiplineError,
)
from shipline.kernel.orchestration import ArchiveManifest, RunController, RunReport

try:
    __version__ = version("shipline")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "ArchiveManifest",
    "ArtifactCategory",
    "ConfigurationError",
    "CredentialResolutionError",
    "FailurePolicy",
    "GateVerdict",
    "MissingParameterError",
    "PipelineDefinition",
    "PipelineDefinitionError",
    "RunController",
    "RunOutcome",
    "RunReport",
    "ShiplineConfig",
    "StageDefinition",
    "StageState",
    "ShiplineError",
    "__version__",
    "load_config",
    "load_pipeline",
    "load_pipeline_from_string",
]
