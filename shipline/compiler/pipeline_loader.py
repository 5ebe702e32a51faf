"""Pipeline manifest loader.

Turns a ``kind: Pipeline`` YAML manifest into a validated
:class:`~shipline.kernel.domain.PipelineDefinition`. All definition-time
checks (undeclared parameters, unknown credential scopes, duplicate stages)
happen here, before any run is attempted.

Example manifest::

    apiVersion: shipline/v1
    kind: Pipeline
    metadata:
      name: backend
    spec:
      parameters:
        - name: tag
      credentials:
        registry:
          bindings: {REGISTRY_PASSWORD: registry/password}
      stages:
        - name: build
          action: {kind: command, args: [docker, build, -t, "backend:${tag}", .]}
        - name: push
          credentials: [registry]
          action: {kind: command, args: [docker, push, "backend:${tag}"]}
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from shipline.kernel.domain.pipeline import PipelineDefinition
from shipline.kernel.exceptions import PipelineDefinitionError
from shipline.kernel.logging import get_logger

logger = get_logger(__name__)

API_VERSION = "shipline/v1"


def load_pipeline(path: str | Path) -> PipelineDefinition:
    """Load and validate a pipeline manifest file.

    Raises
    ------
    PipelineDefinitionError
        If the file is missing, is not valid YAML or fails validation.
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PipelineDefinitionError(str(path), f"cannot read manifest: {e}") from e
    pipeline = load_pipeline_from_string(content, source=path.name)
    logger.debug("Loaded pipeline '{}' from {}", pipeline.name, path)
    return pipeline


def load_pipeline_from_string(content: str, source: str = "<string>") -> PipelineDefinition:
    """Load and validate a pipeline manifest from YAML text."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise PipelineDefinitionError(source, f"invalid YAML: {e}") from e
    return build_pipeline(data, source=source)


def build_pipeline(data: Any, source: str = "<manifest>") -> PipelineDefinition:
    """Validate an already parsed manifest."""
    if not isinstance(data, dict):
        raise PipelineDefinitionError(source, "manifest must be a mapping")

    api_version = data.get("apiVersion", API_VERSION)
    if api_version != API_VERSION:
        raise PipelineDefinitionError(
            source, f"unsupported apiVersion '{api_version}', expected '{API_VERSION}'"
        )
    kind = data.get("kind")
    if kind != "Pipeline":
        raise PipelineDefinitionError(
            source, f"manifest must use 'kind: Pipeline', got 'kind: {kind}'"
        )

    metadata = data.get("metadata") or {}
    spec = data.get("spec")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        raise PipelineDefinitionError(source, "'metadata.name' is required")
    if not isinstance(spec, dict):
        raise PipelineDefinitionError(source, "'spec' must be a mapping")

    try:
        return PipelineDefinition.model_validate(
            {
                "name": metadata["name"],
                "description": metadata.get("description", ""),
                **spec,
            }
        )
    except ValidationError as e:
        raise PipelineDefinitionError(metadata["name"], _format_errors(e)) from e


def _format_errors(error: ValidationError) -> str:
    messages = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"]) or "spec"
        messages.append(f"{location}: {detail['msg']}")
    return "; ".join(messages)
