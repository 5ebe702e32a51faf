"""Shared fixtures for the shipline test suite.

- ``backend_pipeline``: the four-stage delivery pipeline used by the run scenarios
- ``config``: engine configuration rooted in the test's temporary directory
- ``secrets``: in-memory secret store holding the registry password
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from shipline.compiler.pipeline_loader import load_pipeline_from_string
from shipline.kernel.config.models import ShiplineConfig
from shipline.stdlib.adapters.secret import StaticSecretStore

if TYPE_CHECKING:
    from pathlib import Path

    from shipline.kernel.domain.pipeline import PipelineDefinition

REGISTRY_PASSWORD = "hunter2-registry"

BACKEND_PIPELINE_YAML = """\
apiVersion: shipline/v1
kind: Pipeline
metadata:
  name: backend
spec:
  parameters:
    - name: tag
  credentials:
    registry:
      bindings:
        REGISTRY_PASSWORD: registry/password
  stages:
    - name: install
      action:
        kind: command
        args: [npm, ci]
      artifacts:
        - path: reports/install.txt
          category: report
    - name: secretScan
      policy: soft
      action:
        kind: command
        args: [gitleaks, detect, --report-path, reports/secrets.json]
      artifacts:
        - path: reports/secrets.json
          category: report
    - name: build
      action:
        kind: command
        args: [docker, build, -t, "backend:${tag}", .]
      exports:
        image: "backend:${tag}"
    - name: push
      credentials: [registry]
      action:
        kind: command
        args: [docker, push, "${image}"]
"""


@pytest.fixture
def backend_pipeline() -> PipelineDefinition:
    return load_pipeline_from_string(BACKEND_PIPELINE_YAML, source="backend.yaml")


@pytest.fixture
def config(tmp_path: Path) -> ShiplineConfig:
    return ShiplineConfig(
        workspace_root=tmp_path / "workspaces",
        archive_root=tmp_path / "archive",
        gate_timeout=1.0,
        gate_poll_interval=0.01,
    )


@pytest.fixture
def secrets() -> StaticSecretStore:
    return StaticSecretStore({"registry/password": REGISTRY_PASSWORD})


@pytest.fixture
def registry_password() -> str:
    return REGISTRY_PASSWORD
