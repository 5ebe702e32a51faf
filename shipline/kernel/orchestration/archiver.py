"""Post-run artifact archiving and report publishing.

Runs exactly once per run after the stage loop has ended, whichever way it
ended. Archiving is bookkeeping: it never changes a stage outcome and never
raises for missing or unreadable artifacts. Problems are logged and listed in
the manifest's ``errors``.

Layout of a run archive::

    <archive_root>/<run_id>/
        manifest.json
        report.html
        <stage>/<category>/<path relative to the workspace>
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from jinja2.sandbox import SandboxedEnvironment
from pydantic import BaseModel, ConfigDict, Field

from shipline.kernel.logging import get_logger

if TYPE_CHECKING:
    from shipline.kernel.domain.stage import Artifact, StageExecution

logger = get_logger(__name__)

MANIFEST_FILE = "manifest.json"
REPORT_FILE = "report.html"


class ArchivedArtifact(BaseModel):
    """One artifact copied into the run archive."""

    model_config = ConfigDict(frozen=True)

    stage: str
    category: str
    source: str = Field(description="Path relative to the run workspace")
    archived: str = Field(description="Path relative to the run archive directory")
    size_bytes: int


class StageArchiveEntry(BaseModel):
    """Archive record of one stage execution."""

    model_config = ConfigDict(frozen=True)

    name: str
    ordinal: int
    state: str
    policy: str
    exit_status: int | None = None
    verdict: str | None = None
    error: str | None = None
    artifacts: list[ArchivedArtifact] = Field(default_factory=list)

    def by_category(self) -> dict[str, list[ArchivedArtifact]]:
        grouped: dict[str, list[ArchivedArtifact]] = {}
        for artifact in self.artifacts:
            grouped.setdefault(artifact.category, []).append(artifact)
        return grouped


class ArchiveManifest(BaseModel):
    """Run-scoped, enumerable index of everything that was archived.

    Stages appear in pipeline order; artifacts within a stage are ordered by
    category, then path.
    """

    run_id: str
    pipeline: str
    outcome: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    location: str
    stages: list[StageArchiveEntry] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def artifact_count(self) -> int:
        return sum(len(stage.artifacts) for stage in self.stages)

    def artifacts(
        self, stage: str | None = None, category: str | None = None
    ) -> list[ArchivedArtifact]:
        """Enumerate archived artifacts, optionally filtered."""
        return [
            artifact
            for entry in self.stages
            if stage is None or entry.name == stage
            for artifact in entry.artifacts
            if category is None or artifact.category == category
        ]

    def stage(self, name: str) -> StageArchiveEntry:
        for entry in self.stages:
            if entry.name == name:
                return entry
        raise KeyError(name)


class ReportPublisher(Protocol):
    """Writes a human-readable report next to the manifest."""

    def publish(self, manifest: ArchiveManifest, location: Path) -> Path: ...


_REPORT_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>{{ manifest.pipeline }} - run {{ manifest.run_id }}</title>
  <style>
    body { font-family: sans-serif; margin: 2em; }
    table { border-collapse: collapse; }
    td, th { border: 1px solid #ccc; padding: 4px 8px; text-align: left; }
    .SUCCESS { color: #1a7f37; } .FAILED { color: #cf222e; }
    .FAILED_NONBLOCKING { color: #9a6700; } .SKIPPED { color: #6e7781; }
  </style>
</head>
<body>
  <h1>{{ manifest.pipeline }}</h1>
  <p>Run <code>{{ manifest.run_id }}</code>:
     <strong class="{{ manifest.outcome }}">{{ manifest.outcome or "UNKNOWN" }}</strong></p>
  <table>
    <tr><th>#</th><th>Stage</th><th>Policy</th><th>State</th><th>Exit</th><th>Artifacts</th></tr>
    {% for stage in manifest.stages %}
    <tr>
      <td>{{ stage.ordinal }}</td>
      <td>{{ stage.name }}</td>
      <td>{{ stage.policy }}</td>
      <td class="{{ stage.state }}">{{ stage.state }}
        {% if stage.verdict %}({{ stage.verdict }}){% endif %}
        {% if stage.error %}<br><small>{{ stage.error }}</small>{% endif %}</td>
      <td>{{ stage.exit_status if stage.exit_status is not none else "" }}</td>
      <td>
        {% for category, items in stage.by_category().items() %}
        <b>{{ category }}</b>:
        {% for artifact in items %}
        <a href="{{ artifact.archived }}">{{ artifact.source }}</a>
        {% endfor %}<br>
        {% endfor %}
      </td>
    </tr>
    {% endfor %}
  </table>
  {% if manifest.errors %}
  <h2>Archiving errors</h2>
  <ul>{% for error in manifest.errors %}<li>{{ error }}</li>{% endfor %}</ul>
  {% endif %}
</body>
</html>
"""


class HtmlReportPublisher:
    """Renders ``report.html`` from the manifest with jinja2."""

    def __init__(self, template: str = _REPORT_TEMPLATE) -> None:
        # Manifest values come from stage output, escape them for HTML
        env = SandboxedEnvironment(autoescape=True, keep_trailing_newline=True)
        self._template = env.from_string(template)

    def publish(self, manifest: ArchiveManifest, location: Path) -> Path:
        target = location / REPORT_FILE
        target.write_text(self._template.render(manifest=manifest), encoding="utf-8")
        return target


class ArtifactArchiver:
    """Copies stage artifacts into a run-scoped archive and writes its manifest.

    Parameters
    ----------
    archive_root : Path
        Directory holding one subdirectory per run.
    publishers : Sequence[ReportPublisher] | None
        Report publishers run after the artifacts are copied. Defaults to the
        HTML report.
    """

    def __init__(
        self,
        archive_root: Path,
        publishers: Sequence[ReportPublisher] | None = None,
    ) -> None:
        self.archive_root = Path(archive_root)
        self.publishers = list(publishers) if publishers is not None else [HtmlReportPublisher()]

    def archive(
        self,
        executions: Iterable[StageExecution],
        *,
        run_id: str,
        pipeline_name: str,
        outcome: str | None = None,
    ) -> ArchiveManifest:
        """Archive the artifacts of every execution and return the manifest.

        Never raises for artifact, report or manifest problems.
        """
        location = self.archive_root / run_id
        manifest = ArchiveManifest(
            run_id=run_id, pipeline=pipeline_name, outcome=outcome, location=str(location)
        )

        try:
            location.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._record(manifest, f"cannot create archive directory {location}: {e}")
            return manifest

        for execution in sorted(executions, key=lambda e: e.definition.ordinal):
            ordered = sorted(execution.artifacts, key=lambda a: (a.category, a.relative_path))
            archived = [
                copied
                for artifact in ordered
                if (copied := self._copy(artifact, location, manifest)) is not None
            ]
            manifest.stages.append(
                StageArchiveEntry(
                    name=execution.name,
                    ordinal=execution.definition.ordinal,
                    state=str(execution.state),
                    policy=str(execution.policy),
                    exit_status=execution.exit_status,
                    verdict=str(execution.verdict) if execution.verdict else None,
                    error=execution.error,
                    artifacts=archived,
                )
            )

        for publisher in self.publishers:
            try:
                report = publisher.publish(manifest, location)
                logger.debug("Published report {}", report)
            except Exception as e:
                self._record(manifest, f"report publisher {type(publisher).__name__} failed: {e}")

        try:
            (location / MANIFEST_FILE).write_text(
                manifest.model_dump_json(indent=2), encoding="utf-8"
            )
        except OSError as e:
            self._record(manifest, f"cannot write {MANIFEST_FILE}: {e}")

        logger.info(
            "Archived {} artifacts of run '{}' to {}",
            manifest.artifact_count,
            run_id,
            location,
        )
        return manifest

    def _copy(
        self, artifact: Artifact, location: Path, manifest: ArchiveManifest
    ) -> ArchivedArtifact | None:
        relative = Path(artifact.stage) / str(artifact.category) / artifact.relative_path
        target = location / relative
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(artifact.path, target)
            size = target.stat().st_size
        except OSError as e:
            self._record(
                manifest,
                f"stage '{artifact.stage}': cannot archive {artifact.relative_path}: {e}",
            )
            return None
        return ArchivedArtifact(
            stage=artifact.stage,
            category=str(artifact.category),
            source=artifact.relative_path,
            archived=relative.as_posix(),
            size_bytes=size,
        )

    @staticmethod
    def _record(manifest: ArchiveManifest, message: str) -> None:
        logger.warning("Archive: {}", message)
        manifest.errors.append(message)
