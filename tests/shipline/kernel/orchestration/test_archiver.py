"""Tests for post-run archiving."""

from __future__ import annotations

import json
from pathlib import Path

from shipline.kernel.domain.pipeline import PipelineDefinition
from shipline.kernel.domain.run import Run
from shipline.kernel.domain.stage import Artifact, ArtifactCategory, StageState
from shipline.kernel.orchestration.archiver import (
    MANIFEST_FILE,
    REPORT_FILE,
    ArchiveManifest,
    ArtifactArchiver,
)


def _run(workspace: Path) -> Run:
    pipeline = PipelineDefinition.model_validate(
        {
            "name": "backend",
            "stages": [
                {"name": "install", "action": {"kind": "command", "args": ["npm", "ci"]}},
                {"name": "build", "action": {"kind": "command", "args": ["make"]}},
                {"name": "push", "action": {"kind": "command", "args": ["push"]}},
            ],
        }
    )
    run = Run.create("run-1", pipeline, {})
    install, build, _ = run.executions
    install.start()
    install.artifacts = [
        _artifact(workspace, "install", "reports/z.txt", ArtifactCategory.REPORT),
        _artifact(workspace, "install", "logs/install.log", ArtifactCategory.BUILD_LOG),
        _artifact(workspace, "install", "reports/a.txt", ArtifactCategory.REPORT),
    ]
    install.finish(StageState.SUCCESS)
    build.start()
    build.exit_status = 1
    build.finish(StageState.FAILED, "action exited with status 1")
    run.skip_pending("aborted after HARD failure of stage 'build'")
    run.finalize()
    return run


def _artifact(workspace: Path, stage: str, relative: str, category: ArtifactCategory) -> Artifact:
    path = workspace / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{stage}:{relative}")
    return Artifact(stage=stage, category=category, path=path, relative_path=relative)


class BrokenPublisher:
    def publish(self, manifest: ArchiveManifest, location: Path) -> Path:
        raise RuntimeError("template error")


class TestArtifactArchiver:
    def test_copies_artifacts_by_stage_and_category(self, tmp_path: Path) -> None:
        run = _run(tmp_path / "ws")
        manifest = ArtifactArchiver(tmp_path / "archive").archive(
            run.executions, run_id=run.run_id, pipeline_name="backend", outcome="FAILED"
        )

        location = tmp_path / "archive" / "run-1"
        assert manifest.location == str(location)
        assert (location / "install" / "report" / "reports" / "a.txt").read_text() == (
            "install:reports/a.txt"
        )
        assert (location / "install" / "build-log" / "logs" / "install.log").exists()
        assert manifest.artifact_count == 3
        assert manifest.errors == []

    def test_manifest_is_ordered_and_enumerable(self, tmp_path: Path) -> None:
        run = _run(tmp_path / "ws")
        manifest = ArtifactArchiver(tmp_path / "archive").archive(
            run.executions, run_id=run.run_id, pipeline_name="backend", outcome="FAILED"
        )

        assert [s.name for s in manifest.stages] == ["install", "build", "push"]
        assert [s.state for s in manifest.stages] == ["SUCCESS", "FAILED", "SKIPPED"]
        assert [a.source for a in manifest.stage("install").artifacts] == [
            "logs/install.log",
            "reports/a.txt",
            "reports/z.txt",
        ]
        assert [a.source for a in manifest.artifacts(category="report")] == [
            "reports/a.txt",
            "reports/z.txt",
        ]
        assert manifest.artifacts(stage="build") == []
        assert manifest.stage("build").exit_status == 1

    def test_writes_manifest_and_report(self, tmp_path: Path) -> None:
        run = _run(tmp_path / "ws")
        ArtifactArchiver(tmp_path / "archive").archive(
            run.executions, run_id=run.run_id, pipeline_name="backend", outcome="FAILED"
        )

        location = tmp_path / "archive" / "run-1"
        data = json.loads((location / MANIFEST_FILE).read_text())
        assert data["run_id"] == "run-1"
        assert data["outcome"] == "FAILED"
        assert len(data["stages"]) == 3

        report = (location / REPORT_FILE).read_text()
        assert "backend" in report
        assert "reports/a.txt" in report

    def test_report_escapes_html(self, tmp_path: Path) -> None:
        run = _run(tmp_path / "ws")
        run.executions[1].error = "<script>alert(1)</script>"
        ArtifactArchiver(tmp_path / "archive").archive(
            run.executions, run_id=run.run_id, pipeline_name="backend", outcome="FAILED"
        )

        report = (tmp_path / "archive" / "run-1" / REPORT_FILE).read_text()
        assert "<script>" not in report
        assert "&lt;script&gt;" in report

    def test_missing_artifact_recorded_not_raised(self, tmp_path: Path) -> None:
        run = _run(tmp_path / "ws")
        (tmp_path / "ws" / "reports" / "a.txt").unlink()

        manifest = ArtifactArchiver(tmp_path / "archive").archive(
            run.executions, run_id=run.run_id, pipeline_name="backend", outcome="FAILED"
        )

        assert manifest.artifact_count == 2
        assert len(manifest.errors) == 1
        assert "reports/a.txt" in manifest.errors[0]

    def test_publisher_failure_recorded(self, tmp_path: Path) -> None:
        run = _run(tmp_path / "ws")
        manifest = ArtifactArchiver(tmp_path / "archive", publishers=[BrokenPublisher()]).archive(
            run.executions, run_id=run.run_id, pipeline_name="backend", outcome="FAILED"
        )

        assert any("BrokenPublisher" in error for error in manifest.errors)
        assert (tmp_path / "archive" / "run-1" / MANIFEST_FILE).exists()

    def test_unwritable_archive_root(self, tmp_path: Path) -> None:
        blocker = tmp_path / "archive"
        blocker.write_text("not a directory")
        run = _run(tmp_path / "ws")

        manifest = ArtifactArchiver(blocker).archive(
            run.executions, run_id=run.run_id, pipeline_name="backend", outcome="FAILED"
        )

        assert manifest.stages == []
        assert "cannot create archive directory" in manifest.errors[0]

    def test_does_not_change_stage_outcomes(self, tmp_path: Path) -> None:
        run = _run(tmp_path / "ws")
        (tmp_path / "ws" / "reports" / "z.txt").unlink()
        ArtifactArchiver(tmp_path / "archive").archive(
            run.executions, run_id=run.run_id, pipeline_name="backend", outcome="FAILED"
        )

        assert [e.state for e in run.executions] == [
            StageState.SUCCESS,
            StageState.FAILED,
            StageState.SKIPPED,
        ]
