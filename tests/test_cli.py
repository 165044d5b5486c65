from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from click.testing import CliRunner

from dubstage.cli import main
from dubstage.stages import Stage, StageStatus
from dubstage.state.database import StateDatabase
from dubstage.state.events import EventType, JobEventLog


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump({"paths": {"state_dir": str(tmp_path / "state")}, "logging": {"level": "WARNING"}}),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def db(tmp_path: Path) -> StateDatabase:
    return StateDatabase(tmp_path / "state" / "dubstage.db")


def _invoke(config_file: Path, *args: str, **kwargs):
    return CliRunner().invoke(main, ["--config", str(config_file), *args], **kwargs)


def test_version() -> None:
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "DubStage" in result.output


def test_status_without_job(config_file) -> None:
    result = _invoke(config_file, "status", "/projects/none")
    assert result.exit_code == 0
    assert "No dubbing job" in result.output


def test_status_shows_stages(config_file, db) -> None:
    job = db.create_job("/projects/demo", "/projects/demo/in.mp4", 10, "none")
    db.update_stage(job.id, Stage.PREPROCESS, StageStatus.COMPLETED)
    db.update_stage(job.id, Stage.MEDIA, StageStatus.FAILED, error="ffmpeg missing")

    result = _invoke(config_file, "status", "/projects/demo")

    assert result.exit_code == 0, result.output
    assert "Subtitle Preprocessing: completed (100%)" in result.output
    assert "Media Separation: failed" in result.output
    assert "ffmpeg missing" in result.output
    assert "16.7%" in result.output


def test_list_jobs(config_file, db) -> None:
    db.create_job("/projects/alpha", "/a.mp4", 1, "none")
    job = db.create_job("/projects/beta", "/b.mp4", 1, "none")
    db.update_stage(job.id, Stage.PREPROCESS, StageStatus.RUNNING)

    result = _invoke(config_file, "list")
    assert result.exit_code == 0, result.output
    assert "alpha" in result.output
    assert "beta" in result.output

    result = _invoke(config_file, "list", "--status", "running")
    assert "beta" in result.output
    assert "alpha" not in result.output


def test_list_without_jobs(config_file) -> None:
    result = _invoke(config_file, "list")
    assert "No jobs found" in result.output


def test_reset_rewinds_job_and_logs_it(config_file, db, tmp_path) -> None:
    job = db.create_job("/projects/demo", "/in.mp4", 1, "none")
    db.update_stage(job.id, Stage.PREPROCESS, StageStatus.COMPLETED)

    result = _invoke(config_file, "reset", "/projects/demo", "--yes")

    assert result.exit_code == 0, result.output
    assert db.get_job("/projects/demo").stage_state(Stage.PREPROCESS).status == StageStatus.PENDING
    events = JobEventLog(tmp_path / "state" / "events.jsonl").get_job_timeline(job.id)
    assert [e.event_type for e in events] == [EventType.JOB_RESET]


def test_reset_asks_for_confirmation(config_file, db) -> None:
    job = db.create_job("/projects/demo", "/in.mp4", 1, "none")
    db.update_stage(job.id, Stage.PREPROCESS, StageStatus.COMPLETED)

    result = _invoke(config_file, "reset", "/projects/demo", input="n\n")

    assert result.exit_code == 1
    assert db.get_job("/projects/demo").stage_state(Stage.PREPROCESS).status == StageStatus.COMPLETED


def test_history_shows_timeline(config_file, db, tmp_path) -> None:
    job = db.create_job("/projects/demo", "/in.mp4", 1, "none")
    log = JobEventLog(tmp_path / "state" / "events.jsonl")
    log.append(EventType.JOB_CREATED, job_id=job.id, message="created")
    log.append(EventType.STAGE_FAILED, job_id=job.id, stage="media", error="disk full")

    result = _invoke(config_file, "history", "/projects/demo")

    assert result.exit_code == 0, result.output
    assert "job_created" in result.output
    assert "disk full" in result.output


def test_history_without_events(config_file, db) -> None:
    db.create_job("/projects/demo", "/in.mp4", 1, "none")
    result = _invoke(config_file, "history", "/projects/demo")
    assert "No events recorded" in result.output
