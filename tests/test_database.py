from __future__ import annotations

import asyncio

import pytest

from dubstage.errors import BackendError, InvalidStageError
from dubstage.stages import STAGE_ORDER, ReferenceMode, Stage, StageStatus
from dubstage.state.database import SqlJobStore, StateDatabase, create_database


@pytest.fixture
def db(tmp_path) -> StateDatabase:
    return StateDatabase(tmp_path / "state" / "dubstage.db")


def _new_job(db: StateDatabase, project_dir: str = "/projects/demo"):
    return db.create_job(project_dir, f"{project_dir}/video.mp4", 24, "custom", "/ref.wav", "xtts")


def test_create_job_has_six_pending_stages(db) -> None:
    job = _new_job(db)

    assert job.status == StageStatus.PENDING
    assert job.reference_mode == ReferenceMode.CUSTOM
    assert job.tts_plugin_id == "xtts"
    assert [s.stage for s in job.stages] == list(STAGE_ORDER)
    assert all(s.status == StageStatus.PENDING and s.progress == 0 for s in job.stages)


def test_create_job_returns_existing_job_for_project(db) -> None:
    first = _new_job(db)
    second = db.create_job("/projects/demo", "/other.mp4", 1, ReferenceMode.NONE)

    assert second.id == first.id
    assert second.video_path == "/projects/demo/video.mp4"
    assert len(db.list_jobs()) == 1


@pytest.mark.parametrize(
    "args",
    [
        ("", "/v.mp4", 1, "none"),
        ("/p", "  ", 1, "none"),
        ("/p", "/v.mp4", -1, "none"),
        ("/p", "/v.mp4", 1, "karaoke"),
    ],
)
def test_create_job_rejects_bad_input(db, args) -> None:
    with pytest.raises(BackendError):
        db.create_job(*args)


def test_get_job_not_found_is_none(db) -> None:
    assert db.get_job("/nowhere") is None
    assert db.get_job_by_id("missing") is None


def test_update_stage_enforces_status_invariants(db) -> None:
    job = _new_job(db)

    running = db.update_stage(job.id, Stage.MEDIA, StageStatus.RUNNING, progress=40, output_path="/w/x")
    assert running.progress == 40
    assert running.completed_at is None

    completed = db.update_stage(job.id, "media", "completed", progress=12, output_path="/w/silent.mp4")
    assert completed.progress == 100
    assert completed.completed_at is not None
    assert completed.output_path == "/w/silent.mp4"

    pending = db.update_stage(job.id, Stage.MEDIA, StageStatus.PENDING)
    assert pending.progress == 0
    assert pending.output_path is None
    assert pending.completed_at is None


def test_update_stage_rejects_unknown_names(db) -> None:
    job = _new_job(db)
    with pytest.raises(InvalidStageError):
        db.update_stage(job.id, "mixing", StageStatus.RUNNING)
    with pytest.raises(BackendError):
        db.update_stage("missing", Stage.TTS, StageStatus.RUNNING)


def test_stage_updates_roll_up_into_job(db) -> None:
    job = _new_job(db)

    db.update_stage(job.id, Stage.PREPROCESS, StageStatus.RUNNING)
    loaded = db.get_job("/projects/demo")
    assert loaded.status == StageStatus.RUNNING
    assert loaded.current_stage == Stage.PREPROCESS

    db.update_stage(job.id, Stage.PREPROCESS, StageStatus.COMPLETED)
    assert db.get_job("/projects/demo").status == StageStatus.RUNNING

    db.update_stage(job.id, Stage.MEDIA, StageStatus.FAILED, error="ffmpeg missing")
    loaded = db.get_job("/projects/demo")
    assert loaded.status == StageStatus.FAILED
    assert loaded.error == "ffmpeg missing"
    assert loaded.stage_state(Stage.MEDIA).error == "ffmpeg missing"

    for stage in STAGE_ORDER:
        db.update_stage(job.id, stage, StageStatus.COMPLETED)
    assert db.get_job("/projects/demo").status == StageStatus.COMPLETED


def test_failure_without_message_keeps_job_error(db) -> None:
    job = _new_job(db)
    db.update_stage(job.id, Stage.MEDIA, StageStatus.FAILED, error="ffmpeg missing")
    db.update_stage(job.id, Stage.MEDIA, StageStatus.FAILED, progress=20)

    loaded = db.get_job("/projects/demo")
    assert loaded.status == StageStatus.FAILED
    assert loaded.error == "ffmpeg missing"
    assert loaded.stage_state(Stage.MEDIA).error == "ffmpeg missing"


def test_reset_rewinds_job_in_place(db) -> None:
    job = _new_job(db)
    db.update_stage(job.id, Stage.PREPROCESS, StageStatus.COMPLETED)
    db.update_stage(job.id, Stage.MEDIA, StageStatus.FAILED, progress=30, error="boom")

    db.reset_job(job.id)

    loaded = db.get_job("/projects/demo")
    assert loaded.id == job.id
    assert loaded.status == StageStatus.PENDING
    assert loaded.current_stage is None
    assert loaded.error is None
    for stage in loaded.stages:
        assert stage.status == StageStatus.PENDING
        assert stage.progress == 0
        assert stage.error is None
        assert stage.completed_at is None


def test_reset_unknown_job_fails(db) -> None:
    with pytest.raises(BackendError):
        db.reset_job("missing")


def test_list_jobs_filters_by_status(db) -> None:
    a = _new_job(db, "/projects/a")
    _new_job(db, "/projects/b")
    db.update_stage(a.id, Stage.PREPROCESS, StageStatus.RUNNING)

    assert [j.project_dir for j in db.list_jobs(status="running")] == ["/projects/a"]
    assert len(db.list_jobs()) == 2


def test_sql_job_store_runs_off_loop(db) -> None:
    store = SqlJobStore(db)

    async def scenario():
        job = await store.create_job("/projects/demo", "/v.mp4", 2, ReferenceMode.NONE)
        await store.update_stage(job.id, Stage.PREPROCESS, StageStatus.COMPLETED)
        await store.reset_job(job.id)
        return await store.get_job("/projects/demo")

    job = asyncio.run(scenario())
    assert job.stage_state(Stage.PREPROCESS).status == StageStatus.PENDING


def test_create_database_uses_state_dir(tmp_path) -> None:
    db = create_database({"paths": {"state_dir": str(tmp_path / "s")}})
    assert db.db_path == tmp_path / "s" / "dubstage.db"
    assert db.db_path.exists()
