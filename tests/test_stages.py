from __future__ import annotations

import pytest

from dubstage.errors import InvalidStageError
from dubstage.stages import (
    STAGE_LABELS,
    STAGE_ORDER,
    ReferenceMode,
    Stage,
    StageStatus,
    first_incomplete_stage,
    parse_reference_mode,
    parse_stage,
    parse_status,
)
from dubstage.state.models import Job, StageState, SubtitleEntry, TtsItemEntry


def test_stage_order_is_fixed() -> None:
    assert [s.value for s in STAGE_ORDER] == [
        "preprocess", "media", "reference", "tts", "alignment", "compose",
    ]
    assert set(STAGE_LABELS) == set(STAGE_ORDER)


def test_parse_rejects_unknown_names() -> None:
    assert parse_stage("tts") is Stage.TTS
    assert parse_status(StageStatus.FAILED) is StageStatus.FAILED
    assert parse_reference_mode("clone") is ReferenceMode.CLONE
    with pytest.raises(InvalidStageError):
        parse_stage("mixing")
    with pytest.raises(ValueError):
        parse_status("cancelled")


def test_first_incomplete_stage() -> None:
    statuses = {s: StageStatus.COMPLETED for s in STAGE_ORDER[:3]}
    assert first_incomplete_stage(statuses) == Stage.TTS
    assert first_incomplete_stage({s: StageStatus.COMPLETED for s in STAGE_ORDER}) is None


def test_job_always_has_six_stages_in_order() -> None:
    job = Job(
        id="j1",
        project_dir="/p",
        video_path="/p/v.mp4",
        stages=[
            StageState(job_id="j1", stage=Stage.TTS, status=StageStatus.RUNNING, progress=10),
            StageState(job_id="j1", stage=Stage.PREPROCESS, status=StageStatus.COMPLETED, progress=100),
            StageState(job_id="j1", stage=Stage.TTS, status=StageStatus.FAILED, progress=40),
        ],
    )
    assert [s.stage for s in job.stages] == list(STAGE_ORDER)
    assert job.stage_state("tts").status == StageStatus.FAILED
    assert job.stage_state(Stage.MEDIA).status == StageStatus.PENDING


def test_job_from_dict_parses_timestamps() -> None:
    job = Job.from_dict({
        "id": "j1",
        "project_dir": "/p",
        "video_path": "/p/v.mp4",
        "status": "running",
        "current_stage": "media",
        "stages": [{
            "job_id": "j1",
            "stage": "preprocess",
            "status": "completed",
            "progress": 100,
            "completed_at": "2024-05-01T10:00:00+00:00",
        }],
    })
    assert job.status == StageStatus.RUNNING
    assert job.current_stage == Stage.MEDIA
    assert job.stages[0].completed_at.year == 2024
    assert len(job.stages) == 6


def test_tts_items_fall_back_to_subtitle_text() -> None:
    subs = [
        SubtitleEntry(id=1, start=0.0, end=1.0, text="hello"),
        SubtitleEntry(id=2, start=1.0, end=2.0, text="world"),
        SubtitleEntry(id=3, start=2.0, end=3.0, text="again"),
    ]
    items = TtsItemEntry.build_all(subs, ["HELLO", ""])
    assert [i.preprocessed_text for i in items] == ["HELLO", "world", "again"]
    assert [i.id for i in items] == [1, 2, 3]
