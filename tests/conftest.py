from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import pytest

from dubstage.contracts import ExecutionEngine, JobStore
from dubstage.engine.local import LocalEventBus
from dubstage.errors import BackendError
from dubstage.orchestrator import DubbingOrchestrator
from dubstage.stages import STAGE_ORDER, ReferenceMode, StageStatus, parse_stage, parse_status
from dubstage.state.events import JobEventLog
from dubstage.state.models import (
    ComposeResult,
    Job,
    MediaSeparationResult,
    StageState,
    SubtitleEntry,
    TtsGenerationResult,
)


class MemoryStore(JobStore):
    """Dict-backed JobStore; set fail_with to make every call raise"""

    def __init__(self) -> None:
        self.jobs: dict[str, Job] = {}
        self.updates: list[tuple] = []
        self.fail_with: Optional[Exception] = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def add(self, job: Job) -> Job:
        self.jobs[job.project_dir] = job
        return job

    def by_id(self, job_id: str) -> Job:
        for job in self.jobs.values():
            if job.id == job_id:
                return job
        raise BackendError(f"Job {job_id} not found")

    async def get_job(self, project_dir: str) -> Optional[Job]:
        self._check()
        job = self.jobs.get(project_dir)
        return Job.from_dict(job.to_dict()) if job else None

    async def create_job(
        self,
        project_dir,
        video_path,
        subtitle_count,
        reference_mode,
        reference_audio_path=None,
        tts_plugin_id=None,
    ) -> Job:
        self._check()
        if project_dir not in self.jobs:
            self.add(Job(
                id=str(uuid.uuid4()),
                project_dir=project_dir,
                video_path=video_path,
                subtitle_count=subtitle_count,
                reference_mode=reference_mode,
                reference_audio_path=reference_audio_path,
                tts_plugin_id=tts_plugin_id,
            ))
        return Job.from_dict(self.jobs[project_dir].to_dict())

    async def reset_job(self, job_id: str) -> None:
        self._check()
        job = self.by_id(job_id)
        job.status = StageStatus.PENDING
        job.current_stage = None
        job.error = None
        job.stages = [StageState.pending(job.id, s) for s in STAGE_ORDER]

    async def update_stage(self, job_id, stage, status, progress=None, output_path=None, error=None):
        self._check()
        stage, status = parse_stage(stage), parse_status(status)
        self.updates.append((stage, status, progress))
        job = self.by_id(job_id)
        state = job.stage_state(stage)
        state.status = status
        if status == StageStatus.COMPLETED:
            state.progress = 100.0
        elif progress is not None:
            state.progress = progress
        if output_path is not None:
            state.output_path = output_path
        if error is not None:
            state.error = error
        if status == StageStatus.COMPLETED and all(
            s.status == StageStatus.COMPLETED for s in job.stages
        ):
            job.status = StageStatus.COMPLETED
        elif status == StageStatus.FAILED:
            job.status = StageStatus.FAILED
        else:
            job.status = StageStatus.RUNNING
        return state


class ScriptedEngine(ExecutionEngine):
    """
    ExecutionEngine returning canned results.

    fail maps an operation name to the exception it raises; block_tts makes
    generate_tts wait until cancel().
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.fail: dict[str, Exception] = {}
        self.cancelled = 0
        self.tts_items: list = []
        self.reference_vocal: Optional[str] = None
        self.tts_result = None
        self.block_tts = False
        self._release: Optional[asyncio.Event] = None
        self.tts_started: Optional[asyncio.Event] = None

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail:
            raise self.fail[operation]

    async def preprocess(self, job_id, subtitles, batch_size=None):
        self._record("preprocess")
        return [s.text.upper() for s in subtitles]

    async def separate_media(self, job_id, video_path, work_dir):
        self._record("media_separation")
        return MediaSeparationResult(
            vocal_audio_path=f"{work_dir}/vocals.wav",
            silent_video_path=f"{work_dir}/silent.mp4",
        )

    async def generate_reference(
        self, job_id, reference_mode, subtitles, work_dir,
        vocal_audio_path=None, custom_audio_path=None,
    ):
        self._record("reference_generation")
        self.reference_vocal = vocal_audio_path
        return {"reference_audio_path": f"{work_dir}/reference.wav"}

    async def init_tts_items(self, job_id, items):
        self._record("init_tts_items")
        self.tts_items = list(items)

    async def generate_tts(self, job_id, work_dir, plugin_id=None, voice_id=None):
        self._record("tts_generation")
        if self.block_tts:
            self._release = asyncio.Event()
            if self.tts_started is not None:
                self.tts_started.set()
            await self._release.wait()
        if self.tts_result is not None:
            return self.tts_result
        return TtsGenerationResult(completed=len(self.tts_items), total=len(self.tts_items))

    async def align_and_compose(self, job_id, silent_video_path, work_dir, output_path):
        self._record("alignment_and_compose")
        return ComposeResult(output_path=output_path)

    async def cancel(self):
        self.cancelled += 1
        if self._release is not None:
            self._release.set()


def make_job(project_dir: str = "/projects/demo", status=StageStatus.PENDING, stages=None) -> Job:
    job_id = str(uuid.uuid4())
    statuses = stages or {}
    return Job(
        id=job_id,
        project_dir=project_dir,
        video_path=f"{project_dir}/video.mp4",
        subtitle_count=3,
        reference_mode=ReferenceMode.NONE,
        status=status,
        stages=[
            StageState(
                job_id=job_id,
                stage=stage,
                status=statuses.get(stage, StageStatus.PENDING),
                progress=100.0 if statuses.get(stage) == StageStatus.COMPLETED else 0.0,
            )
            for stage in STAGE_ORDER
        ],
    )


def make_subtitles(count: int = 3) -> list[SubtitleEntry]:
    return [
        SubtitleEntry(id=i + 1, start=i * 2.0, end=i * 2.0 + 1.5, text=f"line {i}")
        for i in range(count)
    ]


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def engine() -> ScriptedEngine:
    return ScriptedEngine()


@pytest.fixture
def bus() -> LocalEventBus:
    return LocalEventBus()


@pytest.fixture
def event_log(tmp_path) -> JobEventLog:
    return JobEventLog(tmp_path / "events.jsonl")


@pytest.fixture
def orchestrator(store, engine, bus, event_log) -> DubbingOrchestrator:
    return DubbingOrchestrator(store, engine, bus, event_log=event_log)
