"""
DubStage Orchestrator
=====================

Facade that the UI layer talks to. It owns one DubbingState working copy
and is constructed with its collaborators:

- JobStore         persisted jobs and stages
- ExecutionEngine  runs each stage
- EventSource      engine push events, applied by an EventBridge

Responsibilities:
- Job lifecycle: resume check, init, reset, cancel
- Stage execution: forward typed requests, return structured results
- Background save-back of event-driven progress to the store

All stage writes to the store (save-backs and record_stage_*) go through one
lock, one at a time and in the order they were issued, so the store ends up
with the last update the orchestrator saw.

Stage operations are fire-and-await; the caller sequences them in pipeline
order (dubstage.runner.PipelineRunner does this for headless use).
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from .bridge import EventBridge
from .contracts import EventSource, ExecutionEngine, JobStore
from .stages import ReferenceMode, Stage, StageStatus, parse_reference_mode, parse_stage
from .state.events import EventType, JobEventLog
from .state.machine import DubbingState
from .state.models import (
    ComposeResult,
    MediaSeparationResult,
    SubtitleEntry,
    TtsGenerationResult,
    TtsItemEntry,
)

logger = logging.getLogger(__name__)


class DubbingOrchestrator:
    """
    Dubbing job orchestrator.

    Lifecycle calls that only read or refresh state (check_resumable,
    event save-backs) log and swallow collaborator failures. Everything
    else propagates them to the caller.
    """

    def __init__(
        self,
        store: JobStore,
        engine: ExecutionEngine,
        events: EventSource,
        event_log: Optional[JobEventLog] = None,
        persist_progress: bool = True,
    ):
        self.store = store
        self.engine = engine
        self.event_log = event_log
        self.persist_progress = persist_progress

        self.state = DubbingState()
        self.bridge = EventBridge(events, self.state, on_stage_update=self._on_stage_update)

        self._save_backs: set[asyncio.Task] = set()
        self._write_lock: Optional[asyncio.Lock] = None
        self._write_lock_loop: Optional[asyncio.AbstractEventLoop] = None

    # =========================================================================
    # Event Subscriptions
    # =========================================================================

    async def start(self) -> None:
        await self.bridge.start()

    def stop(self) -> None:
        self.bridge.stop()

    async def __aenter__(self) -> "DubbingOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stop()
        await self.flush()

    # =========================================================================
    # Job Lifecycle
    # =========================================================================

    async def check_resumable(self, project_dir: str) -> bool:
        """
        Load the persisted job for a project and adopt it.

        Returns False when there is no job, when the job is not resumable, or
        when the store could not be reached.
        """
        try:
            job = await self.store.get_job(project_dir)
        except Exception:
            logger.exception("Resume check failed for %s", project_dir)
            return False

        if job is None:
            return False

        self.state.adopt(job)
        resumable = self.state.resumable
        if resumable:
            self._log_event(EventType.JOB_RESUMED, message=f"Resumable job for {project_dir}")
        return resumable

    async def init_job(
        self,
        project_dir: str,
        video_path: str,
        subtitle_count: int,
        reference_mode: "str | ReferenceMode" = ReferenceMode.NONE,
        reference_audio_path: Optional[str] = None,
        tts_plugin_id: Optional[str] = None,
    ) -> str:
        """Create the job for a project and make it the working copy"""
        job = await self.store.create_job(
            project_dir=project_dir,
            video_path=video_path,
            subtitle_count=subtitle_count,
            reference_mode=parse_reference_mode(reference_mode),
            reference_audio_path=reference_audio_path,
            tts_plugin_id=tts_plugin_id,
        )
        self.state.adopt(job)
        self._log_event(
            EventType.JOB_CREATED,
            message=f"Job created for {video_path}",
            data={"project_dir": project_dir, "subtitle_count": subtitle_count},
        )
        logger.info("Dubbing job %s ready for %s", job.id, project_dir)
        return job.id

    async def reset_job(self) -> None:
        """
        Rewind the active job in the store and clear the working copy.

        Pending save-backs are written first; any queued behind the reset
        see that the job is no longer active and are dropped.
        """
        job_id = self.state.job_id
        if job_id is None:
            return

        await self.flush()
        async with self._lock():
            await self.store.reset_job(job_id)
            self.state.reset()
        self._log_event(EventType.JOB_RESET, job_id=job_id)
        logger.info("Dubbing job %s reset", job_id)

    async def cancel(self) -> None:
        """
        Ask the engine to stop and clear is_running.

        Stage statuses are left as they are; a stage that was running stays
        running until the engine reports otherwise.
        """
        try:
            await self.engine.cancel()
        finally:
            self.state.set_running(False)
        self._log_event(EventType.CANCEL_REQUESTED)

    async def record_stage_completed(
        self, stage: "str | Stage", output_path: Optional[str] = None
    ) -> None:
        """Mark a stage completed locally and in the store"""
        stage = parse_stage(stage)
        self.state.set_progress(stage, 100.0)
        self.state.set_status(stage, StageStatus.COMPLETED)
        await self._write_stage(stage, StageStatus.COMPLETED, progress=100.0, output_path=output_path)

    async def record_stage_failure(self, stage: "str | Stage", message: str) -> None:
        """Mark a stage failed locally and in the store"""
        stage = parse_stage(stage)
        self.state.set_status(stage, StageStatus.FAILED, error=message)
        self._log_event(EventType.STAGE_FAILED, stage=stage.value, error=message)
        await self._write_stage(
            stage, StageStatus.FAILED, progress=self.state.stage_progress[stage], error=message
        )

    # =========================================================================
    # Stage Execution
    # =========================================================================

    async def run_preprocess(
        self,
        job_id: str,
        subtitles: list[SubtitleEntry],
        batch_size: Optional[int] = None,
    ) -> list[str]:
        texts = await self._execute(
            Stage.PREPROCESS,
            self.engine.preprocess(job_id, subtitles, batch_size),
        )
        self.state.update(preprocessed_texts=list(texts))
        return texts

    async def run_media_separation(
        self, job_id: str, video_path: str, work_dir: str
    ) -> MediaSeparationResult:
        result = await self._execute(
            Stage.MEDIA,
            self.engine.separate_media(job_id, video_path, work_dir),
        )
        self.state.update(
            vocal_audio_path=result.vocal_audio_path,
            silent_video_path=result.silent_video_path,
        )
        return result

    async def run_reference_generation(
        self,
        job_id: str,
        reference_mode: "str | ReferenceMode",
        subtitles: list[SubtitleEntry],
        work_dir: str,
        vocal_audio_path: Optional[str] = None,
        custom_audio_path: Optional[str] = None,
    ) -> Any:
        return await self._execute(
            Stage.REFERENCE,
            self.engine.generate_reference(
                job_id,
                parse_reference_mode(reference_mode),
                subtitles,
                work_dir,
                vocal_audio_path=vocal_audio_path,
                custom_audio_path=custom_audio_path,
            ),
        )

    async def init_tts_items(
        self,
        job_id: str,
        subtitles: list[SubtitleEntry],
        preprocessed: list[str],
    ) -> None:
        """Number the TTS items 0..n-1 locally and register them with the engine"""
        items = TtsItemEntry.build_all(subtitles, preprocessed)
        self.state.init_items(len(items))
        await self.engine.init_tts_items(job_id, items)

    async def run_tts_generation(
        self,
        job_id: str,
        work_dir: str,
        plugin_id: Optional[str] = None,
        voice_id: Optional[str] = None,
    ) -> TtsGenerationResult:
        return await self._execute(
            Stage.TTS,
            self.engine.generate_tts(job_id, work_dir, plugin_id=plugin_id, voice_id=voice_id),
        )

    async def run_alignment_and_compose(
        self,
        job_id: str,
        silent_video_path: str,
        work_dir: str,
        output_path: str,
    ) -> ComposeResult:
        result = await self._execute(
            Stage.ALIGNMENT,
            self.engine.align_and_compose(job_id, silent_video_path, work_dir, output_path),
        )
        self.state.update(output_path=result.output_path)
        return result

    async def _execute(self, stage: Stage, call) -> Any:
        self.state.set_running(True)
        self._log_event(EventType.STAGE_STARTED, stage=stage.value)
        try:
            result = await call
        finally:
            self.state.set_running(False)
        self._log_event(EventType.STAGE_COMPLETED, stage=stage.value)
        return result

    # =========================================================================
    # Save-backs
    # =========================================================================

    def _on_stage_update(self, stage: Stage) -> None:
        job_id = self.state.job_id
        if not self.persist_progress or job_id is None:
            return

        status = self.state.stage_statuses[stage]
        progress = self.state.stage_progress[stage]
        task = asyncio.get_running_loop().create_task(
            self._save_back(job_id, stage, status, progress)
        )
        self._save_backs.add(task)
        task.add_done_callback(self._save_backs.discard)

    async def _save_back(self, job_id: str, stage: Stage, status: StageStatus, progress: float) -> None:
        try:
            async with self._lock():
                if self.state.job_id != job_id:
                    logger.debug("Dropping %s save-back for inactive job %s", stage.value, job_id)
                    return
                await self.store.update_stage(job_id, stage, status, progress=progress)
        except Exception as e:
            logger.warning("Could not save %s progress for job %s: %s", stage.value, job_id, e)

    async def _write_stage(self, stage: Stage, status: StageStatus, **fields) -> None:
        """Write after every save-back issued so far (errors propagate)"""
        job_id = self.state.job_id
        if job_id is None:
            return
        await self.flush()
        async with self._lock():
            await self.store.update_stage(job_id, stage, status, **fields)

    def _lock(self) -> asyncio.Lock:
        # asyncio.Lock binds to the loop it first waits on
        loop = asyncio.get_running_loop()
        if self._write_lock is None or self._write_lock_loop is not loop:
            self._write_lock = asyncio.Lock()
            self._write_lock_loop = loop
        return self._write_lock

    async def flush(self) -> None:
        """Wait for outstanding save-backs"""
        while self._save_backs:
            await asyncio.gather(*list(self._save_backs), return_exceptions=True)

    def _log_event(self, event_type: EventType, job_id: Optional[str] = None, **fields) -> None:
        if self.event_log is None:
            return
        try:
            self.event_log.append(event_type, job_id=job_id or self.state.job_id, **fields)
        except OSError as e:
            logger.warning("Could not write %s to event log: %s", event_type, e)


def create_orchestrator(config: dict) -> DubbingOrchestrator:
    """Create an orchestrator wired to the SQL store and the Redis engine"""
    from .engine.redis_client import RedisEngineClient
    from .engine.redis_events import RedisEventSource
    from .state.database import SqlJobStore, create_database
    from .state.events import create_event_log

    queue_config = config.get("queues", {})
    redis_url = queue_config.get("redis_url", "redis://localhost:6379/0")
    prefix = queue_config.get("channel_prefix", "dubbing:")

    Path(config.get("paths", {}).get("state_dir", "./state")).mkdir(parents=True, exist_ok=True)

    return DubbingOrchestrator(
        store=SqlJobStore(create_database(config)),
        engine=RedisEngineClient(
            redis_url=redis_url,
            channel_prefix=prefix,
            request_timeout=config.get("engine", {}).get("request_timeout_sec", 3600),
        ),
        events=RedisEventSource(redis_url=redis_url, channel_prefix=prefix),
        event_log=create_event_log(config),
        persist_progress=config.get("orchestrator", {}).get("persist_progress", True),
    )
