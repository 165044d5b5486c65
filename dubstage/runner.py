"""
Pipeline Runner
===============

Drives a job through all six stages in order using a DubbingOrchestrator.

- Stages already completed in the working copy are skipped (resume)
- A stage is never started while an earlier one is not completed
- When a stage raises, its failure is recorded and later stages do not run

Outputs later stages depend on are written as small JSON artifacts under the
work directory and recorded as the stage's output path:

    preprocess  <work_dir>/preprocessed.json   {"texts": [...]}
    media       <work_dir>/media.json          {"vocal_audio_path", "silent_video_path"}

A resumed run reloads them from there instead of from the previous session.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .errors import StageOrderError
from .orchestrator import DubbingOrchestrator
from .stages import STAGE_ORDER, ReferenceMode, Stage, StageStatus, first_incomplete_stage

logger = logging.getLogger(__name__)

PREPROCESS_ARTIFACT = "preprocessed.json"
MEDIA_ARTIFACT = "media.json"


@dataclass
class PipelineParams:
    """Everything a full dubbing run needs"""
    project_dir: str
    video_path: str
    subtitles: list = field(default_factory=list)
    work_dir: str = ""
    output_path: str = ""
    reference_mode: ReferenceMode = ReferenceMode.NONE
    reference_audio_path: Optional[str] = None
    tts_plugin_id: Optional[str] = None
    voice_id: Optional[str] = None
    batch_size: Optional[int] = None

    def __post_init__(self):
        if not self.work_dir:
            self.work_dir = str(Path(self.project_dir) / "dubbing")
        if not self.output_path:
            self.output_path = str(Path(self.project_dir) / "dubbed.mp4")


def _write_json(path: Path, data: dict) -> None:
    """Atomic write: temp file, fsync, rename"""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    with open(temp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.flush()
        os.fsync(f.fileno())
    os.replace(temp_path, path)


class PipelineRunner:
    def __init__(self, orchestrator: DubbingOrchestrator):
        self.orchestrator = orchestrator

    @property
    def state(self):
        return self.orchestrator.state

    async def run(self, params: PipelineParams) -> str:
        """
        Run (or resume) the whole pipeline and return the output video path.
        """
        orch = self.orchestrator
        if not await orch.check_resumable(params.project_dir):
            if self.state.job is None or self.state.job.status == StageStatus.COMPLETED:
                await orch.reset_job()
            await orch.init_job(
                project_dir=params.project_dir,
                video_path=params.video_path,
                subtitle_count=len(params.subtitles),
                reference_mode=params.reference_mode,
                reference_audio_path=params.reference_audio_path,
                tts_plugin_id=params.tts_plugin_id,
            )

        job_id = self.state.job_id
        steps = {
            Stage.PREPROCESS: self._preprocess,
            Stage.MEDIA: self._media,
            Stage.REFERENCE: self._reference,
            Stage.TTS: self._tts,
            Stage.ALIGNMENT: self._compose,
            Stage.COMPOSE: self._compose,
        }

        stage = first_incomplete_stage(self.state.stage_statuses)
        if stage is not None and stage != Stage.PREPROCESS:
            logger.info("Resuming job %s at %s", job_id, stage.value)

        while stage is not None:
            self._check_order(stage)
            try:
                await steps[stage](job_id, params)
            except Exception as e:
                await orch.record_stage_failure(stage, str(e))
                raise
            stage = first_incomplete_stage(self.state.stage_statuses)

        return self.state.output_path or self._persisted_output(Stage.COMPOSE) or params.output_path

    def _check_order(self, stage: Stage) -> None:
        blocking = first_incomplete_stage(self.state.stage_statuses)
        if blocking is not None and STAGE_ORDER.index(blocking) < STAGE_ORDER.index(stage):
            raise StageOrderError(
                f"Cannot run {stage.value}: {blocking.value} is "
                f"{self.state.stage_statuses[blocking].value}"
            )

    # =========================================================================
    # Artifacts
    # =========================================================================

    def _persisted_output(self, stage: Stage) -> str:
        job = self.state.job
        if job is None:
            return ""
        return job.stage_state(stage).output_path or ""

    def _load_artifact(self, stage: Stage) -> dict:
        path = self._persisted_output(stage)
        if not path:
            raise StageOrderError(f"{stage.value} is completed but recorded no output; reset the job")
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StageOrderError(f"Cannot load {stage.value} output {path}: {e}") from e

    def _preprocessed_texts(self) -> list[str]:
        if not self.state.preprocessed_texts:
            data = self._load_artifact(Stage.PREPROCESS)
            self.state.update(preprocessed_texts=[str(t) for t in data.get("texts", [])])
        return self.state.preprocessed_texts

    def _media_paths(self) -> tuple[str, str]:
        if not self.state.silent_video_path:
            data = self._load_artifact(Stage.MEDIA)
            if not data.get("silent_video_path"):
                raise StageOrderError("media output has no silent video; reset the job")
            self.state.update(
                vocal_audio_path=data.get("vocal_audio_path") or "",
                silent_video_path=data["silent_video_path"],
            )
        return self.state.vocal_audio_path, self.state.silent_video_path

    # =========================================================================
    # Steps
    # =========================================================================

    async def _preprocess(self, job_id: str, params: PipelineParams) -> None:
        texts = await self.orchestrator.run_preprocess(job_id, params.subtitles, params.batch_size)
        artifact = Path(params.work_dir) / PREPROCESS_ARTIFACT
        _write_json(artifact, {"texts": texts})
        await self.orchestrator.record_stage_completed(Stage.PREPROCESS, output_path=str(artifact))

    async def _media(self, job_id: str, params: PipelineParams) -> None:
        result = await self.orchestrator.run_media_separation(
            job_id, params.video_path, params.work_dir
        )
        artifact = Path(params.work_dir) / MEDIA_ARTIFACT
        _write_json(artifact, {
            "vocal_audio_path": result.vocal_audio_path,
            "silent_video_path": result.silent_video_path,
        })
        await self.orchestrator.record_stage_completed(Stage.MEDIA, output_path=str(artifact))

    async def _reference(self, job_id: str, params: PipelineParams) -> None:
        vocal_audio, _ = self._media_paths()
        await self.orchestrator.run_reference_generation(
            job_id,
            params.reference_mode,
            params.subtitles,
            params.work_dir,
            vocal_audio_path=vocal_audio or None,
            custom_audio_path=params.reference_audio_path,
        )
        await self.orchestrator.record_stage_completed(Stage.REFERENCE)

    async def _tts(self, job_id: str, params: PipelineParams) -> None:
        texts = self._preprocessed_texts()
        await self.orchestrator.init_tts_items(job_id, params.subtitles, texts)
        result = await self.orchestrator.run_tts_generation(
            job_id,
            params.work_dir,
            plugin_id=params.tts_plugin_id,
            voice_id=params.voice_id,
        )
        if result.completed < result.total:
            raise RuntimeError(f"TTS finished {result.completed}/{result.total} items")
        await self.orchestrator.record_stage_completed(Stage.TTS)

    async def _compose(self, job_id: str, params: PipelineParams) -> None:
        _, silent_video = self._media_paths()
        result = await self.orchestrator.run_alignment_and_compose(
            job_id, silent_video, params.work_dir, params.output_path
        )
        await self.orchestrator.record_stage_completed(Stage.ALIGNMENT)
        await self.orchestrator.record_stage_completed(Stage.COMPOSE, output_path=result.output_path)
