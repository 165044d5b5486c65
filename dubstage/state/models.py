"""
Job Data Model
==============

Plain dataclasses for jobs, stage states, TTS items and the request/response
records exchanged with the execution engine.

Jobs and stage states are owned by the job store; the orchestrator keeps a
working copy. TTS items live only in the orchestrator.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Optional

from dateutil import parser as dateparser

from ..stages import (
    STAGE_ORDER,
    ItemStatus,
    ReferenceMode,
    Stage,
    StageStatus,
    parse_reference_mode,
    parse_stage,
    parse_status,
)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return dateparser.isoparse(str(value))


@dataclass
class StageState:
    """Persisted state of one stage within one job"""
    job_id: str
    stage: Stage
    status: StageStatus = StageStatus.PENDING
    progress: float = 0.0
    output_path: Optional[str] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def pending(cls, job_id: str, stage: Stage) -> "StageState":
        return cls(job_id=job_id, stage=stage)

    @classmethod
    def from_dict(cls, data: dict) -> "StageState":
        return cls(
            job_id=data["job_id"],
            stage=parse_stage(data["stage"]),
            status=parse_status(data.get("status") or StageStatus.PENDING),
            progress=float(data.get("progress") or 0.0),
            output_path=data.get("output_path"),
            error=data.get("error"),
            completed_at=_parse_timestamp(data.get("completed_at")),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["stage"] = self.stage.value
        data["status"] = self.status.value
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return data


@dataclass
class Job:
    """
    One dubbing run for a project.

    A job always carries exactly one StageState per Stage, in pipeline
    order. Records that arrive with missing stages are padded with pending
    entries when parsed.
    """
    id: str
    project_dir: str
    video_path: str
    subtitle_count: int = 0
    reference_mode: ReferenceMode = ReferenceMode.NONE
    reference_audio_path: Optional[str] = None
    tts_plugin_id: Optional[str] = None
    status: StageStatus = StageStatus.PENDING
    current_stage: Optional[Stage] = None
    error: Optional[str] = None
    stages: list[StageState] = field(default_factory=list)

    def __post_init__(self):
        self.stages = self._normalize_stages(self.stages)

    def _normalize_stages(self, stages: list[StageState]) -> list[StageState]:
        by_stage: dict[Stage, StageState] = {}
        for state in stages:
            # Later duplicates win, keeping one entry per (job, stage)
            by_stage[state.stage] = state
        return [
            by_stage.get(stage) or StageState.pending(self.id, stage)
            for stage in STAGE_ORDER
        ]

    def stage_state(self, stage: "str | Stage") -> StageState:
        stage = parse_stage(stage)
        for state in self.stages:
            if state.stage == stage:
                return state
        raise KeyError(stage)

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        current = data.get("current_stage")
        return cls(
            id=data["id"],
            project_dir=data["project_dir"],
            video_path=data.get("video_path") or "",
            subtitle_count=int(data.get("subtitle_count") or 0),
            reference_mode=parse_reference_mode(data.get("reference_mode") or ReferenceMode.NONE),
            reference_audio_path=data.get("reference_audio_path"),
            tts_plugin_id=data.get("tts_plugin_id"),
            status=parse_status(data.get("status") or StageStatus.PENDING),
            current_stage=parse_stage(current) if current else None,
            error=data.get("error"),
            stages=[StageState.from_dict(s) for s in data.get("stages") or []],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_dir": self.project_dir,
            "video_path": self.video_path,
            "subtitle_count": self.subtitle_count,
            "reference_mode": self.reference_mode.value,
            "reference_audio_path": self.reference_audio_path,
            "tts_plugin_id": self.tts_plugin_id,
            "status": self.status.value,
            "current_stage": self.current_stage.value if self.current_stage else None,
            "error": self.error,
            "stages": [s.to_dict() for s in self.stages],
        }


@dataclass
class TtsItemProgress:
    """Synthesis state of one subtitle line, keyed by zero-based index"""
    index: int
    status: ItemStatus = ItemStatus.PENDING
    audio_path: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# Engine Request / Response Records
# =============================================================================

@dataclass
class SubtitleEntry:
    """One subtitle line; times are in seconds"""
    id: int
    start: float
    end: float
    text: str


@dataclass
class TtsItemEntry:
    id: int
    start: float
    end: float
    preprocessed_text: str

    @classmethod
    def build_all(cls, subtitles: list, preprocessed: list) -> list:
        """
        Pair subtitles with their preprocessed texts.

        Lines without a (non-empty) preprocessed text fall back to the
        original subtitle text.
        """
        items = []
        for i, sub in enumerate(subtitles):
            text = preprocessed[i] if i < len(preprocessed) else ""
            items.append(cls(
                id=sub.id,
                start=sub.start,
                end=sub.end,
                preprocessed_text=text or sub.text,
            ))
        return items


@dataclass
class MediaSeparationResult:
    vocal_audio_path: str
    silent_video_path: str


@dataclass
class TtsGenerationResult:
    completed: int
    total: int


@dataclass
class ComposeResult:
    output_path: str
