"""
Stage State Machine
===================

The orchestrator's working copy of a job, plus the values derived from it.

This is a projection/aggregation layer, not a gatekeeper: every status or
progress update delivered to it is applied as-is (last write wins). Stage
ordering is the caller's responsibility; see dubstage.runner.

Every mutation notifies the registered observers once the new value is in
place. Observers are plain callables taking the state object.
"""

import logging
from typing import Callable, Optional

from ..contracts import Subscription
from ..stages import (
    STAGE_ORDER,
    ItemStatus,
    Stage,
    StageStatus,
    parse_item_status,
    parse_stage,
    parse_status,
)
from .models import Job, TtsItemProgress

logger = logging.getLogger(__name__)

Observer = Callable[["DubbingState"], None]


class DubbingState:
    """
    Mutable working copy of the active job.

    Holds the adopted Job record (or None), per-stage status, progress and
    last error, the sparse TTS item map, the last progress message and the
    is_running flag, plus the artifacts returned by stage calls.
    """

    def __init__(self):
        self._observers: list[Observer] = []
        self._clear()

    def _clear(self) -> None:
        self.job: Optional[Job] = None
        self.is_running = False
        self.stage_statuses: dict[Stage, StageStatus] = {
            stage: StageStatus.PENDING for stage in STAGE_ORDER
        }
        self.stage_progress: dict[Stage, float] = {stage: 0.0 for stage in STAGE_ORDER}
        self.stage_errors: dict[Stage, Optional[str]] = {stage: None for stage in STAGE_ORDER}
        self._clear_session()

    def _clear_session(self) -> None:
        """Values that belong to one job's session and never carry over"""
        # Indices come from the engine and are not bounds-checked
        self.tts_items: dict[int, TtsItemProgress] = {}
        self.current_message = ""
        self.preprocessed_texts: list[str] = []
        self.vocal_audio_path = ""
        self.silent_video_path = ""
        self.output_path = ""

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(self, observer: Observer) -> Subscription:
        self._observers.append(observer)

        def release():
            if observer in self._observers:
                self._observers.remove(observer)

        return Subscription("state", release)

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self)
            except Exception:
                logger.exception("State observer %r failed", observer)

    # =========================================================================
    # Derived Values
    # =========================================================================

    @property
    def job_id(self) -> Optional[str]:
        return self.job.id if self.job else None

    @property
    def resumable(self) -> bool:
        """
        A job can be continued rather than restarted when it is running, or
        when it is pending with at least one completed stage. A pending job
        with nothing completed counts as a fresh start.
        """
        if self.job is None:
            return False
        if self.job.status == StageStatus.RUNNING:
            return True
        if self.job.status == StageStatus.PENDING:
            return any(s.status == StageStatus.COMPLETED for s in self.job.stages)
        return False

    @property
    def overall_percent(self) -> float:
        """Unweighted mean of the six stage percentages"""
        return sum(self.stage_progress[s] for s in STAGE_ORDER) / len(STAGE_ORDER)

    def tts_counts(self) -> tuple[int, int]:
        """(completed, total) over the local TTS item map"""
        done = sum(1 for item in self.tts_items.values() if item.status == ItemStatus.COMPLETED)
        return done, len(self.tts_items)

    @property
    def tts_item_percent(self) -> float:
        done, total = self.tts_counts()
        if total == 0:
            return 0.0
        return done / total * 100

    # =========================================================================
    # Mutations
    # =========================================================================

    def adopt(self, job: Job) -> None:
        """
        Take a job record from the store as the working copy.

        Progress is re-derived from status alone: completed stages count as
        100, anything else as 0. The TTS item map is not restored. Adopting a
        different job drops the previous job's items, message and artifacts.
        """
        if job.id != self.job_id:
            self._clear_session()
        self.job = job
        for state in job.stages:
            self.stage_statuses[state.stage] = state.status
            self.stage_progress[state.stage] = 100.0 if state.status == StageStatus.COMPLETED else 0.0
            self.stage_errors[state.stage] = state.error
        self._notify()

    def reset(self) -> None:
        """Drop the job reference and every local value, keeping observers"""
        self._clear()
        self._notify()

    def set_progress(self, stage: "str | Stage", percent: float, message: Optional[str] = None) -> None:
        self.stage_progress[parse_stage(stage)] = float(percent)
        if message is not None:
            self.current_message = message
        self._notify()

    def set_status(self, stage: "str | Stage", status: "str | StageStatus", error: Optional[str] = None) -> None:
        stage = parse_stage(stage)
        self.stage_statuses[stage] = parse_status(status)
        if error is not None:
            self.stage_errors[stage] = error
        self._notify()

    def upsert_item(
        self,
        index: int,
        status: "str | ItemStatus",
        audio_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> TtsItemProgress:
        item = TtsItemProgress(
            index=int(index),
            status=parse_item_status(status),
            audio_path=audio_path,
            error=error,
        )
        self.tts_items[item.index] = item
        self._notify()
        return item

    def init_items(self, count: int) -> None:
        """Assign pending entries for indices 0..count-1"""
        self.tts_items = {i: TtsItemProgress(index=i) for i in range(count)}
        self._notify()

    def set_running(self, running: bool) -> None:
        self.is_running = running
        self._notify()

    def update(self, **fields) -> None:
        """Set plain attributes (artifact paths, texts) and notify once"""
        for name, value in fields.items():
            if not hasattr(self, name) or name.startswith("_"):
                raise AttributeError(name)
            setattr(self, name, value)
        self._notify()
