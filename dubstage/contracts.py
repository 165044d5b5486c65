"""
Collaborator Contracts
======================

The orchestrator never talks to a database, a media engine or a message
bus directly. It is constructed with three collaborators that implement
these narrow contracts:

- JobStore         - persisted jobs and stage states
- ExecutionEngine  - runs each stage, one request/response per call
- EventSource      - push notifications from the engine

Concrete implementations live in dubstage.state.database (SQL store),
dubstage.engine.redis_client / redis_events (Redis transport) and
dubstage.engine.local (in-process event bus).
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, Union

from .stages import ReferenceMode, Stage, StageStatus
from .state.models import (
    ComposeResult,
    Job,
    MediaSeparationResult,
    StageState,
    SubtitleEntry,
    TtsGenerationResult,
    TtsItemEntry,
)

EventHandler = Callable[[dict], Union[None, Awaitable[None]]]


class Subscription:
    """
    Handle for one event subscription.

    close() releases the subscription. It is idempotent: closing twice, or
    closing a handle whose subscription already went away, does nothing.
    """

    def __init__(self, channel: str, release: Optional[Callable[[], None]] = None):
        self.channel = channel
        self._release = release

    @property
    def closed(self) -> bool:
        return self._release is None

    def close(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()


class EventSource(ABC):
    """Source of push events keyed by channel name"""

    @abstractmethod
    async def subscribe(self, channel: str, handler: EventHandler) -> Subscription:
        """Deliver every payload published on channel to handler"""


class JobStore(ABC):
    """Persistence collaborator for jobs and their stage states"""

    @abstractmethod
    async def get_job(self, project_dir: str) -> Optional[Job]:
        """Job for the project, or None when there is none"""

    @abstractmethod
    async def create_job(
        self,
        project_dir: str,
        video_path: str,
        subtitle_count: int,
        reference_mode: ReferenceMode,
        reference_audio_path: Optional[str] = None,
        tts_plugin_id: Optional[str] = None,
    ) -> Job:
        """Create the job row (raises BackendError on rejection)"""

    @abstractmethod
    async def reset_job(self, job_id: str) -> None:
        """Rewind every stage of the job to pending"""

    @abstractmethod
    async def update_stage(
        self,
        job_id: str,
        stage: Stage,
        status: StageStatus,
        progress: Optional[float] = None,
        output_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> StageState:
        """Write one stage's status/progress back to the store"""


class ExecutionEngine(ABC):
    """Runs the actual media work for each stage"""

    @abstractmethod
    async def preprocess(
        self,
        job_id: str,
        subtitles: list[SubtitleEntry],
        batch_size: Optional[int] = None,
    ) -> list[str]:
        """Corrected texts, one per subtitle, in input order"""

    @abstractmethod
    async def separate_media(
        self, job_id: str, video_path: str, work_dir: str
    ) -> MediaSeparationResult:
        ...

    @abstractmethod
    async def generate_reference(
        self,
        job_id: str,
        reference_mode: ReferenceMode,
        subtitles: list[SubtitleEntry],
        work_dir: str,
        vocal_audio_path: Optional[str] = None,
        custom_audio_path: Optional[str] = None,
    ) -> Any:
        ...

    @abstractmethod
    async def init_tts_items(self, job_id: str, items: list[TtsItemEntry]) -> None:
        ...

    @abstractmethod
    async def generate_tts(
        self,
        job_id: str,
        work_dir: str,
        plugin_id: Optional[str] = None,
        voice_id: Optional[str] = None,
    ) -> TtsGenerationResult:
        ...

    @abstractmethod
    async def align_and_compose(
        self,
        job_id: str,
        silent_video_path: str,
        work_dir: str,
        output_path: str,
    ) -> ComposeResult:
        ...

    @abstractmethod
    async def cancel(self) -> None:
        """Advisory: ask the engine to stop whatever it is doing"""
