"""
Stage Registry
==============

Static definition of the dubbing pipeline:

    1. preprocess - Normalize subtitle text for speech synthesis
    2. media      - Split the video into vocal track and silent video
    3. reference  - Prepare reference audio for voice cloning
    4. tts        - Synthesize one audio clip per subtitle line
    5. alignment  - Fit synthesized clips to subtitle timing
    6. compose    - Mux aligned audio back into the video

The order is fixed and is the only valid progression path.
"""

from enum import Enum
from typing import Mapping, Optional

from .errors import InvalidStageError


class Stage(str, Enum):
    """Pipeline stages, declared in execution order"""
    PREPROCESS = "preprocess"
    MEDIA = "media"
    REFERENCE = "reference"
    TTS = "tts"
    ALIGNMENT = "alignment"
    COMPOSE = "compose"


class StageStatus(str, Enum):
    """Status values shared by stages and jobs"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ItemStatus(str, Enum):
    """Status of a single TTS item"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ReferenceMode(str, Enum):
    """Where the voice-cloning reference audio comes from"""
    NONE = "none"
    CUSTOM = "custom"
    CLONE = "clone"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.PREPROCESS,
    Stage.MEDIA,
    Stage.REFERENCE,
    Stage.TTS,
    Stage.ALIGNMENT,
    Stage.COMPOSE,
)

STAGE_LABELS: dict[Stage, str] = {
    Stage.PREPROCESS: "Subtitle Preprocessing",
    Stage.MEDIA: "Media Separation",
    Stage.REFERENCE: "Reference Audio",
    Stage.TTS: "TTS Generation",
    Stage.ALIGNMENT: "Audio Alignment",
    Stage.COMPOSE: "Video Composition",
}


def _parse(enum_cls, value, kind: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidStageError(f"Unknown {kind}: {value!r}") from None


def parse_stage(value: "str | Stage") -> Stage:
    """Convert a stage name to a Stage, raising InvalidStageError if unknown"""
    return _parse(Stage, value, "stage")


def parse_status(value: "str | StageStatus") -> StageStatus:
    return _parse(StageStatus, value, "status")


def parse_item_status(value: "str | ItemStatus") -> ItemStatus:
    return _parse(ItemStatus, value, "item status")


def parse_reference_mode(value: "str | ReferenceMode") -> ReferenceMode:
    return _parse(ReferenceMode, value, "reference mode")


def first_incomplete_stage(statuses: Mapping[Stage, StageStatus]) -> Optional[Stage]:
    """First stage in pipeline order that is not completed (None if all are)"""
    for stage in STAGE_ORDER:
        if statuses.get(stage, StageStatus.PENDING) != StageStatus.COMPLETED:
            return stage
    return None
