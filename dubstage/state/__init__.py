"""
State Management Module
=======================

Provides:
1. Data model for jobs, stage states and TTS items (models)
2. The orchestrator's working copy and its derived values (machine)
3. SQL job store (database)
4. Append-only job event log (events)

Only the data model is re-exported here; the other modules depend on
dubstage.contracts and are imported directly.
"""

from .models import (
    ComposeResult,
    Job,
    MediaSeparationResult,
    StageState,
    SubtitleEntry,
    TtsGenerationResult,
    TtsItemEntry,
    TtsItemProgress,
)

__all__ = [
    "ComposeResult",
    "Job",
    "MediaSeparationResult",
    "StageState",
    "SubtitleEntry",
    "TtsGenerationResult",
    "TtsItemEntry",
    "TtsItemProgress",
]
