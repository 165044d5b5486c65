"""
Append-Only Job Event Log
=========================

Audit trail of orchestrator lifecycle events in JSONL format (one JSON
object per line):
- Easy appending without parsing the entire file
- Line-by-line recovery if the file is partially corrupted
- Human-readable for debugging

Several processes may share one log (the CLI and a running orchestrator),
so appends are serialized with a lock file next to the log.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict
from enum import Enum
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from filelock import FileLock

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event type names written to the log"""
    JOB_CREATED = "job_created"
    JOB_RESUMED = "job_resumed"
    JOB_RESET = "job_reset"
    CANCEL_REQUESTED = "cancel_requested"
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    STAGE_FAILED = "stage_failed"


@dataclass
class Event:
    """A single event in the log"""
    event_type: str
    timestamp: str
    job_id: Optional[str] = None
    stage: Optional[str] = None
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class JobEventLog:
    """
    Append-only event log.

    Location is chosen by the caller; create_event_log() puts it at
    <state_dir>/events.jsonl.
    """

    def __init__(self, log_path: "str | Path"):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = FileLock(str(self.log_path.with_suffix(".lock")))

    def append(
        self,
        event_type: "str | EventType",
        job_id: Optional[str] = None,
        stage: Optional[str] = None,
        message: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Event:
        """Append an event: write + fsync under the file lock"""
        event = Event(
            event_type=str(event_type.value if isinstance(event_type, EventType) else event_type),
            timestamp=datetime.now(timezone.utc).isoformat(),
            job_id=job_id,
            stage=stage,
            message=message,
            data=data,
            error=error,
        )

        # Drop None values for compactness
        event_dict = {k: v for k, v in asdict(event).items() if v is not None}

        with self._lock:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event_dict, default=str) + "\n")
                f.flush()
                os.fsync(f.fileno())

        return event

    def iterate(self) -> Iterator[Event]:
        """Iterate over all events, skipping corrupted lines"""
        if not self.log_path.exists():
            return

        with open(self.log_path, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield Event(**json.loads(line))
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning("Corrupted event at %s:%d: %s", self.log_path, line_num, e)

    def read_all(self) -> list[Event]:
        return list(self.iterate())

    def get_job_timeline(self, job_id: str) -> list[Event]:
        """All events for one job in the order they were written"""
        return [e for e in self.iterate() if e.job_id == job_id]


def create_event_log(config: dict) -> JobEventLog:
    """Create the event log from config"""
    state_dir = config.get("paths", {}).get("state_dir", "./state")
    return JobEventLog(Path(state_dir) / "events.jsonl")
