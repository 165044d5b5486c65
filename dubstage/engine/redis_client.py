"""
Redis Execution Engine Client
=============================

Request/response calls to an execution engine over Redis lists.

Protocol:
- The request envelope {id, operation, job_id, payload, created_at} is
  RPUSHed onto <prefix>requests, then "new_request" is published on
  <prefix>requests:notify for instant pickup.
- The engine RPUSHes {ok, result?, error?} onto <prefix>reply:<id>.
- The client BLPOPs that key for up to request_timeout seconds.

Cancellation is fire-and-forget: a single publish on <prefix>cancel.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import redis.asyncio as aioredis

from ..contracts import ExecutionEngine
from ..errors import EngineError, EngineTimeoutError
from ..stages import ReferenceMode
from ..state.models import (
    ComposeResult,
    MediaSeparationResult,
    SubtitleEntry,
    TtsGenerationResult,
    TtsItemEntry,
)

logger = logging.getLogger(__name__)


@dataclass
class EngineRequest:
    """A request envelope sent to the engine"""
    id: str
    operation: str
    job_id: Optional[str] = None
    payload: dict = field(default_factory=dict)
    created_at: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = str(uuid.uuid4())
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=_json_default)

    @classmethod
    def from_json(cls, data: "str | bytes") -> "EngineRequest":
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return cls(**json.loads(data))


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


class RedisEngineClient(ExecutionEngine):
    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        channel_prefix: str = "dubbing:",
        request_timeout: int = 3600,
        client: Any = None,
    ):
        self.redis = client if client is not None else aioredis.from_url(redis_url)
        self.channel_prefix = channel_prefix
        self.request_timeout = request_timeout

    @property
    def request_queue(self) -> str:
        return f"{self.channel_prefix}requests"

    def reply_key(self, request_id: str) -> str:
        return f"{self.channel_prefix}reply:{request_id}"

    async def _request(self, operation: str, job_id: Optional[str], payload: dict) -> Any:
        request = EngineRequest(id="", operation=operation, job_id=job_id, payload=payload)

        await self.redis.rpush(self.request_queue, request.to_json())
        await self.redis.publish(f"{self.request_queue}:notify", "new_request")
        logger.debug("Sent %s request %s for job %s", operation, request.id, job_id)

        reply = await self.redis.blpop([self.reply_key(request.id)], timeout=self.request_timeout)
        if reply is None:
            raise EngineTimeoutError(
                f"No reply to {operation} within {self.request_timeout}s", operation
            )

        _, data = reply
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            body = json.loads(data)
        except json.JSONDecodeError as e:
            raise EngineError(f"Malformed reply to {operation}: {e}", operation) from e

        if not body.get("ok", False):
            raise EngineError(body.get("error") or f"{operation} failed", operation)
        return body.get("result")

    # =========================================================================
    # Stage Operations
    # =========================================================================

    async def preprocess(
        self,
        job_id: str,
        subtitles: list[SubtitleEntry],
        batch_size: Optional[int] = None,
    ) -> list[str]:
        result = await self._request("preprocess", job_id, {
            "subtitles": [asdict(s) for s in subtitles],
            "batch_size": batch_size,
        })
        return [str(t) for t in result or []]

    async def separate_media(
        self, job_id: str, video_path: str, work_dir: str
    ) -> MediaSeparationResult:
        result = await self._request("media_separation", job_id, {
            "video_path": video_path,
            "work_dir": work_dir,
        })
        return MediaSeparationResult(
            vocal_audio_path=result["vocal_audio_path"],
            silent_video_path=result["silent_video_path"],
        )

    async def generate_reference(
        self,
        job_id: str,
        reference_mode: ReferenceMode,
        subtitles: list[SubtitleEntry],
        work_dir: str,
        vocal_audio_path: Optional[str] = None,
        custom_audio_path: Optional[str] = None,
    ) -> Any:
        return await self._request("reference_generation", job_id, {
            "reference_mode": reference_mode,
            "vocal_audio_path": vocal_audio_path,
            "custom_audio_path": custom_audio_path,
            "subtitles": [asdict(s) for s in subtitles],
            "work_dir": work_dir,
        })

    async def init_tts_items(self, job_id: str, items: list[TtsItemEntry]) -> None:
        await self._request("init_tts_items", job_id, {
            "items": [asdict(i) for i in items],
        })

    async def generate_tts(
        self,
        job_id: str,
        work_dir: str,
        plugin_id: Optional[str] = None,
        voice_id: Optional[str] = None,
    ) -> TtsGenerationResult:
        result = await self._request("tts_generation", job_id, {
            "plugin_id": plugin_id,
            "voice_id": voice_id,
            "work_dir": work_dir,
        })
        return TtsGenerationResult(completed=int(result["completed"]), total=int(result["total"]))

    async def align_and_compose(
        self,
        job_id: str,
        silent_video_path: str,
        work_dir: str,
        output_path: str,
    ) -> ComposeResult:
        result = await self._request("alignment_and_compose", job_id, {
            "silent_video_path": silent_video_path,
            "work_dir": work_dir,
            "output_path": output_path,
        })
        return ComposeResult(output_path=result["output_path"])

    async def cancel(self) -> None:
        await self.redis.publish(f"{self.channel_prefix}cancel", "cancel")

    async def aclose(self) -> None:
        await self.redis.aclose()
