"""
Event Ingestion Bridge
======================

Folds the execution engine's push notifications into a DubbingState.

Three independent subscriptions:
    progress      {stage, percent, message}          -> stage progress + message
    stage_change  {stage, status}                    -> stage status
    item_done     {index, status, audio_path?}       -> TTS item upsert

Events are applied in delivery order, last write wins. There is no
filtering by job id and no clamping of progress; a leftover event from an
earlier run is applied like any other.
"""

import logging
from typing import Callable, Optional

from .contracts import EventSource, Subscription
from .errors import InvalidStageError
from .stages import Stage, parse_stage
from .state.machine import DubbingState

logger = logging.getLogger(__name__)

PROGRESS = "progress"
STAGE_CHANGE = "stage_change"
ITEM_DONE = "item_done"
CHANNELS = (PROGRESS, STAGE_CHANGE, ITEM_DONE)


class EventBridge:
    """
    Subscribes to the engine's event channels and applies each payload to
    the state as one update.

    on_stage_update, when given, is called with the stage after a progress
    or stage_change event has been applied.
    """

    def __init__(
        self,
        source: EventSource,
        state: DubbingState,
        on_stage_update: Optional[Callable[[Stage], None]] = None,
    ):
        self.source = source
        self.state = state
        self.on_stage_update = on_stage_update
        self._subscriptions: dict[str, Subscription] = {}

    @property
    def active(self) -> bool:
        return any(not sub.closed for sub in self._subscriptions.values())

    async def start(self) -> None:
        """Open all three subscriptions (no-op for ones already open)"""
        handlers = {
            PROGRESS: self.handle_progress,
            STAGE_CHANGE: self.handle_stage_change,
            ITEM_DONE: self.handle_item_done,
        }
        for channel, handler in handlers.items():
            if channel not in self._subscriptions:
                self._subscriptions[channel] = await self.source.subscribe(channel, handler)

    def stop(self) -> None:
        """Close every subscription; safe to call repeatedly or before start"""
        subscriptions, self._subscriptions = self._subscriptions, {}
        for sub in subscriptions.values():
            sub.close()

    # =========================================================================
    # Handlers
    # =========================================================================

    def handle_progress(self, payload: dict) -> None:
        try:
            stage = parse_stage(payload["stage"])
            percent = float(payload["percent"])
        except (KeyError, TypeError, ValueError, InvalidStageError) as e:
            logger.warning("Dropping malformed progress event %r: %s", payload, e)
            return
        self.state.set_progress(stage, percent, str(payload.get("message") or ""))
        self._stage_updated(stage)

    def handle_stage_change(self, payload: dict) -> None:
        try:
            stage = parse_stage(payload["stage"])
            self.state.set_status(stage, payload["status"])
        except (KeyError, InvalidStageError) as e:
            logger.warning("Dropping malformed stage_change event %r: %s", payload, e)
            return
        logger.debug("Stage %s -> %s", stage.value, payload["status"])
        self._stage_updated(stage)

    def handle_item_done(self, payload: dict) -> None:
        try:
            self.state.upsert_item(
                int(payload["index"]),
                payload["status"],
                audio_path=payload.get("audio_path"),
                error=payload.get("error"),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Dropping malformed item_done event %r: %s", payload, e)

    def _stage_updated(self, stage: Stage) -> None:
        if self.on_stage_update is not None:
            self.on_stage_update(stage)
