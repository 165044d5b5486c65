"""
Engine Transport Module
=======================

Ways to reach the execution engine:
- Redis request queue + pub/sub events (out-of-process engine)
- In-process event bus (embedded engine, tests)
"""

from .local import LocalEventBus
from .redis_client import EngineRequest, RedisEngineClient
from .redis_events import RedisEventSource

__all__ = [
    "EngineRequest",
    "LocalEventBus",
    "RedisEngineClient",
    "RedisEventSource",
]
