"""
DubStage - Dubbing Job Orchestrator
===================================

Coordinates a six-stage dubbing pipeline on behalf of a client UI:
- Job and stage lifecycle with resume across restarts
- Aggregation of out-of-order progress events from the execution engine
- Per-line TTS item tracking
- Advisory cancellation and failure propagation
"""

__version__ = "0.1.0"
__author__ = "DubStage Team"
