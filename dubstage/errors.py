"""
Error Taxonomy
==============

Not-found is not an error anywhere in this package: lookups return None.
Everything else that can go wrong at a collaborator boundary is one of these.
"""


class DubbingError(Exception):
    """Base class for all orchestrator errors"""


class InvalidStageError(DubbingError, ValueError):
    """A stage, status or reference mode name outside the known set"""


class BackendError(DubbingError):
    """The job store rejected a request"""


class EngineError(DubbingError):
    """The execution engine failed a stage call"""

    def __init__(self, message: str, operation: str = ""):
        super().__init__(message)
        self.operation = operation


class EngineTimeoutError(EngineError):
    """No reply from the execution engine within the request timeout"""


class StageOrderError(DubbingError):
    """A stage was requested while an earlier stage is not completed"""
