"""Custom exception hierarchy for LoadStage."""

from __future__ import annotations


class LoadStageError(Exception):
    """Base exception for all LoadStage errors.

    All custom exceptions in LoadStage inherit from this class, making it
    easy to catch any LoadStage-specific error with a single except clause.
    """


class ScenarioError(LoadStageError):
    """Raised when a scenario definition or a request it builds is invalid.

    Examples:
        - A function decorated with @scenario is not a coroutine function.
        - A scenario file cannot be loaded or contains no scenario.
        - A scenario builds a request with an unknown method or a relative URL.
    """


class ConfigError(LoadStageError):
    """Raised when configuration is invalid or missing.

    Examples:
        - A stage has a non-positive duration or a negative target.
        - No stages were supplied for a run.
        - A LOADSTAGE_* environment variable has an invalid value.
    """


class EngineError(LoadStageError):
    """Raised when the engine fails while driving a run."""


class TransportError(LoadStageError):
    """Raised by a transport when a request could not be completed.

    Attributes:
        kind: Short error classification (``timeout``, ``dns``,
            ``connection`` or ``http``).
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class RequestError(LoadStageError):
    """Raised inside a scenario when a request failed.

    The failed outcome has already been recorded by the iteration context.
    The virtual user catches this error, ends the current iteration and
    carries on with the next one.
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
