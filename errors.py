"""Exception types shared by the executor, collaborators and the pipeline."""

from __future__ import annotations

from typing import Optional


class AgentError(Exception):
    """Base class for every error raised by the agent."""


class StepPreconditionError(AgentError):
    """A planned step is missing a field its action requires."""


class StageError(AgentError):
    """An upstream collaborator failed; the current turn cannot continue."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage
        self.message = message


class MalformedOutputError(StageError):
    """A model answered with something that is not the JSON we asked for."""


class ProviderError(StageError):
    """The remote browser provider rejected a request."""

    def __init__(self, message: str, *, status: Optional[int] = None, details: str = ""):
        super().__init__("execute", message)
        self.status = status
        self.details = details


class ConfigError(AgentError):
    """An environment variable holds a value that cannot be parsed."""
