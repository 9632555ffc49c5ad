"""
Agent call error taxonomy.

EndpointNotConfigured is fatal and never retried. TransportError and
InvalidOutput are retryable and are absorbed by the retry controller,
which surfaces only RetriesExhausted.
"""

from typing import Optional


class AgentError(Exception):
    """Base class for agent pipeline errors."""


class EndpointNotConfigured(AgentError):
    """No webhook URL is bound for a stage (deployment defect)."""

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"No webhook URL configured for {stage}")


class TransportError(AgentError):
    """Network failure, timeout or non-2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class InvalidOutput(AgentError):
    """The agent answered, but with empty or unusable content."""


class RetriesExhausted(AgentError):
    """Every attempt failed; wraps the last underlying cause."""

    def __init__(self, label: str, attempts: int, last_error: Optional[BaseException]):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        reason = str(last_error) if last_error else "unknown error"
        super().__init__(f"{label} failed after {attempts} attempt(s): {reason}")
