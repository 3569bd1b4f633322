"""Exception taxonomy shared by the session store, tools, and orchestrator.

Every error carries a short machine-readable ``code`` (surfaced to callers and
recorded on failed runs), the HTTP ``status`` the service answers with, and a
``retryable`` hint.
"""

from __future__ import annotations

from typing import Optional


class AgentError(Exception):
    """Base class for errors that are surfaced to callers by code."""

    code = "INTERNAL_ERROR"
    status = 500
    retryable = False

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        if code:
            self.code = code
        super().__init__(message or self.code)


class CapacityExceeded(AgentError):
    """The session limit is reached. Retry later, with backoff."""

    code = "MAX_SESSIONS_REACHED"
    status = 429
    retryable = True


class SessionNotFound(AgentError):
    code = "SESSION_NOT_FOUND"
    status = 404


class RunNotFound(AgentError):
    code = "RUN_NOT_FOUND"
    status = 404


class InvalidArgument(AgentError):
    code = "INVALID_ARGUMENT"
    status = 400


class QueryRequired(InvalidArgument):
    code = "QUERY_REQUIRED"


class UnknownTool(AgentError):
    code = "UNKNOWN_TOOL"
    status = 404


class SensitiveOutputError(AgentError):
    """Serialized output still looked like it carried credentials."""

    code = "SENSITIVE_OUTPUT_BLOCKED"
