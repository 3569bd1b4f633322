"""Pydantic models for agent runs and their step log."""

from __future__ import annotations

import math
import time
import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..constants import DEFAULT_MAX_NOTES, DEFAULT_SCROLL_TIMES, DEFAULT_SITE
from .note import Note

# Run states
INIT = "INIT"
NEED_LOGIN = "NEED_LOGIN"
READY = "READY"
DONE = "DONE"
ERROR = "ERROR"

TERMINAL_STATES = frozenset({DONE, ERROR})

# Step outcomes
STEP_OK = "ok"
STEP_WAITING = "waiting"
STEP_ERROR = "error"

DEFAULT_LOGIN_TIMEOUT_SEC = 8


def _finite(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


class AgentRunUpdate(BaseModel):
    """Caller-supplied fields for ``continue``. Unset fields are left alone."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    query: Optional[str] = None
    session_id: Optional[str] = None
    max_notes: Optional[float] = None
    scroll_times: Optional[float] = None
    login_timeout_sec: Optional[float] = None
    site: Optional[str] = None


class AgentRunInput(AgentRunUpdate):
    """Request that starts a new run."""

    query: str = ""


class RunOptions(BaseModel):
    max_notes: int = DEFAULT_MAX_NOTES
    scroll_times: int = DEFAULT_SCROLL_TIMES
    login_timeout_sec: int = DEFAULT_LOGIN_TIMEOUT_SEC

    def apply(self, update: AgentRunUpdate):
        """Copy finite numeric overrides, floored and clamped to their minimums."""
        if _finite(update.max_notes):
            self.max_notes = max(1, math.floor(update.max_notes))
        if _finite(update.scroll_times):
            self.scroll_times = max(0, math.floor(update.scroll_times))
        if _finite(update.login_timeout_sec):
            self.login_timeout_sec = max(1, math.floor(update.login_timeout_sec))


class AgentStep(BaseModel):
    """One entry in a run's append-only execution log."""

    model_config = ConfigDict(frozen=True)

    ts: str
    state: str
    action: str
    status: str  # "ok", "waiting", "error"
    detail: dict[str, Any] = Field(default_factory=dict)
    summary: str = ""


class AgentRun(BaseModel):
    """One end-to-end attempt at answering a single request."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    state: str = INIT
    query: str
    search_query: Optional[str] = None
    keyword_candidates: list[str] = Field(default_factory=list)
    session_id: Optional[str] = None
    view_url: Optional[str] = None
    site: str = DEFAULT_SITE
    notes: list[Note] = Field(default_factory=list)
    steps: list[AgentStep] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    options: RunOptions = Field(default_factory=RunOptions)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
