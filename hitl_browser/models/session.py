"""Pydantic models for browser sessions."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Session(BaseModel):
    """A live browser context bound to its own profile directory.

    ``browser`` owns the context and is what gets closed on destroy. ``page``
    follows the newest open tab, so adapters may reassign it.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    browser: Any
    context: Any
    page: Any
    user_data_dir: Path
    site: str
    created_at: float
    last_active_at: float


class SessionInfo(BaseModel):
    """What callers get back for a created session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    session_id: str
    view_url: str
