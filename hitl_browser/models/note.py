"""Pydantic models for site results and tool responses."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

# Tool statuses
READY = "READY"
NEED_LOGIN = "NEED_LOGIN"
TIMEOUT = "TIMEOUT"
NOT_IMPLEMENTED = "NOT_IMPLEMENTED"


class Note(BaseModel):
    """One extracted result. Fields a site cannot determine stay None."""

    # Identity
    id: str = Field(description="Site-specific stable id taken from the canonical link")
    url: str

    # Content
    title: Optional[str] = None
    desc: Optional[str] = None
    author: Optional[str] = None
    snippet: Optional[str] = None

    # Engagement
    liked_count: Optional[int] = None
    collected_count: Optional[int] = None
    comments_count: Optional[int] = None
    shared_count: Optional[int] = None

    # Review sites
    rating: Optional[float] = None
    location: Optional[str] = None


class LoginResult(BaseModel):
    status: str  # READY, NEED_LOGIN, TIMEOUT
    debug: dict[str, Any] = Field(default_factory=dict)


class SearchResult(BaseModel):
    status: str  # READY, NEED_LOGIN
    notes: list[Note] = Field(default_factory=list)
    reason: Optional[str] = None
    debug: dict[str, Any] = Field(default_factory=dict)


class ExtractResult(BaseModel):
    status: str  # READY, NEED_LOGIN, NOT_IMPLEMENTED
    note: Optional[Note] = None
