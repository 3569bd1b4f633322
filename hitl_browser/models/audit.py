"""Pydantic model for audit log records."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class AuditEntry(BaseModel):
    ts: str
    session_id: str
    action: str
    keyword: Optional[str] = None
    note_url: Optional[str] = None
