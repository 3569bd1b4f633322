"""Append-only audit log of tool invocations."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from ..models.audit import AuditEntry
from ..security import redact_text

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

MAX_KEYWORD_CHARS = 80
MAX_URL_CHARS = 200


class AuditRepository:
    """Writes one redacted row per tool call. Rows are never updated."""

    def __init__(self, db: aiosqlite.Connection):
        self._db = db

    async def record(
        self,
        action: str,
        session_id: str,
        keyword: Optional[str] = None,
        note_url: Optional[str] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            ts=datetime.now(timezone.utc).isoformat(),
            session_id=session_id,
            action=action,
            keyword=redact_text(keyword)[:MAX_KEYWORD_CHARS] if keyword else None,
            note_url=redact_text(note_url)[:MAX_URL_CHARS] if note_url else None,
        )
        await self._db.execute(
            "INSERT INTO audit_log (ts, session_id, action, keyword, note_url) VALUES (?, ?, ?, ?, ?)",
            (entry.ts, entry.session_id, entry.action, entry.keyword, entry.note_url),
        )
        await self._db.commit()
        return entry

    async def recent(self, limit: int = 50, session_id: str = "") -> list[AuditEntry]:
        """Most recent records first, optionally for one session."""
        query = "SELECT ts, session_id, action, keyword, note_url FROM audit_log"
        params: list = []
        if session_id:
            query += " WHERE session_id = ?"
            params.append(session_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        async with self._db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            col_names = [d[0] for d in cursor.description]
        return [AuditEntry(**dict(zip(col_names, row))) for row in rows]

    async def count(self) -> int:
        async with self._db.execute("SELECT COUNT(*) FROM audit_log") as cursor:
            return (await cursor.fetchone())[0]
