"""The capability contract every site adapter implements.

An adapter borrows a live ``Session`` and offers three operations:

- ``wait_for_login``: bounded polling until a human has authenticated.
- ``search``: run a query and extract up to N de-duplicated result notes.
- ``open_and_extract``: detail fetch for one item (optional capability).

What "logged in" means, and how results are found in the markup, is up to
each site. The polling loop, limits and error policy live here.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, Optional

from ..constants import DEFAULT_MAX_NOTES, DEFAULT_SCROLL_TIMES
from ..errors import QueryRequired
from ..models.note import (
    NEED_LOGIN,
    NOT_IMPLEMENTED,
    READY,
    TIMEOUT,
    ExtractResult,
    LoginResult,
    SearchResult,
)
from ..models.session import Session

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def clamp_limit(value: Optional[float], default: int, low: int, high: int) -> int:
    """Floor a caller-supplied limit into [low, high]; None means ``default``."""
    if value is None:
        value = default
    return max(low, min(high, int(value)))


class SiteAdapter(ABC):
    """Base class for the closed set of supported sites."""

    site_id: str = ""
    name: str = ""
    base_url: str = ""
    requires_login: bool = False

    # Hard ceilings, applied whatever the caller asks for.
    max_notes_ceiling: int = 20
    max_scrolls_ceiling: int = 6

    poll_interval: float = 1.0

    # Pauses that let the page render; tests shrink them.
    navigation_settle_s: float = 1.5
    scroll_settle_s: float = 1.0
    scroll_stall_s: float = 0.8
    results_timeout_ms: int = 8000

    # ── Login ────────────────────────────────────────────────────────────────

    async def check_login(self, session: Session) -> tuple[bool, dict[str, Any]]:
        """Run one login check. Sites that need no login always pass."""
        return True, {"login_required": False}

    async def _safe_check_login(self, session: Session) -> tuple[bool, dict[str, Any]]:
        try:
            return await self.check_login(session)
        except Exception as e:
            # A flaky single check means "not yet", never a failed wait.
            logger.info(f"[{self.site_id}] Login check failed, treating as not logged in: {e}")
            return False, {"check_failed": str(e)[:200]}

    async def wait_for_login(self, session: Session, timeout_sec: float) -> LoginResult:
        """Poll until logged in or ``timeout_sec`` elapses.

        With ``timeout_sec <= 0`` exactly one check is made.

        Returns:
            LoginResult with status READY, NEED_LOGIN (single check failed) or TIMEOUT.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(timeout_sec, 0)

        logged_in, debug = await self._safe_check_login(session)
        if logged_in:
            return LoginResult(status=READY, debug=debug)
        if timeout_sec <= 0:
            return LoginResult(status=NEED_LOGIN, debug=debug)

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.poll_interval, remaining))
            logged_in, debug = await self._safe_check_login(session)
            if logged_in:
                return LoginResult(status=READY, debug=debug)

        logger.info(f"[{self.site_id}] Login not detected within {timeout_sec}s.")
        return LoginResult(status=TIMEOUT, debug=debug)

    # ── Search / extract ─────────────────────────────────────────────────────

    @staticmethod
    def require_query(query: str) -> str:
        safe_query = (query or "").strip()
        if not safe_query:
            raise QueryRequired("A non-empty search query is required.")
        return safe_query

    def note_limit(self, max_notes: Optional[float]) -> int:
        return clamp_limit(max_notes, DEFAULT_MAX_NOTES, 1, self.max_notes_ceiling)

    def scroll_limit(self, scroll_times: Optional[float]) -> int:
        return clamp_limit(scroll_times, DEFAULT_SCROLL_TIMES, 0, self.max_scrolls_ceiling)

    @abstractmethod
    async def search(
        self,
        session: Session,
        query: str,
        max_notes: Optional[float],
        scroll_times: Optional[float],
    ) -> SearchResult:
        """Search the site.

        Raises:
            QueryRequired: if ``query`` is empty, before any browser work.
        """

    async def open_and_extract(self, session: Session, url: str) -> ExtractResult:
        return ExtractResult(status=NOT_IMPLEMENTED, note=None)
