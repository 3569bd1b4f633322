"""Session store: capacity-bounded, idle-evicted browser sessions.

Each session owns a persistent browser context and the profile directory
backing it. The store is the only writer of its session table; adapters
borrow sessions and may only move ``session.page``.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
import time
import uuid
from pathlib import Path
from typing import Callable, Optional

from ..config import (
    BROWSER_HEADLESS,
    DELETE_PROFILE,
    MAX_SESSIONS,
    PROFILES_DIR,
    SESSION_TTL_SECONDS,
    SWEEP_INTERVAL_CEILING_SECONDS,
)
from ..errors import CapacityExceeded, SessionNotFound
from ..models.session import Session
from .browser import PersistentBrowser, goto

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

BrowserFactory = Callable[..., PersistentBrowser]


class SessionStore:
    """Owns every live browser session."""

    def __init__(
        self,
        profiles_dir: Path = PROFILES_DIR,
        max_sessions: int = MAX_SESSIONS,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        delete_profile: bool = DELETE_PROFILE,
        headless: bool = BROWSER_HEADLESS,
        browser_factory: BrowserFactory = PersistentBrowser,
    ):
        self.profiles_dir = Path(profiles_dir)
        self.max_sessions = max_sessions
        self.ttl_seconds = ttl_seconds
        self.delete_profile = delete_profile
        self.headless = headless
        self._browser_factory = browser_factory
        self._sessions: dict[str, Session] = {}
        self._pending = 0
        self._janitor: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def sweep_interval(self) -> float:
        """Half the TTL, capped, so an idle session overstays by at most this much."""
        return max(min(self.ttl_seconds / 2, SWEEP_INTERVAL_CEILING_SECONDS), 0.01)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def create(self, site: str, base_url: str) -> Session:
        """Launch a fresh browser on its own profile and open ``base_url``.

        Raises:
            CapacityExceeded: if the store is already at its session limit.
        """
        if len(self._sessions) + self._pending >= self.max_sessions:
            raise CapacityExceeded(f"Session limit of {self.max_sessions} reached.")

        # Reserve the slot before the first await so concurrent creates can't overshoot.
        self._pending += 1
        session_id = str(uuid.uuid4())
        user_data_dir = self.profiles_dir / session_id
        browser: Optional[PersistentBrowser] = None
        try:
            await asyncio.to_thread(user_data_dir.mkdir, parents=True, exist_ok=True)
            browser = self._browser_factory(user_data_dir, headless=self.headless)
            context = await browser.start()
            page = context.pages[0] if context.pages else await context.new_page()
            await goto(page, base_url)

            now = time.time()
            session = Session(
                id=session_id,
                browser=browser,
                context=context,
                page=page,
                user_data_dir=user_data_dir,
                site=site,
                created_at=now,
                last_active_at=now,
            )
            self._sessions[session_id] = session
        except Exception as e:
            logger.error(f"Failed to create session {session_id}: {e}")
            if browser is not None:
                await self._close_browser(session_id, browser)
            await self._remove_profile(session_id, user_data_dir)
            raise
        finally:
            self._pending -= 1

        logger.info(f"Session {session_id} created for {site} ({len(self._sessions)}/{self.max_sessions}).")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found.")
        return session

    def touch(self, session_id: str):
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_active_at = time.time()

    async def destroy(self, session_id: str) -> bool:
        """Remove a session. Returns False if it was already gone.

        Browser close and profile removal are attempted independently; their
        failures are logged, never raised.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        await self._close_browser(session_id, session.browser)
        if self.delete_profile:
            await self._remove_profile(session_id, session.user_data_dir)

        logger.info(f"Session {session_id} destroyed ({len(self._sessions)}/{self.max_sessions}).")
        return True

    async def _close_browser(self, session_id: str, browser: PersistentBrowser):
        try:
            await browser.close()
        except Exception as e:
            logger.warning(f"Session {session_id}: closing browser failed: {e}")

    async def _remove_profile(self, session_id: str, user_data_dir: Path):
        try:
            await asyncio.to_thread(shutil.rmtree, user_data_dir, ignore_errors=False)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Session {session_id}: removing profile {user_data_dir} failed: {e}")

    # ── Idle sweep ───────────────────────────────────────────────────────────

    async def sweep(self, now: Optional[float] = None) -> list[str]:
        """Destroy sessions idle for longer than the TTL. Returns their ids."""
        now = time.time() if now is None else now
        expired = [
            s.id for s in list(self._sessions.values())
            if now - s.last_active_at > self.ttl_seconds
        ]
        for session_id in expired:
            logger.info(f"Session {session_id} idle past {self.ttl_seconds}s, evicting.")
            await self.destroy(session_id)
        return expired

    def start_janitor(self):
        if self._janitor is None:
            self._janitor = asyncio.create_task(self._janitor_loop())

    async def _janitor_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Session sweep failed: {e}", exc_info=True)

    async def shutdown(self):
        """Stop the janitor and destroy every live session."""
        if self._janitor is not None:
            self._janitor.cancel()
            try:
                await self._janitor
            except asyncio.CancelledError:
                pass
            self._janitor = None

        for session_id in list(self._sessions):
            await self.destroy(session_id)
        logger.info("Session store shut down.")
