"""Named browser tools over the session store, site adapters and audit log.

Arguments arrive as loosely-typed JSON (camelCase keys, numbers that may be
strings). Every result leaves through ``guard_serialize``.

Tools:
    create_session    - Launch a browser for a site; returns sessionId + viewUrl
    wait_for_login    - Poll a session until a human has logged in
    search            - Search the session's site and return result notes
    open_and_extract  - Fetch detail for one result (where the site supports it)
    destroy_session   - Close a session and remove its profile
"""

from __future__ import annotations

import logging
import math
import re
import sys
from typing import Any, Awaitable, Callable, Optional

from ..database.repository import AuditRepository
from ..errors import InvalidArgument, UnknownTool
from ..models.session import SessionInfo
from ..security import guard_serialize
from ..sites.registry import SiteRegistry, normalize_site
from .store import SessionStore
from .view import build_view_url

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

DEFAULT_LOGIN_TIMEOUT_SEC = 120
DEFAULT_MAX_NOTES = 20
DEFAULT_SCROLL_TIMES = 2

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


# ── Argument helpers ─────────────────────────────────────────────────────────


def require_string(arguments: dict[str, Any], field: str) -> str:
    """Return a trimmed non-empty string or raise ``INVALID_<FIELD>``."""
    value = arguments.get(field)
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"'{field}' must be a non-empty string.", code=f"INVALID_{field.upper()}")
    return value.strip()


def optional_string(arguments: dict[str, Any], field: str) -> Optional[str]:
    value = arguments.get(field)
    return value if isinstance(value, str) else None


def optional_number(arguments: dict[str, Any], field: str, default: float) -> float:
    """Accept finite numbers or strings with a leading integer; otherwise the default."""
    value = arguments.get(field)
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)) and math.isfinite(value):
        return value
    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match:
            return int(match.group(1))
    return default


# ── Capabilities ─────────────────────────────────────────────────────────────


class BrowserCapabilities:
    """The tool server. Owns no state beyond the collaborators it is given."""

    def __init__(self, store: SessionStore, registry: SiteRegistry, audit: Optional[AuditRepository] = None):
        self.store = store
        self.registry = registry
        self.audit = audit
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "create_session": self.create_session,
            "wait_for_login": self.wait_for_login,
            "search": self.search,
            "open_and_extract": self.open_and_extract,
            "destroy_session": self.destroy_session,
        }

    async def call(self, name: str, arguments: Optional[dict[str, Any]] = None) -> str:
        """Invoke a tool by name and return its guarded JSON result.

        Raises:
            UnknownTool: if ``name`` is not a registered tool.
            AgentError: for argument, session or capacity errors.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownTool(f"No tool named '{name}'.")
        result = await handler(arguments or {})
        return guard_serialize(result)

    async def _audit(self, action: str, session_id: str, keyword: Optional[str] = None, note_url: Optional[str] = None):
        if self.audit is None:
            return
        try:
            await self.audit.record(action, session_id, keyword=keyword, note_url=note_url)
        except Exception as e:
            logger.warning(f"Audit write for {action} failed: {e}")

    # ── Tools ────────────────────────────────────────────────────────────────

    async def create_session(self, arguments: dict[str, Any]) -> dict[str, Any]:
        site = normalize_site(optional_string(arguments, "site"))
        adapter = self.registry.get(site)
        session = await self.store.create(site, adapter.base_url)
        await self._audit("create_session", session.id)
        info = SessionInfo(session_id=session.id, view_url=build_view_url(session.id))
        return info.model_dump(by_alias=True)

    async def wait_for_login(self, arguments: dict[str, Any]) -> dict[str, Any]:
        session_id = require_string(arguments, "sessionId")
        timeout_sec = optional_number(arguments, "timeoutSec", DEFAULT_LOGIN_TIMEOUT_SEC)
        session = self.store.require(session_id)
        self.store.touch(session_id)

        adapter = self.registry.get(optional_string(arguments, "site") or session.site)
        result = await adapter.wait_for_login(session, timeout_sec)
        self.store.touch(session_id)
        await self._audit("wait_for_login", session_id)
        return result.model_dump(mode="json")

    async def search(self, arguments: dict[str, Any]) -> dict[str, Any]:
        session_id = require_string(arguments, "sessionId")
        query = require_string(arguments, "query")
        max_notes = optional_number(arguments, "maxNotes", DEFAULT_MAX_NOTES)
        scroll_times = optional_number(arguments, "scrollTimes", DEFAULT_SCROLL_TIMES)
        session = self.store.require(session_id)
        self.store.touch(session_id)

        adapter = self.registry.get(optional_string(arguments, "site") or session.site)
        result = await adapter.search(session, query, max_notes, scroll_times)
        self.store.touch(session_id)
        await self._audit("search", session_id, keyword=query)
        return result.model_dump(mode="json")

    async def open_and_extract(self, arguments: dict[str, Any]) -> dict[str, Any]:
        session_id = require_string(arguments, "sessionId")
        url = require_string(arguments, "url")
        session = self.store.require(session_id)
        self.store.touch(session_id)

        adapter = self.registry.get(optional_string(arguments, "site") or session.site)
        result = await adapter.open_and_extract(session, url)
        await self._audit("open_and_extract", session_id, note_url=url)
        return result.model_dump(mode="json")

    async def destroy_session(self, arguments: dict[str, Any]) -> dict[str, Any]:
        session_id = require_string(arguments, "sessionId")
        ok = await self.store.destroy(session_id)
        await self._audit("destroy_session", session_id)
        return {"ok": ok}
