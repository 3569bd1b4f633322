"""Agent orchestrator: drives each run through its state machine.

    INIT ──create_session──> NEED_LOGIN ──wait_for_login──> READY ──search──> DONE
                               ^    |  (waiting)                |
                               └────┘<──── login lost ──────────┘
    ERROR is reachable from every state; DONE and ERROR are terminal.

Callers never drive transitions directly. ``create_run`` and ``advance``
record caller input on the run and schedule a pass; a pass executes at most
``MAX_STEPS_PER_PASS`` transitions and then parks the run. At most one pass
runs per run id. A run parked in NEED_LOGIN moves again only when the caller
continues it, after the human has logged in.

Every sub-operation appends exactly one step. Narration is computed before
anything is written, so state, error and the step land together.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Optional

from ..config import AGENT_RUN_TTL_SECONDS, SWEEP_INTERVAL_CEILING_SECONDS
from ..errors import AgentError, CapacityExceeded, QueryRequired, RunNotFound
from ..models.note import NEED_LOGIN as STATUS_NEED_LOGIN
from ..models.note import READY as STATUS_READY
from ..models.note import TIMEOUT as STATUS_TIMEOUT
from ..models.note import Note
from ..models.run import (
    DONE,
    ERROR,
    INIT,
    NEED_LOGIN,
    READY,
    STEP_ERROR,
    STEP_OK,
    STEP_WAITING,
    AgentRun,
    AgentRunInput,
    AgentRunUpdate,
    AgentStep,
)
from ..security import sanitize_output
from ..session_manager.view import build_view_url
from ..sites.registry import normalize_site
from .keyworder import AgentKeyworder, KeywordResult
from .narrator import AgentNarrator
from .tool_client import ToolClient

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

MAX_STEPS_PER_PASS = 4


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


def _error_code(exc: Exception, default: str) -> str:
    return exc.code if isinstance(exc, AgentError) else default


class AgentOrchestrator:
    """Owns the run table and the passes that advance runs."""

    def __init__(
        self,
        tools: ToolClient,
        keyworder: Optional[AgentKeyworder] = None,
        narrator: Optional[AgentNarrator] = None,
        run_ttl_seconds: float = AGENT_RUN_TTL_SECONDS,
        max_steps_per_pass: int = MAX_STEPS_PER_PASS,
    ):
        self.tools = tools
        self.keyworder = keyworder or AgentKeyworder()
        self.narrator = narrator or AgentNarrator()
        self.run_ttl_seconds = run_ttl_seconds
        self.max_steps_per_pass = max_steps_per_pass
        self._runs: dict[str, AgentRun] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._janitor: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._runs)

    # ── Run table ────────────────────────────────────────────────────────────

    async def create_run(self, request: AgentRunInput) -> AgentRun:
        """Register a run and schedule its first pass.

        Raises:
            QueryRequired: if the request has no query text.
        """
        query = (request.query or "").strip()
        if not query:
            raise QueryRequired("A query is required to start a run.")

        run = AgentRun(
            query=query,
            session_id=(request.session_id or "").strip() or None,
            site=normalize_site(request.site),
        )
        run.options.apply(request)
        self._runs[run.id] = run
        logger.info(f"[run {run.id}] Created for site {run.site} (session {run.session_id or 'new'}).")

        self._schedule(run)
        return run

    async def advance(self, run_id: str, update: Optional[AgentRunUpdate] = None) -> AgentRun:
        """Apply caller input to a run and schedule a pass unless one is in flight.

        Raises:
            RunNotFound: if the run is unknown or was swept.
        """
        run = self.require_run(run_id)
        if update is not None:
            self._apply_update(run, update)
        run.updated_at = time.time()
        self._schedule(run)
        return run

    def _apply_update(self, run: AgentRun, update: AgentRunUpdate):
        query = (update.query or "").strip()
        if query:
            run.query = query
        session_id = (update.session_id or "").strip()
        if session_id:
            run.session_id = session_id
        if update.site and run.state == INIT:
            run.site = normalize_site(update.site)
        run.options.apply(update)

    def get_run(self, run_id: str) -> Optional[AgentRun]:
        return self._runs.get(run_id)

    def require_run(self, run_id: str) -> AgentRun:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFound(f"Run {run_id} not found.")
        return run

    def is_running(self, run_id: str) -> bool:
        return run_id in self._tasks

    def to_public_run(self, run: AgentRun) -> dict[str, Any]:
        """The sanitized, caller-facing view of a run."""
        return sanitize_output({
            "runId": run.id,
            "status": run.state,
            "running": self.is_running(run.id),
            "site": run.site,
            "sessionId": run.session_id,
            "viewUrl": run.view_url,
            "query": run.query,
            "searchQuery": run.search_query,
            "keywordCandidates": run.keyword_candidates,
            "notes": run.notes,
            "steps": run.steps,
            "error": run.error,
            "createdAt": _iso(run.created_at),
            "updatedAt": _iso(run.updated_at),
        })

    # ── Scheduling ───────────────────────────────────────────────────────────

    def _schedule(self, run: AgentRun):
        if run.id in self._tasks:
            logger.info(f"[run {run.id}] Pass already in flight, input recorded.")
            return
        self._tasks[run.id] = asyncio.create_task(self._tracked_pass(run))

    async def join(self, run_id: str):
        """Wait for the in-flight pass of ``run_id``, if any."""
        task = self._tasks.get(run_id)
        if task is not None:
            await task

    async def _tracked_pass(self, run: AgentRun):
        # Cleared in the same loop step as the final commit.
        try:
            await self._run_pass(run)
        finally:
            if self._tasks.get(run.id) is asyncio.current_task():
                del self._tasks[run.id]

    async def _run_pass(self, run: AgentRun):
        try:
            for _ in range(self.max_steps_per_pass):
                if run.is_terminal:
                    return
                if run.state == INIT:
                    await self._handle_create_session(run)
                    continue
                if run.state == NEED_LOGIN:
                    await self._handle_wait_login(run)
                    if run.state != READY:
                        return
                    continue
                if run.state == READY:
                    await self._handle_search(run)
                    return
                return
            logger.info(f"[run {run.id}] Step budget spent, parked in {run.state}.")
        except Exception as e:
            logger.error(f"[run {run.id}] Pass failed unexpectedly: {e}", exc_info=True)
            await self._commit(
                run,
                action="internal",
                outcome=STEP_ERROR,
                state=ERROR,
                error="INTERNAL_ERROR",
                detail={"error": "INTERNAL_ERROR", "reason": str(e)[:200]},
            )

    async def _commit(
        self,
        run: AgentRun,
        *,
        action: str,
        outcome: str,
        state: Optional[str] = None,
        detail: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
        **fields: Any,
    ):
        """Narrate, then apply the transition and its step with no await in between."""
        new_state = state or run.state
        detail = detail or {}
        summary = await self.narrator.summarize(action, new_state, outcome, detail)

        for name, value in fields.items():
            setattr(run, name, value)
        run.state = new_state
        if error is not None:
            run.error = error
        run.steps.append(
            AgentStep(
                ts=_iso(time.time()),
                state=new_state,
                action=action,
                status=outcome,
                detail=detail,
                summary=summary,
            )
        )
        run.updated_at = time.time()
        logger.info(f"[run {run.id}] {action} -> {outcome} (state {new_state})")

    # ── State handlers ───────────────────────────────────────────────────────

    async def _handle_create_session(self, run: AgentRun):
        if run.session_id:
            await self._commit(
                run,
                action="create_session",
                outcome=STEP_OK,
                state=NEED_LOGIN,
                detail={"reused": True, "sessionId": run.session_id},
                view_url=run.view_url or build_view_url(run.session_id),
            )
            return

        try:
            data = await self.tools.call_tool("create_session", {"site": run.site})
            session_id = data.get("sessionId")
            if not session_id:
                raise AgentError("create_session returned no session id.", code="CREATE_SESSION_FAILED")
        except Exception as e:
            code = _error_code(e, "CREATE_SESSION_FAILED")
            if code == "INTERNAL_ERROR":
                code = "CREATE_SESSION_FAILED"
            detail = {"error": code, "reason": str(e)[:200]}
            if isinstance(e, CapacityExceeded):
                detail["retryable"] = True
            await self._commit(
                run, action="create_session", outcome=STEP_ERROR, state=ERROR, error=code, detail=detail
            )
            return

        view_url = data.get("viewUrl") or build_view_url(session_id)
        await self._commit(
            run,
            action="create_session",
            outcome=STEP_OK,
            state=NEED_LOGIN,
            detail={"sessionId": session_id, "viewUrl": view_url},
            session_id=session_id,
            view_url=view_url,
        )

    async def _handle_wait_login(self, run: AgentRun):
        if not run.session_id:
            await self._commit(
                run,
                action="wait_for_login",
                outcome=STEP_ERROR,
                state=ERROR,
                error="SESSION_ID_MISSING",
                detail={"error": "SESSION_ID_MISSING"},
            )
            return

        try:
            data = await self.tools.call_tool(
                "wait_for_login",
                {
                    "sessionId": run.session_id,
                    "timeoutSec": run.options.login_timeout_sec,
                    "site": run.site,
                },
            )
        except Exception as e:
            code = _error_code(e, "WAIT_LOGIN_FAILED")
            await self._commit(
                run,
                action="wait_for_login",
                outcome=STEP_ERROR,
                state=ERROR,
                error=code,
                detail={"error": code, "reason": str(e)[:200]},
            )
            return

        status = data.get("status")
        if status == STATUS_READY:
            await self._commit(
                run,
                action="wait_for_login",
                outcome=STEP_OK,
                state=READY,
                detail={"status": status, "debug": data.get("debug")},
            )
        elif status in (STATUS_NEED_LOGIN, STATUS_TIMEOUT):
            await self._commit(
                run,
                action="wait_for_login",
                outcome=STEP_WAITING,
                state=NEED_LOGIN,
                detail={"status": status, "viewUrl": run.view_url, "debug": data.get("debug")},
            )
        else:
            code = f"WAIT_LOGIN_FAILED_{status}"
            await self._commit(
                run,
                action="wait_for_login",
                outcome=STEP_ERROR,
                state=ERROR,
                error=code,
                detail={"error": code, "status": status},
            )

    async def _derive_keywords(self, run: AgentRun):
        try:
            result = await self.keyworder.extract(run.query, run.site)
        except Exception as e:
            logger.warning(f"[run {run.id}] Keyword derivation raised, using the raw query: {e}")
            result = KeywordResult(queries=[run.query], reason="keyworder_error")

        search_query = result.queries[0] if result.queries else run.query
        await self._commit(
            run,
            action="keyword_extract",
            outcome=STEP_OK,
            detail={"count": len(result.queries), "method": result.method, "reason": result.reason},
            keyword_candidates=list(result.queries),
            search_query=search_query,
        )

    async def _handle_search(self, run: AgentRun):
        if not run.session_id:
            await self._commit(
                run,
                action="search",
                outcome=STEP_ERROR,
                state=ERROR,
                error="SESSION_ID_MISSING",
                detail={"error": "SESSION_ID_MISSING"},
            )
            return

        if not run.search_query:
            await self._derive_keywords(run)

        try:
            data = await self.tools.call_tool(
                "search",
                {
                    "sessionId": run.session_id,
                    "query": run.search_query or run.query,
                    "maxNotes": run.options.max_notes,
                    "scrollTimes": run.options.scroll_times,
                    "site": run.site,
                },
            )
            status = data.get("status")
            notes = [Note.model_validate(n) for n in data.get("notes") or []] if status == STATUS_READY else []
        except Exception as e:
            code = _error_code(e, "SEARCH_FAILED")
            await self._commit(
                run,
                action="search",
                outcome=STEP_ERROR,
                state=ERROR,
                error=code,
                detail={"error": code, "reason": str(e)[:200]},
            )
            return

        if status == STATUS_READY:
            notes = notes[: run.options.max_notes]
            await self._commit(
                run,
                action="search",
                outcome=STEP_OK,
                state=DONE,
                detail={"count": len(notes), "reason": data.get("reason")},
                notes=notes,
            )
        elif status == STATUS_NEED_LOGIN:
            await self._commit(
                run,
                action="search",
                outcome=STEP_WAITING,
                state=NEED_LOGIN,
                detail={"status": status, "viewUrl": run.view_url},
            )
        else:
            code = f"SEARCH_FAILED_{status}"
            await self._commit(
                run,
                action="search",
                outcome=STEP_ERROR,
                state=ERROR,
                error=code,
                detail={"error": code, "status": status},
            )

    # ── Idle sweep ───────────────────────────────────────────────────────────

    @property
    def sweep_interval(self) -> float:
        return max(min(self.run_ttl_seconds / 2, SWEEP_INTERVAL_CEILING_SECONDS), 0.01)

    def sweep(self, now: Optional[float] = None) -> list[str]:
        """Drop runs untouched for longer than the TTL. Runs with a pass in flight are kept."""
        now = time.time() if now is None else now
        expired = [
            run.id for run in list(self._runs.values())
            if now - run.updated_at > self.run_ttl_seconds and not self.is_running(run.id)
        ]
        for run_id in expired:
            del self._runs[run_id]
        if expired:
            logger.info(f"Swept {len(expired)} idle runs.")
        return expired

    def start_janitor(self):
        if self._janitor is None:
            self._janitor = asyncio.create_task(self._janitor_loop())

    async def _janitor_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Run sweep failed: {e}", exc_info=True)

    async def shutdown(self):
        """Stop the janitor and let in-flight passes finish."""
        if self._janitor is not None:
            self._janitor.cancel()
            try:
                await self._janitor
            except asyncio.CancelledError:
                pass
            self._janitor = None

        pending = list(self._tasks.values())
        if pending:
            logger.info(f"Waiting for {len(pending)} in-flight passes...")
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Agent orchestrator shut down.")
