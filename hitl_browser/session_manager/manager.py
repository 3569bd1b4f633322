"""HITL browser HTTP service.

Runs as a local web server that owns the browser sessions and agent runs.
The MCP server forwards every tool call here.

Endpoints:
    GET  /health                 - Liveness check
    POST /session                - Create a browser session for a site
    GET  /session/view/{id}      - Login view page for a session
    POST /session/{id}/destroy   - Destroy a session
    POST /tools/{name}           - Invoke a browser tool with JSON arguments
    POST /agent/run              - Start an agent run
    POST /agent/continue         - Continue a run (e.g. after logging in)
    GET  /agent/run/{id}         - Current state of a run
    GET  /audit                  - Recent audit records
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

import aiosqlite
from aiohttp import web
from pydantic import ValidationError

from ..agent.keyworder import AgentKeyworder
from ..agent.narrator import AgentNarrator
from ..agent.orchestrator import AgentOrchestrator
from ..agent.tool_client import InProcessToolClient
from ..config import AUDIT_DB_PATH, HTTP_HOST, HTTP_PORT, ensure_dirs
from ..database.models import initialize_db
from ..database.repository import AuditRepository
from ..errors import AgentError, InvalidArgument
from ..models.run import AgentRunInput, AgentRunUpdate
from ..security import guard_serialize
from ..sites.registry import SiteRegistry
from .capabilities import BrowserCapabilities
from .store import SessionStore
from .view import render_view_page

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

MAX_BODY_BYTES = 64 * 1024
MAX_AUDIT_LIMIT = 500


class AgentRuntime:
    """Wires the session store, tools, audit log and orchestrator together."""

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        registry: Optional[SiteRegistry] = None,
        keyworder: Optional[AgentKeyworder] = None,
        narrator: Optional[AgentNarrator] = None,
        db_path: str = str(AUDIT_DB_PATH),
    ):
        self.store = store or SessionStore()
        self.registry = registry or SiteRegistry()
        self.db_path = db_path
        self.db: aiosqlite.Connection | None = None
        self.audit: AuditRepository | None = None
        self.capabilities = BrowserCapabilities(self.store, self.registry)
        self.orchestrator = AgentOrchestrator(
            InProcessToolClient(self.capabilities),
            keyworder=keyworder,
            narrator=narrator,
        )

    async def setup(self):
        """Open the audit database and start the sweepers."""
        ensure_dirs()
        self.db = await aiosqlite.connect(self.db_path)
        await initialize_db(self.db)
        self.audit = AuditRepository(self.db)
        self.capabilities.audit = self.audit
        self.store.start_janitor()
        self.orchestrator.start_janitor()

    async def cleanup(self):
        """Finish in-flight runs, close every session, then the database."""
        await self.orchestrator.shutdown()
        await self.store.shutdown()
        if self.db:
            await self.db.close()
            self.db = None


# ── Helpers ──────────────────────────────────────────────────────────────────


def _runtime(request: web.Request) -> AgentRuntime:
    return request.app["runtime"]


async def _read_json(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise InvalidArgument("Request body must be JSON.", code="INVALID_JSON")
    if not isinstance(body, dict):
        raise InvalidArgument("Request body must be a JSON object.", code="INVALID_JSON")
    return body


def _guarded_response(payload: Any, status: int = 200) -> web.Response:
    return web.Response(text=guard_serialize(payload), status=status, content_type="application/json")


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except AgentError as e:
        logger.info(f"{request.method} {request.path} -> {e.status} {e.code}")
        return web.json_response({"error": e.code, "retryable": e.retryable}, status=e.status)
    except Exception as e:
        logger.error(f"{request.method} {request.path} failed: {e}", exc_info=True)
        return web.json_response({"error": "INTERNAL_ERROR", "retryable": False}, status=500)


def _parse_model(model, body: dict[str, Any]):
    try:
        return model.model_validate(body)
    except ValidationError as e:
        field = str(e.errors()[0]["loc"][0]) if e.errors() and e.errors()[0]["loc"] else "argument"
        raise InvalidArgument(f"Invalid field '{field}'.", code=f"INVALID_{field.upper()}")


# ── HTTP Handlers ────────────────────────────────────────────────────────────


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"ok": True, "time": datetime.now(timezone.utc).isoformat()})


async def handle_create_session(request: web.Request) -> web.Response:
    rt = _runtime(request)
    body = await _read_json(request)
    return web.Response(
        text=await rt.capabilities.call("create_session", {"site": body.get("site")}),
        content_type="application/json",
    )


async def handle_view_session(request: web.Request) -> web.Response:
    rt = _runtime(request)
    session = rt.store.get(request.match_info["id"])
    if session is None:
        return web.Response(text="Session not found.", status=404)
    return web.Response(text=render_view_page(session.id), content_type="text/html")


async def handle_destroy_session(request: web.Request) -> web.Response:
    rt = _runtime(request)
    return web.Response(
        text=await rt.capabilities.call("destroy_session", {"sessionId": request.match_info["id"]}),
        content_type="application/json",
    )


async def handle_tool(request: web.Request) -> web.Response:
    rt = _runtime(request)
    body = await _read_json(request)
    text = await rt.capabilities.call(request.match_info["name"], body)
    return web.Response(text=text, content_type="application/json")


async def handle_agent_run(request: web.Request) -> web.Response:
    rt = _runtime(request)
    body = await _read_json(request)
    run_input = _parse_model(AgentRunInput, body)
    run = await rt.orchestrator.create_run(run_input)
    return _guarded_response(rt.orchestrator.to_public_run(run))


async def handle_agent_continue(request: web.Request) -> web.Response:
    rt = _runtime(request)
    body = await _read_json(request)
    run_id = body.pop("runId", None)
    if not isinstance(run_id, str) or not run_id.strip():
        raise InvalidArgument("runId is required.", code="RUN_ID_REQUIRED")
    update = _parse_model(AgentRunUpdate, body)
    run = await rt.orchestrator.advance(run_id.strip(), update)
    return _guarded_response(rt.orchestrator.to_public_run(run))


async def handle_agent_status(request: web.Request) -> web.Response:
    rt = _runtime(request)
    run = rt.orchestrator.require_run(request.match_info["id"])
    return _guarded_response(rt.orchestrator.to_public_run(run))


async def handle_audit(request: web.Request) -> web.Response:
    rt = _runtime(request)
    if rt.audit is None:
        return web.json_response({"records": [], "count": 0})
    try:
        limit = int(request.query.get("limit", "50"))
    except ValueError:
        raise InvalidArgument("limit must be an integer.", code="INVALID_LIMIT")
    limit = max(1, min(limit, MAX_AUDIT_LIMIT))

    records = await rt.audit.recent(limit=limit, session_id=request.query.get("sessionId", ""))
    return _guarded_response({"records": records, "count": len(records)})


# ── App Factory ──────────────────────────────────────────────────────────────


def create_app(runtime: Optional[AgentRuntime] = None) -> web.Application:
    """Build the service. Pass ``runtime`` to supply pre-wired collaborators."""

    async def on_startup(app: web.Application):
        rt = runtime or AgentRuntime()
        await rt.setup()
        app["runtime"] = rt
        logger.info(f"HITL browser service started on {HTTP_HOST}:{HTTP_PORT}")

    async def on_cleanup(app: web.Application):
        rt: AgentRuntime = app["runtime"]
        await rt.cleanup()
        logger.info("HITL browser service stopped.")

    app = web.Application(middlewares=[error_middleware], client_max_size=MAX_BODY_BYTES)
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/health", handle_health)
    app.router.add_post("/session", handle_create_session)
    app.router.add_get("/session/view/{id}", handle_view_session)
    app.router.add_post("/session/{id}/destroy", handle_destroy_session)
    app.router.add_post("/tools/{name}", handle_tool)
    app.router.add_post("/agent/run", handle_agent_run)
    app.router.add_post("/agent/continue", handle_agent_continue)
    app.router.add_get("/agent/run/{id}", handle_agent_status)
    app.router.add_get("/audit", handle_audit)

    return app


def main():
    """Run the service standalone."""
    app = create_app()
    web.run_app(app, host=HTTP_HOST, port=HTTP_PORT)


if __name__ == "__main__":
    main()
