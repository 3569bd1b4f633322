"""MCP Server entry point for the HITL browser agent.

Exposes tools to MCP clients over stdio:
- Sessions: create_session, wait_for_login, destroy_session, audit_log
- Extraction: search, open_and_extract
- Agent runs: agent_run, agent_continue, agent_status

The HITL browser HTTP service (aiohttp on HOST:PORT) is auto-started as part
of the MCP server lifecycle. All tools forward to it.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from aiohttp.web import AppRunner, TCPSite
from mcp.server.fastmcp import FastMCP

from .config import HTTP_HOST, HTTP_PORT, ensure_dirs
from .tools import agent_tools, scraping_tools, session_tools

# Configure logging to stderr (stdout is reserved for MCP JSON-RPC)
logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("hitl-browser")

ensure_dirs()


# ── Lifespan: auto-start the HTTP service ────────────────────────────────────


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Start the HTTP service alongside the MCP server."""
    from .session_manager.manager import create_app

    app = create_app()
    runner = AppRunner(app)
    await runner.setup()
    site = TCPSite(runner, HTTP_HOST, HTTP_PORT)
    managed = False
    try:
        await site.start()
        logger.info("HITL browser service auto-started on %s:%s", HTTP_HOST, HTTP_PORT)
        managed = True
    except OSError:
        # Port already in use: assume the service was started separately
        logger.info("HITL browser service already running on %s:%s", HTTP_HOST, HTTP_PORT)
        await runner.cleanup()

    try:
        yield {}
    finally:
        if managed:
            await runner.cleanup()
            logger.info("HITL browser service stopped.")


# ── MCP Server ───────────────────────────────────────────────────────────────

mcp = FastMCP(
    "hitl-browser",
    lifespan=lifespan,
    instructions=(
        "HITL Browser Agent - search login-gated sites through a real browser. "
        "For a one-shot request call agent_run; if it returns NEED_LOGIN, give the user "
        "the view URL, wait for them to log in, then call agent_continue. "
        "For step-by-step control use create_session, wait_for_login, search and "
        "destroy_session. Sites: xhs (Xiaohongshu, needs login), yelp, tripadvisor."
    ),
)


# ── Session Tools ────────────────────────────────────────────────────────────


@mcp.tool(name="create_session")
async def tool_create_session(site: str = "") -> str:
    """Open a browser session and return sessionId + viewUrl.

    Args:
        site: "xhs" (default), "yelp" or "tripadvisor".
    """
    return await session_tools.create_session(site)


@mcp.tool(name="wait_for_login")
async def tool_wait_for_login(session_id: str, timeout_sec: int = 120, site: str = "") -> str:
    """Wait until the user has logged in to the session's browser.

    Args:
        session_id: Session from create_session.
        timeout_sec: Seconds to wait (0 = check once).
        site: Override the session's site.
    """
    return await session_tools.wait_for_login(session_id, timeout_sec, site)


@mcp.tool(name="destroy_session")
async def tool_destroy_session(session_id: str) -> str:
    """Close a browser session and delete its profile."""
    return await session_tools.destroy_session(session_id)


@mcp.tool(name="audit_log")
async def tool_audit_log(session_id: str = "", limit: int = 50) -> str:
    """List recent tool invocations (redacted).

    Args:
        session_id: Filter to one session. Empty=all.
        limit: Max records (default 50).
    """
    return await session_tools.recent_audit(session_id, limit)


# ── Extraction Tools ─────────────────────────────────────────────────────────


@mcp.tool(name="search")
async def tool_search(
    session_id: str,
    query: str,
    max_notes: int = 20,
    scroll_times: int = 2,
    site: str = "",
) -> str:
    """Search a logged-in session's site and return result notes.

    Args:
        session_id: A session that passed wait_for_login.
        query: Search keywords.
        max_notes: Max results (default 20, capped per site).
        scroll_times: Scroll passes (default 2, capped per site).
        site: Override the session's site.
    """
    return await scraping_tools.search(session_id, query, max_notes, scroll_times, site)


@mcp.tool(name="open_and_extract")
async def tool_open_and_extract(session_id: str, url: str, site: str = "") -> str:
    """Open one result URL and extract its detail, where the site supports it."""
    return await scraping_tools.open_and_extract(session_id, url, site)


# ── Agent Tools ──────────────────────────────────────────────────────────────


@mcp.tool(name="agent_run")
async def tool_agent_run(
    query: str,
    session_id: str = "",
    max_notes: int = 20,
    scroll_times: int = 2,
    login_timeout_sec: int = 8,
    site: str = "",
) -> str:
    """Start an agent run for a natural-language request.

    The agent opens (or reuses) a session, waits for login, derives search
    keywords and searches. Poll with agent_status; continue after login.

    Args:
        query: What to look for.
        session_id: Reuse an existing session.
        max_notes: Max results.
        scroll_times: Scroll passes.
        login_timeout_sec: Login wait per pass.
        site: "xhs" (default), "yelp" or "tripadvisor".
    """
    return await agent_tools.agent_run(
        query, session_id, max_notes, scroll_times, login_timeout_sec, site,
    )


@mcp.tool(name="agent_continue")
async def tool_agent_continue(run_id: str, login_timeout_sec: int = 0) -> str:
    """Continue a run after the user logged in.

    Args:
        run_id: Run from agent_run.
        login_timeout_sec: New login wait per pass (0 = keep).
    """
    return await agent_tools.agent_continue(run_id, login_timeout_sec)


@mcp.tool(name="agent_status")
async def tool_agent_status(run_id: str) -> str:
    """Get a run's status, steps and results."""
    return await agent_tools.agent_status(run_id)


# ── Entry Point ──────────────────────────────────────────────────────────────


def main():
    """Run the MCP server on STDIO transport."""
    logger.info("Starting HITL browser MCP server...")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
