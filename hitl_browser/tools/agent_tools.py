"""MCP tools for agent runs: one request, driven end to end by the service."""

from __future__ import annotations

import json
from typing import Any

from .session_tools import _call_service


def _format_run(run: dict[str, Any]) -> str:
    status = run.get("status", "unknown")
    header = f"Run {run.get('runId')} is {status}"
    if run.get("running"):
        header += " (still working)"

    if status == "NEED_LOGIN" and run.get("viewUrl"):
        header += (
            f".\nLog in at {run['viewUrl']}, then call agent_continue with this runId."
        )
    elif status == "ERROR":
        header += f": {run.get('error')}"
    elif status == "DONE":
        header += f" with {len(run.get('notes') or [])} results"

    return f"{header}\n\n{json.dumps(run, indent=2, ensure_ascii=False)}"


async def agent_run(
    query: str,
    session_id: str = "",
    max_notes: int = 20,
    scroll_times: int = 2,
    login_timeout_sec: int = 8,
    site: str = "",
) -> str:
    """Start an agent run for a natural-language request.

    Args:
        query: What to look for, in plain language.
        session_id: Reuse an existing session instead of opening a new one.
        max_notes: Maximum results.
        scroll_times: Scroll passes on the results page.
        login_timeout_sec: Seconds to wait for login per pass.
        site: "xhs" (default), "yelp" or "tripadvisor".
    """
    body: dict[str, Any] = {
        "query": query,
        "maxNotes": max_notes,
        "scrollTimes": scroll_times,
        "loginTimeoutSec": login_timeout_sec,
    }
    if session_id:
        body["sessionId"] = session_id
    if site:
        body["site"] = site

    result = await _call_service("POST", "/agent/run", body)
    if "error" in result:
        return f"Error: {result['error']}"
    return _format_run(result)


async def agent_continue(run_id: str, login_timeout_sec: int = 0) -> str:
    """Continue a run, typically after the user has logged in.

    Args:
        run_id: Run returned by agent_run.
        login_timeout_sec: New login wait per pass (0 keeps the run's setting).
    """
    body: dict[str, Any] = {"runId": run_id}
    if login_timeout_sec > 0:
        body["loginTimeoutSec"] = login_timeout_sec

    result = await _call_service("POST", "/agent/continue", body)
    if "error" in result:
        return f"Error: {result['error']}"
    return _format_run(result)


async def agent_status(run_id: str) -> str:
    """Get the current state, steps and results of a run.

    Args:
        run_id: Run returned by agent_run.
    """
    result = await _call_service("GET", f"/agent/run/{run_id}")
    if "error" in result:
        return f"Error: {result['error']}"
    return _format_run(result)
