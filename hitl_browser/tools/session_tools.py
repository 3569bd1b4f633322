"""MCP tools for creating, logging into and destroying browser sessions."""

from __future__ import annotations

import json
from typing import Any, Optional

import httpx

from ..config import SERVICE_URL


async def _call_service(
    method: str,
    path: str,
    json_body: dict | None = None,
    params: dict | None = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Make a request to the HITL browser HTTP service."""
    url = f"{SERVICE_URL}{path}"
    try:
        async with httpx.AsyncClient(timeout=300.0, transport=transport) as client:
            if method == "GET":
                resp = await client.get(url, params=params)
            else:
                resp = await client.post(url, json=json_body or {})

            if resp.status_code >= 400:
                try:
                    data = resp.json()
                except ValueError:
                    data = {}
                error = {"error": data.get("error", f"HTTP {resp.status_code}")}
                if data.get("retryable"):
                    error["retryable"] = True
                return error
            return resp.json()

    except httpx.ConnectError:
        return {
            "error": "HITL browser service is not reachable at "
            f"{SERVICE_URL}. It should auto-start with the MCP server. "
            "If running standalone: hitl-browser-http"
        }
    except httpx.TimeoutException:
        return {"error": "HITL browser service timed out. The browser may still be loading."}
    except Exception as e:
        return {"error": f"Failed to reach HITL browser service: {e}"}


def _to_text(result: dict[str, Any]) -> str:
    if "error" in result:
        if result.get("retryable"):
            return f"Error: {result['error']} (temporary, retry in a moment)"
        return f"Error: {result['error']}"
    return json.dumps(result, indent=2, ensure_ascii=False)


async def create_session(site: str = "") -> str:
    """Open a new browser session for a site.

    Args:
        site: "xhs" (default), "yelp" or "tripadvisor".

    Returns:
        JSON with sessionId and viewUrl. Open viewUrl to log in.
    """
    result = await _call_service("POST", "/session", {"site": site} if site else {})
    return _to_text(result)


async def wait_for_login(session_id: str, timeout_sec: int = 120, site: str = "") -> str:
    """Poll a session until a human has logged in or the timeout passes.

    Args:
        session_id: Session returned by create_session.
        timeout_sec: Seconds to wait; 0 checks exactly once.
        site: Override the session's site.

    Returns:
        JSON with status (READY, NEED_LOGIN or TIMEOUT) and debug signals.
    """
    body: dict[str, Any] = {"sessionId": session_id, "timeoutSec": timeout_sec}
    if site:
        body["site"] = site
    result = await _call_service("POST", "/tools/wait_for_login", body)
    return _to_text(result)


async def destroy_session(session_id: str) -> str:
    """Close a session's browser and delete its profile.

    Args:
        session_id: Session to destroy.
    """
    result = await _call_service("POST", f"/session/{session_id}/destroy")
    if "error" in result:
        return f"Error: {result['error']}"
    if result.get("ok"):
        return f"Session {session_id} destroyed."
    return f"Session {session_id} was not found (already destroyed or expired)."


async def recent_audit(session_id: str = "", limit: int = 50) -> str:
    """List recent tool invocations from the audit log.

    Args:
        session_id: Only records for this session. Empty=all.
        limit: Max records (default 50).
    """
    params: dict[str, Any] = {"limit": limit}
    if session_id:
        params["sessionId"] = session_id
    result = await _call_service("GET", "/audit", params=params)
    if "error" in result:
        return f"Error: {result['error']}"

    records = result.get("records", [])
    if not records:
        return "No audit records."
    lines = [f"{len(records)} audit records (newest first):"]
    for rec in records:
        extra = rec.get("keyword") or rec.get("note_url") or ""
        lines.append(f"- {rec.get('ts')} {rec.get('action')} session={rec.get('session_id')} {extra}".rstrip())
    return "\n".join(lines)
