"""MCP tools for searching a logged-in session and extracting results."""

from __future__ import annotations

import json

from .session_tools import _call_service


async def search(
    session_id: str,
    query: str,
    max_notes: int = 20,
    scroll_times: int = 2,
    site: str = "",
) -> str:
    """Search the session's site and return result notes.

    Args:
        session_id: A session that has passed wait_for_login.
        query: Search keywords.
        max_notes: Maximum results (capped per site).
        scroll_times: Scroll passes to load more results (capped per site).
        site: Override the session's site.

    Returns:
        JSON with status, notes, and an optional reason when nothing could be read.
    """
    body = {
        "sessionId": session_id,
        "query": query,
        "maxNotes": max_notes,
        "scrollTimes": scroll_times,
    }
    if site:
        body["site"] = site
    result = await _call_service("POST", "/tools/search", body)

    if "error" in result:
        return f"Error: {result['error']}"
    if result.get("status") == "NEED_LOGIN":
        return (
            "The session is not logged in. Ask the user to log in through the view URL, "
            "then call wait_for_login before searching again."
        )
    return json.dumps(result, indent=2, ensure_ascii=False)


async def open_and_extract(session_id: str, url: str, site: str = "") -> str:
    """Open one result and extract its full detail.

    Args:
        session_id: A logged-in session.
        url: Result URL from a previous search.
        site: Override the session's site.
    """
    body = {"sessionId": session_id, "url": url}
    if site:
        body["site"] = site
    result = await _call_service("POST", "/tools/open_and_extract", body)

    if "error" in result:
        return f"Error: {result['error']}"
    if result.get("status") == "NOT_IMPLEMENTED":
        return "Detail extraction is not available for this site yet."
    return json.dumps(result, indent=2, ensure_ascii=False)
