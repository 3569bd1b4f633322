"""Login view: where a human goes to authenticate a session's browser."""

from __future__ import annotations

import html
import re
from typing import Optional
from urllib.parse import quote

from ..config import HTTP_HOST, HTTP_PORT, NOVNC_URL_TEMPLATE, PUBLIC_BASE_URL, VIEW_MODE

_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9-]")


def build_view_url(session_id: str, public_base_url: str = PUBLIC_BASE_URL) -> str:
    base = (public_base_url or f"http://{HTTP_HOST}:{HTTP_PORT}").rstrip("/")
    return f"{base}/session/view/{session_id}"


def resolve_novnc_url(session_id: str, template: str = NOVNC_URL_TEMPLATE) -> Optional[str]:
    if not template:
        return None
    return template.replace("{sessionId}", quote(session_id, safe=""))


_NOVNC_PAGE = """<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>Remote Browser Session</title>
  <style>
    body {{ font-family: Arial, sans-serif; padding: 24px; background: #f7f2e9; }}
    .frame {{ width: 100%; aspect-ratio: 16 / 9; border: 1px solid #d6cbb8; border-radius: 12px; overflow: hidden; }}
    iframe {{ width: 100%; height: 100%; border: 0; }}
    .meta {{ margin-top: 12px; color: #5a5043; font-size: 14px; }}
  </style>
</head>
<body>
  <h1>Session {session_id}</h1>
  <p>Log in below using the live browser stream.</p>
  <div class="frame">
    <iframe src="{novnc_url}" title="noVNC session view"></iframe>
  </div>
  <div class="meta">
    If the embed fails, open it in a new tab:
    <a href="{novnc_url}" target="_blank" rel="noreferrer">Open noVNC</a>
  </div>
</body>
</html>
"""

_INFO_PAGE = """<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>Browser Session View</title>
  <style>
    body {{ font-family: Arial, sans-serif; padding: 24px; }}
    code {{ background: #f4f4f4; padding: 2px 4px; }}
  </style>
</head>
<body>
  <h1>Session {session_id}</h1>
  <p>This session runs in a local headful browser window. Log in there.</p>
  <p>If you do not see a browser window, set <code>BROWSER_HEADLESS=false</code> and restart.</p>
  <p>For remote deployment, set <code>VIEW_MODE=novnc</code> and <code>NOVNC_URL_TEMPLATE</code>.</p>
  <p>After logging in, return to your MCP client and call <code>wait_for_login</code>.</p>
</body>
</html>
"""


def render_view_page(
    session_id: str,
    view_mode: str = VIEW_MODE,
    novnc_template: str = NOVNC_URL_TEMPLATE,
) -> str:
    safe_id = _UNSAFE_ID_CHARS.sub("", session_id)
    novnc_url = resolve_novnc_url(session_id, novnc_template)
    if view_mode == "novnc" and novnc_url:
        return _NOVNC_PAGE.format(session_id=safe_id, novnc_url=html.escape(novnc_url, quote=True))
    return _INFO_PAGE.format(session_id=safe_id)
