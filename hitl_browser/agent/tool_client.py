"""Request/response access to the browser tools from inside the process."""

from __future__ import annotations

import json
from typing import Any, Optional, Protocol

from ..session_manager.capabilities import BrowserCapabilities


class ToolClient(Protocol):
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]: ...


class InProcessToolClient:
    """Calls ``BrowserCapabilities`` directly and decodes the guarded JSON.

    Tool errors propagate as the ``AgentError`` the capability raised.
    """

    def __init__(self, capabilities: BrowserCapabilities):
        self.capabilities = capabilities

    async def call_tool(self, name: str, arguments: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        text = await self.capabilities.call(name, arguments or {})
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return {"raw": text}
