"""Narrator: one or two plain sentences describing a run step for a UI log."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Optional

from openai import AsyncOpenAI

from ..config import OPENAI_API_KEY, OPENAI_MODEL
from ..security import sanitize_output

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


class AgentNarrator:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = OPENAI_MODEL,
        client: Optional[AsyncOpenAI] = None,
    ):
        self._api_key = OPENAI_API_KEY if api_key is None else api_key
        self.model = model
        self._client = client

    @property
    def client(self) -> Optional[AsyncOpenAI]:
        if self._client is None and self._api_key:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def summarize(
        self,
        action: str,
        state: str,
        outcome: str,
        detail: Optional[dict[str, Any]] = None,
    ) -> str:
        """Summarize a step. Falls back to ``"<action> -> <outcome>"``; never raises."""
        fallback = f"{action} -> {outcome}"
        client = self.client
        if client is None:
            return fallback

        step = sanitize_output({"action": action, "state": state, "outcome": outcome, "detail": detail or {}})
        prompt = "\n".join([
            "Summarize this agent step for a UI log.",
            "Return 1-2 short sentences.",
            "Do NOT include chain-of-thought or sensitive data.",
            f"Step: {json.dumps(step, ensure_ascii=False, default=str)}",
        ])
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
            text = (response.choices[0].message.content or "").strip()
        except Exception as e:
            logger.info(f"[narrator] fallback for {action}: {str(e)[:200]}")
            return fallback
        return text or fallback
