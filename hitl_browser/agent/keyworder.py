"""Keyword deriver: turn a natural-language request into 1-3 site search queries.

Uses an OpenAI chat model when an API key is configured. Every failure path
(no key, empty or malformed output, API error) falls back to the normalized
request itself, so a run can always search.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from typing import Optional

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from ..config import OPENAI_API_KEY, OPENAI_MODEL

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

MAX_QUERIES = 3

METHOD_MODEL = "model"
METHOD_FALLBACK = "fallback"


class KeywordResult(BaseModel):
    queries: list[str] = Field(default_factory=list)
    method: str = METHOD_FALLBACK
    reason: Optional[str] = None


def normalize_query(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def _build_prompt(query: str, site: Optional[str]) -> str:
    target_language = "Chinese" if site == "xhs" else "English"
    return "\n".join([
        "You are a search keyword extractor that identifies the intent of a user query.",
        "Return JSON only.",
        'Output schema: {"queries": ["..."]}.',
        "Rules:",
        "- Return 1-3 short search queries.",
        f"- Always use {target_language} regardless of the input language.",
        "- Keep location, cuisine, price, and key intent.",
        "- Avoid punctuation; keep concise.",
        f"User query: {query}",
    ])


class AgentKeyworder:
    """Derives search queries from a request, with a pass-through fallback."""

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
        """Get or create the OpenAI client. None without an API key."""
        if self._client is None and self._api_key:
            self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    def _fallback(self, base: str, reason: str) -> KeywordResult:
        if reason != "no_api_key":
            logger.warning(f"[keyworder] fallback: {reason}")
        return KeywordResult(queries=[base] if base else [], method=METHOD_FALLBACK, reason=reason)

    async def extract(self, query: str, site: Optional[str] = None) -> KeywordResult:
        """Return up to three normalized queries. Never raises."""
        base = normalize_query(query)
        client = self.client
        if client is None:
            return self._fallback(base, "no_api_key")

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": _build_prompt(base, site)}],
                response_format={"type": "json_object"},
            )
            text = (response.choices[0].message.content or "").strip()
        except Exception as e:
            status = getattr(e, "status_code", "unknown")
            logger.warning(f"[keyworder] api_error (status={status}): {str(e)[:200]}")
            return self._fallback(base, "api_error")

        if not text:
            return self._fallback(base, "empty_output")

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return self._fallback(base, "invalid_json")

        raw_queries = parsed.get("queries") if isinstance(parsed, dict) else None
        queries = []
        if isinstance(raw_queries, list):
            queries = [q for q in (normalize_query(str(item)) for item in raw_queries) if q]
        if not queries:
            return self._fallback(base, "empty_queries")

        return KeywordResult(queries=queries[:MAX_QUERIES], method=METHOD_MODEL)
