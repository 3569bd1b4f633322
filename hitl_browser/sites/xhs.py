"""Xiaohongshu (XHS) adapter: human login, then search-result extraction.

XHS gates search behind a login. The adapter decides "logged in" from the
rendered header: no login/register button, plus at least one sign of an
account (avatar, profile link, creator button or user menu).
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Optional
from urllib.parse import quote, urljoin

from bs4 import BeautifulSoup, Tag

from ..config import XHS_BASE_URL
from ..constants import (
    SELECTORS,
    XHS_COLLECT_LABELS,
    XHS_COMMENT_LABELS,
    XHS_CREATOR_BUTTON_TEXTS,
    XHS_EXPLORE_URL,
    XHS_LIKE_CLASS_HINTS,
    XHS_LIKE_LABELS,
    XHS_LOGIN_BUTTON_TEXTS,
    XHS_MAX_NOTES,
    XHS_MAX_SCROLLS,
    XHS_SEARCH_URL,
    XHS_SHARE_LABELS,
)
from ..models.note import NEED_LOGIN, READY, Note, SearchResult
from ..models.session import Session
from ..session_manager.browser import get_active_page, goto, scroll_for_results, wait_for_results
from .base import SiteAdapter
from .parsing import clean_text, element_text, find_labeled_count, parse_count, trim

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_NOTE_PATH_MARKERS = ("/explore/", "/discovery/item/")


# ── Login detection ──────────────────────────────────────────────────────────


def _button_texts(soup: BeautifulSoup) -> list[str]:
    return [clean_text(el.get_text()) for el in soup.find_all(["a", "button"])]


def parse_login_signals(html: str) -> dict[str, bool]:
    """Read the login signals out of a rendered XHS page."""
    soup = BeautifulSoup(html, "html.parser")
    texts = _button_texts(soup)

    user_link_found = any(
        clean_text(link.get_text()) or link.find("img") is not None
        for link in soup.select(SELECTORS["xhs_user_link"])
    )
    return {
        "avatar_found": soup.select_one(SELECTORS["xhs_avatar"]) is not None,
        "user_link_found": user_link_found,
        "creator_button_found": any(
            label in text for text in texts for label in XHS_CREATOR_BUTTON_TEXTS
        ),
        "user_menu_found": soup.select_one(SELECTORS["xhs_user_menu"]) is not None,
        "login_button_found": any(
            label in text for text in texts for label in XHS_LOGIN_BUTTON_TEXTS
        ),
    }


def is_logged_in(signals: dict[str, bool]) -> bool:
    if signals.get("login_button_found", True):
        return False
    return any(
        signals.get(key, False)
        for key in ("avatar_found", "user_link_found", "creator_button_found", "user_menu_found")
    )


# ── Result parsing ───────────────────────────────────────────────────────────


def extract_note_id(href: str) -> str:
    """Take the note id from ``/explore/<id>`` or ``/discovery/item/<id>`` links."""
    for marker in _NOTE_PATH_MARKERS:
        if marker in href:
            part = href.split(marker, 1)[1]
            return part.split("?")[0].split("#")[0].strip("/")
    return ""


def _pick_title(card: Optional[Tag], link: Tag) -> str:
    candidates: list[Tag] = []
    if card is not None:
        candidates.extend(card.find_all(["h1", "h2", "h3", "h4"]))
        candidates.extend(card.find_all("span"))
    candidates.append(link)
    for el in candidates:
        text = element_text(el)
        if 2 <= len(text) <= 80:
            return text
    return ""


def _pick_desc(card: Optional[Tag]) -> str:
    if card is None:
        return ""
    for el in card.find_all("p"):
        text = element_text(el)
        if len(text) >= 2:
            return trim(text, 140)
    return ""


def _pick_author(card: Optional[Tag]) -> str:
    if card is None:
        return ""
    for selector in (SELECTORS["xhs_user_link"], SELECTORS["xhs_author"]):
        text = element_text(card.select_one(selector))
        if text and len(text) <= 40:
            return text
    return ""


def _adjacent_count(el: Tag) -> Optional[int]:
    for node in (el.find_next_sibling(), el.find_previous_sibling(), el.parent):
        if node is None:
            continue
        count = parse_count(element_text(node))
        if count is not None:
            return count
    return None


def _find_like_count(card: Optional[Tag], card_text: str) -> Optional[int]:
    """Likes are often an icon plus a bare number, so look harder than for other counts."""
    count = find_labeled_count(card_text, XHS_LIKE_LABELS)
    if count is not None or card is None:
        return count

    for el in card.find_all(["span", "div", "em", "i", "button", "a"]):
        for attr in ("data-count", "data-num", "data-number"):
            value = el.get(attr)
            if value:
                parsed = parse_count(value)
                if parsed is not None:
                    return parsed

        text = element_text(el)
        aria = clean_text(el.get("aria-label"))
        title = clean_text(el.get("title"))
        for candidate in (text, aria, title):
            if candidate and any(label in candidate for label in XHS_LIKE_LABELS):
                parsed = parse_count(candidate)
                if parsed is None:
                    parsed = _adjacent_count(el)
                if parsed is not None:
                    return parsed

        class_name = " ".join(el.get("class") or []).lower()
        if any(hint in class_name for hint in XHS_LIKE_CLASS_HINTS):
            parsed = parse_count(f"{text} {aria} {title}")
            if parsed is None:
                parsed = _adjacent_count(el)
            if parsed is not None:
                return parsed
    return None


def parse_search_results(html: str, base_url: str, limit: int) -> list[Note]:
    """Extract up to ``limit`` notes, one per distinct note id, in page order."""
    soup = BeautifulSoup(html, "html.parser")
    notes: list[Note] = []
    seen: set[str] = set()

    for link in soup.select(SELECTORS["xhs_result_link"]):
        href = link.get("href") or ""
        note_id = extract_note_id(href)
        if not note_id or note_id in seen:
            continue
        seen.add(note_id)

        card = link.find_parent(["section", "article", "div"])
        card_text = card.get_text("\n") if card is not None else ""

        title = _pick_title(card, link)
        desc = _pick_desc(card)
        notes.append(
            Note(
                id=note_id,
                url=urljoin(base_url, f"/explore/{note_id}"),
                title=title or None,
                desc=desc or None,
                author=_pick_author(card) or None,
                snippet=desc or title or None,
                liked_count=_find_like_count(card, card_text),
                collected_count=find_labeled_count(card_text, XHS_COLLECT_LABELS),
                comments_count=find_labeled_count(card_text, XHS_COMMENT_LABELS),
                shared_count=find_labeled_count(card_text, XHS_SHARE_LABELS),
            )
        )
        if len(notes) >= limit:
            break

    return notes


# ── Adapter ──────────────────────────────────────────────────────────────────


class XhsAdapter(SiteAdapter):
    site_id = "xhs"
    name = "Xiaohongshu"
    base_url = XHS_BASE_URL
    requires_login = True

    max_notes_ceiling = XHS_MAX_NOTES
    max_scrolls_ceiling = XHS_MAX_SCROLLS

    landing_settle_s: float = 0.8

    async def _ensure_landing(self, session: Session):
        """Keep the login check on /explore, where the header is rendered."""
        page = get_active_page(session)
        if "/explore" in (page.url or ""):
            return
        try:
            await goto(page, XHS_EXPLORE_URL)
            await asyncio.sleep(self.landing_settle_s)
        except Exception as e:
            logger.info(f"[xhs] Landing navigation failed, checking current page: {e}")

    async def _read_signals(self, session: Session) -> tuple[bool, dict[str, Any]]:
        page = get_active_page(session)
        signals = parse_login_signals(await page.content())
        debug = {
            "url": page.url,
            "signals": signals,
            "pages": len(session.context.pages),
        }
        return is_logged_in(signals), debug

    async def check_login(self, session: Session) -> tuple[bool, dict[str, Any]]:
        await self._ensure_landing(session)
        return await self._read_signals(session)

    async def search(
        self,
        session: Session,
        query: str,
        max_notes: Optional[float],
        scroll_times: Optional[float],
    ) -> SearchResult:
        safe_query = self.require_query(query)

        logged_in, debug = await self._safe_read_signals(session)
        if not logged_in:
            return SearchResult(status=NEED_LOGIN, notes=[], debug=debug)

        limit = self.note_limit(max_notes)
        scrolls = self.scroll_limit(scroll_times)

        page = get_active_page(session)
        await goto(page, f"{XHS_SEARCH_URL}?keyword={quote(safe_query)}")
        await asyncio.sleep(self.navigation_settle_s)

        selector = SELECTORS["xhs_result_link"]
        await wait_for_results(page, selector, timeout_ms=self.results_timeout_ms)
        await scroll_for_results(
            page,
            selector,
            scrolls,
            settle_s=self.scroll_settle_s,
            stall_s=self.scroll_stall_s,
        )

        notes = parse_search_results(await page.content(), self.base_url, limit)
        logger.info(f"[xhs] Search extracted {len(notes)} notes (limit {limit}, scrolls {scrolls}).")
        return SearchResult(status=READY, notes=notes, debug={"url": page.url, "limit": limit})

    async def _safe_read_signals(self, session: Session) -> tuple[bool, dict[str, Any]]:
        try:
            return await self._read_signals(session)
        except Exception as e:
            logger.info(f"[xhs] Login check before search failed: {e}")
            return False, {"check_failed": str(e)[:200]}
