"""Yelp and TripAdvisor adapters.

Neither site needs a login. Both put bot challenges and cookie-consent walls
in front of search results; those come back as an empty READY result with
reason ``blocked_or_consent`` so the caller can tell them from "no results".
"""

from __future__ import annotations

import asyncio
import logging
import sys
from abc import abstractmethod
from typing import Optional
from urllib.parse import quote, urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from ..constants import (
    REVIEW_SITE_MAX_NOTES,
    REVIEW_SITE_MAX_SCROLLS,
    SELECTORS,
    TRIPADVISOR_BASE,
    TRIPADVISOR_SEARCH_URL,
    YELP_BASE,
    YELP_SEARCH_URL,
)
from ..models.note import READY, Note, SearchResult
from ..models.session import Session
from ..session_manager.browser import ensure_page, goto, scroll_for_results, wait_for_results
from .base import SiteAdapter
from .parsing import element_text, is_blocked, page_identity, parse_rating

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

BLOCKED_REASON = "blocked_or_consent"
NO_RESULTS_REASON = "loading_timeout_or_no_results"


class ReviewSiteAdapter(SiteAdapter):
    """Shared search flow for listing sites that need no login."""

    search_url: str = ""
    query_param: str = "q"

    result_key: str = ""
    snippet_key: str = ""
    rating_key: str = ""
    location_key: str = ""
    heading_tags: tuple[str, ...] = ("h3", "h4")
    title_max_len: int = 120

    max_notes_ceiling = REVIEW_SITE_MAX_NOTES
    max_scrolls_ceiling = REVIEW_SITE_MAX_SCROLLS

    scroll_settle_s = 0.9
    scroll_stall_s = 0.6
    wheel_px: int = 2200

    # Whether zero result links should be reported with a reason.
    report_empty: bool = False

    @abstractmethod
    def extract_id(self, href: str) -> str:
        """Stable item id from a result href, or "" when the link is not a result."""

    def parse_results(self, html: str, limit: int) -> list[Note]:
        """Extract up to ``limit`` listings, one per distinct id, in page order."""
        soup = BeautifulSoup(html, "html.parser")
        notes: list[Note] = []
        seen: set[str] = set()

        for link in soup.select(SELECTORS[self.result_key]):
            href = link.get("href") or ""
            item_id = self.extract_id(href)
            if not item_id or item_id in seen:
                continue

            card = link.find_parent(["li", "div"])
            title = self._pick_title(card, link)
            if not title:
                continue
            seen.add(item_id)

            snippet = self._pick_text(card, self.snippet_key)
            notes.append(
                Note(
                    id=item_id,
                    url=href if href.startswith("http") else urljoin(self.base_url, href),
                    title=title,
                    desc=snippet or None,
                    snippet=snippet or None,
                    rating=self._pick_rating(card),
                    location=self._pick_text(card, self.location_key) or None,
                )
            )
            if len(notes) >= limit:
                break

        return notes

    def _pick_title(self, card: Optional[Tag], link: Tag) -> str:
        text = element_text(link)
        if text and len(text) <= self.title_max_len:
            return text
        if card is None:
            return ""
        return element_text(card.find(list(self.heading_tags)))

    @staticmethod
    def _pick_text(card: Optional[Tag], key: str) -> str:
        if card is None:
            return ""
        return element_text(card.select_one(SELECTORS[key]))

    def _pick_rating(self, card: Optional[Tag]) -> Optional[float]:
        if card is None:
            return None
        el = card.select_one(SELECTORS[self.rating_key])
        if el is None:
            return None
        return parse_rating(el.get("aria-label") or element_text(el))

    async def _wait_for_listing(self, page, selector: str):
        await wait_for_results(page, selector, timeout_ms=self.results_timeout_ms)

    async def search(
        self,
        session: Session,
        query: str,
        max_notes: Optional[float],
        scroll_times: Optional[float],
    ) -> SearchResult:
        safe_query = self.require_query(query)
        limit = self.note_limit(max_notes)
        scrolls = self.scroll_limit(scroll_times)

        page = await ensure_page(session, self.base_url)
        await goto(page, f"{self.search_url}?{self.query_param}={quote(safe_query)}")
        await asyncio.sleep(self.navigation_settle_s)

        title, body_text = page_identity(await page.content())
        if is_blocked(title, body_text):
            logger.warning(f"[{self.site_id}] Search page looks like a challenge or consent wall: {title!r}")
            return SearchResult(
                status=READY,
                notes=[],
                reason=BLOCKED_REASON,
                debug={"url": page.url, "title": title},
            )

        selector = SELECTORS[self.result_key]
        await self._wait_for_listing(page, selector)
        count = await scroll_for_results(
            page,
            selector,
            scrolls,
            wheel_px=self.wheel_px,
            settle_s=self.scroll_settle_s,
            stall_s=self.scroll_stall_s,
        )

        if self.report_empty and count == 0:
            return SearchResult(
                status=READY,
                notes=[],
                reason=NO_RESULTS_REASON,
                debug={"url": page.url, "title": title},
            )

        notes = self.parse_results(await page.content(), limit)
        logger.info(f"[{self.site_id}] Search extracted {len(notes)} listings (limit {limit}, scrolls {scrolls}).")
        return SearchResult(status=READY, notes=notes, debug={"url": page.url, "limit": limit})


class YelpAdapter(ReviewSiteAdapter):
    site_id = "yelp"
    name = "Yelp"
    base_url = YELP_BASE

    search_url = YELP_SEARCH_URL
    query_param = "find_desc"

    result_key = "yelp_result_link"
    snippet_key = "yelp_snippet"
    rating_key = "yelp_rating"
    location_key = "yelp_location"

    def extract_id(self, href: str) -> str:
        if not href.startswith("/biz/"):
            return ""
        return href.split("/biz/", 1)[1].split("?")[0].split("#")[0]


class TripAdvisorAdapter(ReviewSiteAdapter):
    site_id = "tripadvisor"
    name = "TripAdvisor"
    base_url = TRIPADVISOR_BASE

    search_url = TRIPADVISOR_SEARCH_URL
    query_param = "q"

    result_key = "tripadvisor_result_link"
    snippet_key = "tripadvisor_snippet"
    rating_key = "tripadvisor_rating"
    location_key = "tripadvisor_location"
    heading_tags = ("h2", "h3")
    title_max_len = 140

    # Results render client-side well after domcontentloaded.
    results_timeout_ms = 15000
    report_empty = True

    def extract_id(self, href: str) -> str:
        """The review page slug, e.g. ``Restaurant_Review-g60763-d423-Reviews-X.html``."""
        return urlparse(href).path.lstrip("/").split("/")[0]

    async def _wait_for_listing(self, page, selector: str):
        try:
            await page.wait_for_load_state("networkidle", timeout=self.results_timeout_ms)
        except Exception as e:
            logger.info(f"[tripadvisor] Network never went idle, continuing: {e}")
        await wait_for_results(page, selector, timeout_ms=self.results_timeout_ms)
