"""HTML helpers shared by the site adapters.

Adapters pull rendered HTML out of the browser with ``page.content()`` and do
all extraction here, in Python, so parsing can be tested against saved markup.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from bs4 import BeautifulSoup, Tag

from ..constants import BLOCK_INDICATORS

_COUNT_RE = re.compile(r"([0-9]+(?:\.[0-9]+)?)(万|w|k)?", re.IGNORECASE)
_NUMBER_RE = re.compile(r"([0-9]+(?:\.[0-9]+)?)")
_LINE_SPLIT_RE = re.compile(r"[\n\r\t·•]")

BODY_PREVIEW_CHARS = 800


def clean_text(text: str | None) -> str:
    """Strip whitespace and normalize text."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def trim(text: str, max_len: int) -> str:
    return text[:max_len].strip() if len(text) > max_len else text


def parse_count(text: str | None) -> Optional[int]:
    """Parse engagement counts like '1,234', '3.2k' or '1.5万'."""
    if not text:
        return None
    cleaned = re.sub(r"[,\s]", "", text)
    match = _COUNT_RE.search(cleaned)
    if not match:
        return None
    try:
        number = float(match.group(1))
    except ValueError:
        return None
    unit = (match.group(2) or "").lower()
    multiplier = 10000 if unit in ("万", "w") else 1000 if unit == "k" else 1
    return round(number * multiplier)


def parse_rating(text: str | None) -> Optional[float]:
    """Pull the first number out of labels like '4.5 star rating'."""
    if not text:
        return None
    match = _NUMBER_RE.search(text)
    return float(match.group(1)) if match else None


def find_labeled_count(text: str, labels: Iterable[str]) -> Optional[int]:
    """Find a count on the first line mentioning one of ``labels``."""
    lines = [line.strip() for line in _LINE_SPLIT_RE.split(text)]
    for label in labels:
        for line in lines:
            if label not in line:
                continue
            count = parse_count(line)
            if count is not None:
                return count
    return None


def element_text(el: Optional[Tag]) -> str:
    return clean_text(el.get_text(" ")) if el is not None else ""


def page_identity(html: str) -> tuple[str, str]:
    """Return the page <title> and a preview of its visible body text."""
    soup = BeautifulSoup(html, "html.parser")
    title = clean_text(soup.title.get_text()) if soup.title else ""
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    body = soup.find("body")
    text = clean_text(body.get_text(" ")) if body else ""
    return title, text[:BODY_PREVIEW_CHARS]


def is_blocked(title: str, body_text: str) -> bool:
    """Detect bot challenges and consent walls."""
    signals = f"{title} {body_text}".lower()
    return any(indicator in signals for indicator in BLOCK_INDICATORS)
