"""Site selection: normalize free-form site names and hand out adapters."""

from __future__ import annotations

from typing import Optional

from ..constants import DEFAULT_SITE, SITE_ALIASES
from .base import SiteAdapter
from .review_sites import TripAdvisorAdapter, YelpAdapter
from .xhs import XhsAdapter


def normalize_site(site: Optional[str]) -> str:
    """Map any input to a supported site id. Unknown or empty means the default."""
    if not site:
        return DEFAULT_SITE
    return SITE_ALIASES.get(site.strip().lower(), DEFAULT_SITE)


class SiteRegistry:
    """The closed set of adapters, keyed by site id."""

    def __init__(self, adapters: Optional[dict[str, SiteAdapter]] = None):
        if adapters is None:
            adapters = {
                adapter.site_id: adapter
                for adapter in (XhsAdapter(), YelpAdapter(), TripAdvisorAdapter())
            }
        self._adapters = adapters

    def get(self, site: Optional[str]) -> SiteAdapter:
        site_id = normalize_site(site)
        return self._adapters.get(site_id) or self._adapters[DEFAULT_SITE]

    def site_ids(self) -> list[str]:
        return sorted(self._adapters)
