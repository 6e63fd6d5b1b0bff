"""
1.0 Diff Engine
Compares two snapshots of the same site.

- added_urls: in the current snapshot, not in the previous one
- removed_urls: in the previous snapshot, not in the current one
- keywords: extracted from added_urls only

Pure computation; no I/O.
"""

import logging
from typing import Optional

from sitemap_watch.keyword_extractor import KeywordExtractor
from sitemap_watch.models import Snapshot, SitemapDiff, unique_in_order

logger = logging.getLogger(__name__)


class DiffEngine:
    """2.0 Snapshot set difference plus keyword extraction."""

    def __init__(self, extractor: Optional[KeywordExtractor] = None):
        self.extractor = extractor or KeywordExtractor()

    def diff(self, previous: Optional[Snapshot], current: Snapshot) -> SitemapDiff:
        """
        2.1 Diff `previous` against `current`.

        With no previous snapshot there is nothing to compare against: the
        result is empty and flagged `is_initial`, which callers report as a
        first run rather than "zero URLs added".

        Raises:
            ValueError: the snapshots belong to different sites
        """
        if previous is None:
            return SitemapDiff(site=current.site, time_period=current.time_period, is_initial=True)

        if previous.site != current.site:
            raise ValueError(f"Cannot diff snapshots of different sites: {previous.site!r} vs {current.site!r}")

        previous_urls = previous.url_set()
        current_urls = current.url_set()

        # Tuples keep discovery order for display; membership is set based
        added = unique_in_order(url for url in current.urls if url not in previous_urls)
        removed = unique_in_order(url for url in previous.urls if url not in current_urls)
        keywords = tuple(self.extractor.extract_keywords(added))

        logger.debug(
            f"Diff {current.site} {previous.time_period} -> {current.time_period}: "
            f"+{len(added)} / -{len(removed)}, {len(keywords)} keywords"
        )

        return SitemapDiff(
            site=current.site,
            time_period=current.time_period,
            added_urls=added,
            removed_urls=removed,
            keywords=keywords,
        )
