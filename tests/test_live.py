"""
LIVE TESTS - Network-Dependent

Run: SITEMAP_WATCH_LIVE_SITEMAP=https://www.example.com/sitemap.xml pytest tests/test_live.py
Time: 5-60 seconds depending on sitemap size

Skipped unless SITEMAP_WATCH_LIVE_SITEMAP points at a sitemap you are
allowed to crawl. Run manually or in nightly CI, not on every commit.
"""

import os

import pytest

from sitemap_watch.diff_engine import DiffEngine
from sitemap_watch.models import Snapshot
from sitemap_watch.sitemap_fetcher import SitemapFetcher

LIVE_SITEMAP = os.environ.get("SITEMAP_WATCH_LIVE_SITEMAP")

pytestmark = pytest.mark.skipif(not LIVE_SITEMAP, reason="SITEMAP_WATCH_LIVE_SITEMAP not set")

# =============================================================================
# 1. FETCH
# =============================================================================

@pytest.fixture(scope="module")
def live_urls():
    fetcher = SitemapFetcher(config={"timeout": 30, "max_retries": 2, "download_delay": 0.5})
    try:
        return fetcher.fetch_urls(LIVE_SITEMAP)
    finally:
        fetcher.close()


def test_live_sitemap_has_urls(live_urls):
    assert live_urls
    assert all(url.startswith(("http://", "https://")) for url in live_urls)


# =============================================================================
# 2. DIFF AGAINST ITSELF
# =============================================================================

def test_live_snapshot_diffs_cleanly(live_urls):
    previous = Snapshot.create("live", "2026-10-18_08", live_urls[1:])
    current = Snapshot.create("live", "2026-10-19_08", live_urls)
    diff = DiffEngine().diff(previous, current)
    assert diff.removed_urls == ()
    assert set(diff.added_urls) <= set(live_urls)
