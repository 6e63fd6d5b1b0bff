"""
Error kinds raised inside the monitoring pipeline.

None of these are meant to cross a site boundary: each component
catches them at its edge and degrades to "absent/empty and continue".
"""

from typing import Optional


class SitemapWatchError(Exception):
    """Base class for all sitemap-watch errors."""


class FetchError(SitemapWatchError):
    """Network or HTTP failure while retrieving a sitemap."""

    def __init__(self, url: str, status_code: Optional[int] = None, message: str = ""):
        self.url = url
        self.status_code = status_code
        detail = message or (f"HTTP {status_code}" if status_code is not None else "request failed")
        super().__init__(f"Failed to fetch {url}: {detail}")


class ParseError(SitemapWatchError):
    """Malformed sitemap XML or an unparseable URL."""


class StoreError(SitemapWatchError):
    """Snapshot persistence backend unavailable or rejected the operation."""


class DeliveryError(SitemapWatchError):
    """Webhook unreachable or the remote end rejected the message."""


class ConfigError(SitemapWatchError):
    """Missing, unreadable or invalid configuration."""
