"""
1.0 Keyword Extractor
Turns newly added URLs into keyword candidates for the digest.

Policy: segment level. Each non-empty path segment is one candidate,
so `/blog/c-new-page` yields `blog` and `c-new-page`. A segment is
kept when it is longer than two characters both before and after
cleaning and is not a stopword.
"""

import logging
import re
from typing import FrozenSet, Iterable, List, Optional
from urllib.parse import urlparse

from sitemap_watch.exceptions import ParseError
from sitemap_watch.models import unique_in_order

logger = logging.getLogger(__name__)

STOPWORDS: FrozenSet[str] = frozenset({
    "www", "com", "org", "net", "api", "app",
    "page", "html", "htm", "php",
    "index", "home",
})

_DISALLOWED_CHARS = re.compile(r"[^a-z0-9\-_]")
MIN_KEYWORD_LENGTH = 3


class KeywordExtractor:
    """2.0 Segment-level keyword extraction over a batch of URLs."""

    def __init__(self, stopwords: Optional[Iterable[str]] = None, min_length: int = MIN_KEYWORD_LENGTH):
        self.stopwords = frozenset(w.lower() for w in stopwords) if stopwords is not None else STOPWORDS
        self.min_length = min_length

    def extract_keywords(self, urls: Iterable[str]) -> List[str]:
        """
        2.1 Extract unique keywords from all URLs, in first-seen order.

        URLs that cannot be parsed are skipped; they never fail the batch.
        """
        keywords = []
        for url in urls:
            try:
                keywords.extend(self.keywords_for_url(url))
            except ParseError as e:
                logger.debug(f"Skipping URL for keywords: {e}")
        return list(unique_in_order(keywords))

    def keywords_for_url(self, url: str) -> List[str]:
        """2.2 Candidate keywords from one URL's path."""
        path = _url_path(url)
        found = []
        for segment in path.split("/"):
            if not segment:
                continue
            lowered = segment.lower()
            if lowered in self.stopwords or len(segment) < self.min_length:
                continue
            cleaned = _DISALLOWED_CHARS.sub("", lowered).strip("-")
            if len(cleaned) >= self.min_length and cleaned not in self.stopwords:
                found.append(cleaned)
        return found


def _url_path(url: str) -> str:
    if not isinstance(url, str):
        raise ParseError(f"Not a URL string: {url!r}")
    try:
        parsed = urlparse(url.strip())
    except ValueError as e:
        raise ParseError(f"Invalid URL {url!r}: {e}") from e
    if not parsed.scheme or not parsed.netloc:
        raise ParseError(f"URL without scheme or host: {url!r}")
    return parsed.path


def extract_keywords(urls: Iterable[str]) -> List[str]:
    """Module-level shortcut using the default stopwords."""
    return KeywordExtractor().extract_keywords(urls)
