"""
1.0 Sitemap Fetcher Module
Fetches XML sitemap content and flattens sitemap indexes into page URLs.

Key features:
- Optional automatic retry on transient failures (429, 500, 502, 503, 504)
- Per-request timeout so one hanging sitemap cannot stall a cycle
- Transparent gzip handling for .xml.gz sitemaps
- Recursive sitemap index expansion with visited-set and depth guards
- Session reuse for connection pooling
- Simple download delay for politeness
"""

import gzip
import logging
import time
from typing import Any, Dict, List, Optional, Set

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from sitemap_watch.exceptions import FetchError, ParseError
from sitemap_watch.sitemap_parser import SitemapParser

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; SitemapWatch/1.0)"
GZIP_MAGIC = b"\x1f\x8b"


class SitemapFetcher:
    """
    2.0 SitemapFetcher Class
    Fetches sitemap XML and resolves it to a flat, ordered list of page URLs.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        session: Optional[requests.Session] = None,
        parser: Optional[SitemapParser] = None,
    ):
        """
        2.1 Initialize the SitemapFetcher.

        Args:
            config: Configuration dictionary with optional keys:
                - user_agent: Custom user agent string
                - timeout: Request timeout in seconds (default: 30)
                - max_retries: Number of retry attempts (default: 0)
                - download_delay: Delay between requests in seconds (default: 1.0)
                - max_depth: Deepest sitemap index nesting followed (default: 5)
            session: Pre-built session (tests inject a fake here)
            parser: SitemapParser to use (default: strict parser)
        """
        # 2.1.1 Extract config values with defaults
        config = config or {}

        self.user_agent = config.get("user_agent", DEFAULT_USER_AGENT)
        if not isinstance(self.user_agent, str) or not self.user_agent.strip():
            self.user_agent = DEFAULT_USER_AGENT
            logger.warning(f"Invalid user_agent in config. Using default: {self.user_agent}")

        self.timeout = config.get("timeout", 30)
        self.max_retries = int(config.get("max_retries", 0))
        self.download_delay = float(config.get("download_delay", 1.0))
        self.max_depth = int(config.get("max_depth", 5))

        # 2.1.2 Track requests for delay logic
        self.request_count = 0
        self.last_request_time = 0.0

        # 2.1.3 Create session with retry strategy
        self.session = session if session is not None else self._create_session_with_retries()
        self.parser = parser or SitemapParser()

        logger.debug(
            f"SitemapFetcher initialized: "
            f"User-Agent={self.user_agent[:50]}, "
            f"timeout={self.timeout}s, "
            f"retries={self.max_retries}, "
            f"delay={self.download_delay}s"
        )

    def _create_session_with_retries(self) -> requests.Session:
        """
        2.2 Create a requests Session with optional retry logic.

        Retry strategy (only when max_retries > 0):
        - Retries on: 429 (rate limit), 500, 502, 503, 504 (server errors)
        - Backoff: 1s, 2s, 4s between retries (exponential)

        Returns:
            Configured requests.Session object
        """
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET"],
            raise_on_status=False,  # Let the status check below report it
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            "User-Agent": self.user_agent,
            "Accept": "application/xml,text/xml;q=0.9,*/*;q=0.8",
        })

        return session

    def _apply_politeness_delay(self) -> None:
        """2.3 Keep at least `download_delay` seconds between requests."""
        if self.request_count == 0:
            self.request_count += 1
            self.last_request_time = time.time()
            return

        elapsed = time.time() - self.last_request_time
        wait_time = max(0.0, self.download_delay - elapsed)

        if wait_time > 0:
            time.sleep(wait_time)

        self.request_count += 1
        self.last_request_time = time.time()

    def fetch_sitemap_xml(self, sitemap_url: str, timeout: Optional[float] = None) -> bytes:
        """
        2.4 Fetch the raw XML of a single sitemap document.

        Args:
            sitemap_url: The URL of the sitemap to fetch
            timeout: Optional override for request timeout

        Returns:
            XML body as bytes (gzip already decompressed)

        Raises:
            FetchError: invalid URL, non-200 status, timeout or connection failure
        """
        # 2.4.1 Validate URL
        if not sitemap_url or not sitemap_url.startswith(("http://", "https://")):
            raise FetchError(sitemap_url, message="invalid sitemap URL")

        # 2.4.2 Apply politeness delay
        self._apply_politeness_delay()

        timeout = timeout or self.timeout

        logger.info(f"Fetching sitemap: {sitemap_url}")

        try:
            response = self.session.get(sitemap_url, timeout=timeout)
        except requests.exceptions.Timeout as e:
            raise FetchError(sitemap_url, message=f"timeout after {timeout}s") from e
        except requests.exceptions.ConnectionError as e:
            raise FetchError(sitemap_url, message=f"connection error: {e}") from e
        except requests.exceptions.RequestException as e:
            raise FetchError(sitemap_url, message=f"request error: {e}") from e

        # 2.4.3 Check for success
        if response.status_code != 200:
            raise FetchError(sitemap_url, status_code=response.status_code)

        content = response.content or b""
        if content[:2] == GZIP_MAGIC:
            try:
                content = gzip.decompress(content)
            except (OSError, EOFError) as e:
                raise FetchError(sitemap_url, message=f"corrupt gzip body: {e}") from e

        logger.info(
            f"Successfully fetched {sitemap_url} "
            f"(status={response.status_code}, size={len(content):,} bytes)"
        )
        return content

    def fetch_urls(self, sitemap_url: str) -> List[str]:
        """
        2.5 Resolve a sitemap (urlset or index) to its page URLs in order.

        Sub-sitemaps of an index are expanded recursively in listing order.
        A document that cannot be fetched or parsed contributes nothing;
        its siblings are still processed.

        Args:
            sitemap_url: Top-level sitemap URL

        Returns:
            Flat list of page URLs (duplicates kept)
        """
        return self._fetch_recursive(sitemap_url, visited=set(), depth=0)

    def _fetch_recursive(self, sitemap_url: str, visited: Set[str], depth: int) -> List[str]:
        """2.6 One level of the recursive expansion."""
        if sitemap_url in visited:
            logger.info(f"Sitemap {sitemap_url} already processed. Skipping.")
            return []
        if depth > self.max_depth:
            logger.warning(f"Sitemap {sitemap_url} exceeds max index depth {self.max_depth}. Skipping.")
            return []
        visited.add(sitemap_url)

        try:
            xml_content = self.fetch_sitemap_xml(sitemap_url)
            parsed = self.parser.parse_sitemap(xml_content, sitemap_url=sitemap_url)
        except FetchError as e:
            logger.error(str(e))
            return []
        except ParseError as e:
            logger.error(f"Error parsing sitemap {sitemap_url}: {e}")
            return []

        if parsed["type"] == "urlset":
            logger.info(f"URL set {sitemap_url} contains {len(parsed['urls'])} page URLs.")
            return list(parsed["urls"])

        sub_sitemaps = parsed["urls"]
        logger.info(f"Sitemap index {sitemap_url} contains {len(sub_sitemaps)} sub-sitemaps.")
        page_urls: List[str] = []
        for sub_url in sub_sitemaps:
            page_urls.extend(self._fetch_recursive(sub_url, visited, depth + 1))
        return page_urls

    def close(self) -> None:
        self.session.close()
