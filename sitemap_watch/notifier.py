"""
1.0 Notifier Module
Formats monitoring results and posts them to a chat webhook.

Payload envelope (Feishu/Lark custom bot):
    {"msg_type": "text", "content": {"text": "<message>"}}

A missing webhook URL is not an error: delivery is skipped and
reported as not delivered.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, Union

import requests

from sitemap_watch.exceptions import DeliveryError
from sitemap_watch.models import SitemapDiff

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 8
MAX_EXAMPLE_URLS = 3


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Notifier:
    """
    2.0 Notifier Class
    Builds digest/initial/error messages and delivers them.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
        max_keywords: int = MAX_KEYWORDS,
        max_examples: int = MAX_EXAMPLE_URLS,
    ):
        self.webhook_url = (webhook_url or "").strip() or None
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self.max_keywords = max_keywords
        self.max_examples = max_examples

        if not self.webhook_url:
            logger.info("No webhook configured; notifications will be skipped")

    # =========================================================================
    # 3.0 FORMATTING
    # =========================================================================

    def format_digest(self, diffs: Sequence[SitemapDiff], now: Optional[datetime] = None) -> str:
        """
        3.1 One report covering every site with new pages.

        Falls back to a short "no new pages" message when nothing was added.
        """
        today = (now or _now()).strftime("%Y-%m-%d")
        with_new = [d for d in diffs if d.added_urls]

        if not with_new:
            return f"🔍 Sitemap Monitor ({today})\n📊 No new pages today"

        lines = [f"🔍 Sitemap Monitor ({today})", "📊 New pages and keywords found:", ""]
        total_new = 0
        all_keywords = set()

        for diff in with_new:
            total_new += diff.added_count
            all_keywords.update(diff.keywords)

            lines.append(f"🌐 {diff.site}")
            lines.append(f"📈 {diff.added_count} new pages")

            if diff.keywords:
                shown = ", ".join(diff.keywords[:self.max_keywords])
                extra = len(diff.keywords) - self.max_keywords
                lines.append(f"🔑 Keywords: {shown}" + (f" (+{extra} more)" if extra > 0 else ""))

            lines.append("📝 Example URLs:")
            for url in diff.added_urls[:self.max_examples]:
                lines.append(f"  • {url}")
            if diff.added_count > self.max_examples:
                lines.append(f"  • ... +{diff.added_count - self.max_examples} more")
            lines.append("")

        lines.append(f"📊 Total: {total_new} new pages, {len(all_keywords)} keywords")
        return "\n".join(lines)

    def format_initial(self, count: int) -> str:
        """3.2 First-run message: snapshots created, nothing to compare yet."""
        return (
            "🔍 Sitemap Monitor initialized\n"
            f"📊 Created baseline snapshots for {count} site{'s' if count != 1 else ''}; "
            "changes will be reported from the next run"
        )

    def format_error(self, error: Union[BaseException, str], now: Optional[datetime] = None) -> str:
        """3.3 Failure report with timestamp and description."""
        stamp = (now or _now()).strftime("%Y-%m-%d %H:%M:%S %Z").strip()
        if isinstance(error, BaseException):
            description = f"{type(error).__name__}: {error}" if str(error) else type(error).__name__
        else:
            description = str(error)
        return f"❌ Sitemap Monitor error\n📅 {stamp}\n❗ {description}"

    # =========================================================================
    # 4.0 DELIVERY
    # =========================================================================

    def deliver(self, message: str) -> bool:
        """
        4.1 POST a text message to the webhook.

        Returns:
            True if the endpoint acknowledged it, False otherwise
            (including when no webhook is configured). Never raises.
        """
        if not self.webhook_url:
            logger.warning("Webhook not configured, skipping notification")
            return False

        try:
            self._post(message)
        except DeliveryError as e:
            logger.error(f"Notification delivery failed: {e}")
            return False

        logger.info("Notification delivered")
        return True

    def _post(self, message: str) -> None:
        payload = {"msg_type": "text", "content": {"text": message}}
        try:
            response = self.session.post(self.webhook_url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"webhook unreachable: {e}") from e

        if not 200 <= response.status_code < 300:
            raise DeliveryError(f"HTTP {response.status_code}: {response.text[:200]}")

        body = _json_or_none(response)
        if body is None:
            raise DeliveryError(f"HTTP {response.status_code} without a JSON acknowledgement: {response.text[:200]}")
        # Older bots answer {"StatusCode": 0}, newer ones {"code": 0}
        indicators = [field for field in ("StatusCode", "code") if field in body]
        if not indicators:
            raise DeliveryError(f"webhook reply has no StatusCode/code field: {str(body)[:200]}")
        for field in indicators:
            if body[field] != 0:
                raise DeliveryError(f"webhook returned {field}={body[field]}: {body.get('msg') or body.get('StatusMessage')}")

    # =========================================================================
    # 5.0 CONVENIENCE
    # =========================================================================

    def notify_results(self, diffs: Sequence[SitemapDiff]) -> bool:
        return self.deliver(self.format_digest(diffs))

    def notify_error(self, error: Union[BaseException, str]) -> bool:
        return self.deliver(self.format_error(error))


def _json_or_none(response: requests.Response) -> Optional[Dict[str, Any]]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None
