"""
1.0 Data Model
Records passed between the fetch, store, diff and notify stages.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

# Per-site outcome of one monitoring cycle
STATUS_SUCCESS = "success"
STATUS_INITIAL = "initial"
STATUS_EMPTY = "empty"
STATUS_ERROR = "error"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def unique_in_order(items: Iterable[str]) -> Tuple[str, ...]:
    """De-duplicate while keeping first-seen order."""
    return tuple(dict.fromkeys(items))


@dataclass(frozen=True)
class Snapshot:
    """
    1.1 Immutable capture of a site's sitemap URLs at one time period.

    `urls` keeps discovery order and any duplicates the sitemap listed;
    diffing treats it as a set.
    """
    site: str
    time_period: str
    urls: Tuple[str, ...]
    total_count: int
    captured_at: str

    @classmethod
    def create(
        cls,
        site: str,
        time_period: str,
        urls: Iterable[str],
        captured_at: Optional[str] = None,
    ) -> "Snapshot":
        url_tuple = tuple(urls)
        return cls(
            site=site,
            time_period=time_period,
            urls=url_tuple,
            total_count=len(url_tuple),
            captured_at=captured_at or utc_now_iso(),
        )

    def url_set(self) -> frozenset:
        return frozenset(self.urls)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["urls"] = list(self.urls)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        """
        1.1.1 Build a snapshot from its persisted JSON form.

        Also reads documents written by the older monitor, which used
        `date`/`datetime`, `totalCount` and `timestamp`.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Snapshot document must be a JSON object, got {type(data).__name__}")
        time_period = data.get("time_period") or data.get("datetime") or data.get("date")
        if not data.get("site") or not time_period:
            raise ValueError("Snapshot document needs 'site' and a time period")
        urls = tuple(data.get("urls") or [])
        total_count = data.get("total_count", data.get("totalCount", len(urls)))
        captured_at = data.get("captured_at") or data.get("timestamp") or ""
        return cls(
            site=data["site"],
            time_period=time_period,
            urls=urls,
            total_count=int(total_count),
            captured_at=captured_at,
        )


@dataclass(frozen=True)
class SitemapDiff:
    """1.2 Set difference between two snapshots of the same site."""
    site: str
    time_period: str
    added_urls: Tuple[str, ...] = ()
    removed_urls: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    is_initial: bool = False

    @property
    def added_count(self) -> int:
        return len(self.added_urls)

    @property
    def removed_count(self) -> int:
        return len(self.removed_urls)

    @property
    def has_changes(self) -> bool:
        return bool(self.added_urls or self.removed_urls)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "site": self.site,
            "time_period": self.time_period,
            "added_urls": list(self.added_urls),
            "removed_urls": list(self.removed_urls),
            "keywords": list(self.keywords),
            "is_initial": self.is_initial,
        }


@dataclass
class MonitoredSite:
    """1.3 A site under watch, as kept in the site registry."""
    name: str
    sitemap_url: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    is_active: bool = True
    added_at: str = field(default_factory=utc_now_iso)
    last_checked: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitoredSite":
        # Accept the camelCase records written by the web UI
        sitemap_url = data.get("sitemap_url") or data.get("sitemapUrl")
        if not data.get("name") or not sitemap_url:
            raise ValueError("Site record needs 'name' and 'sitemap_url'")
        is_active = data.get("is_active", data.get("isActive", data.get("enabled", True)))
        return cls(
            name=data["name"],
            sitemap_url=sitemap_url,
            id=str(data.get("id") or uuid.uuid4().hex),
            is_active=bool(is_active),
            added_at=data.get("added_at") or data.get("addedAt") or utc_now_iso(),
            last_checked=data.get("last_checked") or data.get("lastChecked"),
        )


@dataclass
class SiteResult:
    """1.4 Outcome of one site's fetch -> save -> load -> diff pipeline."""
    site: str
    status: str
    diff: Optional[SitemapDiff] = None
    url_count: int = 0
    message: str = ""

    @property
    def has_new_urls(self) -> bool:
        return self.status == STATUS_SUCCESS and self.diff is not None and self.diff.added_count > 0


@dataclass
class CycleReport:
    """1.5 Summary of a full monitoring cycle."""
    time_period: str
    results: List[SiteResult] = field(default_factory=list)
    notification: str = "none"
    delivered: bool = False
    purged: int = 0
    error: Optional[str] = None

    def by_status(self, status: str) -> List[SiteResult]:
        return [r for r in self.results if r.status == status]
