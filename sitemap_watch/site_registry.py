"""
1.0 Site Registry
Read access to the monitored sites and write-back of `last_checked`.

Accepted file formats:
- JSON list of site records (id, name, sitemap_url, is_active, ...)
- JSON object mapping site name -> sitemap URL
"""

import json
import logging
import os
import threading
from typing import Any, Dict, Iterable, List, Optional

from sitemap_watch.exceptions import ConfigError
from sitemap_watch.models import MonitoredSite, utc_now_iso

logger = logging.getLogger(__name__)


class SiteRegistry:
    """2.0 Monitored sites, optionally backed by a JSON file."""

    def __init__(self, sites: Optional[Iterable[MonitoredSite]] = None, path: Optional[str] = None):
        self.path = path
        self._lock = threading.Lock()
        self._sites: List[MonitoredSite] = list(sites or [])

    @classmethod
    def from_file(cls, path: str) -> "SiteRegistry":
        """
        2.1 Load sites from `path`.

        Raises:
            ConfigError: the file is missing or unreadable
        """
        if not os.path.exists(path):
            raise ConfigError(f"Sites file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not read sites file {path}: {e}") from e
        sites = parse_sites(data)
        logger.info(f"Loaded {len(sites)} sites from {path}")
        return cls(sites, path=path)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SiteRegistry":
        """2.2 Registry from `sites_file` if set, otherwise the inline targets."""
        if config.get("sites_file"):
            return cls.from_file(config["sites_file"])
        return cls(parse_sites(config.get("targets") or []))

    def sites(self) -> List[MonitoredSite]:
        with self._lock:
            return list(self._sites)

    def active_targets(self) -> Dict[str, str]:
        """2.3 Mapping of site name -> sitemap URL for active sites."""
        with self._lock:
            return {site.name: site.sitemap_url for site in self._sites if site.is_active}

    def get(self, name: str) -> Optional[MonitoredSite]:
        with self._lock:
            return next((site for site in self._sites if site.name == name), None)

    def mark_checked(self, names: Iterable[str], checked_at: Optional[str] = None) -> None:
        """2.4 Stamp `last_checked` on the named sites and persist when file backed."""
        checked_at = checked_at or utc_now_iso()
        names = set(names)
        if not names:
            return
        with self._lock:
            for site in self._sites:
                if site.name in names:
                    site.last_checked = checked_at
        if self.path:
            self.save()

    def save(self) -> None:
        """2.5 Write the registry back to its file (atomic replace)."""
        if not self.path:
            return
        records = [site.to_dict() for site in self.sites()]
        tmp_path = f"{self.path}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
            logger.debug(f"Saved {len(records)} sites to {self.path}")
        except OSError as e:
            # last_checked is informational; losing it must not fail the cycle
            logger.error(f"Could not save sites file {self.path}: {e}")


def parse_sites(data: Any) -> List[MonitoredSite]:
    """
    3.0 Normalize any accepted site listing into MonitoredSite records.

    Invalid entries are logged and skipped.
    """
    if isinstance(data, dict):
        data = [{"name": name, "sitemap_url": url} for name, url in data.items()]
    if not isinstance(data, list):
        raise ConfigError("Sites must be a list of records or a name -> URL mapping")

    sites = []
    seen = set()
    for i, entry in enumerate(data):
        try:
            site = MonitoredSite.from_dict(entry)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping invalid site entry at index {i}: {e}")
            continue
        if not site.sitemap_url.startswith(("http://", "https://")):
            logger.warning(f"Skipping site '{site.name}' with non-HTTP sitemap URL: {site.sitemap_url}")
            continue
        if site.name in seen:
            logger.warning(f"Duplicate site name '{site.name}'; keeping the first entry")
            continue
        seen.add(site.name)
        sites.append(site)
    return sites
