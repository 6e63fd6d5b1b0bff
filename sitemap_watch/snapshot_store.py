"""
1.0 Snapshot Store Module
Persists and retrieves dated sitemap snapshots.

Key features:
- One record per (site, time period); saving the same key overwrites it
- Site names normalized to a filesystem/keyspace-safe form on every path
- Backends: local JSON files, Cloudflare Workers KV, in-process memory
- Backend failures degrade to an in-memory fallback cache

The fallback cache only lives as long as the process. Snapshots written
to it while a backend is down are lost on restart; it keeps a cycle
running, it does not make the write durable.
"""

import json
import logging
import os
import re
import tempfile
import threading
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import requests

from sitemap_watch.exceptions import StoreError
from sitemap_watch.models import Snapshot

logger = logging.getLogger(__name__)

# 1.1 Key layout
KV_KEY_PREFIX = "sitemap"
SNAPSHOT_FILE_SUFFIX = ".json"
# Date + hour (current) or date only (older snapshots)
TIME_PERIOD_PATTERN = r"\d{4}-\d{2}-\d{2}(?:_\d{2})?"
_SNAPSHOT_FILE_RE = re.compile(rf"^(?P<site>.+)_(?P<period>{TIME_PERIOD_PATTERN})\.json$")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"


def normalize_site_name(site: str) -> str:
    """Replace every non-alphanumeric character with '_'."""
    return _NON_ALNUM.sub("_", site)


def period_date(time_period: str) -> str:
    """Date part (YYYY-MM-DD) of a time period token."""
    return time_period[:10]


# =============================================================================
# 2.0 BASE STORE
# =============================================================================

class SnapshotStore:
    """
    2.0 Backend-agnostic snapshot store.

    Subclasses implement the four raw operations on normalized keys
    (`_put`, `_get`, `_list`, `_remove`) and raise StoreError when the
    backend fails. The public methods route those failures to
    `self.fallback` when one is attached.
    """

    backend_name = "base"

    def __init__(self, fallback: Optional["MemorySnapshotStore"] = None):
        self.fallback = fallback

    # --- raw backend operations ----------------------------------------------

    def _put(self, site_key: str, time_period: str, document: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _get(self, site_key: str, time_period: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _list(self, site_key: Optional[str] = None) -> List[Tuple[str, str]]:
        raise NotImplementedError

    def _remove(self, site_key: str, time_period: str) -> bool:
        raise NotImplementedError

    def _degraded(self, operation: str, error: StoreError) -> None:
        if self.fallback is None:
            raise error
        logger.warning(f"{self.backend_name} store {operation} failed, using in-memory fallback: {error}")

    # --- public contract -----------------------------------------------------

    def save(self, snapshot: Snapshot) -> None:
        """2.1 Persist a snapshot under (site, time_period)."""
        site_key = normalize_site_name(snapshot.site)
        document = snapshot.to_dict()
        try:
            self._put(site_key, snapshot.time_period, document)
            logger.info(
                f"Snapshot saved to {self.backend_name}: {site_key} {snapshot.time_period} "
                f"({snapshot.total_count} URLs)"
            )
        except StoreError as e:
            self._degraded("save", e)
            self.fallback._put(site_key, snapshot.time_period, document)

    def load(self, site: str, time_period: str) -> Optional[Snapshot]:
        """2.2 Exact lookup; None when no such snapshot exists."""
        site_key = normalize_site_name(site)
        try:
            document = self._get(site_key, time_period)
        except StoreError as e:
            self._degraded("load", e)
            document = None
        if document is None and self.fallback is not None:
            document = self.fallback._get(site_key, time_period)
        if document is None:
            return None
        try:
            return Snapshot.from_dict(document)
        except (ValueError, TypeError) as e:
            logger.error(f"Unreadable snapshot {site_key} {time_period}: {e}")
            return None

    def _keys(self, site_key: Optional[str] = None) -> Set[Tuple[str, str]]:
        try:
            keys = set(self._list(site_key))
        except StoreError as e:
            self._degraded("list", e)
            keys = set()
        if self.fallback is not None:
            keys.update(self.fallback._list(site_key))
        return keys

    def list_time_periods(self, site: str) -> List[str]:
        """2.3 All stored time periods for a site, most recent first."""
        site_key = normalize_site_name(site)
        periods = {period for key_site, period in self._keys(site_key) if key_site == site_key}
        return sorted(periods, reverse=True)

    def list_sites(self) -> Set[str]:
        """2.4 Distinct (normalized) site keys with at least one snapshot."""
        return {key_site for key_site, _ in self._keys()}

    def load_most_recent_before(self, site: str, excluding_time_period: str) -> Optional[Snapshot]:
        """
        2.5 Latest snapshot for `site` whose period differs from `excluding_time_period`.

        Returns None when the site has no other snapshot yet.
        """
        for time_period in self.list_time_periods(site):
            if time_period == excluding_time_period:
                continue
            snapshot = self.load(site, time_period)
            if snapshot is not None:
                return snapshot
        return None

    def delete(self, site: str, time_period: str) -> bool:
        """2.6 Remove one snapshot; True if anything was removed."""
        site_key = normalize_site_name(site)
        removed = False
        try:
            removed = self._remove(site_key, time_period)
        except StoreError as e:
            self._degraded("delete", e)
        if self.fallback is not None:
            removed = self.fallback._remove(site_key, time_period) or removed
        return removed

    def purge_older_than(self, cutoff: Union[date, datetime]) -> int:
        """
        2.7 Delete snapshots dated strictly before `cutoff`.

        Only the date part of each time period is compared.

        Returns:
            Number of snapshots deleted
        """
        cutoff_str = cutoff.date().isoformat() if isinstance(cutoff, datetime) else cutoff.isoformat()
        deleted = 0
        for site_key, time_period in sorted(self._keys()):
            if period_date(time_period) < cutoff_str:
                if self.delete(site_key, time_period):
                    deleted += 1
                    logger.info(f"Deleted expired snapshot: {site_key} {time_period}")
        if deleted:
            logger.info(f"Retention cleanup removed {deleted} snapshots older than {cutoff_str}")
        return deleted


# =============================================================================
# 3.0 MEMORY STORE (also the fallback cache)
# =============================================================================

class MemorySnapshotStore(SnapshotStore):
    """3.0 Thread-safe in-process store."""

    backend_name = "memory"

    def __init__(self):
        super().__init__(fallback=None)
        self._lock = threading.Lock()
        self._documents: Dict[Tuple[str, str], Dict[str, Any]] = {}

    def _put(self, site_key, time_period, document):
        with self._lock:
            self._documents[(site_key, time_period)] = dict(document)

    def _get(self, site_key, time_period):
        with self._lock:
            document = self._documents.get((site_key, time_period))
            return dict(document) if document is not None else None

    def _list(self, site_key=None):
        with self._lock:
            return [key for key in self._documents if site_key is None or key[0] == site_key]

    def _remove(self, site_key, time_period):
        with self._lock:
            return self._documents.pop((site_key, time_period), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)


# =============================================================================
# 4.0 FILE STORE
# =============================================================================

class FileSnapshotStore(SnapshotStore):
    """
    4.0 One JSON document per snapshot.

    Layout:
        data/
            snapshots/
                example_com_2026-10-19_08.json
                example_com_2026-10-19_09.json
    """

    backend_name = "file"

    def __init__(self, directory: str, fallback: Optional[MemorySnapshotStore] = None):
        super().__init__(fallback=fallback)
        self.directory = directory
        logger.info(f"FileSnapshotStore initialized with directory: {directory}")

    def _path(self, site_key: str, time_period: str) -> str:
        return os.path.join(self.directory, f"{site_key}_{time_period}{SNAPSHOT_FILE_SUFFIX}")

    def _put(self, site_key, time_period, document):
        path = self._path(site_key, time_period)
        try:
            os.makedirs(self.directory, exist_ok=True)
            # Write to a temp file first so a crash never leaves half a snapshot
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            raise StoreError(f"Could not write {path}: {e}") from e

    def _get(self, site_key, time_period):
        path = self._path(site_key, time_period)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt snapshot file {path}: {e}")
            return None
        except OSError as e:
            raise StoreError(f"Could not read {path}: {e}") from e

    def _list(self, site_key=None):
        if not os.path.isdir(self.directory):
            return []
        try:
            filenames = os.listdir(self.directory)
        except OSError as e:
            raise StoreError(f"Could not list {self.directory}: {e}") from e
        keys = []
        for filename in filenames:
            match = _SNAPSHOT_FILE_RE.match(filename)
            if not match:
                continue
            if site_key is None or match.group("site") == site_key:
                keys.append((match.group("site"), match.group("period")))
        return keys

    def _remove(self, site_key, time_period):
        path = self._path(site_key, time_period)
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreError(f"Could not delete {path}: {e}") from e


# =============================================================================
# 5.0 CLOUDFLARE KV STORE
# =============================================================================

class KVSnapshotStore(SnapshotStore):
    """
    5.0 Cloudflare Workers KV over its REST API.

    Keys: sitemap:<normalized-site>:<time_period>
    """

    backend_name = "kv"

    def __init__(
        self,
        account_id: str,
        api_token: str,
        namespace_id: str,
        fallback: Optional[MemorySnapshotStore] = None,
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(fallback=fallback)
        self.base_url = (
            f"{CLOUDFLARE_API_BASE}/accounts/{account_id}/storage/kv/namespaces/{namespace_id}"
        )
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_token}"})
        logger.info(f"KVSnapshotStore initialized for namespace {namespace_id}")

    @staticmethod
    def _key(site_key: str, time_period: str) -> str:
        return f"{KV_KEY_PREFIX}:{site_key}:{time_period}"

    @staticmethod
    def _split_key(key: str) -> Optional[Tuple[str, str]]:
        parts = key.split(":")
        if len(parts) == 3 and parts[0] == KV_KEY_PREFIX:
            return parts[1], parts[2]
        return None

    def _request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, f"{self.base_url}{endpoint}", timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise StoreError(f"KV {method} {endpoint} failed: {e}") from e

    def _put(self, site_key, time_period, document):
        key = self._key(site_key, time_period)
        response = self._request("PUT", f"/values/{key}", data=json.dumps(document, ensure_ascii=False).encode("utf-8"))
        if not response.ok:
            raise StoreError(f"KV rejected save of {key}: HTTP {response.status_code} {response.text[:200]}")

    def _get(self, site_key, time_period):
        key = self._key(site_key, time_period)
        response = self._request("GET", f"/values/{key}")
        if response.status_code == 404:
            return None
        if not response.ok:
            raise StoreError(f"KV rejected load of {key}: HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as e:
            raise StoreError(f"KV returned invalid JSON for {key}: {e}") from e

    def _list(self, site_key=None):
        prefix = f"{KV_KEY_PREFIX}:{site_key}:" if site_key else f"{KV_KEY_PREFIX}:"
        keys = []
        cursor = None
        while True:
            params = {"prefix": prefix}
            if cursor:
                params["cursor"] = cursor
            response = self._request("GET", "/keys", params=params)
            if not response.ok:
                raise StoreError(f"KV key listing failed: HTTP {response.status_code}")
            try:
                payload = response.json()
            except ValueError as e:
                raise StoreError(f"KV key listing returned invalid JSON: {e}") from e
            if not payload.get("success") or payload.get("result") is None:
                raise StoreError(f"KV key listing unsuccessful: {payload.get('errors')}")

            for entry in payload["result"]:
                split = self._split_key(entry.get("name", ""))
                if split and (site_key is None or split[0] == site_key):
                    keys.append(split)

            cursor = (payload.get("result_info") or {}).get("cursor")
            if not cursor:
                return keys

    def _remove(self, site_key, time_period):
        key = self._key(site_key, time_period)
        response = self._request("DELETE", f"/values/{key}")
        if response.status_code == 404:
            return False
        if not response.ok:
            raise StoreError(f"KV rejected delete of {key}: HTTP {response.status_code}")
        return True


# =============================================================================
# 6.0 FACTORY
# =============================================================================

def build_store(config: Dict[str, Any]) -> SnapshotStore:
    """
    6.1 Build the configured store with a shared in-memory fallback.

    Construct once per process and hand the same instance to every stage.
    """
    storage = config.get("storage") or {}
    backend = storage.get("backend", "file")
    fallback = MemorySnapshotStore()

    if backend == "memory":
        return fallback

    if backend == "kv":
        credentials = [storage.get("account_id"), storage.get("api_token"), storage.get("namespace_id")]
        if all(credentials):
            return KVSnapshotStore(*credentials, fallback=fallback)
        logger.warning("Cloudflare KV selected but credentials are incomplete; using file storage")

    directory = storage.get("directory") or os.path.join(config.get("data_directory", "data"), "snapshots")
    return FileSnapshotStore(directory, fallback=fallback)
