"""
1.0 Monitor Orchestrator Module
Runs one monitoring cycle across all configured sites.

Per site (sequential): fetch -> save snapshot -> load previous -> diff.
Across sites: concurrent fan-out, join on all, then exactly one
notification (digest, initial snapshot, or no changes).
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from sitemap_watch.diff_engine import DiffEngine
from sitemap_watch.exceptions import ConfigError
from sitemap_watch.models import (
    STATUS_EMPTY,
    STATUS_ERROR,
    STATUS_INITIAL,
    STATUS_SUCCESS,
    CycleReport,
    SiteResult,
    Snapshot,
)
from sitemap_watch.notifier import Notifier
from sitemap_watch.site_registry import SiteRegistry
from sitemap_watch.sitemap_fetcher import SitemapFetcher
from sitemap_watch.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

TIME_PERIOD_FORMAT = "%Y-%m-%d_%H"


def time_period_for(now: datetime) -> str:
    """Hourly bucket token in UTC, e.g. 2026-10-19_08."""
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime(TIME_PERIOD_FORMAT)


class MonitorOrchestrator:
    """
    2.0 MonitorOrchestrator Class
    Drives the snapshot -> diff -> notify pipeline.
    """

    def __init__(
        self,
        store: SnapshotStore,
        notifier: Notifier,
        registry: Optional[SiteRegistry] = None,
        diff_engine: Optional[DiffEngine] = None,
        fetcher_factory: Optional[Callable[[], SitemapFetcher]] = None,
        fetch_config: Optional[Dict[str, Any]] = None,
        max_workers: int = 4,
        retention_days: Optional[int] = 7,
        notify: bool = True,
    ):
        """
        2.1 Wire the pipeline stages.

        Args:
            store: Snapshot store shared by every site pipeline
            notifier: Message formatter/deliverer
            registry: Site source used when run_cycle() gets no explicit sites
            diff_engine: Diff engine (default: segment-level keywords)
            fetcher_factory: Builds one fetcher per site (default: SitemapFetcher(fetch_config))
            fetch_config: Settings for the default fetcher factory
            max_workers: Concurrent site pipelines
            retention_days: Purge snapshots older than this; None disables purging
            notify: False logs the message instead of delivering it
        """
        self.store = store
        self.notifier = notifier
        self.registry = registry
        self.diff_engine = diff_engine or DiffEngine()
        self.fetch_config = fetch_config or {}
        self.fetcher_factory = fetcher_factory or (lambda: SitemapFetcher(config=self.fetch_config))
        self.max_workers = max(1, int(max_workers))
        self.retention_days = retention_days
        self.notify = notify

    # =========================================================================
    # 3.0 PER-SITE PIPELINE
    # =========================================================================

    def process_site(self, site: str, sitemap_url: str, time_period: str) -> SiteResult:
        """
        3.1 Fetch -> save -> load previous -> diff for one site.

        Never raises: any failure becomes a SiteResult with status "error".
        """
        try:
            logger.info(f"Processing site: {site} ({sitemap_url})")

            # 3.1.1 Fetching
            fetcher = self.fetcher_factory()
            try:
                urls = fetcher.fetch_urls(sitemap_url)
            finally:
                fetcher.close()

            if not urls:
                logger.warning(f"No page URLs found for {site}. Skipping.")
                return SiteResult(site=site, status=STATUS_EMPTY, message="sitemap empty or unreachable")

            # 3.1.2 Saving
            current = Snapshot.create(site, time_period, urls)
            self.store.save(current)

            # 3.1.3 Loading previous
            previous = self.store.load_most_recent_before(site, time_period)

            # 3.1.4 Diffing / initial snapshot
            diff = self.diff_engine.diff(previous, current)
            if diff.is_initial:
                logger.info(f"{site}: no previous snapshot, created initial snapshot ({len(urls)} URLs)")
                return SiteResult(site=site, status=STATUS_INITIAL, diff=diff, url_count=len(urls))

            logger.info(
                f"{site}: {diff.added_count} added, {diff.removed_count} removed "
                f"since {previous.time_period}, {len(diff.keywords)} keywords"
            )
            return SiteResult(site=site, status=STATUS_SUCCESS, diff=diff, url_count=len(urls))

        except Exception as e:
            logger.error(f"FAILED processing site {site}: {type(e).__name__}: {e}")
            logger.exception("Full traceback:")
            return SiteResult(site=site, status=STATUS_ERROR, message=str(e))

    # =========================================================================
    # 4.0 CYCLE
    # =========================================================================

    def run_cycle(self, sites: Optional[Mapping[str, str]] = None, now: Optional[datetime] = None) -> CycleReport:
        """
        4.1 Run one monitoring cycle.

        Args:
            sites: name -> sitemap URL; defaults to the registry's active sites
            now: Cycle time (default: current UTC time)

        Returns:
            CycleReport describing per-site results and the notification sent
        """
        now = now or datetime.now(timezone.utc)
        report = CycleReport(time_period=time_period_for(now))

        logger.info("=" * 60)
        logger.info(f"Starting sitemap monitoring cycle {report.time_period}")
        logger.info("=" * 60)

        try:
            # 4.1.1 Resolve the site set
            try:
                targets = dict(sites) if sites is not None else self._registry_targets()
            except ConfigError as e:
                logger.error(f"Could not read site configuration: {e}")
                targets = {}

            if not targets:
                logger.warning("No sites to monitor; nothing to do")
                return report

            # 4.1.2 Retention cleanup before new snapshots land
            report.purged = self._purge_expired(now)

            logger.info(f"Monitoring {len(targets)} sites: {', '.join(targets)}")
            report.results = self._run_sites(targets, report.time_period)

            # 4.1.3 Exactly one notification per cycle
            report.notification, message = self._choose_message(report, now)
            report.delivered = self._send(message)

            if self.registry is not None:
                checked = [r.site for r in report.results if r.status in (STATUS_SUCCESS, STATUS_INITIAL)]
                self.registry.mark_checked(checked, checked_at=now.isoformat())

            self._log_summary(report)
            return report

        except Exception as e:
            logger.error(f"Monitoring cycle failed: {type(e).__name__}: {e}")
            logger.exception("Full traceback:")
            report.error = str(e)
            report.notification = "error"
            report.delivered = self._send(self.notifier.format_error(e, now=now))
            return report

    def _registry_targets(self) -> Dict[str, str]:
        if self.registry is None:
            raise ConfigError("No sites given and no site registry configured")
        return self.registry.active_targets()

    def _purge_expired(self, now: datetime) -> int:
        if not self.retention_days:
            return 0
        cutoff = now - timedelta(days=self.retention_days)
        return self.store.purge_older_than(cutoff)

    def _run_sites(self, targets: Dict[str, str], time_period: str) -> List[SiteResult]:
        """4.2 Fan out over all sites, wait for every one of them."""
        if len(targets) == 1 or self.max_workers == 1:
            # Single site or sequential mode - no threading overhead
            return [self.process_site(site, url, time_period) for site, url in targets.items()]

        results: Dict[str, SiteResult] = {}
        logger.info(f"Using {self.max_workers} concurrent workers")
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_site = {
                executor.submit(self.process_site, site, url, time_period): site
                for site, url in targets.items()
            }
            for future in as_completed(future_to_site):
                site = future_to_site[future]
                try:
                    results[site] = future.result()
                except Exception as e:
                    logger.error(f"Unexpected error for {site}: {e}")
                    results[site] = SiteResult(site=site, status=STATUS_ERROR, message=str(e))

        # Report in configuration order, not completion order
        return [results[site] for site in targets]

    def _choose_message(self, report: CycleReport, now: datetime):
        """4.3 Partition results into digest / initial / no changes."""
        digest_diffs = [r.diff for r in report.by_status(STATUS_SUCCESS) if r.has_new_urls]
        initial = report.by_status(STATUS_INITIAL)

        if digest_diffs:
            return "digest", self.notifier.format_digest(digest_diffs, now=now)
        if initial:
            return "initial", self.notifier.format_initial(len(initial))
        return "no_changes", self.notifier.format_digest([], now=now)

    def _send(self, message: str) -> bool:
        if not self.notify:
            logger.info(f"Notification disabled; message would have been:\n{message}")
            return False
        return self.notifier.deliver(message)

    def _log_summary(self, report: CycleReport) -> None:
        logger.info("=" * 60)
        logger.info("Site Processing Summary:")
        for result in report.results:
            if result.status == STATUS_SUCCESS:
                logger.info(
                    f"  [OK] {result.site}: {result.url_count} URLs, "
                    f"+{result.diff.added_count} / -{result.diff.removed_count}"
                )
            elif result.status == STATUS_INITIAL:
                logger.info(f"  [INIT] {result.site}: {result.url_count} URLs (baseline)")
            elif result.status == STATUS_EMPTY:
                logger.warning(f"  [WARN] {result.site}: {result.message}")
            else:
                logger.error(f"  [FAIL] {result.site}: {result.message}")
        logger.info(
            f"Notification: {report.notification} (delivered={report.delivered}), "
            f"purged {report.purged} expired snapshots"
        )
        logger.info("=" * 60)
