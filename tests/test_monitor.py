# tests/test_monitor.py

"""Tests for the monitoring cycle orchestration."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from sitemap_watch.exceptions import ConfigError
from sitemap_watch.models import STATUS_EMPTY, STATUS_ERROR, STATUS_INITIAL, STATUS_SUCCESS, MonitoredSite, Snapshot
from sitemap_watch.monitor import MonitorOrchestrator, time_period_for
from sitemap_watch.notifier import Notifier
from sitemap_watch.site_registry import SiteRegistry
from sitemap_watch.sitemap_fetcher import SitemapFetcher
from sitemap_watch.snapshot_store import FileSnapshotStore, MemorySnapshotStore

from conftest import FakeResponse, FakeSession, urlset_xml

WEBHOOK = "https://open.feishu.cn/open-apis/bot/v2/hook/test"
NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
PREVIOUS_PERIOD = "2026-10-18_08"

SITES = {
    "a.com": "https://a.com/sitemap.xml",
    "b.com": "https://b.com/sitemap.xml",
    "c.com": "https://c.com/sitemap.xml",
}


def http_routes(**overrides):
    routes = {
        SITES["a.com"]: FakeResponse(200, urlset_xml("https://a.com/old", "https://a.com/launch-day")),
        SITES["b.com"]: FakeResponse(200, urlset_xml("https://b.com/old", "https://b.com/pricing-plans")),
        SITES["c.com"]: FakeResponse(200, urlset_xml("https://c.com/old")),
    }
    routes.update(overrides)
    return routes


def make_orchestrator(routes=None, store=None, webhook=WEBHOOK, **kwargs):
    routes = http_routes() if routes is None else routes
    webhook_session = FakeSession({WEBHOOK: FakeResponse(200, json_body={"code": 0})})
    orchestrator = MonitorOrchestrator(
        store=store if store is not None else MemorySnapshotStore(),
        notifier=Notifier(webhook_url=webhook, session=webhook_session),
        fetcher_factory=lambda: SitemapFetcher(session=FakeSession(routes)),
        **kwargs,
    )
    return orchestrator, webhook_session


def seed_previous(store, sites=SITES, period=PREVIOUS_PERIOD):
    for site in sites:
        store.save(Snapshot.create(site, period, [f"https://{site}/old"]))


# =============================================================================
# 1. TIME PERIOD
# =============================================================================

def test_time_period_is_hourly_utc():
    assert time_period_for(NOW) == "2026-10-19_09"
    tz_plus8 = timezone(timedelta(hours=8))
    assert time_period_for(datetime(2026, 10, 19, 1, 30, tzinfo=tz_plus8)) == "2026-10-18_17"


# =============================================================================
# 2. PER-SITE PIPELINE
# =============================================================================

def test_process_site_initial_then_success():
    orchestrator, _ = make_orchestrator()
    first = orchestrator.process_site("a.com", SITES["a.com"], "2026-10-19_08")
    assert first.status == STATUS_INITIAL
    assert first.diff.is_initial
    assert first.url_count == 2

    second = orchestrator.process_site("a.com", SITES["a.com"], "2026-10-19_09")
    assert second.status == STATUS_SUCCESS
    assert second.diff.added_count == 0


def test_process_site_empty_sitemap():
    orchestrator, _ = make_orchestrator(http_routes(**{SITES["a.com"]: FakeResponse(200, urlset_xml())}))
    store = orchestrator.store
    result = orchestrator.process_site("a.com", SITES["a.com"], "2026-10-19_09")
    assert result.status == STATUS_EMPTY
    assert store.list_time_periods("a.com") == []


def test_process_site_never_raises():
    fetcher = MagicMock()
    fetcher.fetch_urls.side_effect = RuntimeError("fetcher exploded")
    orchestrator, _ = make_orchestrator()
    orchestrator.fetcher_factory = lambda: fetcher

    result = orchestrator.process_site("a.com", SITES["a.com"], "2026-10-19_09")

    assert result.status == STATUS_ERROR
    assert "fetcher exploded" in result.message
    fetcher.close.assert_called_once()


def test_unreadable_previous_snapshot_counts_as_absent(tmp_path):
    directory = tmp_path / "snapshots"
    directory.mkdir()
    (directory / "a_com_2026-10-18_08.json").write_text("[]", encoding="utf-8")
    orchestrator, _ = make_orchestrator(store=FileSnapshotStore(str(directory)))

    result = orchestrator.process_site("a.com", SITES["a.com"], "2026-10-19_09")

    assert result.status == STATUS_INITIAL
    assert result.url_count == 2


def test_store_failure_is_site_error():
    store = MagicMock(spec=MemorySnapshotStore)
    store.save.side_effect = OSError("read-only filesystem")
    orchestrator, _ = make_orchestrator(store=store)
    result = orchestrator.process_site("a.com", SITES["a.com"], "2026-10-19_09")
    assert result.status == STATUS_ERROR


# =============================================================================
# 3. FULL CYCLE
# =============================================================================

def test_cycle_digest_skips_failed_site():
    store = MemorySnapshotStore()
    seed_previous(store)
    routes = http_routes(**{SITES["c.com"]: FakeResponse(500, b"down")})
    orchestrator, webhook = make_orchestrator(routes, store=store, max_workers=3)

    report = orchestrator.run_cycle(sites=SITES, now=NOW)

    assert report.time_period == "2026-10-19_09"
    assert [r.site for r in report.results] == ["a.com", "b.com", "c.com"]
    assert [r.status for r in report.results] == [STATUS_SUCCESS, STATUS_SUCCESS, STATUS_EMPTY]
    assert report.notification == "digest"
    assert report.delivered is True
    assert [r.site for r in report.by_status(STATUS_EMPTY)] == ["c.com"]

    texts = webhook.posted_texts()
    assert len(texts) == 1
    assert "🌐 a.com" in texts[0] and "🌐 b.com" in texts[0]
    assert "c.com" not in texts[0]
    assert "launch-day" in texts[0] and "pricing-plans" in texts[0]
    assert texts[0].splitlines()[-1] == "📊 Total: 2 new pages, 2 keywords"


def test_first_cycle_sends_initial_message():
    orchestrator, webhook = make_orchestrator()
    report = orchestrator.run_cycle(sites=SITES, now=NOW)
    assert report.notification == "initial"
    assert {r.status for r in report.results} == {STATUS_INITIAL}
    texts = webhook.posted_texts()
    assert len(texts) == 1
    assert "3 sites" in texts[0]


def test_unchanged_sites_send_no_changes():
    store = MemorySnapshotStore()
    seed_previous(store)
    routes = {url: FakeResponse(200, urlset_xml(f"https://{site}/old")) for site, url in SITES.items()}
    orchestrator, webhook = make_orchestrator(routes, store=store)

    report = orchestrator.run_cycle(sites=SITES, now=NOW)

    assert report.notification == "no_changes"
    assert webhook.posted_texts() == ["🔍 Sitemap Monitor (2026-10-19)\n📊 No new pages today"]


def test_new_pages_win_over_initial_sites():
    store = MemorySnapshotStore()
    seed_previous(store, sites=["a.com"])
    orchestrator, webhook = make_orchestrator(store=store)
    report = orchestrator.run_cycle(sites=SITES, now=NOW)
    assert report.notification == "digest"
    assert len(webhook.posted_texts()) == 1


def test_missing_webhook_still_completes():
    orchestrator, webhook = make_orchestrator(webhook=None)
    report = orchestrator.run_cycle(sites=SITES, now=NOW)
    assert report.notification == "initial"
    assert report.delivered is False
    assert webhook.calls == []


def test_notify_disabled_logs_instead_of_posting():
    orchestrator, webhook = make_orchestrator(notify=False)
    report = orchestrator.run_cycle(sites=SITES, now=NOW)
    assert report.notification == "initial"
    assert webhook.calls == []


def test_sequential_mode_gives_same_results():
    store = MemorySnapshotStore()
    seed_previous(store)
    orchestrator, _ = make_orchestrator(store=store, max_workers=1)
    report = orchestrator.run_cycle(sites=SITES, now=NOW)
    assert [r.status for r in report.results] == [STATUS_SUCCESS] * 3


def test_cycle_purges_expired_snapshots_first():
    store = MemorySnapshotStore()
    store.save(Snapshot.create("a.com", "2026-10-01_00", ["https://a.com/ancient"]))
    orchestrator, _ = make_orchestrator(store=store, retention_days=7)

    report = orchestrator.run_cycle(sites={"a.com": SITES["a.com"]}, now=NOW)

    assert report.purged == 1
    # The expired snapshot no longer counts as history
    assert report.results[0].status == STATUS_INITIAL


def test_site_source_failure_ends_cycle_silently():
    registry = MagicMock(spec=SiteRegistry)
    registry.active_targets.side_effect = ConfigError("sites file unreadable")
    orchestrator, webhook = make_orchestrator(registry=registry)

    report = orchestrator.run_cycle(now=NOW)

    assert report.notification == "none"
    assert report.results == []
    assert webhook.calls == []


def test_no_sites_and_no_registry_does_nothing():
    orchestrator, webhook = make_orchestrator()
    report = orchestrator.run_cycle(now=NOW)
    assert report.notification == "none"
    assert webhook.calls == []


def test_unexpected_failure_sends_error_notification():
    store = MemorySnapshotStore()
    orchestrator, webhook = make_orchestrator(store=store)

    with patch.object(store, "purge_older_than", side_effect=RuntimeError("storage exploded")):
        report = orchestrator.run_cycle(sites=SITES, now=NOW)

    assert report.notification == "error"
    assert report.error == "storage exploded"
    texts = webhook.posted_texts()
    assert len(texts) == 1
    assert "RuntimeError: storage exploded" in texts[0]


def test_registry_sites_are_used_and_stamped():
    registry = SiteRegistry([
        MonitoredSite(name="a.com", sitemap_url=SITES["a.com"]),
        MonitoredSite(name="b.com", sitemap_url=SITES["b.com"], is_active=False),
        MonitoredSite(name="c.com", sitemap_url=SITES["c.com"]),
    ])
    routes = http_routes(**{SITES["c.com"]: FakeResponse(404, b"")})
    orchestrator, _ = make_orchestrator(routes, registry=registry)

    report = orchestrator.run_cycle(now=NOW)

    assert [r.site for r in report.results] == ["a.com", "c.com"]
    assert registry.get("a.com").last_checked == NOW.isoformat()
    assert registry.get("b.com").last_checked is None
    assert registry.get("c.com").last_checked is None


def test_default_fetcher_factory_uses_fetch_config():
    orchestrator = MonitorOrchestrator(
        store=MemorySnapshotStore(),
        notifier=Notifier(webhook_url=None, session=FakeSession()),
        fetch_config={"timeout": 5, "max_depth": 2},
    )
    with patch("sitemap_watch.monitor.SitemapFetcher") as fetcher_cls:
        fetcher_cls.return_value.fetch_urls.return_value = []
        orchestrator.process_site("a.com", SITES["a.com"], "2026-10-19_09")
    fetcher_cls.assert_called_once_with(config={"timeout": 5, "max_depth": 2})
    fetcher_cls.return_value.close.assert_called_once()


@pytest.mark.parametrize("workers", [0, -3])
def test_max_workers_floor(workers):
    orchestrator, _ = make_orchestrator(max_workers=workers)
    assert orchestrator.max_workers == 1
