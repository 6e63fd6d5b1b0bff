# tests/test_report.py

"""Tests for the pandas report tables."""

import pandas as pd

from sitemap_watch.models import STATUS_ERROR, STATUS_SUCCESS, CycleReport, SiteResult, SitemapDiff, Snapshot
from sitemap_watch.report import (
    HISTORY_COLUMNS,
    build_history_frame,
    compare_snapshots,
    diff_frame,
    export_csv,
    summarize_cycle,
)
from sitemap_watch.snapshot_store import MemorySnapshotStore


def seeded_store():
    store = MemorySnapshotStore()
    store.save(Snapshot.create("x.io", "2026-10-17_08", ["https://x.io/a"]))
    store.save(Snapshot.create("x.io", "2026-10-18_08", ["https://x.io/a", "https://x.io/new-guide"]))
    store.save(Snapshot.create("x.io", "2026-10-19_08", ["https://x.io/new-guide"]))
    return store


def test_history_frame_oldest_first_with_counts():
    df = build_history_frame(seeded_store(), "x.io")
    assert list(df.columns) == HISTORY_COLUMNS
    assert list(df["time_period"]) == ["2026-10-17_08", "2026-10-18_08", "2026-10-19_08"]
    assert list(df["total_count"]) == [1, 2, 1]
    assert list(df["added"]) == [0, 1, 0]
    assert list(df["removed"]) == [0, 0, 1]
    assert df.loc[1, "keywords"] == "new-guide"


def test_history_frame_for_unknown_site_is_empty():
    df = build_history_frame(MemorySnapshotStore(), "nobody.io")
    assert df.empty
    assert list(df.columns) == HISTORY_COLUMNS


def test_compare_snapshots():
    diff = compare_snapshots(seeded_store(), "x.io", "2026-10-17_08", "2026-10-19_08")
    assert diff.added_urls == ("https://x.io/new-guide",)
    assert diff.removed_urls == ("https://x.io/a",)


def test_compare_missing_snapshot_returns_none():
    assert compare_snapshots(seeded_store(), "x.io", "2026-10-01_00", "2026-10-19_08") is None


def test_diff_frame():
    diff = SitemapDiff(site="x.io", time_period="2026-10-19_08", added_urls=("https://x.io/b",), removed_urls=("https://x.io/a",))
    df = diff_frame(diff)
    assert list(df["change_type"]) == ["added", "removed"]
    assert set(df["site"]) == {"x.io"}


def test_summarize_cycle():
    report = CycleReport(time_period="2026-10-19_08", results=[
        SiteResult("a.com", STATUS_SUCCESS, SitemapDiff("a.com", "2026-10-19_08", added_urls=("https://a.com/x",)), 10),
        SiteResult("b.com", STATUS_ERROR, message="boom"),
    ])
    df = summarize_cycle(report)
    assert list(df["site"]) == ["a.com", "b.com"]
    assert list(df["added"]) == [1, 0]
    assert df.loc[1, "message"] == "boom"


def test_export_csv_creates_directories(tmp_path):
    df = build_history_frame(seeded_store(), "x.io")
    path = export_csv(df, str(tmp_path / "out" / "history.csv"))
    loaded = pd.read_csv(path)
    assert list(loaded["total_count"]) == [1, 2, 1]
