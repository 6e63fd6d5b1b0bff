"""
1.0 Report Module
Tabular views over stored snapshots, built with pandas.

- history: one row per stored snapshot with counts versus the one before
- compare: diff between any two stored snapshots of a site
- cycle summary: one row per site from a CycleReport
"""

import logging
import os
from typing import Optional

import pandas as pd

from sitemap_watch.diff_engine import DiffEngine
from sitemap_watch.models import CycleReport, SitemapDiff
from sitemap_watch.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

# 1.1 Column name constants for consistency
COL_TIME_PERIOD = "time_period"
COL_CAPTURED_AT = "captured_at"
COL_TOTAL = "total_count"
COL_ADDED = "added"
COL_REMOVED = "removed"
COL_KEYWORDS = "keywords"

HISTORY_COLUMNS = [COL_TIME_PERIOD, COL_CAPTURED_AT, COL_TOTAL, COL_ADDED, COL_REMOVED, COL_KEYWORDS]


def build_history_frame(store: SnapshotStore, site: str, diff_engine: Optional[DiffEngine] = None) -> pd.DataFrame:
    """
    2.1 History of a site's snapshots, oldest first.

    The first row has no predecessor, so its added/removed counts are 0.
    """
    diff_engine = diff_engine or DiffEngine()
    rows = []
    previous = None
    for time_period in sorted(store.list_time_periods(site)):
        snapshot = store.load(site, time_period)
        if snapshot is None:
            continue
        diff = diff_engine.diff(previous, snapshot)
        rows.append({
            COL_TIME_PERIOD: snapshot.time_period,
            COL_CAPTURED_AT: snapshot.captured_at,
            COL_TOTAL: snapshot.total_count,
            COL_ADDED: diff.added_count,
            COL_REMOVED: diff.removed_count,
            COL_KEYWORDS: ", ".join(diff.keywords),
        })
        previous = snapshot

    df = pd.DataFrame(rows, columns=HISTORY_COLUMNS)
    logger.info(f"History for {site}: {len(df)} snapshots")
    return df


def compare_snapshots(
    store: SnapshotStore,
    site: str,
    old_period: str,
    new_period: str,
    diff_engine: Optional[DiffEngine] = None,
) -> Optional[SitemapDiff]:
    """2.2 Diff two stored snapshots; None if either is missing."""
    old = store.load(site, old_period)
    new = store.load(site, new_period)
    if old is None or new is None:
        missing = old_period if old is None else new_period
        logger.error(f"No snapshot for {site} at {missing}")
        return None
    return (diff_engine or DiffEngine()).diff(old, new)


def diff_frame(diff: SitemapDiff) -> pd.DataFrame:
    """2.3 Long-format table of a diff: one row per added/removed URL."""
    rows = [{"change_type": "added", "url": url} for url in diff.added_urls]
    rows += [{"change_type": "removed", "url": url} for url in diff.removed_urls]
    df = pd.DataFrame(rows, columns=["change_type", "url"])
    df["site"] = diff.site
    df["time_period"] = diff.time_period
    return df


def summarize_cycle(report: CycleReport) -> pd.DataFrame:
    """2.4 One row per site with status and change counts."""
    rows = []
    for result in report.results:
        rows.append({
            "site": result.site,
            "status": result.status,
            "urls": result.url_count,
            COL_ADDED: result.diff.added_count if result.diff else 0,
            COL_REMOVED: result.diff.removed_count if result.diff else 0,
            "message": result.message,
        })
    return pd.DataFrame(rows, columns=["site", "status", "urls", COL_ADDED, COL_REMOVED, "message"])


def export_csv(df: pd.DataFrame, path: str) -> str:
    """2.5 Write a report table to CSV, creating parent directories."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    df.to_csv(path, index=False)
    logger.info(f"Saved {len(df)} rows to {path}")
    return path
