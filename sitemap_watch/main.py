"""
1.0 Command Line Entry Point

Usage:
    sitemap-watch run
    sitemap-watch run --site example.com --no-notify
    sitemap-watch history example.com --csv output/example_history.csv
    sitemap-watch compare example.com 2026-10-18_08 2026-10-19_08 --csv output/example_diff.csv
    sitemap-watch purge --days 7

Invoke `run` from cron or a CI schedule; each call is one cycle.
"""

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sitemap_watch import __version__
from sitemap_watch.config import CONFIG_FILE_PATH, load_config
from sitemap_watch.exceptions import ConfigError
from sitemap_watch.monitor import MonitorOrchestrator
from sitemap_watch.notifier import Notifier
from sitemap_watch.report import build_history_frame, compare_snapshots, diff_frame, export_csv, summarize_cycle
from sitemap_watch.site_registry import SiteRegistry
from sitemap_watch.snapshot_store import SnapshotStore, build_store

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(log_file: Optional[str] = "sitemap_watch.log", verbose: bool = False) -> None:
    """1.1 Log to stderr and, unless disabled, to a file."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def build_orchestrator(
    config: Dict[str, Any],
    store: Optional[SnapshotStore] = None,
    notify: bool = True,
) -> MonitorOrchestrator:
    """2.0 Wire store, notifier and site registry from configuration."""
    return MonitorOrchestrator(
        store=store or build_store(config),
        notifier=Notifier(webhook_url=config.get("webhook_url")),
        registry=SiteRegistry.from_config(config),
        fetch_config=config.get("fetch", {}),
        max_workers=config.get("max_concurrent_sites", 4),
        retention_days=config.get("retention_days", 7),
        notify=notify,
    )


# =============================================================================
# 3.0 SUB-COMMANDS
# =============================================================================

def cmd_run(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    orchestrator = build_orchestrator(config, notify=not args.no_notify)
    if args.no_purge:
        orchestrator.retention_days = None

    sites = None
    if args.site:
        targets = orchestrator.registry.active_targets()
        if args.site not in targets:
            logger.error(f"Site '{args.site}' is not configured or not active")
            return 1
        sites = {args.site: targets[args.site]}

    report = orchestrator.run_cycle(sites=sites)
    if report.results:
        print(summarize_cycle(report).to_string(index=False))
    return 1 if report.error else 0


def cmd_history(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    df = build_history_frame(build_store(config), args.site)
    if df.empty:
        print(f"No snapshots stored for {args.site}")
        return 0
    print(df.to_string(index=False))
    if args.csv:
        export_csv(df, args.csv)
    return 0


def cmd_compare(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    diff = compare_snapshots(build_store(config), args.site, args.old, args.new)
    if diff is None:
        return 1
    print(f"{args.site}: {args.old} -> {args.new}")
    print(f"Added ({diff.added_count}):")
    for url in diff.added_urls:
        print(f"  + {url}")
    print(f"Removed ({diff.removed_count}):")
    for url in diff.removed_urls:
        print(f"  - {url}")
    if diff.keywords:
        print(f"Keywords: {', '.join(diff.keywords)}")
    if args.csv:
        export_csv(diff_frame(diff), args.csv)
    return 0


def cmd_purge(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    days = args.days or config.get("retention_days", 7)
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    deleted = build_store(config).purge_older_than(cutoff)
    print(f"Deleted {deleted} snapshots older than {cutoff.date().isoformat()}")
    return 0


COMMANDS = {
    "run": cmd_run,
    "history": cmd_history,
    "compare": cmd_compare,
    "purge": cmd_purge,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sitemap-watch",
        description="Snapshot sitemaps, diff against the previous run and notify a webhook"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config", "-c",
        default=CONFIG_FILE_PATH,
        help=f"Configuration file (default: {CONFIG_FILE_PATH})"
    )
    parser.add_argument(
        "--log-file",
        default="sitemap_watch.log",
        help="Log file path; empty string disables file logging"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Run one monitoring cycle (default)")
    run.add_argument("--site", "-s", default=None, help="Only monitor this site")
    run.add_argument("--no-notify", action="store_true", help="Log the message instead of sending it")
    run.add_argument("--no-purge", action="store_true", help="Skip retention cleanup")

    history = subparsers.add_parser("history", help="Show stored snapshots for a site")
    history.add_argument("site")
    history.add_argument("--csv", default=None, help="Also export the table to this CSV path")

    compare = subparsers.add_parser("compare", help="Diff two stored snapshots of a site")
    compare.add_argument("site")
    compare.add_argument("old", help="Older time period, e.g. 2026-10-18_08")
    compare.add_argument("new", help="Newer time period")
    compare.add_argument("--csv", default=None, help="Also export the added/removed URLs to this CSV path")

    purge = subparsers.add_parser("purge", help="Delete snapshots past the retention horizon")
    purge.add_argument("--days", "-d", type=int, default=None, help="Override retention_days")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """4.0 CLI entry point."""
    argv = sys.argv[1:] if argv is None else list(argv)
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        args = parser.parse_args(argv + ["run"])

    setup_logging(args.log_file or None, args.verbose)

    try:
        config = load_config(args.config)
        return COMMANDS[args.command](args, config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
