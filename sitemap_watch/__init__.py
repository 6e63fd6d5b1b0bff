"""
Sitemap Watch - Source Package

Modules:
- config: Configuration loading and validation
- site_registry: Monitored site records (name -> sitemap URL)
- sitemap_fetcher: HTTP fetching and recursive sitemap index expansion
- sitemap_parser: XML parsing for sitemap indexes and urlsets
- keyword_extractor: Keyword candidates from newly added URLs
- snapshot_store: Dated snapshot persistence (file, Cloudflare KV, memory)
- diff_engine: Added/removed URL computation between two snapshots
- notifier: Digest formatting and webhook delivery
- monitor: One monitoring cycle across all configured sites
- report: Snapshot history tables and CSV export
"""

__version__ = "1.0.0"
