import copy
import json
import logging
import os
from typing import Any, Dict, Optional

from sitemap_watch.exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_PATH = os.environ.get("SITEMAP_WATCH_CONFIG", "config.json")

DEFAULT_CONFIG: Dict[str, Any] = {
    "targets": [],
    "sites_file": None,
    "webhook_url": None,
    "data_directory": "data",
    "retention_days": 7,
    "max_concurrent_sites": 4,
    "fetch": {
        "user_agent": "Mozilla/5.0 (compatible; SitemapWatch/1.0)",
        "timeout": 30,
        "max_retries": 0,
        "download_delay": 1.0,
        "max_depth": 5,
    },
    "storage": {
        "backend": "file",
    },
}

# Environment variable -> (section, key); section None means top level
ENV_OVERRIDES = {
    "FEISHU_WEBHOOK_URL": (None, "webhook_url"),
    "CLOUDFLARE_ACCOUNT_ID": ("storage", "account_id"),
    "CLOUDFLARE_API_TOKEN": ("storage", "api_token"),
    "CLOUDFLARE_KV_NAMESPACE_ID": ("storage", "namespace_id"),
}


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Loads the configuration file, merges defaults and environment overrides.

    Raises:
        ConfigError: file missing, not valid JSON, or failing validation.
    """
    path = path or CONFIG_FILE_PATH
    if not os.path.exists(path):
        raise ConfigError(f"Configuration file not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Error decoding JSON from {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read {path}: {e}") from e

    logger.info(f"Successfully loaded configuration from {path}")
    if not validate_config(config_data):
        raise ConfigError(f"Invalid configuration in {path}")

    config = merge_defaults(config_data)
    # A relative sites_file is resolved next to the config file
    sites_file = config.get("sites_file")
    if sites_file and not os.path.isabs(sites_file):
        config["sites_file"] = os.path.join(os.path.dirname(os.path.abspath(path)), sites_file)
    return apply_env_overrides(config)


def merge_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """Fills missing keys from DEFAULT_CONFIG (one level deep for sections)."""
    merged = copy.deepcopy(DEFAULT_CONFIG)
    for key, value in config.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def apply_env_overrides(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Environment variables win over file values for secrets and endpoints."""
    environ = os.environ if environ is None else environ
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if not value:
            continue
        if section is None:
            config[key] = value
        else:
            config.setdefault(section, {})[key] = value
        logger.debug(f"Config override from {env_name}")
    return config


def validate_config(config: Dict[str, Any]) -> bool:
    """Validates the structure and content of the configuration."""
    if not isinstance(config, dict):
        logger.error("Configuration must be a dictionary.")
        return False

    has_targets = "targets" in config
    has_sites_file = bool(config.get("sites_file"))

    if not has_targets and not has_sites_file:
        logger.error("Configuration needs either a 'targets' list or a 'sites_file'.")
        return False

    if has_targets:
        if not isinstance(config["targets"], list):
            logger.error("'targets' must be a list.")
            return False
        if not config["targets"] and not has_sites_file:
            logger.warning("'targets' list is empty. No sitemaps will be monitored.")

        for i, target_entry in enumerate(config["targets"]):
            if not isinstance(target_entry, dict):
                logger.error(f"Target entry at index {i} is not a dictionary.")
                return False
            for key in ("name", "sitemap_url"):
                if not isinstance(target_entry.get(key), str) or not target_entry[key].strip():
                    logger.error(f"Value for key '{key}' in target entry at index {i} must be a non-empty string.")
                    return False
            if not target_entry["sitemap_url"].startswith(("http://", "https://")):
                logger.error(f"Target entry at index {i} has a non-HTTP sitemap_url: {target_entry['sitemap_url']}")
                return False

    for key in ("retention_days", "max_concurrent_sites"):
        if key in config and (not isinstance(config[key], int) or config[key] < 1):
            logger.error(f"'{key}' must be a positive integer.")
            return False

    storage = config.get("storage", {})
    if not isinstance(storage, dict) or storage.get("backend", "file") not in ("file", "kv", "memory"):
        logger.error("'storage.backend' must be one of: file, kv, memory.")
        return False

    if not config.get("webhook_url"):
        logger.warning("'webhook_url' not set; set FEISHU_WEBHOOK_URL or results will only be logged.")

    logger.info("Configuration validation successful.")
    return True
