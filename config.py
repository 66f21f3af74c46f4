#!/usr/bin/env python3
"""
Configuration management for the feed synchronization pipeline.

This module centralizes configuration loading and validation. It reads
environment variables (optionally seeded from a .env file and a YAML secrets
file), validates numeric limits and exposes a single global `config` object.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, List
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    All modules should use get_logger() to create module-specific loggers
    that inherit this configuration.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"
    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True
    )

    # Exporter chatter stays quiet unless explicitly requested
    azure_level = level_map.get(environ.get("AZURE_LOG_LEVEL", "WARNING").upper(), WARNING)
    for name in ("azure", "azure.core", "azure.monitor"):
        getLogger(name).setLevel(azure_level)

    return getLogger("FeedSync")

def get_logger(name: str):
    """Get a module-specific logger named "FeedSync.{name}".

    Example:
        logger = get_logger("registry")
        logger.info("Registered handler")
    """
    return getLogger(f"FeedSync.{name}")

logger = _setup_global_logger()

class Config:
    """Configuration manager for the synchronization pipeline.

    Values are resolved from, in increasing priority:
    1. Environment variables
    2. .env file (if present)
    3. YAML secrets file (if SECRETS_FILE is set)

    An optional sources.yaml lists source URLs used to seed the registry:

    ```yaml
    sources:
      - url: https://example.com/feed.xml
        title: Example Blog
      - url: https://www.youtube.com/@somechannel
    ```
    """

    def __init__(self):
        self._load_environment()
        self._validate_and_set_config()
        self._load_seed_sources()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")
        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.1) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        self.DATABASE_PATH = environ.get("DATABASE_PATH", "sources.db")
        self.USER_AGENT = environ.get("USER_AGENT", "FeedSync/1.0 (+https://github.com/feed-sync)")

        # HTTP request configuration
        self.HTTP_TIMEOUT = self._validate_positive_float("HTTP_TIMEOUT", 10.0, 1.0)
        self.DISCOVERY_PAGE_TIMEOUT = self._validate_positive_float("DISCOVERY_PAGE_TIMEOUT", 5.0, 0.5)
        self.DISCOVERY_PROBE_TIMEOUT = self._validate_positive_float("DISCOVERY_PROBE_TIMEOUT", 2.0, 0.5)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

        # Sync bounds
        self.RECENT_WINDOW_HOURS = self._validate_positive_int("RECENT_WINDOW_HOURS", 24, 1)
        self.MAX_ITEMS_PER_SYNC = self._validate_positive_int("MAX_ITEMS_PER_SYNC", 25, 1)
        self.SYNC_BATCH_SIZE = self._validate_positive_int("SYNC_BATCH_SIZE", 5, 1)

        # Content shaping
        self.EXCERPT_LENGTH = self._validate_positive_int("EXCERPT_LENGTH", 300, 20)
        self.WORDS_PER_MINUTE = self._validate_positive_int("WORDS_PER_MINUTE", 250, 50)

        # Optional video platform API key; enables duration and statistics enrichment
        self.YOUTUBE_API_KEY = environ.get("YOUTUBE_API_KEY") or None

        base_dir = path.dirname(path.abspath(__file__))
        self.SCHEMA_FILE_PATH = self._resolve_schema_path(base_dir)
        self.SOURCES_CONFIG_PATH = environ.get("SOURCES_CONFIG_PATH", path.join(base_dir, "sources.yaml"))

    def _resolve_schema_path(self, base_dir: str) -> str:
        """SCHEMA_FILE_PATH, else schema.sql beside the modules, else the installed data file."""
        explicit = environ.get("SCHEMA_FILE_PATH")
        if explicit:
            return explicit
        candidates = [
            path.join(base_dir, "schema.sql"),
            path.join(sys.prefix, "share", "feed-sync", "schema.sql"),
        ]
        for candidate in candidates:
            if path.isfile(candidate):
                return candidate
        return candidates[0]

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        Both a top-level mapping and a mapping nested under `environment`
        are accepted.
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if not isinstance(secrets_config, dict):
            if secrets_config is not None:
                logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        env_vars = secrets_config.get('environment')
        if not isinstance(env_vars, dict):
            env_vars = secrets_config

        loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}")
        logger.info(f"Loaded {loaded} environment variables from secrets file {secrets_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.debug(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _load_seed_sources(self) -> None:
        """Populate self.SEED_SOURCES from sources.yaml.

        Any failure results in an empty list.
        """
        data = self._safe_read_yaml(self.SOURCES_CONFIG_PATH, 5 * 1024 * 1024, 'sources')
        entries = data.get('sources') if isinstance(data, dict) else None
        seeds: List[Dict[str, Any]] = []
        if isinstance(entries, list):
            for entry in entries:
                if isinstance(entry, str):
                    seeds.append({"url": entry})
                elif isinstance(entry, dict) and isinstance(entry.get('url'), str):
                    seeds.append({"url": entry['url'], "title": entry.get('title')})
                else:
                    logger.warning(f"Skipping invalid source entry: {entry}")
        elif data is not None:
            logger.warning(f"No valid sources list found in {self.SOURCES_CONFIG_PATH}")
        self.SEED_SOURCES = seeds
        if seeds:
            logger.info(f"Loaded {len(seeds)} seed sources from {self.SOURCES_CONFIG_PATH}")

    def reload_seed_sources(self):
        """Reload seed sources from configuration file."""
        self._load_seed_sources()

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "database_path": self.DATABASE_PATH,
            "http_timeout": self.HTTP_TIMEOUT,
            "recent_window_hours": self.RECENT_WINDOW_HOURS,
            "max_items_per_sync": self.MAX_ITEMS_PER_SYNC,
            "sync_batch_size": self.SYNC_BATCH_SIZE,
            "seed_source_count": len(self.SEED_SOURCES),
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
            "youtube_api_key_configured": bool(self.YOUTUBE_API_KEY),
        }

# Global configuration instance
config = Config()
