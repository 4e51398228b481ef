#!/usr/bin/env python3
"""
Settings and logging for the feed ingestion workers.

Settings come from the process environment, optionally topped up by a `.env`
file next to this module and by a YAML secrets file named in SECRETS_FILE.
Seed feeds for the `seed` mode are listed in feeds.yaml.

Importing this module configures logging once for the whole process.
"""

from os import environ, path, access, R_OK
from typing import Any, Dict, Optional
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

APP_LOGGER = "FeedIngest"
_LEVELS = {"DEBUG": DEBUG, "INFO": INFO, "WARNING": WARNING, "ERROR": ERROR}

# Upper bounds for YAML inputs
MAX_SECRETS_BYTES = 2 * 1024 * 1024
MAX_FEEDS_BYTES = 5 * 1024 * 1024


def _configure_logging():
    """Route all application logging to stdout.

    LOG_LEVEL picks the level (default INFO) and LOG_TIMESTAMPS=false drops
    the time column. Modules log through get_logger() and inherit this setup.
    """
    level = _LEVELS.get(environ.get("LOG_LEVEL", "INFO").upper(), INFO)

    fields = ['%(name)s', '%(levelname)s', '%(message)s']
    if environ.get("LOG_TIMESTAMPS", "true").lower() != "false":
        fields.insert(0, '%(asctime)s')

    basicConfig(
        level=level,
        format=' - '.join(fields),
        handlers=[StreamHandler(sys.stdout)],
        force=True,
    )

    getLogger("aiohttp").setLevel(WARNING)
    return getLogger(APP_LOGGER)


def get_logger(name: str):
    """Logger for one module, e.g. get_logger("scraper") -> "FeedIngest.scraper"."""
    return getLogger(f"{APP_LOGGER}.{name}")


logger = _configure_logging()


def read_yaml(file_path: str, max_bytes: int, label: str) -> Optional[Any]:
    """Load a small YAML file, or return None if it is missing, unreadable or empty.

    Problems are logged, never raised.
    """
    if not path.isfile(file_path):
        logger.debug(f"No {label} file at {file_path}")
        return None
    if not access(file_path, R_OK):
        logger.error(f"Cannot read {label} file {file_path}")
        return None

    size = path.getsize(file_path)
    if size > max_bytes:
        logger.error(f"Ignoring {label} file {file_path}: {size} bytes exceeds {max_bytes}")
        return None

    try:
        with open(file_path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in {label} file {file_path}: {e}")
        return None
    except OSError as e:
        logger.error(f"Could not load {label} file {file_path}: {e}")
        return None

    if not data:
        logger.warning(f"{label.capitalize()} file {file_path} is empty")
        return None
    return data


class Config:
    """Process-wide settings.

    Sources:
    1. Environment variables
    2. `.env` beside this module, for variables not already set
    3. SECRETS_FILE (YAML mapping, optionally nested under `environment`),
       which overrides both

    feeds.yaml holds the seed feeds, either as a bare URL or a mapping:
    ```yaml
    feeds:
      python_insider:
        url: "https://blog.python.org/feeds/posts/default"
      lwn: "https://lwn.net/headlines/rss"
    ```
    """

    def __init__(self):
        self._load_overrides()
        self._read_settings()
        self._load_feed_sources()

    def _load_overrides(self):
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment from {dotenv_path}")

        secrets_path = environ.get("SECRETS_FILE")
        if not secrets_path:
            return

        secrets = read_yaml(secrets_path, MAX_SECRETS_BYTES, 'secrets')
        if not isinstance(secrets, dict):
            if secrets is not None:
                logger.warning(f"Secrets file {secrets_path} is not a mapping; ignoring it")
            return
        if isinstance(secrets.get('environment'), dict):
            secrets = secrets['environment']

        applied = 0
        for key, value in secrets.items():
            if not isinstance(key, str) or value is None:
                logger.warning(f"Ignoring secrets entry {key!r}")
                continue
            environ[key] = str(value)
            applied += 1
        logger.info(f"Applied {applied} settings from {secrets_path}")

    def _env_int(self, name: str, default: int, minimum: int = 1) -> int:
        """Integer setting; values that do not parse or fall below `minimum` use `default`."""
        raw = environ.get(name)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            logger.warning(f"{name}={raw!r} is not an integer, using {default}")
            return default
        if value < minimum:
            logger.warning(f"{name}={value} is below {minimum}, using {default}")
            return default
        return value

    def _env_float(self, name: str, default: float, minimum: float = 0.0) -> float:
        raw = environ.get(name)
        if raw is None:
            return default
        try:
            value = float(raw)
        except ValueError:
            logger.warning(f"{name}={raw!r} is not a number, using {default}")
            return default
        if value < minimum:
            logger.warning(f"{name}={value} is below {minimum}, using {default}")
            return default
        return value

    def _read_settings(self):
        base_dir = path.dirname(path.abspath(__file__))

        # Storage and seed feeds
        self.DATABASE_PATH = environ.get("DATABASE_PATH", "feeds.db")
        self.FEEDS_CONFIG_PATH = environ.get("FEEDS_CONFIG_PATH", path.join(base_dir, "feeds.yaml"))

        # HTTP
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; FeedIngest/1.0)")
        self.HTTP_TIMEOUT = self._env_int("HTTP_TIMEOUT", 30)
        self.MAX_REDIRECTS = self._env_int("MAX_REDIRECTS", 5, 0)
        self.MAX_RETRIES = self._env_int("MAX_RETRIES", 2, 0)
        self.RETRY_DELAY_BASE = self._env_float("RETRY_DELAY_BASE", 1.0)

        # Workers
        self.SCRAPE_FEED_CONCURRENCY = self._env_int("SCRAPE_FEED_CONCURRENCY", 5)
        self.REFRESH_FEEDS_CRON = environ.get("REFRESH_FEEDS_CRON", "* * * * *").strip()
        self.SCHEDULER_TIMEZONE = environ.get("SCHEDULER_TIMEZONE", "UTC")

    def _load_feed_sources(self) -> None:
        """Set FEED_SOURCES (slug -> source URL); empty when feeds.yaml is unusable."""
        self.FEED_SOURCES: Dict[str, str] = {}

        data = read_yaml(self.FEEDS_CONFIG_PATH, MAX_FEEDS_BYTES, 'feeds')
        feeds = data.get('feeds') if isinstance(data, dict) else None
        if not isinstance(feeds, dict):
            if data is not None:
                logger.warning(f"{self.FEEDS_CONFIG_PATH} has no `feeds` mapping")
            return

        for slug, entry in feeds.items():
            url = entry.get('url') if isinstance(entry, dict) else entry
            if isinstance(url, str) and url.strip():
                self.FEED_SOURCES[slug] = url.strip()
            else:
                logger.warning(f"Feed '{slug}' has no usable url, skipping")

        logger.info(f"{len(self.FEED_SOURCES)} seed feeds configured in {self.FEEDS_CONFIG_PATH}")

    def reload_feed_sources(self):
        self._load_feed_sources()

    def get_config_summary(self) -> Dict[str, Any]:
        """Settings worth logging at start-up (no secrets)."""
        return {
            "database_path": self.DATABASE_PATH,
            "http_timeout": self.HTTP_TIMEOUT,
            "max_redirects": self.MAX_REDIRECTS,
            "max_retries": self.MAX_RETRIES,
            "scrape_feed_concurrency": self.SCRAPE_FEED_CONCURRENCY,
            "refresh_feeds_cron": self.REFRESH_FEEDS_CRON,
            "scheduler_timezone": self.SCHEDULER_TIMEZONE,
            "feed_count": len(self.FEED_SOURCES),
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
        }


# Global configuration instance
config = Config()
