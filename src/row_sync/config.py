"""
Row Sync Configuration
Loads database, Solace, sync tuning and tracked-table settings from sync.yaml
"""

import os
import re
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR = os.path.join(os.path.dirname(__file__), "..", "..", "configs")
DEFAULT_CONFIG_FILE = os.path.join(CONFIG_DIR, "sync.yaml")

FRAMING_MODES = ("chunked", "per_row")
DELIVERY_MODES = ("persistent", "direct")
BACKOFF_STRATEGIES = ("fixed", "exponential")


def _resolve_env(value: str) -> str:
    """Resolve ${ENV_VAR:default} patterns"""
    if not isinstance(value, str) or "${" not in value:
        return value
    pattern = r"\$\{([^:}]+)(?::([^}]*))?\}"
    def replacer(match):
        return os.environ.get(match.group(1), match.group(2) or "")
    return re.sub(pattern, replacer, value)


def _resolve_value(value: Any) -> Any:
    if isinstance(value, dict):
        return _resolve_dict(value)
    if isinstance(value, list):
        return [_resolve_value(i) for i in value]
    if isinstance(value, str):
        return _resolve_env(value)
    return value


def _resolve_dict(d: dict) -> dict:
    """Recursively resolve environment variables"""
    return {k: _resolve_value(v) for k, v in d.items()}


@dataclass
class DatabaseConfig:
    """PostgreSQL source + tracking store connection"""
    host: str = "localhost"
    port: int = 5432
    database: str = "prism_db"
    username: str = "sync_user"
    password: str = "sync_pass"
    schema: str = "public"
    min_connections: int = 1
    max_connections: int = 10
    connect_timeout_seconds: int = 10
    query_timeout_ms: int = 30000
    connect_retry_attempts: int = 5


@dataclass
class RetryConfig:
    max_attempts: int = 5
    initial_delay_ms: int = 200
    max_delay_ms: int = 5000
    multiplier: float = 2.0


@dataclass
class SolaceConfig:
    """Solace connection and publish settings"""
    host: str = "localhost"
    port: int = 55555
    vpn: str = "default"
    username: str = "admin"
    password: str = "admin"
    topic_prefix: str = "rowsync/prism_db"
    delivery_mode: str = "persistent"
    ack_timeout_ms: int = 5000
    reconnect_retries: int = -1  # Infinite
    reconnect_retry_wait_ms: int = 3000
    publish_retry: RetryConfig = field(default_factory=RetryConfig)

    def get_topic(self, table: str) -> str:
        """Generate topic name from pattern"""
        return f"{self.topic_prefix}/{table}"


@dataclass
class BackoffConfig:
    strategy: str = "fixed"
    delay_seconds: float = 10.0
    max_delay_seconds: float = 60.0
    multiplier: float = 2.0


@dataclass
class SyncConfig:
    """Per-table loop tuning"""
    fetch_limit: int = 1000
    max_part_size: int = 512 * 1024
    framing: str = "chunked"
    poll_interval_seconds: float = 60.0
    retry: BackoffConfig = field(default_factory=BackoffConfig)
    commit_retry: BackoffConfig = field(default_factory=lambda: BackoffConfig(
        strategy="exponential", delay_seconds=1.0, max_delay_seconds=60.0, multiplier=2.0,
    ))
    restart_crashed_loops: bool = True
    stats_interval_seconds: float = 60.0
    tracking_table: str = "tracking_table"


@dataclass
class TableConfig:
    """One tracked source table"""
    name: str
    initial_offset: int = 0
    id_column: str = "id"


DEFAULT_TABLES = [
    "accounts",
    "account_balances",
    "attendance",
    "account_orders",
    "asset_masters",
]


@dataclass
class RowSyncConfig:
    """Root configuration"""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    solace: SolaceConfig = field(default_factory=SolaceConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    tables: List[TableConfig] = field(
        default_factory=lambda: [TableConfig(name=n) for n in DEFAULT_TABLES]
    )
    log_level: str = "INFO"


def _load_yaml(path: str) -> dict:
    if not os.path.exists(path):
        logger.warning(f"Config file {path} not found, using defaults")
        return {}
    with open(path) as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _apply_backoff(target: BackoffConfig, raw: dict) -> None:
    target.strategy = raw.get("strategy", target.strategy)
    target.delay_seconds = float(raw.get("delay_seconds", target.delay_seconds))
    target.max_delay_seconds = float(raw.get("max_delay_seconds", target.max_delay_seconds))
    target.multiplier = float(raw.get("multiplier", target.multiplier))


def _parse_tables(raw_tables: List[Any]) -> List[TableConfig]:
    tables = []
    for item in raw_tables:
        if isinstance(item, str):
            tables.append(TableConfig(name=item))
        elif isinstance(item, dict):
            if not item.get("name"):
                raise ConfigError(f"Tracked table entry without a name: {item}")
            tables.append(TableConfig(
                name=item["name"],
                initial_offset=int(item.get("initial_offset", 0)),
                id_column=item.get("id_column", "id"),
            ))
        else:
            raise ConfigError(f"Invalid tracked table entry: {item!r}")
    return tables


def validate_config(config: RowSyncConfig) -> None:
    """Reject settings the sync loops cannot run with"""
    sync = config.sync
    if sync.fetch_limit <= 0:
        raise ConfigError(f"sync.fetch_limit must be positive, got {sync.fetch_limit}")
    if sync.max_part_size <= 0:
        raise ConfigError(f"sync.max_part_size must be positive, got {sync.max_part_size}")
    if sync.framing not in FRAMING_MODES:
        raise ConfigError(f"sync.framing must be one of {FRAMING_MODES}, got {sync.framing!r}")
    for name, backoff in (("retry", sync.retry), ("commit_retry", sync.commit_retry)):
        if backoff.strategy not in BACKOFF_STRATEGIES:
            raise ConfigError(
                f"sync.{name}.strategy must be one of {BACKOFF_STRATEGIES}, got {backoff.strategy!r}"
            )
        if backoff.delay_seconds < 0 or backoff.max_delay_seconds < 0:
            raise ConfigError(f"sync.{name} delays must not be negative")
        if backoff.multiplier < 1:
            raise ConfigError(f"sync.{name}.multiplier must be at least 1, got {backoff.multiplier}")
    if config.solace.delivery_mode not in DELIVERY_MODES:
        raise ConfigError(
            f"solace.delivery_mode must be one of {DELIVERY_MODES}, got {config.solace.delivery_mode!r}"
        )
    if not config.tables:
        raise ConfigError("No tables configured for tracking")
    seen = set()
    for table in config.tables:
        if table.name in seen:
            raise ConfigError(f"Table {table.name} is listed more than once")
        if table.initial_offset < 0:
            raise ConfigError(f"Table {table.name}: initial_offset must not be negative")
        seen.add(table.name)
    if not isinstance(logging.getLevelName(str(config.log_level).upper()), int):
        raise ConfigError(f"logging.level is not a known log level: {config.log_level!r}")


def load_config(path: Optional[str] = None) -> RowSyncConfig:
    """Load configuration from sync.yaml (or ROW_SYNC_CONFIG / explicit path)"""
    path = path or os.environ.get("ROW_SYNC_CONFIG", DEFAULT_CONFIG_FILE)
    raw = _resolve_dict(_load_yaml(path))
    try:
        config = _build_config(raw)
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigError(f"Invalid value in {path}: {e}") from e

    validate_config(config)
    return config


def _build_config(raw: dict) -> RowSyncConfig:
    config = RowSyncConfig()

    # Database
    db = raw.get("database", {})
    config.database.host = db.get("host", config.database.host)
    config.database.port = int(db.get("port", config.database.port))
    config.database.database = db.get("database", config.database.database)
    config.database.username = db.get("username", config.database.username)
    config.database.password = db.get("password", config.database.password)
    config.database.schema = db.get("schema", config.database.schema)
    pool = db.get("pool", {})
    config.database.min_connections = int(pool.get("min_connections", config.database.min_connections))
    config.database.max_connections = int(pool.get("max_connections", config.database.max_connections))
    config.database.connect_timeout_seconds = int(db.get("connect_timeout_seconds", config.database.connect_timeout_seconds))
    config.database.query_timeout_ms = int(db.get("query_timeout_ms", config.database.query_timeout_ms))
    config.database.connect_retry_attempts = int(db.get("connect_retry_attempts", config.database.connect_retry_attempts))

    # Solace
    sol = raw.get("solace", {})
    config.solace.host = sol.get("host", config.solace.host)
    config.solace.port = int(sol.get("port", config.solace.port))
    config.solace.vpn = sol.get("vpn", config.solace.vpn)
    config.solace.username = sol.get("username", config.solace.username)
    config.solace.password = sol.get("password", config.solace.password)
    config.solace.topic_prefix = sol.get("topic_prefix", config.solace.topic_prefix)
    config.solace.delivery_mode = sol.get("delivery_mode", config.solace.delivery_mode)
    config.solace.ack_timeout_ms = int(sol.get("ack_timeout_ms", config.solace.ack_timeout_ms))
    config.solace.reconnect_retries = int(sol.get("reconnect_retries", config.solace.reconnect_retries))
    config.solace.reconnect_retry_wait_ms = int(sol.get("reconnect_retry_wait_ms", config.solace.reconnect_retry_wait_ms))
    pr = sol.get("publish_retry", {})
    config.solace.publish_retry.max_attempts = int(pr.get("max_attempts", config.solace.publish_retry.max_attempts))
    config.solace.publish_retry.initial_delay_ms = int(pr.get("initial_delay_ms", config.solace.publish_retry.initial_delay_ms))
    config.solace.publish_retry.max_delay_ms = int(pr.get("max_delay_ms", config.solace.publish_retry.max_delay_ms))
    config.solace.publish_retry.multiplier = float(pr.get("backoff_multiplier", config.solace.publish_retry.multiplier))

    # Sync
    sync = raw.get("sync", {})
    config.sync.fetch_limit = int(sync.get("fetch_limit", config.sync.fetch_limit))
    config.sync.max_part_size = int(sync.get("max_part_size", config.sync.max_part_size))
    config.sync.framing = sync.get("framing", config.sync.framing)
    config.sync.poll_interval_seconds = float(sync.get("poll_interval_seconds", config.sync.poll_interval_seconds))
    _apply_backoff(config.sync.retry, sync.get("retry", {}))
    _apply_backoff(config.sync.commit_retry, sync.get("commit_retry", {}))
    config.sync.restart_crashed_loops = _as_bool(sync.get("restart_crashed_loops", config.sync.restart_crashed_loops))
    config.sync.stats_interval_seconds = float(sync.get("stats_interval_seconds", config.sync.stats_interval_seconds))
    config.sync.tracking_table = sync.get("tracking_table", config.sync.tracking_table)

    # Tables
    if "tables" in raw:
        config.tables = _parse_tables(raw.get("tables") or [])

    # Logging
    config.log_level = str(raw.get("logging", {}).get("level", config.log_level)).upper()

    return config
