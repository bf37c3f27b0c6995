# Configuration for the Receipt Sync Agent
# config.json first, then config.env/.env, then process environment

import json
import os
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from sqlalchemy.engine import URL

from .errors import ConfigError
from .transformer import to_source_local

logger = logging.getLogger(__name__)

POS_TYPES = ('HDPOS', 'QUICKBILL', 'GENERIC')


@dataclass
class SourceConfig:
    """Where the POS database lives"""
    pos_type: str = 'HDPOS'
    database_url: Optional[str] = None  # any SQLAlchemy URL; wins over the SQL_* parts
    server: str = 'localhost'
    port: int = 50283
    database: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    instance_name: str = 'SQLEXPRESS'
    driver: str = 'ODBC Driver 17 for SQL Server'
    trusted_connection: bool = False
    timeout: int = 15
    batch_size: int = 50

    def sqlalchemy_url(self):
        if self.database_url:
            return self.database_url
        query = {'driver': self.driver, 'TrustServerCertificate': 'yes', 'Encrypt': 'no'}
        if self.trusted_connection:
            query['Trusted_Connection'] = 'yes'
        host = self.server
        if self.instance_name and not self.port:
            host = f"{self.server}\\{self.instance_name}"
        return URL.create(
            'mssql+pyodbc',
            username=self.user,
            password=self.password,
            host=host,
            port=self.port or None,
            database=self.database,
            query=query,
        )


@dataclass
class LedgerConfig:
    """Remote receipt API"""
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: int = 30
    create_path: str = '/api/v1/receipts'
    check_path: str = '/api/v1/receipts/check'
    recent_path: str = '/api/v1/receipts/recent'
    already_exists_message: str = 'Receipt already exists'


@dataclass
class SyncSettings:
    enabled: bool = True
    interval_minutes: int = 5
    initial_delay_seconds: int = 10
    max_attempts: int = 3
    store_prefixes: List[str] = field(default_factory=list)
    cutoff_date: Optional[datetime] = None
    tz_offset_minutes: int = 330
    currency: str = 'INR'
    country_code: str = '91'


@dataclass
class LoggingSettings:
    log_path: Optional[str] = None
    debug: bool = False
    console: bool = True


@dataclass
class AgentConfig:
    """Everything the agent needs, built once at startup and passed down"""
    source: SourceConfig = field(default_factory=SourceConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    sync: SyncSettings = field(default_factory=SyncSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    state_db_path: str = 'receipt_sync_state.db'
    control_port: int = 8080

    def validate(self) -> List[str]:
        """Return a list of configuration problems; empty means usable"""
        errors = []
        if self.source.pos_type not in POS_TYPES:
            errors.append(f"POS_TYPE must be one of {', '.join(POS_TYPES)}")
        if not self.source.database_url:
            if not self.source.database:
                errors.append('SQL_DATABASE is required')
            if not self.source.trusted_connection and not (self.source.user and self.source.password):
                errors.append('SQL_USER and SQL_PASSWORD are required')
        if self.ledger.base_url and not self.ledger.api_key:
            errors.append('RECEIPT_API_KEY is required')
        if self.sync.interval_minutes < 1:
            errors.append('SYNC_INTERVAL_MINUTES must be at least 1')
        if self.sync.max_attempts < 1:
            errors.append('max_attempts must be at least 1')
        return errors


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def _parse_date(value: Any) -> Optional[datetime]:
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).strip())
    except ValueError:
        raise ConfigError(f"Invalid cutoff date: {value!r} (expected ISO format)")


def _parse_prefixes(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return [p.strip() for p in value if p and p.strip()]


def _parse_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _apply_section(target, values: Dict[str, Any]):
    for key, value in values.items():
        if not hasattr(target, key):
            logger.warning(f"Unknown config key ignored: {key}")
            continue
        setattr(target, key, value)


def _localize_cutoff(config: AgentConfig) -> AgentConfig:
    sync = config.sync
    sync.cutoff_date = to_source_local(sync.cutoff_date, sync.tz_offset_minutes)
    return config


def config_from_dict(data: Dict[str, Any]) -> AgentConfig:
    """Build an AgentConfig from the config.json layout"""
    config = AgentConfig()
    _apply_section(config.source, data.get('source', {}))
    _apply_section(config.ledger, data.get('ledger', {}))
    sync = dict(data.get('sync', {}))
    if 'store_prefixes' in sync:
        sync['store_prefixes'] = _parse_prefixes(sync['store_prefixes'])
    if 'cutoff_date' in sync:
        sync['cutoff_date'] = _parse_date(sync['cutoff_date'])
    _apply_section(config.sync, sync)
    _apply_section(config.logging, data.get('logging', {}))
    if 'state_db_path' in data:
        config.state_db_path = data['state_db_path']
    if 'control_port' in data:
        config.control_port = _parse_int(data['control_port'], 'control_port')
    return _localize_cutoff(config)


# env var -> (section, attribute, parser)
ENV_OVERRIDES = {
    'POS_TYPE': ('source', 'pos_type', lambda v: v.strip().upper()),
    'DATABASE_URL': ('source', 'database_url', str),
    'SQL_SERVER': ('source', 'server', str),
    'SQL_PORT': ('source', 'port', lambda v: _parse_int(v, 'SQL_PORT')),
    'SQL_DATABASE': ('source', 'database', str),
    'SQL_USER': ('source', 'user', str),
    'SQL_PASSWORD': ('source', 'password', str),
    'SQL_INSTANCE_NAME': ('source', 'instance_name', str),
    'SQL_DRIVER': ('source', 'driver', str),
    'SQL_TRUSTED_CONNECTION': ('source', 'trusted_connection', _parse_bool),
    'RECEIPT_API_URL': ('ledger', 'base_url', str),
    'RECEIPT_API_KEY': ('ledger', 'api_key', str),
    'LAST_SYNCED_RECEIPT_ENDPOINT': ('ledger', 'recent_path', str),
    'SYNC_INTERVAL_MINUTES': ('sync', 'interval_minutes', lambda v: _parse_int(v, 'SYNC_INTERVAL_MINUTES')),
    'SYNC_ENABLED': ('sync', 'enabled', _parse_bool),
    'STORE_PREFIXES': ('sync', 'store_prefixes', _parse_prefixes),
    'SYNC_CUTOFF_DATE': ('sync', 'cutoff_date', _parse_date),
    'DEBUG': ('logging', 'debug', _parse_bool),
}


def apply_env(config: AgentConfig, environ: Optional[Dict[str, str]] = None) -> AgentConfig:
    environ = os.environ if environ is None else environ
    for name, (section, attr, parse) in ENV_OVERRIDES.items():
        value = environ.get(name)
        if value is None or value == '':
            continue
        setattr(getattr(config, section), attr, parse(value))
    return _localize_cutoff(config)


def load_config(path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> AgentConfig:
    """
    Load config.json (if present), then environment overrides.

    A config.env next to the JSON file is loaded into the environment first;
    real environment variables are never overwritten by it.
    """
    path = Path(path) if path else Path('config.json')
    data = {}
    if path.exists():
        try:
            with open(path, encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{path} is not valid JSON: {e}")
    if environ is None:
        env_file = path.parent / 'config.env'
        load_dotenv(env_file if env_file.exists() else None)
    config = config_from_dict(data)
    return apply_env(config, environ)
