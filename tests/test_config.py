# Tests for configuration loading and logging setup

import json
import logging
from datetime import datetime

import pytest

from receipt_sync.config import AgentConfig, LoggingSettings, SourceConfig, config_from_dict, load_config
from receipt_sync.errors import ConfigError
from receipt_sync.logging_config import setup_logging


class TestLoadConfig:
    """Test config.json + environment layering"""

    def write_config(self, tmp_path, data):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps(data))
        return path

    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path / 'missing.json', environ={})

        assert config.source.pos_type == 'HDPOS'
        assert config.sync.interval_minutes == 5
        assert config.sync.max_attempts == 3
        assert config.sync.tz_offset_minutes == 330
        assert config.ledger.timeout == 30
        assert config.source.batch_size == 50

    def test_json_sections(self, tmp_path):
        path = self.write_config(tmp_path, {
            'source': {'pos_type': 'GENERIC', 'database_url': 'sqlite:///pos.db'},
            'ledger': {'base_url': 'https://ledger.example', 'api_key': 'k'},
            'sync': {'store_prefixes': 'ANN/, BLR/', 'cutoff_date': '2024-03-01'},
            'control_port': '9090',
        })

        config = load_config(path, environ={})

        assert config.source.pos_type == 'GENERIC'
        assert config.sync.store_prefixes == ['ANN/', 'BLR/']
        assert config.sync.cutoff_date.year == 2024
        assert config.control_port == 9090
        assert config.validate() == []

    def test_env_overrides_json(self, tmp_path):
        path = self.write_config(tmp_path, {'sync': {'interval_minutes': 15}})

        config = load_config(path, environ={
            'SYNC_INTERVAL_MINUTES': '2',
            'POS_TYPE': 'hdpos',
            'SYNC_ENABLED': 'false',
            'DEBUG': 'true',
            'RECEIPT_API_URL': 'https://ledger.example',
            'LAST_SYNCED_RECEIPT_ENDPOINT': '/api/v1/receipts/latest',
        })

        assert config.sync.interval_minutes == 2
        assert config.source.pos_type == 'HDPOS'
        assert config.sync.enabled is False
        assert config.logging.debug is True
        assert config.ledger.recent_path == '/api/v1/receipts/latest'

    def test_empty_env_value_ignored(self, tmp_path):
        config = load_config(tmp_path / 'missing.json', environ={'SQL_SERVER': ''})

        assert config.source.server == 'localhost'

    def test_bad_env_integer(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / 'missing.json', environ={'SYNC_INTERVAL_MINUTES': 'soon'})

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text('{not json')

        with pytest.raises(ConfigError):
            load_config(path, environ={})

    def test_bad_cutoff_date(self):
        with pytest.raises(ConfigError):
            config_from_dict({'sync': {'cutoff_date': '01/03/2024'}})

    def test_aware_cutoff_becomes_pos_time(self, tmp_path):
        config = load_config(tmp_path / 'missing.json', environ={
            'SYNC_CUTOFF_DATE': '2024-03-01T00:00:00+00:00',
        })

        assert config.sync.cutoff_date == datetime(2024, 3, 1, 5, 30)
        assert config.sync.cutoff_date.tzinfo is None

    def test_aware_cutoff_uses_configured_offset(self):
        config = config_from_dict({'sync': {'cutoff_date': '2024-03-01T00:00:00+05:30', 'tz_offset_minutes': 0}})

        assert config.sync.cutoff_date == datetime(2024, 2, 29, 18, 30)

    def test_naive_cutoff_unchanged(self):
        config = config_from_dict({'sync': {'cutoff_date': '2024-03-01T09:00:00'}})

        assert config.sync.cutoff_date == datetime(2024, 3, 1, 9, 0)

    def test_dotenv_file_loaded(self, tmp_path, monkeypatch):
        monkeypatch.delenv('SQL_DATABASE', raising=False)
        (tmp_path / 'config.env').write_text('SQL_DATABASE=hdpos_store\n')
        path = self.write_config(tmp_path, {})

        config = load_config(path)

        assert config.source.database == 'hdpos_store'


class TestValidate:

    def test_missing_database_settings(self):
        problems = AgentConfig().validate()

        assert 'SQL_DATABASE is required' in problems
        assert 'SQL_USER and SQL_PASSWORD are required' in problems

    def test_api_key_required_with_url(self):
        config = AgentConfig()
        config.source.database_url = 'sqlite://'
        config.ledger.base_url = 'https://ledger.example'

        assert config.validate() == ['RECEIPT_API_KEY is required']

    def test_bad_interval(self):
        config = AgentConfig()
        config.source.database_url = 'sqlite://'
        config.sync.interval_minutes = 0

        assert config.validate() == ['SYNC_INTERVAL_MINUTES must be at least 1']

    def test_sql_server_url(self):
        url = SourceConfig(database='hdpos', user='sa', password='p@ss:word').sqlalchemy_url()

        assert url.drivername == 'mssql+pyodbc'
        assert url.port == 50283
        assert url.password == 'p@ss:word'
        assert url.query['driver'] == 'ODBC Driver 17 for SQL Server'


class TestLogging:
    """Test logging setup"""

    def teardown_method(self):
        root = logging.getLogger()
        for h in list(root.handlers):
            root.removeHandler(h)
            h.close()

    def test_writes_file_and_alerts_errors(self, tmp_path):
        alerts = []
        log_path = setup_logging(
            LoggingSettings(log_path=str(tmp_path / 'logs' / 'agent.log'), console=False),
            alert_callback=lambda message, level: alerts.append((message, level)),
        )

        logging.getLogger('receipt_sync.test').info('cycle done')
        logging.getLogger('receipt_sync.test').error('ledger unreachable')

        assert log_path.exists()
        assert 'cycle done' in log_path.read_text()
        assert len(alerts) == 1
        assert 'ledger unreachable' in alerts[0][0]
        assert alerts[0][1] == 'ERROR'

    def test_debug_level(self, tmp_path):
        setup_logging(LoggingSettings(log_path=str(tmp_path / 'agent.log'), debug=True, console=False))

        assert logging.getLogger().level == logging.DEBUG
