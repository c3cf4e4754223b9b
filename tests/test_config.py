# Tests for configuration and logging setup

import json
import logging

from printcore.config import DEFAULTS, load_config
from printcore.logging_config import set_error_alert_callback, setup_logging


class TestLoadConfig:
    """Test config layering"""

    def test_defaults(self, tmp_path):
        config = load_config(str(tmp_path / 'missing.json'), environ={})
        assert config == DEFAULTS
        assert config['agent_port'] == 8765

    def test_file_overrides_defaults(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'queue_port': 9000, 'currency_symbol': 'Rs.',
                                    'printers': [{'name': 'K', 'role': 'kitchen'}]}))
        config = load_config(str(path), environ={})
        assert config['queue_port'] == 9000
        assert config['currency_symbol'] == 'Rs.'
        assert config['printers'][0]['role'] == 'kitchen'
        assert config['db_path'] == DEFAULTS['db_path']

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'queue_port': 9000}))
        config = load_config(str(path), environ={
            'PRINTCORE_QUEUE_PORT': '9100',
            'PRINTCORE_QUEUE_URL': 'http://queue.local',
            'PRINTCORE_QUEUE_VISIBILITY_TIMEOUT': '120',
            'PRINTCORE_API_KEY': 'secret',
            'PRINTCORE_UNKNOWN': 'ignored',
            'HOME': '/root',
        })
        assert config['queue_port'] == 9100
        assert config['queue_url'] == 'http://queue.local'
        assert config['queue_visibility_timeout'] == 120
        assert config['backend_api_key'] == 'secret'
        assert 'unknown' not in config

    def test_invalid_number_ignored(self, tmp_path):
        config = load_config(str(tmp_path / 'missing.json'),
                             environ={'PRINTCORE_AGENT_PORT': 'eighty'})
        assert config['agent_port'] == 8765


class TestLogging:
    """Test logging setup"""

    def teardown_method(self):
        set_error_alert_callback(None)
        setup_logging(console=False, log_to_file=False)

    def test_writes_log_file(self, tmp_path):
        log_path = tmp_path / 'logs' / 'printcore.log'
        setup_logging(log_path, console=False)
        logging.getLogger('printcore.test').info('ticket printed')
        for handler in logging.getLogger().handlers:
            handler.flush()
        content = log_path.read_text(encoding='utf-8')
        assert '| INFO     | printcore.test | ticket printed' in content

    def test_error_alert_callback(self, tmp_path):
        alerts = []
        set_error_alert_callback(lambda message, level: alerts.append((message, level)))
        setup_logging(tmp_path / 'a.log', console=False)
        logging.getLogger('printcore.test').warning('just a warning')
        logging.getLogger('printcore.test').error('printer on fire')
        assert len(alerts) == 1
        assert alerts[0][1] == 'ERROR'
        assert 'printer on fire' in alerts[0][0]

    def test_level_by_name(self, tmp_path):
        setup_logging(tmp_path / 'b.log', level='warning', console=False)
        assert logging.getLogger().level == logging.WARNING
