import json
from pathlib import Path

import pytest

from vrtrelay.config import ApiConnection, Settings, load_settings
from vrtrelay.errors import ConfigurationError

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ('OPNSENSE_API_URL', 'OPNSENSE_API_KEY', 'OPNSENSE_API_SECRET',
                 'VRTRELAY_DATA_DIR', 'VRTRELAY_SEND_TIMEOUT', 'VRTRELAY_API_TIMEOUT',
                 'VRTRELAY_LOG_LEVEL'):
        monkeypatch.delenv(name, raising=False)

def test_defaults():
    settings = Settings()

    assert settings.db_path == Path('./vrtrelay_data') / 'vrtrelay.db'
    assert settings.send_timeout == 2.0
    assert settings.api_connection == ApiConnection()

def test_from_env(monkeypatch):
    monkeypatch.setenv('VRTRELAY_DATA_DIR', '/var/lib/vrtrelay')
    monkeypatch.setenv('OPNSENSE_API_URL', 'https://fw.example.lan')
    monkeypatch.setenv('OPNSENSE_API_KEY', 'key')
    monkeypatch.setenv('OPNSENSE_API_SECRET', 'secret')
    monkeypatch.setenv('VRTRELAY_SEND_TIMEOUT', '0.5')

    settings = Settings.from_env()

    assert settings.data_dir == Path('/var/lib/vrtrelay')
    assert settings.send_timeout == 0.5
    assert settings.api_connection == ApiConnection('key', 'secret', 'https://fw.example.lan')
    assert settings.api_connection.is_configured

def test_from_missing_file(tmp_path):
    assert Settings.from_file(tmp_path / 'missing.json') == Settings()

def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({
        'data_dir': str(tmp_path / 'data'),
        'opnsense': {'url': 'https://file.lan', 'key': 'filekey', 'secret': 'filesecret'},
        'log_level': 'WARNING',
    }))
    monkeypatch.setenv('OPNSENSE_API_URL', 'https://env.lan')

    settings = load_settings(path)

    assert settings.data_dir == tmp_path / 'data'
    assert settings.api_url == 'https://env.lan'
    assert settings.api_username == 'filekey'
    assert settings.log_level == 'WARNING'

def test_env_equal_to_default_still_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / 'config.json'
    path.write_text(json.dumps({'log_level': 'WARNING', 'send_timeout': 5.0}))
    monkeypatch.setenv('VRTRELAY_LOG_LEVEL', 'INFO')
    monkeypatch.setenv('VRTRELAY_SEND_TIMEOUT', '2.0')

    settings = load_settings(path)

    assert settings.log_level == 'INFO'
    assert settings.send_timeout == 2.0

def test_malformed_timeout(monkeypatch):
    monkeypatch.setenv('VRTRELAY_SEND_TIMEOUT', 'soon')

    with pytest.raises(ConfigurationError, match='VRTRELAY_SEND_TIMEOUT'):
        Settings.from_env()
