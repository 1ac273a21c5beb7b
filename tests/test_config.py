import json
import logging
import os

import pytest

from churchcompass import config
from churchcompass.data import JsonFileStore, MemoryStore, SqliteStore, open_store


def test_defaults_live_under_home(tmp_path, monkeypatch):
    monkeypatch.setenv('CHURCHCOMPASS_HOME', str(tmp_path))
    cfg = config.load_config()
    assert cfg['store'] == 'sqlite'
    assert cfg['db_path'] == os.path.join(str(tmp_path), 'churchcompass.db')
    assert cfg['generation_horizon_days'] == 90


def test_saved_values_override_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv('CHURCHCOMPASS_HOME', str(tmp_path))
    config.save_config({'store': 'json', 'generation_horizon_days': 30})
    cfg = config.load_config()
    assert cfg['store'] == 'json'
    assert cfg['generation_horizon_days'] == 30
    assert cfg['log_level'] == 'INFO'


def test_broken_config_falls_back(tmp_path, monkeypatch, caplog):
    monkeypatch.setenv('CHURCHCOMPASS_HOME', str(tmp_path))
    (tmp_path / 'churchcompass_config.json').write_text('{kaputt', encoding='utf-8')
    with caplog.at_level(logging.WARNING):
        cfg = config.load_config()
    assert cfg == config.default_config()
    assert 'unreadable' in caplog.text


def test_open_store_by_config(tmp_path, monkeypatch):
    monkeypatch.setenv('CHURCHCOMPASS_HOME', str(tmp_path))
    cfg = config.load_config()
    store = open_store(cfg)
    assert isinstance(store, SqliteStore)
    store.close()

    cfg['store'] = 'json'
    assert isinstance(open_store(cfg), JsonFileStore)
    assert os.path.isdir(cfg['json_dir'])

    cfg['store'] = 'memory'
    assert isinstance(open_store(cfg), MemoryStore)


def test_unknown_store_type():
    with pytest.raises(ValueError):
        open_store({'store': 'mongo'})


def test_config_file_is_plain_json(tmp_path, monkeypatch):
    monkeypatch.setenv('CHURCHCOMPASS_HOME', str(tmp_path))
    config.save_config({'log_level': 'DEBUG'})
    with open(tmp_path / 'churchcompass_config.json', encoding='utf-8') as f:
        assert json.load(f) == {'log_level': 'DEBUG'}


def test_configure_logging_uses_level(monkeypatch):
    calls = {}
    monkeypatch.setattr(logging, 'basicConfig', lambda **kw: calls.update(kw))
    config.configure_logging({'log_level': 'debug'})
    assert calls['level'] == logging.DEBUG
