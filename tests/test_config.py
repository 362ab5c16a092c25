"""Tests for config lookups: app.config, then environment, then defaults."""

from flask import Flask

import config


def test_environment_then_default(monkeypatch):
    monkeypatch.delenv('HOST', raising=False)
    assert config.get_host() == '127.0.0.1'
    monkeypatch.setenv('HOST', '0.0.0.0')
    assert config.get_host() == '0.0.0.0'


def test_app_config_wins_over_environment(monkeypatch):
    monkeypatch.setenv('PORT', '7000')
    app = Flask(__name__)
    app.config['PORT'] = 8123
    with app.app_context():
        assert config.get_port() == 8123
    assert config.get_port() == 7000


def test_api_url_fallback_keys(monkeypatch):
    monkeypatch.delenv('ANNOTATION_API_URL', raising=False)
    monkeypatch.delenv('API_URL', raising=False)
    monkeypatch.setenv('NEXT_PUBLIC_API_URL', 'https://api.example.com/v1/')
    assert config.get_annotation_api_url() == 'https://api.example.com/v1'

    monkeypatch.setenv('ANNOTATION_API_URL', 'https://primary.example.com')
    assert config.get_annotation_api_url() == 'https://primary.example.com'


def test_blank_api_url_is_not_configured(monkeypatch):
    monkeypatch.setenv('ANNOTATION_API_URL', '   ')
    assert config.get_annotation_api_url() is None


def test_memes_url_base_gets_trailing_slash(monkeypatch):
    monkeypatch.setenv('MEMES_URL_BASE', 'https://cdn.example.com/memes')
    assert config.get_memes_url_base() == 'https://cdn.example.com/memes/'


def test_memes_url_base_defaults_to_base_url(monkeypatch):
    monkeypatch.delenv('MEMES_URL_BASE', raising=False)
    monkeypatch.setenv('BASE_URL', 'http://annotator.local:8080')
    assert config.get_memes_url_base() == 'http://annotator.local:8080/files/'


def test_numeric_settings(monkeypatch):
    monkeypatch.delenv('ANNOTATION_TIMEOUT', raising=False)
    monkeypatch.delenv('MAX_UPLOAD_FILES', raising=False)
    monkeypatch.setenv('MAX_UPLOAD_SIZE_MB', '2.5')
    assert config.get_annotation_timeout() == 300.0
    assert config.get_max_upload_files() == 2500
    assert config.get_max_upload_size_mb() == 2.5


def test_db_path_defaults_to_install_dir(monkeypatch):
    monkeypatch.delenv('DB_PATH', raising=False)
    assert config.get_db_path() == str(config.get_install_dir() / 'annotator.db')
