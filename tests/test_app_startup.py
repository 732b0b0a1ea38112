"""Tests for app startup helpers and production configuration checks."""
import pytest

from backend.app import _parse_allowed_origins, create_app
from backend.config import ProductionConfig, _normalize_database_url


def test_parse_allowed_origins_handles_wildcards_lists_and_csv():
    assert _parse_allowed_origins(None) == '*'
    assert _parse_allowed_origins('  * ') == '*'
    assert _parse_allowed_origins(['https://a.example.com', '']) == ['https://a.example.com']
    assert _parse_allowed_origins('https://a.example.com, https://b.example.com,') == [
        'https://a.example.com',
        'https://b.example.com',
    ]


def test_normalize_database_url_rewrites_legacy_postgres_scheme():
    assert _normalize_database_url('postgres://u:p@host/db') == 'postgresql://u:p@host/db'
    assert _normalize_database_url('sqlite:///x.db') == 'sqlite:///x.db'
    assert _normalize_database_url(None) is None


def test_production_requires_non_default_secret_key(monkeypatch):
    monkeypatch.setattr(ProductionConfig, 'SECRET_KEY', 'dev-secret-key-change-in-prod')
    with pytest.raises(RuntimeError, match='SECRET_KEY'):
        create_app('production')


def test_production_requires_explicit_cors_origins(monkeypatch):
    monkeypatch.setattr(ProductionConfig, 'SECRET_KEY', 'a-real-secret')
    monkeypatch.setattr(ProductionConfig, 'CORS_ALLOWED_ORIGINS', '*')
    with pytest.raises(RuntimeError, match='CORS_ALLOWED_ORIGINS'):
        create_app('production')


def test_production_requires_database_url(monkeypatch):
    monkeypatch.setattr(ProductionConfig, 'SECRET_KEY', 'a-real-secret')
    monkeypatch.setattr(ProductionConfig, 'CORS_ALLOWED_ORIGINS', 'https://app.example.com')
    monkeypatch.setattr(ProductionConfig, 'SQLALCHEMY_DATABASE_URI', None)
    with pytest.raises(RuntimeError, match='DATABASE_URL'):
        create_app('production')


def test_testing_app_exposes_health_and_rating_config(client, app):
    res = client.get('/api/health')
    assert res.status_code == 200
    assert res.get_json() == {'status': 'ok'}
    assert app.config['RATING_K_CALIBRATION'] == 40
    assert app.config['TOURNAMENT_DEFAULT_POINTS_PER_MATCH'] == 24
