import os

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_int(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _env_float(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _normalize_database_url(raw_url):
    if not raw_url:
        return raw_url
    if raw_url.startswith('postgres://'):
        return raw_url.replace('postgres://', 'postgresql://', 1)
    return raw_url


class BaseConfig:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-prod')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '*')
    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'threading')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

    # Rating engine tunables
    RATING_DEFAULT = _env_float('RATING_DEFAULT', 1500.0)
    RATING_FLOOR = _env_float('RATING_FLOOR', 0.0)
    RATING_CALIBRATION_MATCHES = _env_int('RATING_CALIBRATION_MATCHES', 10)
    RATING_INTERMEDIATE_MATCHES = _env_int('RATING_INTERMEDIATE_MATCHES', 30)
    RATING_K_CALIBRATION = _env_float('RATING_K_CALIBRATION', 40)
    RATING_K_INTERMEDIATE = _env_float('RATING_K_INTERMEDIATE', 32)
    RATING_K_ESTABLISHED = _env_float('RATING_K_ESTABLISHED', 24)
    RATING_BLOWOUT_MULTIPLIER = _env_float('RATING_BLOWOUT_MULTIPLIER', 1.15)
    RATING_TIGHT_MULTIPLIER = _env_float('RATING_TIGHT_MULTIPLIER', 1.05)
    RATING_THREE_SET_MULTIPLIER = _env_float('RATING_THREE_SET_MULTIPLIER', 1.1)

    # Tournament defaults
    TOURNAMENT_DEFAULT_POINTS_PER_MATCH = _env_int('TOURNAMENT_DEFAULT_POINTS_PER_MATCH', 24)
    TOURNAMENT_DEFAULT_COURTS = _env_int('TOURNAMENT_DEFAULT_COURTS', 1)
    TOURNAMENT_NOTIFICATIONS = _env_bool('TOURNAMENT_NOTIFICATIONS', True)


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG').upper()
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(
        os.environ.get(
            'DATABASE_URL',
            'sqlite:///' + os.path.join(basedir, '..', 'tournaments_dev.db')
        )
    )


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'


class ProductionConfig(BaseConfig):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(os.environ.get('DATABASE_URL'))


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}
