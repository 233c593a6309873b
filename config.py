"""Flask application configuration.

This module provides environment-based configuration for the Flask application.
Configuration is loaded from environment variables with sensible defaults.

Environment Variables:
    FLASK_ENV: Application environment (development, production, testing)
    FLASK_DEBUG: Enable Flask debug mode (0 or 1)
    DATABASE_URL: SQLAlchemy database URI
    HOST: Server host address (default: 0.0.0.0)
    PORT: Server port (default: 8080)
    WORKER_ID: Stable worker slot of this process (unset for a single process)
    METRICS_SOCKET_DIR: Directory holding one metrics socket per worker
"""

import os


def _optional(name):
    value = os.environ.get(name, '').strip()
    return value or None


class Config:
    """Base configuration with defaults suitable for production."""

    # Flask core settings
    DEBUG = False
    TESTING = False

    # Server settings
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', 8080))

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Metrics settings
    METRICS_ENABLED = os.environ.get('METRICS_ENABLED', '1').lower() not in ('0', 'false', 'no')
    # Assigned by the process supervisor; a restarted worker keeps its slot.
    WORKER_ID = _optional('WORKER_ID')
    METRICS_SERVE_PEERS = os.environ.get('METRICS_SERVE_PEERS', '1').lower() not in ('0', 'false', 'no')
    METRICS_SOCKET_DIR = _optional('METRICS_SOCKET_DIR')
    METRICS_SOCKET_PREFIX = os.environ.get('METRICS_SOCKET_PREFIX', 'process-metrics-')
    METRICS_FETCH_TIMEOUT_SECONDS = float(os.environ.get('METRICS_FETCH_TIMEOUT_SECONDS', 1.0))
    METRICS_SCRAPE_DEADLINE_SECONDS = float(os.environ.get('METRICS_SCRAPE_DEADLINE_SECONDS', 3.0))


class DevelopmentConfig(Config):
    """Development configuration with debug enabled and verbose logging."""

    DEBUG = True
    ENV = 'development'


class ProductionConfig(Config):
    """Production configuration - secure and optimized."""

    DEBUG = False
    ENV = 'production'


class TestingConfig(Config):
    """Testing configuration with in-memory database."""

    TESTING = True
    DEBUG = False
    # Use in-memory SQLite for tests
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    # Tests bind their own sockets in temporary directories
    METRICS_SERVE_PEERS = False
    WORKER_ID = None


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig  # Default to production for safety
}


def get_config():
    """Get the appropriate configuration based on environment.

    Returns:
        Config: Configuration class based on FLASK_ENV or FLASK_DEBUG

    Priority:
        1. FLASK_ENV environment variable
        2. FLASK_DEBUG environment variable (0/1)
        3. Default to production (safe default)
    """
    # Check FLASK_ENV first
    env = os.environ.get('FLASK_ENV', '').lower()
    if env in config:
        return config[env]

    # Fall back to FLASK_DEBUG
    debug = os.environ.get('FLASK_DEBUG', '0').lower()
    if debug in ('1', 'true', 'yes', 'on'):
        return config['development']

    # Default to production (safe default)
    return config['default']
