"""
ERP Form Templates service
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'erpforms_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


def _csv_env(name: str, default: str = "") -> tuple[str, ...]:
    return tuple(v.strip() for v in os.getenv(name, default).split(",") if v.strip())


def _mapping_env(name: str) -> dict[str, str]:
    """``"01=url1;02=url2"`` -> ``{"01": "url1", "02": "url2"}``."""
    pairs = (item.split("=", 1) for item in os.getenv(name, "").split(";") if "=" in item)
    return {key.strip(): value.strip() for key, value in pairs if key.strip() and value.strip()}


# Base ERP tables SQL data sources and lookups may read (company suffix stripped)
_DEFAULT_SQL_TABLES = (
    "SA1,SA2,SA3,SB1,SB2,SC5,SC6,SC7,SD1,SD2,SE1,SE2,SF1,SF2,SX5,"
    "CTT,CTD,DA0,DA1,SG1,SM0,SYA,CC2,SYS_COMPANY"
)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
    }

    # Rate-limit storage
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "300 per minute")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ERP data dictionary (SX3/SX5). Unset -> empty in-memory catalog.
    SCHEMA_CATALOG_URL = os.getenv("SCHEMA_CATALOG_URL")
    SCHEMA_TABLE_SUFFIX = os.getenv("SCHEMA_TABLE_SUFFIX", "010")
    SCHEMA_CATALOG_BINDING_URLS = _mapping_env("SCHEMA_CATALOG_BINDING_URLS")
    SQL_ALLOWED_TABLES = _csv_env("SQL_ALLOWED_TABLES", _DEFAULT_SQL_TABLES)

    # Country/connection codes this installation can bind templates to
    CONNECTION_BINDINGS = _csv_env("CONNECTION_BINDINGS")


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    # In-memory SQLite runs on a static pool that rejects pool sizing
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    SCHEMA_CATALOG_URL = None
    SCHEMA_CATALOG_BINDING_URLS = {}
    SQL_ALLOWED_TABLES = tuple(_DEFAULT_SQL_TABLES.split(","))
    CONNECTION_BINDINGS = ("01", "02")


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    # Railway/Heroku use postgres:// but SQLAlchemy 2.0 requires postgresql://
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = _raw_db_url.replace("postgres://", "postgresql://", 1) if _raw_db_url else None
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")  # Must be set explicitly in production

    # Override engine options with PostgreSQL statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
