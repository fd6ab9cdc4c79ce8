"""
TestPilot
Application settings, one class per environment.

    create_app()            → APP_ENV or "development"
    create_app("testing")   → in-memory SQLite, no rate limiting

Provider credentials (Jira, Azure DevOps, LLM) are NOT configured here; the
client sends them with each request that needs them.
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

SQLITE_DEV_URL = f"sqlite:///{os.path.join(basedir, 'instance', 'testpilot_dev.db')}"
SQLITE_TEST_URL = "sqlite:///:memory:"


def _database_url(default=None):
    """DATABASE_URL with the legacy ``postgres://`` scheme rewritten for SQLAlchemy 2."""
    url = os.getenv("DATABASE_URL", "")
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url or default


def _env_int(name, default):
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


class Config:
    """Settings shared by every environment."""

    # Per-process random key unless SECRET_KEY is set; sessions are not used by the API
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Comma-separated origins of the browser client, "*" for any
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Flask-Limiter: storage for counters, limit shared by the LLM-backed routes
    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    AI_RATE_LIMIT = os.getenv("AI_RATE_LIMIT", "30/minute")

    # Up to five base64 images can ride along with a generation request
    MAX_CONTENT_LENGTH = _env_int("MAX_CONTENT_LENGTH", 20 * 1024 * 1024)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(SQLITE_DEV_URL)


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", SQLITE_TEST_URL)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    """PostgreSQL behind a pooled engine; refuses to start half-configured."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": _env_int("DB_POOL_SIZE", 5),
        "max_overflow": 10,
        "pool_recycle": 300,
        "pool_timeout": 20,
    }

    def __init__(self):
        missing = [name for name, value in (
            ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
            ("SECRET_KEY", os.getenv("SECRET_KEY")),
        ) if not value]
        if missing:
            raise RuntimeError(f"Production requires environment variables: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
