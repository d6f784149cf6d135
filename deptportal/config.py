"""
Department Portal
Environment configs, selected by APP_ENV.

    app.config.from_object(config[os.getenv("APP_ENV", "development")]())

Environment variables:
    SECRET_KEY, JWT_SECRET_KEY   signing keys (JWT falls back to SECRET_KEY)
    DATABASE_URL                 required in production; SQLite otherwise
    RATELIMIT_STORAGE_URI        Flask-Limiter backend, e.g. redis://host:6379
    CORS_ORIGINS                 comma separated; "*" outside production
    ADMIN_ROLE_IDS               role ids treated as portal admin
    SUBMISSION_LIMIT_STORAGE     "memory" or "database"
    MODERATION_EXTRA_TERMS       extra blocked terms ("*" = any run of characters)
    MODERATION_STRICT_TERMS      also block terms that collide with common words
    LOG_LEVEL                    read by middleware/logging_config.py
"""

import os
import secrets

_ROOT = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _csv(value):
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def _database_url(default=None):
    url = os.getenv("DATABASE_URL", "")
    # some hosts still hand out the pre-SQLAlchemy-1.4 scheme
    return url.replace("postgres://", "postgresql://", 1) if url else default


class Config:
    DEBUG = False
    TESTING = False

    # regenerated per process unless set; ProductionConfig insists on it
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY") or SECRET_KEY
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "900"))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    ADMIN_ROLE_IDS = _csv(os.getenv("ADMIN_ROLE_IDS"))

    SUBMISSION_LIMIT_STORAGE = os.getenv("SUBMISSION_LIMIT_STORAGE", "memory")
    SUBMISSION_COOLDOWN_SECONDS = 30
    SUBMISSION_MAX_PER_WINDOW = 5
    SUBMISSION_WINDOW_SECONDS = 3600

    MODERATION_EXTRA_TERMS = _csv(os.getenv("MODERATION_EXTRA_TERMS"))
    MODERATION_STRICT_TERMS = os.getenv("MODERATION_STRICT_TERMS", "").lower() in ("1", "true", "yes")

    SHIFT_MIN_REST_HOURS = 8


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(_ROOT, 'instance', 'deptportal_dev.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret"
    RATELIMIT_ENABLED = False
    ADMIN_ROLE_IDS = []
    SUBMISSION_LIMIT_STORAGE = "memory"
    MODERATION_EXTRA_TERMS = []
    MODERATION_STRICT_TERMS = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SUBMISSION_LIMIT_STORAGE = os.getenv("SUBMISSION_LIMIT_STORAGE", "database")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL must be set in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
