"""
KPI Review Engine
Environment configuration.

``create_app(name)`` instantiates ``config[name]`` (``APP_ENV`` when no name
is given), so ProductionConfig can refuse to start on missing settings.

Review-domain settings:
    DISCREPANCY_THRESHOLD     points above which two scores are flagged (10)
    EVIDENCE_STORE            "local" or "http"
    EVIDENCE_UPLOAD_DIR       local store root
    EVIDENCE_BASE_URL         URL prefix the local store hands out
    EVIDENCE_STORE_URL        upload endpoint of the http store
    EVIDENCE_UPLOAD_TIMEOUT   seconds for one batch when the caller gives none
    SUPER_ADMIN_ROLES         comma-separated roles that see every discrepancy
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
instance_dir = os.path.join(basedir, "instance")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_roles(name: str, default: str) -> frozenset:
    return frozenset(r.strip() for r in os.getenv(name, default).split(",") if r.strip())


def _database_url(default=None):
    # Hosted Postgres still hands out postgres://, SQLAlchemy 2 wants postgresql://
    url = os.getenv("DATABASE_URL", "")
    if not url:
        return default
    return url.replace("postgres://", "postgresql://", 1)


_POOLED_ENGINE = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = dict(_POOLED_ENGINE)

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    SLOW_REQUEST_MS = _env_float("SLOW_REQUEST_MS", 1000)
    LOG_FORMAT = os.getenv("LOG_FORMAT", "")

    # Identity: tokens come from the identity service and are only verified here
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "900"))
    SUPER_ADMIN_ROLES = _env_roles("SUPER_ADMIN_ROLES", "super_admin")

    DISCREPANCY_THRESHOLD = _env_float("DISCREPANCY_THRESHOLD", 10.0)

    EVIDENCE_STORE = os.getenv("EVIDENCE_STORE", "local")
    EVIDENCE_UPLOAD_DIR = os.getenv("EVIDENCE_UPLOAD_DIR", os.path.join(instance_dir, "evidence"))
    EVIDENCE_BASE_URL = os.getenv("EVIDENCE_BASE_URL", "/evidence")
    EVIDENCE_STORE_URL = os.getenv("EVIDENCE_STORE_URL", "")
    EVIDENCE_UPLOAD_TIMEOUT = _env_float("EVIDENCE_UPLOAD_TIMEOUT", 30.0)
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(instance_dir, 'kpi_review_dev.db')}"
    )
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = "test-jwt-secret-key-with-at-least-32-bytes"
    RATELIMIT_ENABLED = False
    EVIDENCE_UPLOAD_TIMEOUT = 5.0


class ProductionConfig(Config):
    """Postgres with a statement timeout; no implicit defaults for secrets."""

    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **_POOLED_ENGINE,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [name for name in ("DATABASE_URL", "SECRET_KEY") if not os.getenv(name)]
        if missing:
            raise RuntimeError(f"Missing required environment variable(s) for production: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
