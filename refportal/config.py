"""
Environment configuration for the portal.

``create_app`` instantiates one of the classes in ``config`` and loads it
with ``app.config.from_object``. Production refuses to start without
DATABASE_URL and SECRET_KEY.
"""

import os
import secrets
import tempfile

PROJECT_ROOT = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
INSTANCE_DIR = os.path.join(PROJECT_ROOT, "instance")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _database_url(default=None):
    url = os.getenv("DATABASE_URL")
    if not url:
        return default
    # SQLAlchemy 2 only accepts the postgresql:// scheme
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


class Config:
    DEBUG = False
    TESTING = False

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "900"))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 300}

    RATELIMIT_STORAGE_URI = os.getenv("REDIS_URL", "memory://")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Mail is recorded in email_logs either way; SMTP only when MAIL_SERVER is set
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _env_flag("MAIL_USE_TLS", True)
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@refportal.local")

    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(INSTANCE_DIR, "uploads"))
    STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL", "/uploads")
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024

    # Comma-separated; a system_configs row with the same meaning wins
    APPROVAL_AUTHORITY_DESIGNATIONS = os.getenv("APPROVAL_AUTHORITY_DESIGNATIONS", "")
    INTER_LAB_DISTRIBUTION_ROLES = os.getenv("INTER_LAB_DISTRIBUTION_ROLES", "admin,superadmin")

    # "thread" runs notifications and mail off the request, "sync" inline
    SIDE_EFFECT_MODE = os.getenv("SIDE_EFFECT_MODE", "thread")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(INSTANCE_DIR, 'refportal_dev.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    JWT_SECRET_KEY = "test-jwt-secret"

    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False

    MAIL_SERVER = None
    SIDE_EFFECT_MODE = "sync"
    UPLOAD_FOLDER = os.path.join(tempfile.gettempdir(), "refportal-test-uploads")
    APPROVAL_AUTHORITY_DESIGNATIONS = "Director,Chief Scientist"
    INTER_LAB_DISTRIBUTION_ROLES = "admin"


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 20,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }

    def __init__(self):
        missing = [
            name for name, value in (
                ("DATABASE_URL", self.SQLALCHEMY_DATABASE_URI),
                ("SECRET_KEY", os.getenv("SECRET_KEY")),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(f"Production requires: {', '.join(missing)}")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
