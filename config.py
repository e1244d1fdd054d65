"""
Configuration for the subscription billing Flask app.
Production (Railway/Render): uses DATABASE_URL only; fails if missing.
Local: DATABASE_URL or a SQLite file in the instance directory.
"""
import os
from pathlib import Path


def _is_production():
    """True when running on Railway, Render, or explicit production."""
    return (
        os.environ.get("RENDER") == "true"
        or os.environ.get("RAILWAY_ENVIRONMENT") is not None
        or os.environ.get("FLASK_ENV") == "production"
    )


def _env_flag(name, default="false"):
    return os.environ.get(name, default).lower() in ("true", "on", "1")


def _normalize_database_url(url):
    """Convert postgres:// to postgresql+psycopg2:// for SQLAlchemy/psycopg2."""
    if not url:
        return url
    url = url.strip()
    if url.startswith("postgres://"):
        return "postgresql+psycopg2://" + url[11:]
    if url.startswith("postgresql://") and "psycopg2" not in url:
        return "postgresql+psycopg2://" + url[13:]
    return url


def _get_database_uri(instance_dir):
    """Database URI: production = DATABASE_URL only; local = DATABASE_URL or SQLite file."""
    url = os.environ.get("DATABASE_URL")
    if _is_production():
        if not url or not url.strip():
            raise RuntimeError(
                "DATABASE_URL is required in production (Railway/Render). "
                "Set it in your service environment variables."
            )
        return _normalize_database_url(url.strip())

    if url and url.strip():
        return _normalize_database_url(url.strip())
    return f"sqlite:///{instance_dir / 'billing.db'}"


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get("SECRET_KEY") or "dev-secret-key-change-in-production"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    BASE_DIR = Path(__file__).parent
    INSTANCE_DIR = BASE_DIR / "instance"
    try:
        INSTANCE_DIR.mkdir(exist_ok=True)
    except OSError:
        pass
    SQLALCHEMY_DATABASE_URI = _get_database_uri(INSTANCE_DIR)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    MAIL_SERVER = os.environ.get("MAIL_SERVER")
    MAIL_PORT = int(os.environ.get("MAIL_PORT") or 587)
    MAIL_USE_TLS = _env_flag("MAIL_USE_TLS", "true")
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER") or os.environ.get("MAIL_USERNAME") or "billing@localhost"

    # Peach Payments
    PEACH_AUTH_SERVICE_URL = os.environ.get("PEACH_AUTH_SERVICE_URL", "https://sandbox-dashboard.peachpayments.com")
    PEACH_CHECKOUT_ENDPOINT = os.environ.get("PEACH_CHECKOUT_ENDPOINT", "https://testsecure.peachpayments.com")
    PEACH_STATUS_ENDPOINT = os.environ.get("PEACH_STATUS_ENDPOINT", "https://testsecure.peachpayments.com")
    PEACH_CLIENT_ID = os.environ.get("PEACH_CLIENT_ID")
    PEACH_CLIENT_SECRET = os.environ.get("PEACH_CLIENT_SECRET")
    PEACH_MERCHANT_ID = os.environ.get("PEACH_MERCHANT_ID")
    PEACH_ENTITY_ID = os.environ.get("PEACH_ENTITY_ID")
    PEACH_WEBHOOK_SECRET = os.environ.get("PEACH_WEBHOOK_SECRET")
    PEACH_NOTIFICATION_URL = os.environ.get("PEACH_NOTIFICATION_URL", "")
    PEACH_SHOPPER_RESULT_URL = os.environ.get("PEACH_SHOPPER_RESULT_URL", "")
    PEACH_ORIGIN_DOMAIN = os.environ.get("PEACH_ORIGIN_DOMAIN", "http://localhost:8080")
    PEACH_CHECKOUT_SCRIPT_URL = os.environ.get(
        "PEACH_CHECKOUT_SCRIPT_URL", "https://sandbox-checkout.peachpayments.com/js/checkout.js"
    )
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "ZAR")
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS") or 30)
    PAYMENT_RESULT_PAGE = os.environ.get("PAYMENT_RESULT_PAGE", "/payment-result.html")

    # Renewal background task
    RENEWAL_TASK_ENABLED = _env_flag("RENEWAL_TASK_ENABLED", "true")
    RENEWAL_INTERVAL_HOURS = float(os.environ.get("RENEWAL_INTERVAL_HOURS") or 24)


class TestConfig(Config):
    """In-memory database, no background renewal thread, no outgoing mail."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    MAIL_SERVER = None
    MAIL_SUPPRESS_SEND = True
    RENEWAL_TASK_ENABLED = False
    PEACH_CLIENT_ID = "test-client"
    PEACH_CLIENT_SECRET = "test-secret"
    PEACH_MERCHANT_ID = "test-merchant"
    PEACH_ENTITY_ID = "test-entity"
    PEACH_WEBHOOK_SECRET = "whsec-test"
    GATEWAY_TIMEOUT_SECONDS = 5
