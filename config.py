"""Environment-aware configuration for the Flask application."""
import os
from datetime import timedelta
from urllib.parse import quote_plus


def _database_uri() -> str:
    db_url = os.getenv("DATABASE_URL")
    if db_url:
        # Hosted providers still hand out the deprecated postgres:// scheme.
        if db_url.startswith("postgres://"):
            db_url = "postgresql://" + db_url[len("postgres://"):]
        return db_url

    host = os.getenv("DB_HOST")
    if host:
        user = quote_plus(os.getenv("DB_USER", "postgres"))
        password = quote_plus(os.getenv("DB_PASSWORD", ""))
        port = os.getenv("DB_PORT", "5432")
        name = os.getenv("DB_NAME", "postgres")
        sslmode = os.getenv("DB_SSLMODE", "prefer")
        return f"postgresql://{user}:{password}@{host}:{port}/{name}?sslmode={sslmode}"

    return os.getenv(
        "SQLITE_URL",
        f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'refunds.db')}",
    )


class BaseConfig:
    def __init__(self) -> None:
        self.SECRET_KEY = os.getenv("SESSION_SECRET") or os.getenv("SECRET_KEY", "")
        self.SQLALCHEMY_DATABASE_URI = _database_uri()
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        if self.SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
            self.SQLALCHEMY_ENGINE_OPTIONS = {}
        else:
            self.SQLALCHEMY_ENGINE_OPTIONS = {
                "pool_size": int(os.getenv("DB_POOL_SIZE", 10)),
                "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 20)),
                "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
                "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
                "pool_pre_ping": True,
            }
        self.SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "refund_sid")
        self.SESSION_COOKIE_HTTPONLY = True
        self.SESSION_COOKIE_SAMESITE = "Lax"
        self.PERMANENT_SESSION_LIFETIME = timedelta(hours=int(os.getenv("SESSION_TTL_HOURS", 24)))
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.WTF_CSRF_ENABLED = True
        self.WTF_CSRF_HEADERS = ["X-CSRF-Token", "X-CSRFToken"]
        self.WTF_CSRF_TIME_LIMIT = None
        self.SUPABASE_URL = os.getenv("SUPABASE_URL", "").rstrip("/")
        self.SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
        self.IDENTITY_PROVIDER_TIMEOUT = float(os.getenv("IDENTITY_PROVIDER_TIMEOUT", 10))
        self.APP_BASE_URL = os.getenv("APP_BASE_URL", "").rstrip("/")
        self.MAIL_SERVER = os.getenv("MAIL_SERVER", "")
        self.MAIL_PORT = int(os.getenv("MAIL_PORT", 25))
        self.MAIL_USERNAME = os.getenv("MAIL_USERNAME", "")
        self.MAIL_PASSWORD = os.getenv("MAIL_PASSWORD", "")
        self.MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
        self.MAIL_USE_SSL = os.getenv("MAIL_USE_SSL", "false").lower() == "true"
        self.MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "")
        self.CONTACT_INBOX = os.getenv("CONTACT_INBOX", "")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        self.DEFAULT_ADMIN_USERNAME = os.getenv("DEFAULT_ADMIN_USERNAME", "")
        self.DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "")
        self.PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", 8))
        # Pre-hashing records stored the secret as-is; switch off once migrated.
        self.ALLOW_LEGACY_PLAINTEXT_PASSWORDS = (
            os.getenv("ALLOW_LEGACY_PLAINTEXT_PASSWORDS", "true").lower() == "true"
        )
        self.CLAIM_UPLOAD_FOLDER = os.getenv(
            "CLAIM_UPLOAD_FOLDER",
            os.path.join(os.getcwd(), "instance", "claim_uploads"),
        )
        self.MAX_PROOF_UPLOAD_BYTES = int(os.getenv("MAX_PROOF_UPLOAD_BYTES", 5 * 1024 * 1024))
        self.MAX_CONTENT_LENGTH = int(os.getenv("MAX_REQUEST_BYTES", 16 * 1024 * 1024))
        self.ADMIN_CLAIMS_PER_PAGE = int(os.getenv("ADMIN_CLAIMS_PER_PAGE", 20))


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.SESSION_COOKIE_SECURE = False


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"
        self.SESSION_COOKIE_SECURE = True
        self.USE_X_SENDFILE = os.getenv("USE_X_SENDFILE", "false").lower() == "true"


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.DEBUG = False
        self.ENV = "testing"
        self.SECRET_KEY = "test-only-session-secret-0123456789abcdef0123456789"
        self.SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite://")
        self.SESSION_COOKIE_SECURE = False
        self.PREFERRED_URL_SCHEME = "http"
        self.SUPABASE_URL = ""
        self.SUPABASE_ANON_KEY = ""
        self.MAIL_SERVER = ""
        self.DEFAULT_ADMIN_USERNAME = ""
        self.DEFAULT_ADMIN_PASSWORD = ""
