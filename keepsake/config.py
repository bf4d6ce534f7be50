import os


def _csv(value):
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or "sqlite:///keepsake.db"

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")

    # --- Public URLs ---
    # SITE_URL hosts the checkout success/cancel pages.
    SITE_URL = os.environ.get("SITE_URL", "http://localhost:5000")
    # Page the customer opens to see their keepsake (?name=<identity>).
    ACCESS_PAGE_URL = os.environ.get(
        "ACCESS_PAGE_URL", "http://localhost:5000/second.html"
    )
    QR_SERVICE_URL = os.environ.get(
        "QR_SERVICE_URL", "https://api.qrserver.com/v1/create-qr-code/"
    )
    QR_CODE_SIZE = int(os.environ.get("QR_CODE_SIZE", 200))

    # --- Geo pricing (ipinfo.io) ---
    IPINFO_URL = os.environ.get("IPINFO_URL", "https://ipinfo.io")
    IPINFO_TOKEN = os.environ.get("IPINFO_TOKEN")
    IPINFO_TIMEOUT = float(os.environ.get("IPINFO_TIMEOUT", 5))
    DEFAULT_COUNTRY = os.environ.get("DEFAULT_COUNTRY", "US")

    # --- Submissions ---
    # "server": identity = slug(name) + "_" + millis
    # "client": identity is chosen by the frontend and sent with the upload
    IDENTITY_MODE = os.environ.get("IDENTITY_MODE", "server")
    SIGNED_URL_TTL_SECONDS = int(os.environ.get("SIGNED_URL_TTL_SECONDS", 1800))
    MAX_CONTENT_LENGTH = int(os.environ.get("MAX_UPLOAD_MB", 50)) * 1024 * 1024

    # --- Supabase Storage ---
    SUPABASE_URL = os.environ.get("SUPABASE_URL")                # e.g. https://xyz.supabase.co
    SUPABASE_SERVICE_KEY = os.environ.get("SUPABASE_SERVICE_KEY") # service_role key for storage
    SUPABASE_STORAGE_BUCKET = os.environ.get("SUPABASE_STORAGE_BUCKET", "submissions")
    LOCAL_UPLOAD_DIR = os.environ.get("LOCAL_UPLOAD_DIR")         # defaults to instance/uploads

    # --- Email (Gmail SMTP) ---
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")          # Google App Password
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "ArtJoy")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS")  # defaults to MAIL_USERNAME

    # --- CORS ---
    CORS_ALLOWED_ORIGINS = _csv(
        os.environ.get("CORS_ALLOWED_ORIGINS", "https://artjoy.netlify.app")
    )

    # --- Reverse proxy ---
    # Number of proxies in front of the app that append X-Forwarded-For.
    # 0 means requests arrive directly and the header is ignored.
    PROXY_FIX_X_FOR = int(os.environ.get("PROXY_FIX_X_FOR", 1))

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "SITE_URL",
            "ACCESS_PAGE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
        if os.environ.get("IDENTITY_MODE", "server") not in ("server", "client"):
            raise RuntimeError("IDENTITY_MODE must be 'server' or 'client'")


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, local storage, no external services."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    SITE_URL = "http://localhost:5000"
    ACCESS_PAGE_URL = "https://keepsake.test/second.html"
    IPINFO_TOKEN = "ipinfo_test_token"
    IDENTITY_MODE = "server"
    SUPABASE_URL = None
    SUPABASE_SERVICE_KEY = None
    MAIL_USERNAME = "sender@keepsake.test"
    MAIL_PASSWORD = "app-password"
    MAIL_FROM_ADDRESS = "sender@keepsake.test"
    CORS_ALLOWED_ORIGINS = ["https://frontend.keepsake.test"]
    PROXY_FIX_X_FOR = 1  # one proxy in front, as in production
    RATELIMIT_ENABLED = False  # disable rate limiting in tests

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
