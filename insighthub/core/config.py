import os
from dotenv import load_dotenv
load_dotenv()


def _bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    APP_NAME = os.getenv("APP_NAME", "InsightHub")
    SECRET_KEY = os.getenv("SECRET_KEY", "change-insighthub")
    JWT_ALGORITHM = "HS256"
    BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
    ENV = os.getenv("ENV", "dev")
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./insighthub.db")
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # ── Auth ──────────────────────────────────────────────
    ACCESS_TOKEN_MINUTES = int(os.getenv("ACCESS_TOKEN_MINUTES", "60"))
    SESSION_DAYS = int(os.getenv("SESSION_DAYS", "7"))
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # ── Seed owner ────────────────────────────────────────
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
    ADMIN_NAME = os.getenv("ADMIN_NAME", "Admin")
    ADMIN_ORG = os.getenv("ADMIN_ORG", "Default Org")

    # ── Reports job ───────────────────────────────────────
    REPORTS_DIR = os.getenv("REPORTS_DIR", "/tmp/reports")
    REPORT_CRON = os.getenv("REPORT_CRON", "0 0 * * *")
    REPORT_RETENTION_DAYS = int(os.getenv("REPORT_RETENTION_DAYS", "30"))
    REPORT_WINDOW_HOURS = int(os.getenv("REPORT_WINDOW_HOURS", "24"))
    EMAIL_QUEUE_INTERVAL_SECONDS = int(os.getenv("EMAIL_QUEUE_INTERVAL_SECONDS", "60"))

    # ── SMTP ──────────────────────────────────────────────
    SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASS = os.getenv("SMTP_PASS", "")
    SMTP_USE_TLS = _bool(os.getenv("SMTP_USE_TLS", "false"))
    EMAIL_FROM = os.getenv("EMAIL_FROM", "noreply@insighthub.io")

    # ── Webhooks & rate limits ────────────────────────────
    WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "10"))
    RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "100"))
    RATE_LIMIT_AUTH_REQUESTS = int(os.getenv("RATE_LIMIT_AUTH_REQUESTS", "10"))
    RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

settings = Settings()
