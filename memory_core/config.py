"""
Application configuration. Loads from environment variables.
Secrets and sensitive config must never be hardcoded.
"""

import os

from dotenv import load_dotenv

load_dotenv()
from functools import lru_cache
from typing import Optional


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached settings instance."""
    return Settings()


class Settings:
    """Application settings loaded from environment."""

    # App
    app_name: str = "memory-core"
    debug: bool = False

    # Database (postgresql+psycopg for psycopg3; use postgresql:// for psycopg2)
    database_url: str = "postgresql+psycopg://localhost:5432/memory_core_dev"
    db_connect_timeout: int = 10  # seconds

    # Security
    secret_key: str = ""
    internal_job_token: str = ""  # Required for /internal/* endpoints
    env_admin_token: str = ""  # Bearer token for the env admin principal (implicit OWNER)

    # GitHub App
    github_app_id: Optional[str] = None
    github_app_private_key: Optional[str] = None
    github_api_base: str = "https://api.github.com"
    github_api_timeout: float = 15.0
    github_webhook_secret: str = ""  # fallback when the installation has no secret of its own
    github_app_name: Optional[str] = None  # public slug, used to build the install URL
    github_app_url: Optional[str] = None  # overrides github_app_name, e.g. for GHES
    github_state_secret: str = ""  # signs install-flow state; defaults to secret_key

    # Webhook queue
    webhook_recompute_debounce_ms: int = 8000
    webhook_queue_batch_size: int = 20

    def __init__(self) -> None:
        self.app_name = os.getenv("APP_NAME", self.app_name)
        self.debug = os.getenv("DEBUG", "false").lower() == "true"

        default_user = os.getenv("PGUSER") or os.getenv("USER") or "postgres"
        default_url = (
            f"postgresql+psycopg://{default_user}:"
            f"{os.getenv('PGPASSWORD', '')}@"
            f"{os.getenv('PGHOST', 'localhost')}:"
            f"{os.getenv('PGPORT', '5432')}/"
            f"{os.getenv('PGDATABASE', 'memory_core_dev')}"
        )
        raw_url = os.getenv("DATABASE_URL", default_url)
        # Ensure psycopg3 driver if URL uses generic postgresql://
        if raw_url.startswith("postgresql://") and not raw_url.startswith("postgresql+psycopg"):
            raw_url = raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
        self.database_url = raw_url
        self.db_connect_timeout = int(os.getenv("DB_CONNECT_TIMEOUT", str(self.db_connect_timeout)))

        self.secret_key = os.getenv("SECRET_KEY", "")
        self.internal_job_token = os.getenv("INTERNAL_JOB_TOKEN", "")
        self.env_admin_token = os.getenv("ENV_ADMIN_TOKEN", "")

        self.github_app_id = (os.getenv("GITHUB_APP_ID") or "").strip() or None
        # PEM keys pasted into .env usually carry literal "\n" sequences
        raw_key = (os.getenv("GITHUB_APP_PRIVATE_KEY") or "").strip()
        self.github_app_private_key = raw_key.replace("\\n", "\n") if raw_key else None
        self.github_api_base = os.getenv("GITHUB_API_BASE", self.github_api_base).rstrip("/")
        self.github_api_timeout = float(
            os.getenv("GITHUB_API_TIMEOUT", str(self.github_api_timeout))
        )
        self.github_webhook_secret = os.getenv("GITHUB_WEBHOOK_SECRET", "")
        self.github_app_name = (os.getenv("GITHUB_APP_NAME") or "").strip() or None
        self.github_app_url = (os.getenv("GITHUB_APP_URL") or "").strip().rstrip("/") or None
        self.github_state_secret = os.getenv("GITHUB_STATE_SECRET") or self.secret_key

        self.webhook_recompute_debounce_ms = int(
            os.getenv(
                "WEBHOOK_RECOMPUTE_DEBOUNCE_MS",
                str(self.webhook_recompute_debounce_ms),
            )
        )
        self.webhook_queue_batch_size = int(
            os.getenv("WEBHOOK_QUEUE_BATCH_SIZE", str(self.webhook_queue_batch_size))
        )
