from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _optional_path(name: str) -> Optional[Path]:
    value = os.getenv(name)
    return Path(value) if value else None


@dataclass
class Settings:
    """Centralized application settings.

    This keeps environment-variable handling in one place so other modules can
    depend on strongly-typed attributes instead of calling os.getenv
    directly.
    """

    # Anti-spam guard. The honeypot field is rendered off-screen (not
    # display:none) so naive bots still fill it in.
    intake_honeypot_field: str = os.getenv("INTAKE_HONEYPOT_FIELD", "company_website")
    intake_min_fill_ms: int = int(os.getenv("INTAKE_MIN_FILL_MS", "2500"))
    intake_rate_limit_window_seconds: float = float(os.getenv("INTAKE_RATE_LIMIT_WINDOW_SECONDS", "600"))
    intake_rate_limit_max: int = int(os.getenv("INTAKE_RATE_LIMIT_MAX", "3"))
    # Client-persisted timestamps for the rate limiter. Unset keeps them in memory.
    intake_rate_limit_path: Optional[Path] = _optional_path("INTAKE_RATE_LIMIT_PATH")

    # Submission transport.
    intake_base_url: str = os.getenv("INTAKE_BASE_URL", "http://localhost:8000")
    intake_timeout_seconds: float = float(os.getenv("INTAKE_TIMEOUT_SECONDS", "15"))
    intake_retries: int = int(os.getenv("INTAKE_RETRIES", "1"))
    intake_backoff_seconds: float = float(os.getenv("INTAKE_BACKOFF_SECONDS", "1.0"))

    # Local durable fallback list of submitted leads. Unset keeps it in memory.
    intake_local_store_path: Optional[Path] = _optional_path("INTAKE_LOCAL_STORE_PATH")
    intake_local_max_leads: int = int(os.getenv("INTAKE_LOCAL_MAX_LEADS", "10000"))

    # Optional fire-and-forget webhook mirroring each captured lead.
    lead_webhook_url: Optional[str] = os.getenv("LEAD_WEBHOOK_URL")
    lead_webhook_secret: Optional[str] = os.getenv("LEAD_WEBHOOK_SECRET")
    lead_webhook_timeout_seconds: float = float(os.getenv("LEAD_WEBHOOK_TIMEOUT_SECONDS", "5"))

    # Optional database configuration for SQL-backed repositories.
    database_url: Optional[str] = os.getenv("DATABASE_URL")
    use_sql_repos: bool = os.getenv("USE_SQL_REPOS", "false").lower() == "true"

    # Basic API authentication configuration.
    # When ENABLE_API_AUTH=true, protected endpoints require a valid API key.
    enable_api_auth: bool = os.getenv("ENABLE_API_AUTH", "false").lower() == "true"
    # Comma-separated entries, each "key" or "key:role:user_id".
    api_keys: Optional[str] = os.getenv("API_KEYS")

    # Staged patient files uploaded after case creation.
    case_file_upload_dir: Path = Path(os.getenv("CASE_FILE_UPLOAD_DIR", "uploads"))
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

    # Thresholds for the derived follow-up/staleness signals on staff views.
    follow_up_due_soon_hours: float = float(os.getenv("FOLLOW_UP_DUE_SOON_HOURS", "24"))
    stale_after_days: int = int(os.getenv("STALE_AFTER_DAYS", "3"))

    # CORS configuration: comma-separated origins (e.g. "https://example.com,https://admin.example.com").
    # Default is "*" (allow all) which is acceptable for local development but
    # should be tightened in production.
    cors_allow_origins: str = os.getenv("CORS_ALLOW_ORIGINS", "*")


settings = Settings()
