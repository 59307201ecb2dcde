import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, model_validator


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    # Persistence (PostgREST). Empty url means in-memory store.
    supabase_url: str = ""
    supabase_service_key: str = ""

    # Executor
    executor_mode: str = "local"
    executor_url: str = ""
    executor_timeout_seconds: float = 30.0

    # Email gateway
    mailgun_api_key: str = ""
    mailgun_domain: str = ""
    mailgun_base_url: str = "https://api.mailgun.net/v3"
    default_from_email: str = "noreply@example.com"
    default_from_name: str = "Field Service Team"

    # SMS gateway
    telnyx_api_key: str = ""
    telnyx_from_number: str = ""
    telnyx_messaging_profile_id: Optional[str] = None
    telnyx_base_url: str = "https://api.telnyx.com/v2"

    dry_run: bool = False

    # Processor
    poll_interval_seconds: float = 5.0
    batch_size: int = 5
    lease_seconds: float = 90.0
    stale_pending_hours: float = 24.0
    run_processor: bool = True

    default_timezone: str = "America/New_York"
    public_site_url: str = "http://localhost:5173"
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_lease(self):
        if self.lease_seconds <= self.executor_timeout_seconds:
            raise ValueError("lease_seconds must be greater than executor_timeout_seconds")
        if self.executor_mode not in ("local", "remote"):
            raise ValueError(f"Unknown executor_mode: {self.executor_mode}")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        """Builds settings from the process environment (and .env, if present)."""
        load_dotenv()
        defaults = cls.model_fields
        return cls(
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
            executor_mode=os.getenv("EXECUTOR_MODE", "local").strip().lower(),
            executor_url=os.getenv("EXECUTOR_URL", ""),
            executor_timeout_seconds=float(os.getenv("EXECUTOR_TIMEOUT_SECONDS", "30")),
            mailgun_api_key=os.getenv("MAILGUN_API_KEY", ""),
            mailgun_domain=os.getenv("MAILGUN_DOMAIN", ""),
            mailgun_base_url=os.getenv("MAILGUN_BASE_URL", defaults["mailgun_base_url"].default),
            default_from_email=os.getenv("DEFAULT_FROM_EMAIL", defaults["default_from_email"].default),
            default_from_name=os.getenv("DEFAULT_FROM_NAME", defaults["default_from_name"].default),
            telnyx_api_key=os.getenv("TELNYX_API_KEY", ""),
            telnyx_from_number=os.getenv("TELNYX_FROM_NUMBER", ""),
            telnyx_messaging_profile_id=os.getenv("TELNYX_MESSAGING_PROFILE_ID") or None,
            telnyx_base_url=os.getenv("TELNYX_BASE_URL", defaults["telnyx_base_url"].default),
            dry_run=_env_bool("DRY_RUN", False),
            poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "5")),
            batch_size=int(os.getenv("BATCH_SIZE", "5")),
            lease_seconds=float(os.getenv("LEASE_SECONDS", "90")),
            stale_pending_hours=float(os.getenv("STALE_PENDING_HOURS", "24")),
            run_processor=_env_bool("RUN_PROCESSOR", True),
            default_timezone=os.getenv("DEFAULT_TIMEZONE", defaults["default_timezone"].default),
            public_site_url=os.getenv("PUBLIC_SITE_URL", defaults["public_site_url"].default),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
