# backend/app/config.py

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # repository root


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/salon.db"
    redis_url: str = "redis://localhost:6379/0"

    # Salon clock and slot grid
    timezone: str = "Asia/Singapore"
    slot_step_minutes: int = 30
    slot_cache_ttl_seconds: int = 60

    # Lifecycle timings
    hold_timeout_minutes: int = 15
    auto_complete_grace_minutes: int = 60
    reminder_lookahead_hours: int = 24
    reminder_send_delay_seconds: float = 1.0
    provider_timeout_seconds: float = 10.0
    lock_timeout_seconds: float = 10.0

    # Deposits (Stripe)
    deposit_currency: str = "sgd"
    deposit_refund_window_hours: int = 24
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    public_base_url: str = "http://localhost:3000"

    # Sweep trigger
    internal_token: str = ""

    # Google Calendar
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""

    # Messaging channels
    tg_bot_token: str = ""
    whatsapp_phone_number_id: str = ""
    whatsapp_access_token: str = ""
    resend_api_key: str = ""
    email_from: str = "Salon <bookings@example.com>"
    admin_email: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # Relative sqlite path is resolved against the repository root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite:///{absolute_path}"
        return url


settings = Settings()
