"""Application settings and configuration."""

from typing import List, Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    model_config = ConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Database
    database_url: str = "sqlite:///./grievance_notify.db"
    database_echo: bool = False
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    # Email provider (Resend)
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com"
    email_from: str = "Grievance System <noreply@grievance.example.com>"

    # SMS / voice provider (Twilio)
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    twilio_api_base: str = "https://api.twilio.com/2010-04-01"

    # Delivery
    sender_timeout_seconds: float = 10.0
    push_timeout_seconds: float = 2.0
    log_store_retry_attempts: int = 3
    log_store_retry_delay_min: float = 0.2
    log_store_retry_delay_max: float = 2.0

    # Realtime fan-out
    display_dedupe_window: int = 256
    # Latest complaint snapshots kept for escalation and activity owners
    complaint_cache_size: int = 10000

    # Announcement email audience, comma separated
    notification_recipients: str = ""

    @property
    def recipient_addresses(self) -> List[str]:
        """Parsed announcement audience."""
        return [
            address.strip()
            for address in self.notification_recipients.split(",")
            if address.strip()
        ]


settings = Settings()
