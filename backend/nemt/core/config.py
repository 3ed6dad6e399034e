"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        case_sensitive=False,
    )

    # Application
    log_level: str = "INFO"
    app_mode: str = "demo"
    nemt_db_path: str = "./data/nemt.db"
    auth_enabled: bool = False
    default_tenant_id: str = "demo"
    tenant_tokens: str = ""
    company_name: str = "Helping Hands Transportation"
    # IANA zone used when reading pickup times to patients.
    company_timezone: str = "UTC"
    # Externally reachable base URL used to build telephony callback URLs.
    public_base_url: str = "http://localhost:8000"

    # Telephony (outbound confirmation calls)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    twilio_api_base_url: str = "https://api.twilio.com/2010-04-01"
    telephony_timeout_seconds: float = 15.0

    # Dash-camera webhook
    raven_webhook_secret: str = ""
    raven_allow_unsigned: bool = False

    # Payroll / billing
    default_hourly_rate: float = 10.50
    invoice_due_days: int = 30

    def telephony_configured(self) -> bool:
        return all(
            [
                (self.twilio_account_sid or "").strip(),
                (self.twilio_auth_token or "").strip(),
                (self.twilio_phone_number or "").strip(),
            ]
        )

    def normalized_app_mode(self) -> str:
        mode = (self.app_mode or "").strip().lower()
        return mode if mode in {"demo", "production"} else "production"

    def is_demo_mode(self) -> bool:
        return self.normalized_app_mode() == "demo"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
