from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Twilio (leave blank to run SMS in mock mode)
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""

    # SMS delivery
    sms_timeout_seconds: float = 10.0
    sms_max_attempts: int = Field(default=3, ge=1)
    sms_backoff_seconds: float = 1.0   # doubled after each transient failure

    # Reminders
    reminder_hours_before: float = Field(default=24.0, gt=0)
    reminder_tick_seconds: int = Field(default=60, ge=1)

    # Queue behaviour
    strict_serve: bool = False         # require "called" before "served"

    # Storage
    store_path: str = ""               # JSON snapshot file; blank = memory only

    # Server
    server_base_url: str = "http://localhost:8000"
    port: int = 8000

    # Counter information
    business_name: str = "CivicEase Service Counter"
    office_timezone: str = "UTC"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def sms_enabled(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_phone_number
        )


settings = Settings()
